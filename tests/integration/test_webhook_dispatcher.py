"""
Integration tests for the webhook dispatcher
Tests fan-out, signing, retry sequences, failure counting and auto-disable
"""

import json
from dataclasses import replace
from unittest.mock import AsyncMock
from uuid import uuid4

import httpx
import pytest

from src.models.platform import Webhook
from src.utils.signing import generate_webhook_secret, verify_webhook_signature
from src.workers.webhook_dispatcher import WebhookDispatcher
from tests.utils import refuse_connection

pytestmark = pytest.mark.asyncio


async def register(store, url="https://hooks.example.com/a", events=("order.created",), **fields) -> Webhook:
    return await store.create_webhook(
        Webhook(
            api_key_id=uuid4(),
            url=url,
            events=list(events),
            secret=generate_webhook_secret(),
            **fields,
        )
    )


class TestFanOut:
    async def test_only_subscribed_active_webhooks_receive(self, store, dispatcher, receiver):
        await register(store, "https://hooks.example.com/a", ["order.created"])
        await register(store, "https://hooks.example.com/all", ["*"])
        await register(store, "https://hooks.example.com/other", ["inventory.sync"])
        await register(store, "https://hooks.example.com/off", ["order.created"], is_active=False)

        count = await dispatcher.dispatch("order.created", {"order_id": "o1"})
        assert await dispatcher.wait_idle()

        assert count == 2
        urls = sorted(str(request.url) for request in receiver.requests)
        assert urls == ["https://hooks.example.com/a", "https://hooks.example.com/all"]

    async def test_no_subscribers(self, store, dispatcher, receiver):
        assert await dispatcher.dispatch("order.created", {}) == 0
        assert receiver.requests == []

    async def test_store_failure_does_not_reach_producer(self, store, dispatcher, receiver):
        await register(store)
        store.list_subscribed_webhooks = AsyncMock(side_effect=RuntimeError("db down"))

        assert await dispatcher.dispatch("payment.disputed", {"dispute_id": "dp_1"}) == 0
        assert receiver.requests == []

    async def test_request_shape_and_signature(self, store, dispatcher, receiver):
        webhook = await register(store)

        await dispatcher.dispatch("order.created", {"order_id": "o1", "total": 12})
        assert await dispatcher.wait_idle()

        request = receiver.requests[0]
        body = json.loads(request.content)
        assert body["event"] == "order.created"
        assert body["data"] == {"order_id": "o1", "total": 12}
        assert "timestamp" in body

        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == "Paygate-Webhook/1.0"
        assert request.headers["X-Paygate-Event"] == "order.created"
        assert request.headers["X-Paygate-Delivery"]
        assert request.headers["X-Paygate-Timestamp"] == body["timestamp"]

        signature = request.headers["X-Paygate-Signature"]
        assert signature.startswith("sha256=")
        assert verify_webhook_signature(request.content, signature, webhook.secret)
        assert not verify_webhook_signature(request.content, signature, generate_webhook_secret())

    async def test_each_subscriber_signs_with_its_own_secret(self, store, dispatcher, receiver):
        first = await register(store, "https://hooks.example.com/a")
        second = await register(store, "https://hooks.example.com/b")

        await dispatcher.dispatch("order.created", {})
        assert await dispatcher.wait_idle()

        for webhook in (first, second):
            request = receiver.requests_to(webhook.url)[0]
            assert verify_webhook_signature(
                request.content, request.headers["X-Paygate-Signature"], webhook.secret
            )

    async def test_success_is_recorded(self, store, dispatcher, receiver):
        webhook = await register(store, failure_count=4)

        await dispatcher.dispatch("order.created", {"order_id": "o1"})
        assert await dispatcher.wait_idle()

        deliveries = await store.list_deliveries(webhook.id)
        assert len(deliveries) == 1
        assert deliveries[0].success is True
        assert deliveries[0].response_status == 200
        assert deliveries[0].attempts == 1
        assert deliveries[0].payload["data"] == {"order_id": "o1"}

        updated = await store.get_webhook(webhook.id)
        assert updated.failure_count == 0
        assert updated.last_delivered_at is not None


class TestRetries:
    async def test_retry_until_success_reuses_delivery_id(self, store, dispatcher, receiver):
        webhook = await register(store)
        receiver.respond_with(500, 503, 200)

        await dispatcher.dispatch("order.created", {"order_id": "o1"})
        assert await dispatcher.wait_idle()

        assert len(receiver.requests) == 3
        delivery_ids = {request.headers["X-Paygate-Delivery"] for request in receiver.requests}
        assert len(delivery_ids) == 1
        # identical bytes on every attempt
        assert len({request.content for request in receiver.requests}) == 1
        assert len({request.headers["X-Paygate-Timestamp"] for request in receiver.requests}) == 1

        deliveries = await store.list_deliveries(webhook.id)
        assert [d.attempts for d in deliveries] == [3, 2, 1]
        assert [d.success for d in deliveries] == [True, False, False]
        assert (await store.get_webhook(webhook.id)).failure_count == 0

    async def test_exhausted_sequence_counts_one_failure(self, store, dispatcher, receiver):
        webhook = await register(store)
        receiver.default_status = 500

        await dispatcher.dispatch("order.created", {})
        assert await dispatcher.wait_idle()

        assert len(receiver.requests) == 3
        updated = await store.get_webhook(webhook.id)
        assert updated.failure_count == 1
        assert updated.is_active is True

    async def test_failed_attempt_body_is_recorded(self, store, dispatcher, receiver):
        webhook = await register(store)
        receiver.respond_with(lambda request: httpx.Response(502, text="x" * 5000), 200)

        await dispatcher.dispatch("order.created", {})
        assert await dispatcher.wait_idle()

        failed = (await store.list_deliveries(webhook.id))[-1]
        assert failed.response_status == 502
        assert len(failed.response_body) == 1000

    async def test_network_error_is_status_zero(self, store, dispatcher, receiver):
        webhook = await register(store)
        receiver.respond_with(refuse_connection, 200)

        await dispatcher.dispatch("order.created", {})
        assert await dispatcher.wait_idle()

        first = (await store.list_deliveries(webhook.id))[-1]
        assert first.response_status == 0
        assert first.success is False
        assert "connection refused" in first.response_body

    async def test_webhook_disabled_at_threshold(self, store, settings, receiver):
        dispatcher = WebhookDispatcher(
            store, replace(settings, webhook_failure_threshold=2), transport=receiver.transport
        )
        webhook = await register(store)
        receiver.default_status = 500

        try:
            await dispatcher.dispatch("order.created", {})
            assert await dispatcher.wait_idle()
            assert (await store.get_webhook(webhook.id)).is_active is True

            await dispatcher.dispatch("order.created", {})
            assert await dispatcher.wait_idle()
        finally:
            await dispatcher.stop()

        updated = await store.get_webhook(webhook.id)
        assert updated.failure_count == 2
        assert updated.is_active is False
        assert await dispatcher.dispatch("order.created", {}) == 0

    async def test_retry_skipped_once_webhook_deactivated(self, store, dispatcher, receiver):
        webhook = await register(store)

        def fail_and_deactivate(request):
            store._webhooks[webhook.id] = store._webhooks[webhook.id].model_copy(update={"is_active": False})
            return httpx.Response(500)

        receiver.respond_with(fail_and_deactivate)

        await dispatcher.dispatch("order.created", {})
        assert await dispatcher.wait_idle()

        assert len(receiver.requests) == 1
        assert (await store.get_webhook(webhook.id)).failure_count == 0

    async def test_retries_through_scheduler(self, store, settings, receiver):
        dispatcher = WebhookDispatcher(
            store, replace(settings, dispatcher_enabled=True), transport=receiver.transport
        )
        await dispatcher.start()
        webhook = await register(store)
        receiver.respond_with(500, 200)

        try:
            assert dispatcher.is_running is True
            await dispatcher.dispatch("order.created", {})
            assert await dispatcher.wait_idle()
        finally:
            await dispatcher.stop()

        assert len(receiver.requests) == 2
        assert [d.attempts for d in await store.list_deliveries(webhook.id)] == [2, 1]

    async def test_retry_delay_doubles(self, store, settings):
        dispatcher = WebhookDispatcher(store, replace(settings, webhook_retry_base_seconds=1.0))

        assert [dispatcher._retry_delay(n) for n in (1, 2)] == [2.0, 4.0]

    async def test_stop_drops_pending_retries(self, store, settings, receiver):
        dispatcher = WebhookDispatcher(
            store, replace(settings, webhook_retry_base_seconds=30.0), transport=receiver.transport
        )
        await register(store)
        receiver.default_status = 500

        await dispatcher.dispatch("order.created", {})
        assert not await dispatcher.wait_idle(timeout=0.2)
        await dispatcher.stop()

        assert len(receiver.requests) == 1
        assert await dispatcher.wait_idle(timeout=0.1)
