"""
Webhook dispatcher: signed fan-out of business events to subscriber URLs

Each subscriber gets its own delivery sequence of up to ``webhook_max_attempts``
POSTs. Retries are scheduled on an in-memory APScheduler scheduler, so a
process restart drops any retry that has not fired yet.
"""

import asyncio
import json
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Coroutine, Dict, Optional, Set
from uuid import UUID

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from ..config.settings import GatewaySettings, get_settings
from ..database.store import PlatformStore
from ..models.errors import DeliveryFailure
from ..models.platform import Webhook, WebhookDelivery, utcnow
from ..utils.logger import get_logger, log_error
from ..utils.metrics import record_webhook_attempt, record_webhook_exhausted
from ..utils.signing import sign_payload

log = get_logger("webhooks")


class WebhookDispatcher:
    """
    Delivers events to every active webhook subscribed to them
    """

    def __init__(
        self,
        store: PlatformStore,
        settings: Optional[GatewaySettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.scheduler = AsyncIOScheduler()
        self.instance_id = f"dispatcher-{uuid.uuid4().hex[:8]}"
        self.is_running = False
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._tasks: Set[asyncio.Task] = set()
        self._pending_retries = 0

    async def start(self):
        """Start the retry scheduler"""
        if not self.settings.dispatcher_enabled:
            log.info(
                "Webhook dispatcher retries disabled via configuration",
                extra={"event_type": "dispatcher_disabled", "instance_id": self.instance_id},
            )
            return

        self.scheduler.start()
        self.is_running = True
        log.info(
            "Webhook dispatcher started",
            extra={
                "event_type": "dispatcher_started",
                "instance_id": self.instance_id,
                "max_attempts": self.settings.webhook_max_attempts,
                "failure_threshold": self.settings.webhook_failure_threshold,
            },
        )

    async def stop(self):
        """Stop the scheduler, drop pending retries and cancel in-flight deliveries"""
        dropped = self._pending_retries
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._pending_retries = 0

        if self._client is not None:
            await self._client.aclose()
            self._client = None

        log.info(
            "Webhook dispatcher stopped",
            extra={
                "event_type": "dispatcher_stopped",
                "instance_id": self.instance_id,
                "dropped_retries": dropped,
            },
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.webhook_timeout_seconds,
                transport=self._transport,
            )
        return self._client

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log_error(
                "webhook_delivery_error",
                "Webhook delivery task failed",
                exception=task.exception(),
            )

    async def dispatch(self, event: str, data: Dict[str, Any]) -> int:
        """
        Fan an event out to its subscribers

        Returns immediately after the deliveries are started; failures never
        reach the caller.

        Args:
            event: Event name, e.g. ``order.created``
            data: Event data

        Returns:
            Number of webhooks the event was sent to
        """
        try:
            webhooks = await self.store.list_subscribed_webhooks(event)
            if not webhooks:
                log.debug(
                    "No webhooks subscribed to event",
                    extra={"event_type": "webhook_dispatch_skipped", "event": event},
                )
                return 0

            # One body for every subscriber; each signs it with its own secret
            body = json.dumps(
                {"event": event, "data": data, "timestamp": utcnow().isoformat()},
                default=str,
            ).encode()
            for webhook in webhooks:
                self._spawn(self.deliver(webhook, event, body))
        except Exception as e:
            log_error(
                "webhook_dispatch_error",
                "Webhook dispatch failed",
                exception=e,
                event=event,
            )
            return 0

        log.info(
            "Event dispatched",
            extra={"event_type": "webhook_dispatched", "event": event, "subscribers": len(webhooks)},
        )
        return len(webhooks)

    def _headers(
        self, webhook: Webhook, event: str, body: bytes, delivery_id: str, timestamp: str
    ) -> Dict[str, str]:
        brand = self.settings.webhook_brand
        return {
            "Content-Type": "application/json",
            f"X-{brand}-Signature": sign_payload(body, webhook.secret),
            f"X-{brand}-Event": event,
            f"X-{brand}-Delivery": delivery_id,
            f"X-{brand}-Timestamp": timestamp,
            "User-Agent": f"{brand}-Webhook/1.0",
        }

    async def _post(self, webhook: Webhook, headers: Dict[str, str], body: bytes) -> httpx.Response:
        limit = self.settings.webhook_response_body_limit
        try:
            response = await self._get_client().post(webhook.url, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise DeliveryFailure(webhook.url, 0, (str(e) or type(e).__name__)[:limit]) from e

        if not response.is_success:
            raise DeliveryFailure(webhook.url, response.status_code, response.text[:limit])
        return response

    async def deliver(
        self,
        webhook: Webhook,
        event: str,
        body: bytes,
        attempt: int = 1,
        delivery_id: Optional[str] = None,
    ) -> bool:
        """
        Run one delivery attempt and decide what happens next

        Every attempt is recorded. Success resets the webhook's failure counter;
        a failure schedules the next attempt, or counts one failed sequence
        against the webhook once the attempts are used up.
        """
        delivery_id = delivery_id or str(uuid.uuid4())
        payload = json.loads(body)
        # Same ISO timestamp as the signed body, on every attempt
        headers = self._headers(webhook, event, body, delivery_id, payload.get("timestamp", ""))

        start_time = time.perf_counter()
        try:
            response = await self._post(webhook, headers, body)
            status_code = response.status_code
            response_body = response.text[: self.settings.webhook_response_body_limit]
            success = True
        except DeliveryFailure as e:
            status_code = e.status_code
            response_body = e.body
            success = False
        duration = time.perf_counter() - start_time
        record_webhook_attempt(success, duration)

        await self.store.add_delivery(
            WebhookDelivery(
                webhook_id=webhook.id,
                delivery_id=delivery_id,
                event=event,
                payload=payload,
                response_status=status_code,
                response_body=response_body,
                success=success,
                attempts=attempt,
            )
        )

        log.info(
            "Webhook delivery attempt",
            extra={
                "event_type": "webhook_delivery_attempt",
                "webhook_id": str(webhook.id),
                "delivery_id": delivery_id,
                "event": event,
                "attempt": attempt,
                "status_code": status_code,
                "success": success,
                "duration_ms": int(duration * 1000),
            },
        )

        if success:
            await self.store.record_webhook_success(webhook.id, utcnow())
            return True

        if attempt < self.settings.webhook_max_attempts:
            self._schedule_retry(webhook.id, event, body, attempt + 1, delivery_id)
        else:
            await self._exhausted(webhook, delivery_id)
        return False

    def _retry_delay(self, failed_attempt: int) -> float:
        return self.settings.webhook_retry_base_seconds * (2 ** failed_attempt)

    def _schedule_retry(self, webhook_id: UUID, event: str, body: bytes, attempt: int, delivery_id: str):
        delay = self._retry_delay(attempt - 1)
        run_at = datetime.now(self.scheduler.timezone) + timedelta(seconds=delay)
        self._pending_retries += 1

        if self.is_running:
            self.scheduler.add_job(
                self._retry,
                trigger=DateTrigger(run_date=run_at),
                args=[webhook_id, event, body, attempt, delivery_id],
                id=f"webhook-retry-{delivery_id}-{attempt}",
                misfire_grace_time=None,
            )
        else:
            self._spawn(self._retry_after(delay, webhook_id, event, body, attempt, delivery_id))

        log.info(
            "Webhook delivery retry scheduled",
            extra={
                "event_type": "webhook_delivery_retry_scheduled",
                "webhook_id": str(webhook_id),
                "delivery_id": delivery_id,
                "attempt": attempt,
                "delay_seconds": delay,
                "next_run_at": run_at.isoformat(),
            },
        )

    async def _retry_after(self, delay: float, *args):
        await asyncio.sleep(delay)
        await self._retry(*args)

    async def _retry(self, webhook_id: UUID, event: str, body: bytes, attempt: int, delivery_id: str):
        task = asyncio.current_task()
        if task is not None and task not in self._tasks:
            self._tasks.add(task)
            task.add_done_callback(self._task_done)
        self._pending_retries = max(0, self._pending_retries - 1)

        # Re-read so a webhook deactivated meanwhile gets no further attempts
        webhook = await self.store.get_webhook(webhook_id)
        if webhook is None or not webhook.is_active:
            log.info(
                "Webhook retry skipped for inactive webhook",
                extra={
                    "event_type": "webhook_retry_skipped",
                    "webhook_id": str(webhook_id),
                    "delivery_id": delivery_id,
                },
            )
            return
        await self.deliver(webhook, event, body, attempt, delivery_id)

    async def _exhausted(self, webhook: Webhook, delivery_id: str):
        updated = await self.store.record_webhook_failure(
            webhook.id, self.settings.webhook_failure_threshold
        )
        disabled = updated is not None and not updated.is_active
        record_webhook_exhausted(disabled)

        log.warning(
            "Webhook delivery attempts exhausted",
            extra={
                "event_type": "webhook_endpoint_exhausted",
                "webhook_id": str(webhook.id),
                "delivery_id": delivery_id,
                "failure_count": updated.failure_count if updated else None,
            },
        )
        if disabled:
            log.warning(
                "Webhook disabled after repeated failures",
                extra={
                    "event_type": "webhook_disabled",
                    "webhook_id": str(webhook.id),
                    "failure_count": updated.failure_count,
                },
            )

    async def wait_idle(self, timeout: float = 5.0) -> bool:
        """Wait until no delivery or retry is pending; False on timeout"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            current = asyncio.current_task()
            pending = [task for task in self._tasks if not task.done() and task is not current]
            if not pending and self._pending_retries == 0:
                return True
            if pending:
                await asyncio.wait(pending, timeout=0.05)
            else:
                await asyncio.sleep(0.01)
        return False
