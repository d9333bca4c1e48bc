"""
Integration tests for the developer portal API
"""

from uuid import uuid4

import pytest
from httpx import AsyncClient

from src.utils.jwt import create_access_token
from src.utils.signing import verify_webhook_signature
from tests.utils import assert_error

pytestmark = pytest.mark.asyncio


async def create_key(client: AsyncClient, headers, **payload):
    body = {"name": "Storefront", **payload}
    response = await client.post("/api/developer/keys", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestAuthentication:
    async def test_missing_token(self, client):
        response = await client.get("/api/developer/keys")

        error = assert_error(response, 401, "AUTHENTICATION_FAILED")
        assert error["message"] == "Authentication required"

    async def test_invalid_token(self, client):
        response = await client.get("/api/developer/keys", headers={"Authorization": "Bearer nope"})

        assert_error(response, 401, "AUTHENTICATION_FAILED")

    async def test_token_with_unknown_role(self, client):
        token = create_access_token({"sub": "u1", "email": "u1@paygate.io", "role": "merchant"})
        response = await client.get("/api/developer/keys", headers={"Authorization": f"Bearer {token}"})

        assert_error(response, 401, "AUTHENTICATION_FAILED")


class TestApiKeys:
    async def test_create_returns_secret_once(self, client, auth_headers):
        data = await create_key(client, auth_headers, tier="pro")

        assert data["public_key"].startswith("pg_pk_")
        assert data["secret_key"].startswith("pg_sk_")
        assert data["tier"] == "pro"
        assert data["rate_limit"] == 2_000
        assert "secret_key_hash" not in data

        listed = (await client.get("/api/developer/keys", headers=auth_headers)).json()["data"]
        assert [item["id"] for item in listed] == [data["id"]]
        assert "secret_key" not in listed[0]
        assert "secret_key_hash" not in listed[0]

    async def test_create_requires_name(self, client, auth_headers):
        response = await client.post("/api/developer/keys", json={"tier": "free"}, headers=auth_headers)

        error = assert_error(response, 400, "VALIDATION_ERROR")
        assert error["details"]["field"] == "body.name"

    async def test_unknown_tier_rejected(self, client, auth_headers):
        response = await client.post(
            "/api/developer/keys", json={"name": "x", "tier": "platinum"}, headers=auth_headers
        )

        assert_error(response, 400, "VALIDATION_ERROR")

    async def test_rotate(self, client, auth_headers):
        data = await create_key(client, auth_headers)

        response = await client.post(f"/api/developer/keys/{data['id']}/rotate", headers=auth_headers)

        assert response.status_code == 200
        rotated = response.json()["data"]
        assert rotated["id"] == data["id"]
        assert rotated["public_key"] != data["public_key"]
        assert rotated["secret_key"] != data["secret_key"]

        old = await client.get("/api/v1/usage", headers={"X-API-Key": data["public_key"]})
        assert_error(old, 401, "INVALID_API_KEY")
        new = await client.get("/api/v1/usage", headers={"X-API-Key": rotated["public_key"]})
        assert new.status_code == 200

    async def test_deactivate(self, client, auth_headers):
        data = await create_key(client, auth_headers)

        response = await client.delete(f"/api/developer/keys/{data['id']}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["is_active"] is False
        usage = await client.get("/api/v1/usage", headers={"X-API-Key": data["public_key"]})
        assert_error(usage, 403, "API_KEY_DEACTIVATED")

    async def test_other_developers_keys_are_invisible(self, client, auth_headers, other_developer_token):
        data = await create_key(client, auth_headers)
        other = {"Authorization": f"Bearer {other_developer_token}"}

        listed = await client.get("/api/developer/keys", headers=other)
        rotate = await client.post(f"/api/developer/keys/{data['id']}/rotate", headers=other)

        assert listed.json()["data"] == []
        assert_error(rotate, 404, "NOT_FOUND")

    async def test_unknown_key_id(self, client, auth_headers):
        response = await client.delete(f"/api/developer/keys/{uuid4()}", headers=auth_headers)

        assert_error(response, 404, "NOT_FOUND")


class TestWebhooks:
    async def test_register_requires_active_key(self, client, auth_headers):
        response = await client.post(
            "/api/developer/webhooks",
            json={"url": "https://hooks.example.com/a", "events": ["order.created"]},
            headers=auth_headers,
        )

        error = assert_error(response, 400, "VALIDATION_ERROR")
        assert error["details"]["field"] == "api_key_id"

    async def test_register_and_list(self, client, auth_headers):
        key = await create_key(client, auth_headers)

        response = await client.post(
            "/api/developer/webhooks",
            json={"url": "https://hooks.example.com/a", "events": [" order.created ", "payment.disputed"]},
            headers=auth_headers,
        )

        assert response.status_code == 201
        webhook = response.json()["data"]
        assert webhook["secret"].startswith("whsec_")
        assert webhook["api_key_id"] == key["id"]
        assert webhook["events"] == ["order.created", "payment.disputed"]
        assert webhook["is_active"] is True

        listed = (await client.get("/api/developer/webhooks", headers=auth_headers)).json()["data"]
        assert [item["id"] for item in listed] == [webhook["id"]]
        assert "secret" not in listed[0]

    async def test_register_rejects_bad_url_and_empty_events(self, client, auth_headers):
        await create_key(client, auth_headers)

        bad_url = await client.post(
            "/api/developer/webhooks", json={"url": "not a url", "events": ["*"]}, headers=auth_headers
        )
        no_events = await client.post(
            "/api/developer/webhooks",
            json={"url": "https://hooks.example.com/a", "events": [" "]},
            headers=auth_headers,
        )

        assert_error(bad_url, 400, "VALIDATION_ERROR")
        assert_error(no_events, 400, "VALIDATION_ERROR")

    async def test_test_ping_and_delivery_history(self, client, auth_headers, dispatcher, receiver):
        await create_key(client, auth_headers)
        webhook = (
            await client.post(
                "/api/developer/webhooks",
                json={"url": "https://hooks.example.com/ping", "events": ["test.ping"]},
                headers=auth_headers,
            )
        ).json()["data"]

        response = await client.post(f"/api/developer/webhooks/{webhook['id']}/test", headers=auth_headers)
        assert response.status_code == 202
        assert response.json()["data"] == {"event": "test.ping", "subscribers": 1}
        assert await dispatcher.wait_idle()

        request = receiver.requests[0]
        assert verify_webhook_signature(request.content, request.headers["X-Paygate-Signature"], webhook["secret"])
        assert receiver.bodies()[0]["data"]["webhook_id"] == webhook["id"]

        history = await client.get(f"/api/developer/webhooks/{webhook['id']}/deliveries", headers=auth_headers)
        deliveries = history.json()["data"]
        assert len(deliveries) == 1
        assert deliveries[0]["event"] == "test.ping"
        assert deliveries[0]["success"] is True
        assert deliveries[0]["response_status"] == 200

    async def test_test_ping_reaches_every_subscriber(self, client, auth_headers, dispatcher, receiver):
        await create_key(client, auth_headers)
        ids = []
        for url, events in (("https://hooks.example.com/a", ["order.created"]), ("https://hooks.example.com/b", ["*"])):
            created = await client.post(
                "/api/developer/webhooks", json={"url": url, "events": events}, headers=auth_headers
            )
            ids.append(created.json()["data"]["id"])

        response = await client.post(f"/api/developer/webhooks/{ids[0]}/test", headers=auth_headers)
        assert await dispatcher.wait_idle()

        # the named webhook does not subscribe to test.ping; the wildcard one does
        assert response.json()["data"]["subscribers"] == 1
        assert [str(request.url) for request in receiver.requests] == ["https://hooks.example.com/b"]

    async def test_delete_is_soft(self, client, auth_headers, dispatcher, receiver):
        await create_key(client, auth_headers)
        webhook = (
            await client.post(
                "/api/developer/webhooks",
                json={"url": "https://hooks.example.com/a", "events": ["*"]},
                headers=auth_headers,
            )
        ).json()["data"]

        response = await client.delete(f"/api/developer/webhooks/{webhook['id']}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["data"]["is_active"] is False
        listed = (await client.get("/api/developer/webhooks", headers=auth_headers)).json()["data"]
        assert listed[0]["is_active"] is False
        assert await dispatcher.dispatch("order.created", {}) == 0

    async def test_foreign_webhook_is_not_found(self, client, auth_headers, other_developer_token):
        await create_key(client, auth_headers)
        webhook = (
            await client.post(
                "/api/developer/webhooks",
                json={"url": "https://hooks.example.com/a", "events": ["*"]},
                headers=auth_headers,
            )
        ).json()["data"]
        other = {"Authorization": f"Bearer {other_developer_token}"}

        response = await client.get(f"/api/developer/webhooks/{webhook['id']}/deliveries", headers=other)

        assert_error(response, 404, "NOT_FOUND")


class TestAuditLogs:
    async def test_api_key_calls_are_audited(self, client, auth_headers):
        key = await create_key(client, auth_headers)
        api_headers = {"X-API-Key": key["public_key"], "User-Agent": "audit-test/1.0"}

        await client.get("/api/v1/usage", headers=api_headers)
        await client.get("/api/v1/admin/webhooks", headers=api_headers)

        response = await client.get("/api/developer/audit-logs", headers=auth_headers)
        entries = response.json()["data"]
        assert [(e["method"], e["path"], e["status_code"]) for e in entries] == [
            ("GET", "/api/v1/admin/webhooks", 403),
            ("GET", "/api/v1/usage", 200),
        ]
        assert entries[0]["api_key_id"] == key["id"]
        assert entries[0]["user_agent"] == "audit-test/1.0"
        assert entries[0]["response_time_ms"] >= 0

    async def test_rejected_credentials_are_not_audited(self, client, auth_headers):
        await create_key(client, auth_headers)

        await client.get("/api/v1/usage", headers={"X-API-Key": "pg_pk_unknown"})

        response = await client.get("/api/developer/audit-logs", headers=auth_headers)
        assert response.json()["data"] == []

    async def test_audit_log_scoped_to_owner(self, client, auth_headers, other_developer_token):
        key = await create_key(client, auth_headers)
        await client.get("/api/v1/usage", headers={"X-API-Key": key["public_key"]})

        other = {"Authorization": f"Bearer {other_developer_token}"}
        response = await client.get("/api/developer/audit-logs", headers=other)

        assert response.json()["data"] == []
