"""
Integration tests for error handling & retry framework
Tests the error envelope, exception mapping, sanitization and retry helpers
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi import HTTPException
from pydantic import BaseModel, ValidationError as PydanticValidationError

from src.models.errors import (
    BurstLimitExceededError,
    ErrorCode,
    NoProviderConfigured,
    ProviderNotConfiguredError,
    QuotaExceededError,
    RetryableError,
    UpstreamServiceError,
)
from src.integrations.stripe import StripeAdapter
from src.models.platform import utcnow
from src.utils.encryption import EncryptionService, generate_encryption_key
from src.utils.error_handling import (
    error_headers,
    map_exception_to_response,
    sanitize_error_message,
)
from src.utils.retry import RetryConfig, calculate_delay, is_retryable_exception, retry_async, retryable
from tests.utils import assert_error

NO_WAIT = RetryConfig(max_attempts=3, base_delay=0.0, jitter=False)


class TestErrorMiddleware:
    """Error envelope and request correlation through the app"""

    @pytest.mark.asyncio
    async def test_request_id_generation(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        request_id = response.headers["X-Request-ID"]
        assert len(request_id) == 36
        assert request_id.count("-") == 4

    @pytest.mark.asyncio
    async def test_valid_request_id_is_preserved(self, client):
        custom_id = "5f0c6c3e-2d7b-4f63-9a43-3a1b9d3c2e10"

        response = await client.get("/", headers={"X-Request-ID": custom_id})

        assert response.headers["X-Request-ID"] == custom_id

    @pytest.mark.asyncio
    async def test_invalid_request_id_is_replaced(self, client):
        response = await client.get("/", headers={"X-Request-ID": "test-request-123"})

        assert response.headers["X-Request-ID"] != "test-request-123"
        assert len(response.headers["X-Request-ID"]) == 36

    @pytest.mark.asyncio
    async def test_unknown_route(self, client):
        response = await client.get("/api/v1/nope")

        error = assert_error(response, 404, "NOT_FOUND")
        assert error["request_id"] == response.headers["X-Request-ID"]
        assert "timestamp" in response.json()

    @pytest.mark.asyncio
    async def test_method_not_allowed(self, client):
        response = await client.delete("/api/v1/platform/status")

        assert_error(response, 405, "VALIDATION_ERROR")

    @pytest.mark.asyncio
    async def test_validation_error_is_400(self, client, auth_headers):
        response = await client.post("/api/developer/keys", json={"name": ""}, headers=auth_headers)

        error = assert_error(response, 400, "VALIDATION_ERROR")
        assert error["details"]["field"] == "body.name"
        assert error["message"].startswith("Validation error in field 'body.name'")

    @pytest.mark.asyncio
    async def test_unhandled_exception_is_500(self, client, issue_key, payment_router):
        issued, _ = await issue_key()

        with patch.object(payment_router, "get_provider_status", side_effect=RuntimeError("boom")):
            response = await client.get("/api/v1/payments/providers", headers={"X-API-Key": issued.public_key})

        error = assert_error(response, 500, "INTERNAL_ERROR")
        assert error["message"] == "Internal server error"
        assert error["details"]["reason"] == "Unexpected error: RuntimeError"
        assert "boom" not in response.text

    @pytest.mark.asyncio
    async def test_unhandled_exception_is_audited(self, client, store, issue_key, payment_router):
        issued, _ = await issue_key()

        with patch.object(payment_router, "get_provider_status", side_effect=RuntimeError("boom")):
            await client.get("/api/v1/payments/providers", headers={"X-API-Key": issued.public_key})

        entries = await store.list_audit_logs([issued.id])
        assert [entry.status_code for entry in entries] == [500]


class TestErrorMapping:
    """map_exception_to_response for each error family"""

    def test_api_error(self):
        response, status = map_exception_to_response(NoProviderConfigured(), "req-1")

        assert status == 503
        assert response.error.code == "NO_PROVIDER_CONFIGURED"
        assert response.error.request_id == "req-1"
        assert response.ok is False

    def test_http_exception(self):
        response, status = map_exception_to_response(HTTPException(status_code=403, detail="nope"))

        assert status == 403
        assert response.error.code == ErrorCode.AUTHORIZATION_FAILED.value
        assert response.error.message == "nope"

    def test_unmapped_http_status(self):
        response, status = map_exception_to_response(HTTPException(status_code=418, detail="teapot"))

        assert status == 418
        assert response.error.code == "INTERNAL_ERROR"

    def test_pydantic_validation_error(self):
        class Body(BaseModel):
            amount: int

        with pytest.raises(PydanticValidationError) as exc_info:
            Body(amount="many")

        response, status = map_exception_to_response(exc_info.value)

        assert status == 400
        assert response.error.details["field"] == "amount"

    def test_upstream_error(self):
        response, status = map_exception_to_response(UpstreamServiceError("adyen", 500, "oops"))

        assert status == 502
        assert response.error.code == "EXTERNAL_SERVICE_ERROR"
        assert response.error.details["service"] == "adyen"
        assert response.error.details["reason"] == "HTTP 500: oops"

    def test_upstream_throttling(self):
        response, status = map_exception_to_response(UpstreamServiceError("stripe", 429, "slow down"))

        assert status == 429
        assert response.error.code == "RATE_LIMIT_EXCEEDED"

    def test_retryable_error(self):
        response, status = map_exception_to_response(RetryableError("timed out", service="square"))

        assert status == 503
        assert response.error.code == "SERVICE_UNAVAILABLE"
        assert response.error.details["service"] == "square"

    def test_unknown_exception(self):
        response, status = map_exception_to_response(KeyError("x"))

        assert status == 500
        assert response.error.code == "INTERNAL_ERROR"

    def test_quota_headers(self):
        reset_at = utcnow()
        headers = error_headers(QuotaExceededError(0, reset_at, "free"))

        assert headers == {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": reset_at.isoformat()}

    def test_burst_headers(self):
        assert error_headers(BurstLimitExceededError(12, 60)) == {"Retry-After": "12"}


class TestSanitization:
    @pytest.mark.parametrize(
        "message, leaked",
        [
            ('{"password": "hunter2"}', "hunter2"),
            ("token=abc123", "abc123"),
            ("Authorization: Bearer-xyz", "Bearer-xyz"),
            ("key sk_test_51HxYzAbC rejected", "sk_test_51HxYzAbC"),
            ("secret pg_sk_0123abcdef leaked", "pg_sk_0123abcdef"),
            ("card 4242424242424242 declined", "4242424242424242"),
        ],
    )
    def test_sensitive_values_redacted(self, message, leaked):
        sanitized = sanitize_error_message(message)

        assert leaked not in sanitized
        assert "***REDACTED***" in sanitized

    def test_long_messages_truncated(self):
        sanitized = sanitize_error_message("x" * 1000)

        assert len(sanitized) == 500
        assert sanitized.endswith("...")

    def test_plain_message_unchanged(self):
        assert sanitize_error_message("Invalid API key.") == "Invalid API key."


class TestRetry:
    def test_classifier(self):
        request = httpx.Request("GET", "https://example.com")

        assert is_retryable_exception(RetryableError("later"))
        assert is_retryable_exception(httpx.ConnectError("refused", request=request))
        assert is_retryable_exception(UpstreamServiceError("stripe", 503, ""))
        assert is_retryable_exception(UpstreamServiceError("stripe", 429, ""))
        assert is_retryable_exception(UpstreamServiceError("stripe", 0, ""))
        assert not is_retryable_exception(UpstreamServiceError("stripe", 402, ""))
        assert not is_retryable_exception(ValueError("bad"))

    def test_gateway_errors_are_final(self):
        assert not is_retryable_exception(ProviderNotConfiguredError("Stripe"))
        assert not is_retryable_exception(NoProviderConfigured())

    @pytest.mark.asyncio
    async def test_unconfigured_status_lookup_fails_without_waiting(self):
        adapter = StripeAdapter()

        with patch("src.utils.retry.asyncio.sleep", new_callable=AsyncMock) as sleeper:
            with pytest.raises(ProviderNotConfiguredError):
                await adapter.get_status("pi_1")

        assert sleeper.await_count == 0
        await adapter.close()

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=3.0, jitter=False)

        assert [calculate_delay(n, config) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]

    def test_jitter_stays_below_delay(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=True)

        assert all(0 <= calculate_delay(2, config) <= 2.0 for _ in range(20))

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        operation = AsyncMock(side_effect=[UpstreamServiceError("square", 503, ""), "ok"])

        assert await retry_async(operation, NO_WAIT) == "ok"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_raised_immediately(self):
        operation = AsyncMock(side_effect=UpstreamServiceError("square", 400, "bad"))

        with pytest.raises(UpstreamServiceError):
            await retry_async(operation, NO_WAIT)
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_last_error_reraised_when_exhausted(self):
        operation = AsyncMock(side_effect=UpstreamServiceError("square", 500, "down"))

        with pytest.raises(UpstreamServiceError) as exc_info:
            await retry_async(operation, NO_WAIT)
        assert exc_info.value.status_code == 500
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_decorator(self):
        calls = []

        @retryable(config=NO_WAIT)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RetryableError("not yet")
            return len(calls)

        assert await flaky() == 3


class TestEncryption:
    def test_roundtrip(self):
        service = EncryptionService(generate_encryption_key())

        encrypted = service.encrypt("whsec_abc")

        assert encrypted.startswith("enc:")
        assert service.decrypt(encrypted) == "whsec_abc"

    def test_plaintext_passes_through(self):
        service = EncryptionService(generate_encryption_key())

        assert service.decrypt("whsec_legacy") == "whsec_legacy"

    def test_wrong_key(self):
        encrypted = EncryptionService(generate_encryption_key()).encrypt("whsec_abc")

        with pytest.raises(ValueError):
            EncryptionService(generate_encryption_key()).decrypt(encrypted)
