"""
Base class for payment backend adapters

Every backend exposes the same capabilities: create, capture, refund, cancel,
status lookup, dispute classification and fee estimation. Adapters talk to
their backend's REST API through a lazily created ``httpx.AsyncClient`` and
read credentials from the environment at call time, so a backend becomes
available as soon as its variables are set.
"""

import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import httpx

from ..models.errors import ProviderNotConfiguredError, UpstreamServiceError
from ..models.payments import (
    CancelResult,
    CaptureResult,
    DisputeResolution,
    DisputeResult,
    FeeEstimate,
    OrderType,
    PaymentOrder,
    PaymentResult,
    PaymentStatusResult,
    ProviderKey,
    RefundResult,
    round_money,
)
from ..utils.logger import log
from ..utils.metrics import record_external_call
from ..utils.retry import RetryConfig

HTTP_TIMEOUT = 30.0

# Status lookups are idempotent reads and retry on transient failures
STATUS_RETRY = RetryConfig(max_attempts=3, base_delay=0.25, max_delay=2.0)


class PaymentProviderAdapter(ABC):
    """Uniform interface over one payment backend"""

    key: ProviderKey
    display_name: str

    def __init__(
        self,
        *,
        timeout: float = HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    # -- configuration -----------------------------------------------------

    @abstractmethod
    def is_configured(self) -> bool:
        """True when the backend's credentials are present"""

    @abstractmethod
    def _base_url(self) -> str:
        ...

    @abstractmethod
    def _auth_headers(self) -> Dict[str, str]:
        ...

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise ProviderNotConfiguredError(self.display_name)

    # -- HTTP plumbing -----------------------------------------------------

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        label: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Call the backend and return the decoded JSON body

        Raises:
            ProviderNotConfiguredError: credentials are missing
            UpstreamServiceError: non-2xx answer, or no answer at all (status 0)
        """
        self._require_configured()
        client = await self._get_client()
        endpoint = f"{method} {label or path}"
        started = time.perf_counter()

        try:
            response = await client.request(
                method,
                f"{self._base_url()}{path}",
                json=json,
                data=data,
                params=params,
                headers=self._auth_headers(),
            )
        except httpx.TransportError as e:
            log.warning(
                f"{self.display_name} request failed",
                extra={
                    "event_type": "provider_request_failed",
                    "provider": self.key.value,
                    "endpoint": endpoint,
                    "error": str(e),
                },
            )
            raise UpstreamServiceError(self.key.value, 0, str(e)) from e
        finally:
            record_external_call(self.key.value, endpoint, time.perf_counter() - started)

        if response.status_code >= 400:
            log.warning(
                f"{self.display_name} returned HTTP {response.status_code}",
                extra={
                    "event_type": "provider_http_error",
                    "provider": self.key.value,
                    "endpoint": endpoint,
                    "status_code": response.status_code,
                },
            )
            raise UpstreamServiceError(self.key.value, response.status_code, response.text[:500])

        if not response.content:
            return {}
        return response.json()

    # -- capabilities ------------------------------------------------------

    @abstractmethod
    async def create_payment(self, order: PaymentOrder) -> PaymentResult:
        ...

    @abstractmethod
    async def capture_payment(self, intent_id: str) -> CaptureResult:
        ...

    @abstractmethod
    async def refund_payment(
        self, intent_id: str, amount: Optional[Decimal] = None, reason: Optional[str] = None
    ) -> RefundResult:
        ...

    @abstractmethod
    async def cancel_payment(self, intent_id: str) -> CancelResult:
        ...

    @abstractmethod
    async def get_status(self, intent_id: str) -> PaymentStatusResult:
        ...

    @abstractmethod
    async def handle_dispute(self, payload: Mapping[str, Any]) -> DisputeResult:
        """Classify a dispute callback. Never calls the backend."""

    @abstractmethod
    def estimate_fee(self, amount: Decimal, order_type: OrderType = OrderType.ONLINE) -> FeeEstimate:
        ...

    def verify_callback(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Verify an inbound callback's signature. Backends without one accept all."""
        return True

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _percent_fee(amount: Decimal, percent: str, fixed: str, rate: str) -> FeeEstimate:
        estimated = Decimal(amount) * Decimal(percent) / Decimal(100) + Decimal(fixed)
        return FeeEstimate(rate=rate, estimated=round_money(estimated))

    def _no_action(self) -> DisputeResult:
        return DisputeResult(resolution=DisputeResolution.NO_ACTION, provider=self.key)
