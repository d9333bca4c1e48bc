"""
GoDaddy Payments adapter, used for in-person orders
"""

import os
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

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
    from_minor_units,
    to_minor_units,
)
from ..utils.retry import retry_with_backoff
from .base import STATUS_RETRY, PaymentProviderAdapter

GODADDY_API_URL = "https://api.godaddypayments.com/v1"


class GoDaddyAdapter(PaymentProviderAdapter):
    key = ProviderKey.GODADDY
    display_name = "GoDaddy Payments"

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv("GODADDY_PAYMENTS_API_KEY")

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _base_url(self) -> str:
        return os.getenv("GODADDY_PAYMENTS_API_URL", GODADDY_API_URL).rstrip("/")

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def create_payment(self, order: PaymentOrder) -> PaymentResult:
        amount = to_minor_units(order.amount)
        response = await self._request(
            "POST",
            "/payments",
            json={
                "amount": amount,
                "currency": order.currency,
                "referenceId": order.id,
                "customerEmail": order.customer_email,
                "channel": order.order_type.value,
                "metadata": order.metadata,
            },
        )
        return PaymentResult(
            provider=self.key,
            intent_id=response.get("id") or response.get("transactionId") or order.id,
            amount=amount,
            currency=order.currency,
            status=response.get("status"),
        )

    async def capture_payment(self, intent_id: str) -> CaptureResult:
        response = await self._request(
            "POST", f"/payments/{intent_id}/capture", json={}, label="/payments/{id}/capture"
        )
        return CaptureResult(
            success=True,
            intent_id=intent_id,
            status=response.get("status", "captured"),
            provider=self.key,
        )

    async def refund_payment(
        self, intent_id: str, amount: Optional[Decimal] = None, reason: Optional[str] = None
    ) -> RefundResult:
        body: Dict[str, Any] = {"reason": reason or "requested_by_customer"}
        if amount is not None:
            body["amount"] = to_minor_units(amount)
        response = await self._request(
            "POST", f"/payments/{intent_id}/refund", json=body, label="/payments/{id}/refund"
        )
        return RefundResult(
            success=True,
            refund_id=response.get("id") or f"refund_{intent_id}",
            status=response.get("status", "refunded"),
            provider=self.key,
        )

    async def cancel_payment(self, intent_id: str) -> CancelResult:
        await self._request(
            "POST", f"/payments/{intent_id}/cancel", json={}, label="/payments/{id}/cancel"
        )
        return CancelResult(success=True, provider=self.key)

    @retry_with_backoff(config=STATUS_RETRY)
    async def get_status(self, intent_id: str) -> PaymentStatusResult:
        payment = await self._request("GET", f"/payments/{intent_id}", label="/payments/{id}")
        return PaymentStatusResult(
            status=payment.get("status", "unknown"),
            amount=from_minor_units(payment.get("amount")),
        )

    async def handle_dispute(self, payload: Mapping[str, Any]) -> DisputeResult:
        if payload.get("event") == "dispute_created" or payload.get("type") == "dispute":
            return DisputeResult(
                resolution=DisputeResolution.REVIEW_PENDING,
                provider=self.key,
                dispute_id=payload.get("transactionId") or payload.get("id"),
            )
        return self._no_action()

    def estimate_fee(self, amount: Decimal, order_type: OrderType = OrderType.ONLINE) -> FeeEstimate:
        if order_type == OrderType.IN_PERSON:
            return self._percent_fee(amount, "2.3", "0", "2.3% + $0")
        return self._percent_fee(amount, "2.7", "0.30", "2.7% + $0.30")
