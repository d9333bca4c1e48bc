"""
Square adapter (Payments API v2), used for point-of-sale orders
"""

import os
import time
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

SQUARE_PRODUCTION_URL = "https://connect.squareup.com/v2"
SQUARE_SANDBOX_URL = "https://connect.squareupsandbox.com/v2"
SQUARE_API_VERSION = "2024-01-18"

# Square's sandbox test card nonce, used when the order carries no source id
SANDBOX_CARD_NONCE = "cnon:card-nonce-ok"


def _now_ms() -> int:
    return int(time.time() * 1000)


class SquareAdapter(PaymentProviderAdapter):
    key = ProviderKey.SQUARE
    display_name = "Square"

    @property
    def access_token(self) -> Optional[str]:
        return os.getenv("SQUARE_ACCESS_TOKEN")

    def is_configured(self) -> bool:
        return bool(self.access_token)

    def _base_url(self) -> str:
        if os.getenv("SQUARE_ENVIRONMENT", "sandbox").lower() == "production":
            return SQUARE_PRODUCTION_URL
        return SQUARE_SANDBOX_URL

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Square-Version": SQUARE_API_VERSION,
        }

    async def create_payment(self, order: PaymentOrder) -> PaymentResult:
        amount = to_minor_units(order.amount)
        response = await self._request(
            "POST",
            "/payments",
            json={
                "source_id": order.metadata.get("square_source_id", SANDBOX_CARD_NONCE),
                "idempotency_key": f"pg_{order.id}_{_now_ms()}",
                "amount_money": {"amount": amount, "currency": order.currency},
                "reference_id": order.id,
                "buyer_email_address": order.customer_email,
                "autocomplete": False,
            },
        )
        payment = response.get("payment") or {}
        money = payment.get("amount_money") or {}
        return PaymentResult(
            provider=self.key,
            intent_id=payment.get("id") or order.id,
            amount=money.get("amount", amount),
            currency=money.get("currency", order.currency),
            status=payment.get("status"),
        )

    async def capture_payment(self, intent_id: str) -> CaptureResult:
        response = await self._request(
            "POST", f"/payments/{intent_id}/complete", json={}, label="/payments/{id}/complete"
        )
        status = (response.get("payment") or {}).get("status", "unknown")
        return CaptureResult(
            success=status == "COMPLETED",
            intent_id=intent_id,
            status=status.lower(),
            provider=self.key,
        )

    async def refund_payment(
        self, intent_id: str, amount: Optional[Decimal] = None, reason: Optional[str] = None
    ) -> RefundResult:
        response = await self._request(
            "POST",
            "/refunds",
            json={
                "idempotency_key": f"refund_{intent_id}_{_now_ms()}",
                "payment_id": intent_id,
                "amount_money": {"amount": to_minor_units(amount or 0), "currency": "USD"},
                "reason": reason or "Customer request",
            },
        )
        refund = response.get("refund") or {}
        status = refund.get("status", "PENDING")
        return RefundResult(
            success=status in ("PENDING", "COMPLETED"),
            refund_id=refund.get("id") or f"refund_{intent_id}",
            status=status.lower(),
            provider=self.key,
        )

    async def cancel_payment(self, intent_id: str) -> CancelResult:
        response = await self._request(
            "POST", f"/payments/{intent_id}/cancel", json={}, label="/payments/{id}/cancel"
        )
        status = (response.get("payment") or {}).get("status")
        return CancelResult(success=status in (None, "CANCELED"), provider=self.key)

    @retry_with_backoff(config=STATUS_RETRY)
    async def get_status(self, intent_id: str) -> PaymentStatusResult:
        response = await self._request("GET", f"/payments/{intent_id}", label="/payments/{id}")
        payment = response.get("payment") or {}
        return PaymentStatusResult(
            status=str(payment.get("status", "unknown")).lower(),
            amount=from_minor_units((payment.get("amount_money") or {}).get("amount")),
        )

    async def handle_dispute(self, payload: Mapping[str, Any]) -> DisputeResult:
        if payload.get("type") != "dispute.created":
            return self._no_action()
        data = payload.get("data") or {}
        dispute_id = data.get("id") or ((data.get("object") or {}).get("dispute") or {}).get("id")
        return DisputeResult(
            resolution=DisputeResolution.EVIDENCE_REQUIRED,
            provider=self.key,
            dispute_id=dispute_id,
        )

    def estimate_fee(self, amount: Decimal, order_type: OrderType = OrderType.ONLINE) -> FeeEstimate:
        if order_type in (OrderType.IN_PERSON, OrderType.POS):
            return self._percent_fee(amount, "2.6", "0.10", "2.6% + $0.10")
        return self._percent_fee(amount, "2.9", "0.30", "2.9% + $0.30")
