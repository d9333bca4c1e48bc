"""
Stripe adapter

Uses the PaymentIntents REST API with form-encoded bodies. Intents are
created with manual capture so that capture is an explicit second step.
Dispute callbacks are verified with the ``Stripe-Signature`` header when
``STRIPE_WEBHOOK_SECRET`` is set.
"""

import hashlib
import hmac
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

STRIPE_API_URL = "https://api.stripe.com/v1"

# Allowed clock skew for callback signatures (5 minutes)
WEBHOOK_TOLERANCE = 300


class StripeAdapter(PaymentProviderAdapter):
    key = ProviderKey.STRIPE
    display_name = "Stripe"

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret

    @property
    def secret_key(self) -> Optional[str]:
        return self._secret_key or os.getenv("STRIPE_SECRET_KEY")

    @property
    def webhook_secret(self) -> Optional[str]:
        return self._webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET")

    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def _base_url(self) -> str:
        return STRIPE_API_URL

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.secret_key}"}

    async def create_payment(self, order: PaymentOrder) -> PaymentResult:
        data: Dict[str, Any] = {
            "amount": to_minor_units(order.amount),
            "currency": order.currency.lower(),
            "payment_method_types[0]": "card",
            "capture_method": "manual",
            "receipt_email": order.customer_email,
            "metadata[orderId]": order.id,
            "metadata[customerEmail]": order.customer_email,
            "metadata[platform]": "paygate",
        }
        for meta_key, meta_value in order.metadata.items():
            data[f"metadata[{meta_key}]"] = meta_value

        intent = await self._request("POST", "/payment_intents", data=data)
        return PaymentResult(
            provider=self.key,
            intent_id=intent["id"],
            client_secret=intent.get("client_secret"),
            amount=intent.get("amount", to_minor_units(order.amount)),
            currency=intent.get("currency", order.currency.lower()),
            status=intent.get("status"),
        )

    async def capture_payment(self, intent_id: str) -> CaptureResult:
        intent = await self._request(
            "POST", f"/payment_intents/{intent_id}/capture", label="/payment_intents/{id}/capture"
        )
        status = intent.get("status", "unknown")
        return CaptureResult(
            success=status == "succeeded",
            intent_id=intent.get("id", intent_id),
            status=status,
            provider=self.key,
        )

    async def refund_payment(
        self, intent_id: str, amount: Optional[Decimal] = None, reason: Optional[str] = None
    ) -> RefundResult:
        data: Dict[str, Any] = {"payment_intent": intent_id}
        if amount is not None:
            data["amount"] = to_minor_units(amount)
        if reason:
            data["metadata[reason]"] = reason

        refund = await self._request("POST", "/refunds", data=data)
        status = refund.get("status", "pending")
        return RefundResult(
            success=status in ("succeeded", "pending"),
            refund_id=refund["id"],
            status=status,
            provider=self.key,
        )

    async def cancel_payment(self, intent_id: str) -> CancelResult:
        intent = await self._request(
            "POST",
            f"/payment_intents/{intent_id}/cancel",
            data={"cancellation_reason": "requested_by_customer"},
            label="/payment_intents/{id}/cancel",
        )
        return CancelResult(success=intent.get("status") == "canceled", provider=self.key)

    @retry_with_backoff(config=STATUS_RETRY)
    async def get_status(self, intent_id: str) -> PaymentStatusResult:
        intent = await self._request(
            "GET", f"/payment_intents/{intent_id}", label="/payment_intents/{id}"
        )
        return PaymentStatusResult(
            status=intent.get("status", "unknown"),
            amount=from_minor_units(intent.get("amount")),
        )

    async def handle_dispute(self, payload: Mapping[str, Any]) -> DisputeResult:
        if payload.get("type") != "charge.dispute.created":
            return self._no_action()
        dispute = (payload.get("data") or {}).get("object") or {}
        return DisputeResult(
            resolution=DisputeResolution.LOGGED_FOR_REVIEW,
            provider=self.key,
            dispute_id=dispute.get("id"),
        )

    def estimate_fee(self, amount: Decimal, order_type: OrderType = OrderType.ONLINE) -> FeeEstimate:
        return self._percent_fee(amount, "2.9", "0.30", "2.9% + $0.30")

    def verify_callback(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """
        Check the ``Stripe-Signature`` header (``t=<ts>,v1=<hex>``)

        The signed payload is ``"<ts>." + body`` under HMAC-SHA256. Without a
        configured webhook secret every callback is accepted.
        """
        secret = self.webhook_secret
        if not secret:
            return True

        header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not header:
            return False

        timestamp = None
        signatures = []
        for part in header.split(","):
            name, _, value = part.strip().partition("=")
            if name == "t":
                timestamp = value
            elif name == "v1":
                signatures.append(value)

        if not timestamp or not signatures:
            return False
        try:
            if abs(time.time() - int(timestamp)) > WEBHOOK_TOLERANCE:
                return False
        except ValueError:
            return False

        signed_payload = f"{timestamp}.".encode() + body
        expected = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
        return any(hmac.compare_digest(expected, signature) for signature in signatures)
