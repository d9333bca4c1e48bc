"""
Coinbase Commerce adapter, used for crypto orders

Charges settle on-chain, so capture is implicit and refunds are handled
manually outside the API.
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
    to_minor_units,
)
from ..utils.retry import retry_with_backoff
from .base import STATUS_RETRY, PaymentProviderAdapter

COINBASE_API_URL = "https://api.commerce.coinbase.com"
COINBASE_API_VERSION = "2018-03-22"

DISPUTE_EVENT_TYPES = {"charge:failed", "charge:disputed"}


class CoinbaseAdapter(PaymentProviderAdapter):
    key = ProviderKey.COINBASE
    display_name = "Coinbase Commerce"

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv("COINBASE_COMMERCE_API_KEY")

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _base_url(self) -> str:
        return COINBASE_API_URL

    def _auth_headers(self) -> Dict[str, str]:
        return {"X-CC-Api-Key": self.api_key or "", "X-CC-Version": COINBASE_API_VERSION}

    async def create_payment(self, order: PaymentOrder) -> PaymentResult:
        response = await self._request(
            "POST",
            "/charges",
            json={
                "name": f"Order {order.id}",
                "description": f"Payment for order {order.id}",
                "pricing_type": "fixed_price",
                "local_price": {"amount": f"{order.amount:.2f}", "currency": order.currency},
                "metadata": {
                    "orderId": order.id,
                    "customerEmail": order.customer_email,
                    **order.metadata,
                },
            },
        )
        charge = response.get("data") or {}
        payments = charge.get("payments") or []
        return PaymentResult(
            provider=self.key,
            intent_id=charge["id"],
            amount=to_minor_units(order.amount),
            currency=order.currency,
            tx_hash=payments[0].get("transaction_id") if payments else None,
            status="new",
        )

    async def capture_payment(self, intent_id: str) -> CaptureResult:
        self._require_configured()
        return CaptureResult(success=True, intent_id=intent_id, status="completed", provider=self.key)

    async def refund_payment(
        self, intent_id: str, amount: Optional[Decimal] = None, reason: Optional[str] = None
    ) -> RefundResult:
        self._require_configured()
        return RefundResult(
            success=True,
            refund_id=f"cb_refund_{intent_id}_{int(time.time() * 1000)}",
            status="pending_manual_review",
            provider=self.key,
        )

    async def cancel_payment(self, intent_id: str) -> CancelResult:
        await self._request("POST", f"/charges/{intent_id}/cancel", label="/charges/{id}/cancel")
        return CancelResult(success=True, provider=self.key)

    @retry_with_backoff(config=STATUS_RETRY)
    async def get_status(self, intent_id: str) -> PaymentStatusResult:
        response = await self._request("GET", f"/charges/{intent_id}", label="/charges/{id}")
        charge = response.get("data") or {}
        timeline = charge.get("timeline") or []
        status = timeline[-1].get("status", "NEW") if timeline else "NEW"
        local = (charge.get("pricing") or {}).get("local") or {}
        return PaymentStatusResult(
            status=str(status).lower(),
            amount=Decimal(str(local.get("amount", "0"))),
        )

    async def handle_dispute(self, payload: Mapping[str, Any]) -> DisputeResult:
        event = payload.get("event") or {}
        event_type = event.get("type") or payload.get("type")
        if event_type not in DISPUTE_EVENT_TYPES:
            return self._no_action()
        data = event.get("data") or payload.get("data") or {}
        return DisputeResult(
            resolution=DisputeResolution.MANUAL_REVIEW_REQUIRED,
            provider=self.key,
            dispute_id=data.get("id"),
        )

    def estimate_fee(self, amount: Decimal, order_type: OrderType = OrderType.ONLINE) -> FeeEstimate:
        return self._percent_fee(amount, "1.0", "0", "1.0%")
