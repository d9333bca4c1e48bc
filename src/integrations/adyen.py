"""
Adyen adapter (Checkout API v71)
"""

import os
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

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
from .base import PaymentProviderAdapter

ADYEN_TEST_URL = "https://checkout-test.adyen.com/v71"
ADYEN_LIVE_URL = "https://{prefix}-checkout-live.adyenpayments.com/checkout/v71"

DISPUTE_EVENT_CODES = {"CHARGEBACK", "REQUEST_FOR_INFORMATION"}


class AdyenAdapter(PaymentProviderAdapter):
    key = ProviderKey.ADYEN
    display_name = "Adyen"

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv("ADYEN_API_KEY")

    @property
    def merchant_account(self) -> Optional[str]:
        return os.getenv("ADYEN_MERCHANT_ACCOUNT")

    def is_configured(self) -> bool:
        return bool(self.api_key and self.merchant_account)

    def _base_url(self) -> str:
        if os.getenv("ADYEN_ENVIRONMENT", "TEST").upper() == "LIVE":
            return ADYEN_LIVE_URL.format(prefix=os.getenv("ADYEN_LIVE_URL_PREFIX", ""))
        return ADYEN_TEST_URL

    def _auth_headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key or ""}

    async def create_payment(self, order: PaymentOrder) -> PaymentResult:
        amount = to_minor_units(order.amount)
        app_url = os.getenv("APP_URL", "http://localhost:8000")
        body = {
            "amount": {"value": amount, "currency": order.currency.upper()},
            "reference": order.id,
            "paymentMethod": {"type": "scheme"},
            "returnUrl": f"{app_url}/payment/return",
            "merchantAccount": self.merchant_account,
            "shopperEmail": order.customer_email,
            "metadata": {"orderId": order.id, **order.metadata},
        }
        response = await self._request("POST", "/payments", json=body)
        return PaymentResult(
            provider=self.key,
            intent_id=response.get("pspReference") or order.id,
            amount=amount,
            currency=order.currency.upper(),
            status=response.get("resultCode"),
        )

    async def capture_payment(self, intent_id: str) -> CaptureResult:
        await self._request(
            "POST",
            f"/payments/{intent_id}/captures",
            json={
                "amount": {"value": 0, "currency": "USD"},
                "merchantAccount": self.merchant_account,
            },
            label="/payments/{id}/captures",
        )
        return CaptureResult(success=True, intent_id=intent_id, status="captured", provider=self.key)

    async def refund_payment(
        self, intent_id: str, amount: Optional[Decimal] = None, reason: Optional[str] = None
    ) -> RefundResult:
        body: Dict[str, Any] = {
            "amount": {"value": to_minor_units(amount or 0), "currency": "USD"},
            "merchantAccount": self.merchant_account,
        }
        if reason:
            body["merchantRefundReason"] = reason
        response = await self._request(
            "POST", f"/payments/{intent_id}/refunds", json=body, label="/payments/{id}/refunds"
        )
        return RefundResult(
            success=True,
            refund_id=response.get("pspReference") or f"refund_{intent_id}",
            status="refunded",
            provider=self.key,
        )

    async def cancel_payment(self, intent_id: str) -> CancelResult:
        await self._request(
            "POST",
            f"/payments/{intent_id}/cancels",
            json={"merchantAccount": self.merchant_account},
            label="/payments/{id}/cancels",
        )
        return CancelResult(success=True, provider=self.key)

    async def get_status(self, intent_id: str) -> PaymentStatusResult:
        # Checkout has no payment lookup; status arrives through notifications
        self._require_configured()
        return PaymentStatusResult(status="unknown", amount=Decimal("0"))

    async def handle_dispute(self, payload: Mapping[str, Any]) -> DisputeResult:
        for item in self._notification_items(payload):
            if item.get("eventCode") in DISPUTE_EVENT_CODES:
                return DisputeResult(
                    resolution=DisputeResolution.DEFENSE_NEEDED,
                    provider=self.key,
                    dispute_id=item.get("pspReference"),
                )
        return self._no_action()

    @staticmethod
    def _notification_items(payload: Mapping[str, Any]) -> Iterable[Mapping[str, Any]]:
        for entry in payload.get("notificationItems") or []:
            if isinstance(entry, Mapping):
                yield entry.get("NotificationRequestItem") or entry

    def estimate_fee(self, amount: Decimal, order_type: OrderType = OrderType.ONLINE) -> FeeEstimate:
        return self._percent_fee(amount, "2.0", "0.13", "~2.0% + $0.13 (interchange-plus)")
