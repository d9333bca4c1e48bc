"""
Payment routing models: orders, adapter results, fee estimates and routing configuration
"""

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProviderKey(str, Enum):
    """Identifiers of the supported payment backends"""

    STRIPE = "stripe"
    ADYEN = "adyen"
    GODADDY = "godaddy"
    SQUARE = "square"
    COINBASE = "coinbase"


class OrderType(str, Enum):
    """Channel an order was placed through"""

    ONLINE = "online"
    IN_PERSON = "in-person"
    POS = "pos"
    CRYPTO = "crypto"


class DisputeResolution(str, Enum):
    """Outcome of classifying a provider dispute callback"""

    LOGGED_FOR_REVIEW = "logged_for_review"
    DEFENSE_NEEDED = "defense_needed"
    REVIEW_PENDING = "review_pending"
    EVIDENCE_REQUIRED = "evidence_required"
    MANUAL_REVIEW_REQUIRED = "manual_review_required"
    NO_ACTION = "no_action"


CENTS = Decimal("0.01")


def to_minor_units(amount: Decimal) -> int:
    """Major currency units to integer cents, rounding half up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: Any) -> Decimal:
    return (Decimal(str(amount or 0)) / 100).quantize(CENTS, rounding=ROUND_HALF_UP)


def round_money(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


class PaymentOrder(BaseModel):
    """An order submitted for payment. Immutable once constructed."""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "ord_1001",
                "amount": "49.99",
                "currency": "USD",
                "customer_email": "jane@example.com",
                "order_type": "online",
                "is_international": False,
                "metadata": {"table": "12"},
            }
        },
    )

    id: str = Field(..., min_length=1, description="Caller-side order identifier")
    amount: Decimal = Field(..., ge=0, description="Amount in major units")
    currency: str = Field("USD", min_length=3, max_length=3, description="ISO 4217 code")
    customer_email: str = Field(..., min_length=3)
    order_type: OrderType = Field(OrderType.ONLINE)
    is_international: bool = Field(False)
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def normalise_currency(cls, value: str) -> str:
        return value.upper()


class PaymentResult(BaseModel):
    provider: ProviderKey
    intent_id: str
    client_secret: Optional[str] = None
    amount: int = Field(..., description="Amount in minor units")
    currency: str
    tx_hash: Optional[str] = None
    status: Optional[str] = None


class CaptureResult(BaseModel):
    success: bool
    intent_id: str
    status: str
    provider: ProviderKey


class RefundResult(BaseModel):
    success: bool
    refund_id: str
    status: str
    provider: ProviderKey


class CancelResult(BaseModel):
    success: bool
    provider: ProviderKey


class PaymentStatusResult(BaseModel):
    status: str
    amount: Decimal = Field(..., description="Amount in major units")


class DisputeResult(BaseModel):
    resolution: DisputeResolution
    provider: ProviderKey
    dispute_id: Optional[str] = None


class FeeEstimate(BaseModel):
    rate: str
    estimated: Decimal


class FeeComparisonEntry(FeeEstimate):
    configured: bool


class ProviderInfo(BaseModel):
    configured: bool
    name: str


class RoutingConfig(BaseModel):
    """Which adapter handles which kind of order, and the fallback order"""

    default: ProviderKey = ProviderKey.STRIPE
    crypto: ProviderKey = ProviderKey.COINBASE
    international: ProviderKey = ProviderKey.ADYEN
    in_person: ProviderKey = ProviderKey.GODADDY
    pos: ProviderKey = ProviderKey.SQUARE
    fallback_chain: List[ProviderKey] = Field(
        default_factory=lambda: [
            ProviderKey.STRIPE,
            ProviderKey.ADYEN,
            ProviderKey.SQUARE,
            ProviderKey.GODADDY,
        ]
    )


class RoutingConfigUpdate(BaseModel):
    """Partial routing update; omitted fields keep their current value"""

    default: Optional[ProviderKey] = None
    crypto: Optional[ProviderKey] = None
    international: Optional[ProviderKey] = None
    in_person: Optional[ProviderKey] = None
    pos: Optional[ProviderKey] = None
    fallback_chain: Optional[List[ProviderKey]] = None


class RoutingStats(BaseModel):
    total_routed: int = 0
    by_provider: Dict[str, int] = Field(default_factory=dict)
    fallbacks_used: int = 0


# Request bodies for the payments API
class RefundRequest(BaseModel):
    provider: ProviderKey
    amount: Optional[Decimal] = Field(None, ge=0, description="Partial refund amount in major units")
    reason: Optional[str] = Field(None, max_length=255)


class ProviderActionRequest(BaseModel):
    provider: ProviderKey
