"""
Developer platform models: API keys, tiers, webhooks, deliveries and audit logs
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tier(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class Permission(str, Enum):
    READ = "read"
    WRITE = "write"
    WEBHOOK = "webhook"
    WIDGET = "widget"
    WHITELABEL = "whitelabel"
    ADMIN = "admin"


class TierLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    rate_limit: int
    daily_limit: int
    permissions: List[str]


TIER_LIMITS: Dict[Tier, TierLimits] = {
    Tier.FREE: TierLimits(rate_limit=100, daily_limit=1_000, permissions=["read"]),
    Tier.STARTER: TierLimits(rate_limit=500, daily_limit=10_000, permissions=["read", "write"]),
    Tier.PRO: TierLimits(
        rate_limit=2_000,
        daily_limit=100_000,
        permissions=["read", "write", "webhook", "widget"],
    ),
    Tier.ENTERPRISE: TierLimits(
        rate_limit=10_000,
        daily_limit=1_000_000,
        permissions=["read", "write", "webhook", "widget", "whitelabel", "admin"],
    ),
}


class ApiKey(BaseModel):
    """Stored API credential. The secret is only kept as an argon2 hash."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    name: str
    public_key: str
    secret_key_hash: str
    tier: Tier = Tier.FREE
    is_active: bool = True
    is_sandbox: bool = True
    rate_limit: int = 100
    daily_requests: int = 0
    last_reset_at: datetime = Field(default_factory=utcnow)
    last_used_at: Optional[datetime] = None
    permissions: List[str] = Field(default_factory=lambda: ["read"])
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def daily_limit(self) -> int:
        return TIER_LIMITS[self.tier].daily_limit


class Webhook(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    api_key_id: UUID
    url: str
    events: List[str]
    secret: str
    is_active: bool = True
    failure_count: int = 0
    last_delivered_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def subscribes_to(self, event: str) -> bool:
        return event in self.events or "*" in self.events


class WebhookDelivery(BaseModel):
    """One delivery attempt; status 0 means the request never got a response"""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    webhook_id: UUID
    delivery_id: str
    event: str
    payload: Dict[str, Any]
    response_status: int
    response_body: str = ""
    success: bool
    attempts: int
    delivered_at: datetime = Field(default_factory=utcnow)


class AuditLog(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    api_key_id: UUID
    method: str
    path: str
    status_code: int
    response_time_ms: int
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class RateLimitDecision(BaseModel):
    allowed: bool
    remaining: int
    reset_at: datetime
    limit: int


class AdmissionResult(BaseModel):
    api_key: ApiKey
    decision: RateLimitDecision


# Request/response bodies
class CreateApiKeyRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    tier: Tier = Tier.FREE
    is_sandbox: bool = True
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(
        json_schema_extra={"example": {"name": "Storefront integration", "tier": "pro", "is_sandbox": True}}
    )


class ApiKeyView(BaseModel):
    """API key as shown to its owner; never includes the secret hash"""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    public_key: str
    tier: Tier
    is_active: bool
    is_sandbox: bool
    rate_limit: int
    daily_requests: int
    permissions: List[str]
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime


class IssuedApiKey(ApiKeyView):
    secret_key: str = Field(..., description="Shown once; store it securely")


class CreateWebhookRequest(BaseModel):
    url: HttpUrl
    events: List[str] = Field(..., min_length=1)
    api_key_id: Optional[UUID] = Field(None, description="Defaults to the caller's first key")

    @field_validator("events")
    @classmethod
    def strip_events(cls, value: List[str]) -> List[str]:
        events = [event.strip() for event in value if event and event.strip()]
        if not events:
            raise ValueError("At least one event is required")
        return events

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"url": "https://example.com/hooks/paygate", "events": ["order.created", "payment.disputed"]}
        }
    )


class WebhookView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    api_key_id: UUID
    url: str
    events: List[str]
    is_active: bool
    failure_count: int
    last_delivered_at: Optional[datetime] = None
    created_at: datetime


class IssuedWebhook(WebhookView):
    secret: str = Field(..., description="Signing secret, shown once")


class ExternalEventRequest(BaseModel):
    """Inbound business event from an integrator's system"""

    data: Dict[str, Any] = Field(default_factory=dict)


class OrderEventRequest(BaseModel):
    status: str = Field(..., min_length=1, max_length=64)
    data: Dict[str, Any] = Field(default_factory=dict)


class UsageResponse(BaseModel):
    tier: Tier
    daily_requests: int
    daily_limit: int
    remaining: int
    reset_at: datetime
    rate_limit: int
    permissions: List[str]
    is_sandbox: bool
