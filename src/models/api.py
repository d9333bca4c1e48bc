"""
Response envelopes

Successful calls return ``{"ok": true, "data": ...}``; failures return
``{"ok": false, "error": {...}}``. Both carry a UTC timestamp.
"""

from datetime import datetime, timezone
from typing import Generic, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .errors import ErrorInfo

T = TypeVar("T")

_EXAMPLE_TIMESTAMP = "2026-03-02T09:15:00Z"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ApiResponse(BaseModel, Generic[T]):
    ok: bool = True
    id: Optional[UUID] = Field(None, description="Key, webhook or delivery the call created or changed")
    data: Optional[T] = None
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utc_now)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "ok": True,
                "data": {"provider": "stripe", "intent_id": "pi_3Nq", "status": "requires_payment_method"},
                "message": "Payment created with stripe",
                "timestamp": _EXAMPLE_TIMESTAMP,
            }
        }
    )


class ApiErrorResponse(BaseModel):
    ok: bool = False
    error: ErrorInfo
    timestamp: datetime = Field(default_factory=_utc_now)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "ok": False,
                "error": {
                    "code": "QUOTA_EXCEEDED",
                    "message": "Daily request quota exceeded",
                    "details": {"tier": "free", "remaining": 0},
                    "request_id": "0b6f3c0e-5d1a-4f4e-8a43-1c2d9e7f6a21",
                },
                "timestamp": _EXAMPLE_TIMESTAMP,
            }
        }
    )
