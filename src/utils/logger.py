"""
Structured logging helpers for the Paygate gateway

Every call site passes an ``event_type`` in ``extra`` so log lines can be
filtered by what happened (``payment_routed``, ``admission_rejected``, ...)
rather than by message text.
"""

import uuid
from typing import Any, Dict, Mapping, Optional

from ..config.logging import build_logger

# Credentials and signatures carried in request headers
REDACT_HEADERS = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "x-api-secret",
        "stripe-signature",
        "x-paygate-signature",
        "x-cc-webhook-signature",
    }
)
_SENSITIVE_HEADER_MARKERS = ("token", "secret", "key", "auth", "signature")

REDACT_VALUE = "[REDACTED]"

log = build_logger()


def get_logger(component: str):
    """Child logger (``paygate.<component>``) sharing the gateway's handler"""
    return build_logger(component)


def new_request_id(value: Optional[str] = None) -> str:
    """Reuse a caller-supplied correlation ID when it is a UUID, otherwise mint one"""
    if value:
        try:
            return str(uuid.UUID(value))
        except (ValueError, TypeError):
            pass
    return str(uuid.uuid4())


def redact_headers(headers: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``headers`` safe to log: API keys, secrets and signatures are masked"""
    redacted = {}
    for name, value in headers.items():
        lowered = name.lower()
        if lowered in REDACT_HEADERS or any(marker in lowered for marker in _SENSITIVE_HEADER_MARKERS):
            redacted[name] = REDACT_VALUE
        else:
            redacted[name] = value
    return redacted


def mask_key(value: Optional[str], visible: int = 10) -> Optional[str]:
    """Shorten a public key or webhook URL for log lines"""
    if not value:
        return value
    return value[:visible] + "..." if len(value) > visible else value


def log_event(event_type: str, message: str, **context: Any) -> None:
    log.info(message, extra={"event_type": event_type, **context})


def log_error(event_type: str, message: str, exception: Optional[Exception] = None, **context: Any) -> None:
    """
    Log a failure with its event type

    Args:
        event_type: Machine-readable failure kind (``webhook_delivery_error``, ...)
        message: Human-readable description
        exception: Attached as ``exc_info`` when given
        **context: Extra fields for the JSON line
    """
    log.error(message, extra={"event_type": event_type, **context}, exc_info=exception)
