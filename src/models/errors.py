"""
Error models for the Paygate gateway
Defines error enums, details, response envelopes and the domain exception taxonomy
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for consistent error classification"""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    AUTHORIZATION_FAILED = "AUTHORIZATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    # Payment routing
    PROVIDER_NOT_CONFIGURED = "PROVIDER_NOT_CONFIGURED"
    NO_PROVIDER_CONFIGURED = "NO_PROVIDER_CONFIGURED"
    UNKNOWN_PROVIDER = "UNKNOWN_PROVIDER"
    WEBHOOK_SIGNATURE_INVALID = "WEBHOOK_SIGNATURE_INVALID"
    # API-key admission
    API_KEY_REQUIRED = "API_KEY_REQUIRED"
    INVALID_API_KEY = "INVALID_API_KEY"
    API_KEY_DEACTIVATED = "API_KEY_DEACTIVATED"
    API_KEY_EXPIRED = "API_KEY_EXPIRED"
    INVALID_API_SECRET = "INVALID_API_SECRET"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"


ERROR_STATUS_CODES: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.AUTHENTICATION_FAILED: 401,
    ErrorCode.AUTHORIZATION_FAILED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
    ErrorCode.SERVICE_UNAVAILABLE: 503,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.PROVIDER_NOT_CONFIGURED: 503,
    ErrorCode.NO_PROVIDER_CONFIGURED: 503,
    ErrorCode.UNKNOWN_PROVIDER: 400,
    ErrorCode.WEBHOOK_SIGNATURE_INVALID: 401,
    ErrorCode.API_KEY_REQUIRED: 401,
    ErrorCode.INVALID_API_KEY: 401,
    ErrorCode.API_KEY_DEACTIVATED: 403,
    ErrorCode.API_KEY_EXPIRED: 403,
    ErrorCode.INVALID_API_SECRET: 401,
    ErrorCode.INSUFFICIENT_PERMISSIONS: 403,
}

UPGRADE_HINT = "Upgrade your plan for higher limits."


class ErrorDetails(BaseModel):
    """Detailed error information with optional context"""
    field: Optional[str] = Field(None, description="Field name for validation errors")
    reason: str = Field(..., description="Human-readable reason for the error")
    value: Optional[Any] = Field(None, description="Invalid value that caused the error")
    service: Optional[str] = Field(None, description="External service that failed")
    retry_after: Optional[float] = Field(None, description="Seconds to wait before retrying")
    debug_trace: Optional[str] = Field(None, description="Debug traceback (development only)")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "field": "amount",
                    "reason": "Input should be greater than or equal to 0",
                    "value": "-1"
                },
                {
                    "service": "stripe",
                    "reason": "HTTP 502: Bad gateway",
                }
            ]
        }
    }


class APIError(Exception):
    """Structured API error exception with code, message, and optional details"""
    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_CODES.get(self.code, 500)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for HTTP responses"""
        return {
            "ok": False,
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ErrorInfo(BaseModel):
    """Error information for API responses"""
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    details: Dict[str, Any] = Field(default_factory=dict, description="Error details")
    request_id: Optional[str] = Field(None, description="Request correlation ID")


class ErrorResponse(BaseModel):
    """Standard error response envelope for all API errors"""
    ok: bool = Field(False, description="Always false for error responses")
    error: ErrorInfo = Field(..., description="Error information")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Error timestamp"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "ok": False,
                "error": {
                    "code": "RATE_LIMIT_EXCEEDED",
                    "message": "Daily rate limit exceeded.",
                    "details": {
                        "remaining": 0,
                        "reset_at": "2025-01-28T10:00:00+00:00",
                        "tier": "free",
                        "upgrade": UPGRADE_HINT
                    },
                    "request_id": "7c8de9a5-7e2b-4e7e-9c0a-9b7b0d2b0e1a"
                },
                "timestamp": "2025-01-27T10:00:00Z"
            }
        }
    }


# Payment routing errors
class ConfigurationError(APIError):
    """A payment backend needed for the operation has no credentials"""
    def __init__(self, message: str, code: ErrorCode = ErrorCode.PROVIDER_NOT_CONFIGURED, details=None):
        super().__init__(code, message, details)


class NoProviderConfigured(ConfigurationError):
    """Neither the preferred adapter nor any fallback adapter is configured"""
    def __init__(self):
        super().__init__(
            "No payment providers are configured. Set at least STRIPE_SECRET_KEY.",
            code=ErrorCode.NO_PROVIDER_CONFIGURED,
        )


class ProviderNotConfiguredError(ConfigurationError):
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"{provider} is not configured", details={"provider": provider})


class UnknownProviderError(APIError):
    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(
            ErrorCode.UNKNOWN_PROVIDER,
            f"Unknown provider: {provider}",
            {"provider": provider},
        )


class InvalidCallbackSignatureError(APIError):
    def __init__(self, provider: str):
        super().__init__(
            ErrorCode.WEBHOOK_SIGNATURE_INVALID,
            f"Invalid {provider} callback signature",
            {"provider": provider},
        )


# API-key admission errors
class CredentialError(APIError):
    """Base for API key and secret rejections"""


class ApiKeyRequiredError(CredentialError):
    def __init__(self):
        super().__init__(ErrorCode.API_KEY_REQUIRED, "API key required. Include X-API-Key header.")


class InvalidApiKeyError(CredentialError):
    def __init__(self):
        super().__init__(ErrorCode.INVALID_API_KEY, "Invalid API key.")


class KeyDeactivatedError(CredentialError):
    def __init__(self):
        super().__init__(ErrorCode.API_KEY_DEACTIVATED, "API key is deactivated.")


class KeyExpiredError(CredentialError):
    def __init__(self):
        super().__init__(ErrorCode.API_KEY_EXPIRED, "API key has expired.")


class InvalidSecretError(CredentialError):
    def __init__(self):
        super().__init__(ErrorCode.INVALID_API_SECRET, "Invalid API secret.")


class QuotaExceededError(APIError):
    """Daily request quota for the key's tier is used up"""
    def __init__(self, remaining: int, reset_at: datetime, tier: str, upgrade: Optional[str] = None):
        self.remaining = remaining
        self.reset_at = reset_at
        self.tier = tier
        details: Dict[str, Any] = {
            "remaining": remaining,
            "reset_at": reset_at.isoformat(),
            "tier": tier,
        }
        if upgrade:
            details["upgrade"] = upgrade
        super().__init__(ErrorCode.RATE_LIMIT_EXCEEDED, "Daily rate limit exceeded.", details)


class BurstLimitExceededError(APIError):
    """Too many requests from one client in the burst window"""
    def __init__(self, retry_after: int, limit: int):
        self.retry_after = retry_after
        self.limit = limit
        super().__init__(
            ErrorCode.RATE_LIMIT_EXCEEDED,
            f"Too many requests. Try again in {retry_after} seconds.",
            {"retry_after": retry_after, "limit": limit},
        )


class PermissionDeniedError(APIError):
    def __init__(self, required: tuple, tier: str, upgrade: Optional[str] = UPGRADE_HINT):
        self.required = list(required)
        self.tier = tier
        details: Dict[str, Any] = {"required": self.required, "tier": tier}
        if upgrade:
            details["upgrade"] = upgrade
        super().__init__(
            ErrorCode.INSUFFICIENT_PERMISSIONS,
            f"Insufficient permissions. Required: {' or '.join(self.required)}. Your tier: {tier}",
            details,
        )


class NotFoundError(APIError):
    """Exception for resource not found errors (404)"""
    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(
            ErrorCode.NOT_FOUND,
            f"{resource} not found: {identifier}",
            {"resource": resource, "identifier": str(identifier)},
        )


class AuthnError(APIError):
    """Exception for developer authentication failures (401)"""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(ErrorCode.AUTHENTICATION_FAILED, f"Authentication failed: {reason}", {"reason": reason})


class ValidationError(APIError):
    """Exception for validation errors (400)"""
    def __init__(self, message: str, field: Optional[str] = None, value: Optional[Any] = None):
        self.field = field
        self.value = value
        details = {"field": field} if field else {}
        super().__init__(ErrorCode.VALIDATION_ERROR, message, details)


# Outbound call errors
class RetryableError(Exception):
    """Exception for operations that should be retried"""
    def __init__(self, message: str, service: Optional[str] = None, next_run_at: Optional[datetime] = None):
        self.message = message
        self.service = service
        self.next_run_at = next_run_at
        super().__init__(message)


class UpstreamServiceError(Exception):
    """A payment backend answered with an error status"""
    def __init__(self, service: str, status_code: int, body: str):
        self.service = service
        self.status_code = status_code
        self.body = body
        super().__init__(f"[{service}] HTTP {status_code}: {body}")


class DeliveryFailure(Exception):
    """A single webhook delivery attempt failed (never surfaced to event producers)"""
    def __init__(self, url: str, status_code: int, body: str):
        self.url = url
        self.status_code = status_code
        self.body = body
        super().__init__(f"Delivery to {url} failed with status {status_code}")
