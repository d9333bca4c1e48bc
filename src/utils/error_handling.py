"""
Error handling utilities for the Paygate gateway
Provides exception mapping, sanitization, and the JSON error envelope
"""

import re
from typing import Any, Dict, Optional, Tuple

from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import DataError, IntegrityError

from ..models.errors import (
    ERROR_STATUS_CODES,
    APIError,
    ErrorCode,
    ErrorDetails,
    ErrorInfo,
    ErrorResponse,
    QuotaExceededError,
    RetryableError,
    UpstreamServiceError,
)


# Sensitive data patterns to redact
SENSITIVE_PATTERNS = [
    r'password["\s]*[:=]["\s]*[^"\s,}]+',  # password fields
    r'token["\s]*[:=]["\s]*[^"\s,}]+',     # token fields
    r'secret["\s]*[:=]["\s]*[^"\s,}]+',    # secret fields
    r'authorization["\s]*[:=]["\s]*[^"\s,}]+',  # auth headers
    r'\b(?:sk|rk)_(?:live|test)_[A-Za-z0-9]+\b',  # backend secret keys
    r'\bpg_sk_[0-9a-f]+\b',                # our API secrets
    r'\b[0-9]{13,19}\b',                   # card numbers
]

REDACTION_PLACEHOLDER = "***REDACTED***"

STATUS_TO_CODE = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.AUTHENTICATION_FAILED,
    403: ErrorCode.AUTHORIZATION_FAILED,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.VALIDATION_ERROR,
    422: ErrorCode.VALIDATION_ERROR,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
    503: ErrorCode.SERVICE_UNAVAILABLE,
}


def sanitize_error_message(message: str) -> str:
    """
    Sanitize error message by removing sensitive information

    Args:
        message: Raw error message

    Returns:
        Sanitized error message
    """
    sanitized = message

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, REDACTION_PLACEHOLDER, sanitized, flags=re.IGNORECASE)

    # Limit message length to prevent log flooding
    if len(sanitized) > 500:
        sanitized = sanitized[:497] + "..."

    return sanitized


def create_error_response(
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> ErrorResponse:
    return ErrorResponse(
        error=ErrorInfo(
            code=code.value,
            message=sanitize_error_message(message),
            details=details or {},
            request_id=request_id,
        )
    )


def _details(**fields) -> Dict[str, Any]:
    return ErrorDetails(**fields).model_dump(exclude_none=True)


def map_http_exception(exc: HTTPException, request_id: Optional[str] = None) -> Tuple[ErrorResponse, int]:
    status_code = exc.status_code
    detail = str(exc.detail) if exc.detail else "HTTP error"
    code = STATUS_TO_CODE.get(status_code, ErrorCode.INTERNAL_ERROR)

    retry_after = None
    if exc.headers and exc.headers.get("Retry-After"):
        try:
            retry_after = float(exc.headers["Retry-After"])
        except (ValueError, TypeError):
            retry_after = None

    details = _details(reason=detail, retry_after=retry_after)
    return create_error_response(code, detail, details, request_id), status_code


def map_validation_error(exc: Exception, request_id: Optional[str] = None) -> Tuple[ErrorResponse, int]:
    """
    Map request or model validation errors to a 400 response

    Args:
        exc: RequestValidationError or pydantic ValidationError
        request_id: Request correlation ID
    """
    errors = exc.errors()

    if len(errors) == 1:
        error = errors[0]
        field = ".".join(str(loc) for loc in error["loc"])
        message = error["msg"]
        details = _details(field=field, reason=message, value=jsonable_encoder(error.get("input")))
        return (
            create_error_response(
                ErrorCode.VALIDATION_ERROR,
                f"Validation error in field '{field}': {message}",
                details,
                request_id,
            ),
            400,
        )

    error_list = [f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}" for error in errors]
    details = _details(reason=f"Multiple validation errors: {'; '.join(error_list)}")
    return (
        create_error_response(ErrorCode.VALIDATION_ERROR, "Multiple validation errors", details, request_id),
        400,
    )


def map_database_error(exc: Exception, request_id: Optional[str] = None) -> Tuple[ErrorResponse, int]:
    if isinstance(exc, IntegrityError):
        details = _details(reason="Data constraint violation")
        return create_error_response(ErrorCode.VALIDATION_ERROR, "Constraint violation", details, request_id), 400
    if isinstance(exc, DataError):
        details = _details(reason="Invalid data format or type")
        return create_error_response(ErrorCode.VALIDATION_ERROR, "Data format error", details, request_id), 400

    details = _details(reason="Database operation failed")
    return create_error_response(ErrorCode.INTERNAL_ERROR, "Database error", details, request_id), 500


def map_upstream_error(exc: UpstreamServiceError, request_id: Optional[str] = None) -> Tuple[ErrorResponse, int]:
    details = _details(
        service=exc.service,
        reason=f"HTTP {exc.status_code}: {sanitize_error_message(exc.body)}",
    )
    if exc.status_code == 429:
        return (
            create_error_response(
                ErrorCode.RATE_LIMIT_EXCEEDED, f"Rate limited by {exc.service}", details, request_id
            ),
            429,
        )
    return (
        create_error_response(
            ErrorCode.EXTERNAL_SERVICE_ERROR, f"Upstream service error: {exc.service}", details, request_id
        ),
        502,
    )


def map_exception_to_response(exc: Exception, request_id: Optional[str] = None) -> Tuple[ErrorResponse, int]:
    """
    Map any exception to the standard error envelope

    Args:
        exc: Exception to map
        request_id: Request correlation ID

    Returns:
        (error response, HTTP status code)
    """
    if isinstance(exc, APIError):
        response = create_error_response(exc.code, exc.message, exc.details, request_id)
        return response, ERROR_STATUS_CODES.get(exc.code, 500)
    if isinstance(exc, HTTPException):
        return map_http_exception(exc, request_id)
    if isinstance(exc, (RequestValidationError, PydanticValidationError)):
        return map_validation_error(exc, request_id)
    if isinstance(exc, (IntegrityError, DataError)):
        return map_database_error(exc, request_id)
    if isinstance(exc, UpstreamServiceError):
        return map_upstream_error(exc, request_id)
    if isinstance(exc, RetryableError):
        details = _details(service=exc.service, reason=exc.message)
        return (
            create_error_response(
                ErrorCode.SERVICE_UNAVAILABLE,
                f"Service temporarily unavailable: {exc.service}",
                details,
                request_id,
            ),
            503,
        )

    details = _details(reason=f"Unexpected error: {type(exc).__name__}")
    return create_error_response(ErrorCode.INTERNAL_ERROR, "Internal server error", details, request_id), 500


def error_headers(exc: Exception) -> Dict[str, str]:
    """Retry hints for throttling errors"""
    if isinstance(exc, QuotaExceededError):
        return {
            "X-RateLimit-Remaining": str(exc.remaining),
            "X-RateLimit-Reset": exc.reset_at.isoformat(),
        }
    if isinstance(exc, APIError) and "retry_after" in exc.details:
        return {"Retry-After": str(exc.details["retry_after"])}
    if isinstance(exc, HTTPException) and exc.headers:
        return dict(exc.headers)
    return {}


def build_error_response(
    exc: Exception,
    request_id: Optional[str] = None,
    request_id_header: str = "X-Request-ID",
) -> JSONResponse:
    """JSONResponse carrying the error envelope for ``exc``"""
    error_response, status_code = map_exception_to_response(exc, request_id)
    headers = error_headers(exc)
    if request_id:
        headers[request_id_header] = request_id
    return JSONResponse(
        content=jsonable_encoder(error_response),
        status_code=status_code,
        headers=headers,
    )
