"""
Error middleware for the Paygate gateway
Global error handling with request correlation and standardized responses
"""

import traceback
from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..models.errors import APIError
from ..utils.error_handling import build_error_response
from ..utils.logger import log, log_error
from ..utils.metrics import record_error


class ErrorMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware

    Catches anything the route exception handlers did not turn into a
    response and renders it as the standard error envelope.
    """

    def __init__(
        self,
        app: ASGIApp,
        request_id_header: str = "X-Request-ID",
        include_debug_info: bool = False,
    ):
        super().__init__(app)
        self.request_id_header = request_id_header
        self.include_debug_info = include_debug_info

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            return await self._handle_exception(exc, request)

    async def _handle_exception(self, exc: Exception, request: Request) -> JSONResponse:
        request_id = get_request_id(request)

        log_error(
            "unhandled_exception",
            f"Unhandled exception in {request.method} {request.url.path}",
            exception=exc,
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            user_agent=request.headers.get("user-agent"),
            client_ip=self._get_client_ip(request),
        )

        response = build_error_response(exc, request_id, self.request_id_header)
        record_error(type(exc).__name__, "middleware")

        # Add debug information if enabled (development only)
        if self.include_debug_info and response.status_code >= 500:
            log.debug(
                "Exception traceback",
                extra={
                    "event_type": "error_debug_trace",
                    "request_id": request_id,
                    "trace": traceback.format_exc(),
                },
            )

        log.info(
            f"Error response sent for {request.method} {request.url.path}",
            extra={
                "event_type": "error_response",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
            },
        )
        return response

    def _get_client_ip(self, request: Request) -> Optional[str]:
        """Extract client IP address from request"""
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()

        if request.client:
            return request.client.host

        return None


def get_request_id(request: Request) -> Optional[str]:
    """
    Get request ID from request state

    Args:
        request: FastAPI request object

    Returns:
        Request ID if the logging middleware assigned one
    """
    return getattr(request.state, "request_id", None)


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Exception handler for domain errors raised by routes and dependencies"""
    record_error(exc.code.value, "api")
    log.info(
        f"API error: {exc.code.value}",
        extra={
            "event_type": "api_error",
            "request_id": get_request_id(request),
            "path": request.url.path,
            "error_code": exc.code.value,
            "status_code": exc.status_code,
        },
    )
    return build_error_response(exc, get_request_id(request))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return build_error_response(exc, get_request_id(request))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    record_error("validation_error", "api")
    return build_error_response(exc, get_request_id(request))
