"""
Logging middleware for the Paygate gateway
Provides request/response logging, metrics collection, and correlation IDs
"""

import time
import os
from typing import Optional
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from ..utils.logger import log, new_request_id, redact_headers
from ..utils.metrics import (
    HTTP_REQUESTS_TOTAL,
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_FLIGHT,
    record_error,
)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for structured request/response logging and metrics collection
    """

    def __init__(self, app, request_id_header: str = None):
        super().__init__(app)
        self.request_id_header = request_id_header or os.getenv("REQUEST_ID_HEADER", "X-Request-ID")

    async def dispatch(self, request: Request, call_next) -> Response:
        # Generate or extract request ID for correlation
        request_id = new_request_id(request.headers.get(self.request_id_header))

        # Store request context for handlers
        request.state.request_id = request_id
        request.state.start_time = time.perf_counter()

        self._log_request_start(request, request_id)
        HTTP_REQUESTS_IN_FLIGHT.labels(route=request.url.path).inc()

        try:
            response: Response = await call_next(request)
        except Exception as e:
            duration_seconds = time.perf_counter() - request.state.start_time
            route_template = self._get_route_template(request)
            HTTP_REQUESTS_TOTAL.labels(method=request.method, route=route_template, status_code="500").inc()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=request.method, route=route_template).observe(
                duration_seconds
            )
            record_error("unhandled_exception", "http_middleware")
            self._log_unhandled_exception(request, request_id, round(duration_seconds * 1000, 2), e)
            raise
        finally:
            HTTP_REQUESTS_IN_FLIGHT.labels(route=request.url.path).dec()

        duration_seconds = time.perf_counter() - request.state.start_time
        duration_ms = round(duration_seconds * 1000, 2)
        # Route is resolved by now, so metrics get the low-cardinality template
        route_template = self._get_route_template(request)

        response.headers[self.request_id_header] = request_id

        HTTP_REQUESTS_TOTAL.labels(
            method=request.method,
            route=route_template,
            status_code=str(response.status_code),
        ).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=request.method, route=route_template).observe(
            duration_seconds
        )

        log.info(
            f"Request completed: {request.method} {route_template} -> {response.status_code} ({duration_ms}ms)",
            extra={
                "event_type": "http_response",
                "request_id": request_id,
                "method": request.method,
                "route": route_template,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "api_key_id": self._api_key_id(request),
                "user_id": getattr(request.state, "user_id", None),
                "client_ip": self._get_client_ip(request),
            },
        )
        return response

    def _get_route_template(self, request: Request) -> str:
        route = request.scope.get("route")
        if route and hasattr(route, "path"):
            return route.path
        return request.url.path

    @staticmethod
    def _api_key_id(request: Request) -> Optional[str]:
        api_key_id = getattr(request.state, "api_key_id", None)
        return str(api_key_id) if api_key_id else None

    def _log_request_start(self, request: Request, request_id: str):
        log.info(
            f"Request started: {request.method} {request.url.path}",
            extra={
                "event_type": "http_request",
                "request_id": request_id,
                "method": request.method,
                "path": str(request.url.path),
                "query_params": dict(request.query_params),
                "headers": redact_headers(dict(request.headers)),
                "idempotency_key": request.headers.get("Idempotency-Key"),
                "client_ip": self._get_client_ip(request),
                "user_agent": request.headers.get("user-agent"),
            },
        )

    def _log_unhandled_exception(
        self, request: Request, request_id: str, duration_ms: float, exception: Exception
    ):
        log.exception(
            f"Unhandled exception: {request.method} {request.url.path} -> 500 ({duration_ms}ms)",
            extra={
                "event_type": "error_unhandled",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "duration_ms": duration_ms,
                "api_key_id": self._api_key_id(request),
                "client_ip": self._get_client_ip(request),
                "error_type": type(exception).__name__,
                "error_message": str(exception),
            },
            exc_info=exception,
        )

    def _get_client_ip(self, request: Request) -> Optional[str]:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()

        client = request.client
        return client.host if client else None
