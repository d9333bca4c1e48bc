"""
Audit middleware: one api_audit_logs row per API-key authenticated call
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..models.platform import AuditLog
from ..utils.logger import log_error
from .rate_limit import get_client_ip


class ApiAuditMiddleware(BaseHTTPMiddleware):
    """
    Writes the audit row once the handler has produced a response

    The admission dependency marks the request with ``api_key_id`` and the
    store to write to; requests it never admitted are not audited.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            api_key_id = getattr(request.state, "api_key_id", None)
            store = getattr(request.state, "platform_store", None)
            if api_key_id is not None and store is not None:
                await self._write(request, store, api_key_id, status_code, started)

    async def _write(self, request: Request, store, api_key_id, status_code: int, started: float):
        entry = AuditLog(
            api_key_id=api_key_id,
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            response_time_ms=int((time.perf_counter() - started) * 1000),
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
        try:
            await store.add_audit_log(entry)
        except Exception as e:
            log_error(
                "audit_log_failed",
                "Failed to write API audit log",
                exception=e,
                api_key_id=str(api_key_id),
                path=request.url.path,
            )
