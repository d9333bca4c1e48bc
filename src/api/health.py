"""
Probes and metrics for the Paygate gateway

Liveness never touches the store. Readiness requires the platform store and
reports payment backends for information only: a gateway with no backend
configured still serves the developer portal and the platform API.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Response, status

from ..config.settings import get_settings
from ..dependencies.services import Router, Store
from ..utils.logger import log
from ..utils.metrics import metrics_endpoint

STORE_PING_TIMEOUT = 2.0

router = APIRouter(tags=["Observability"])


async def _probe_store(store) -> str:
    try:
        await asyncio.wait_for(store.ping(), timeout=STORE_PING_TIMEOUT)
    except asyncio.TimeoutError:
        log.error("Store ping timed out", extra={"event_type": "readiness_store_timeout"})
        return "timeout"
    except Exception as e:
        log.error(
            "Store ping failed",
            extra={"event_type": "readiness_store_error", "error_type": type(e).__name__},
        )
        return "unhealthy"
    return "healthy"


@router.get("/healthz", summary="Liveness probe")
async def healthz() -> Dict[str, Any]:
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "paygate",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/readyz", summary="Readiness probe")
async def readyz(response: Response, store: Store, payment_router: Router) -> Dict[str, Any]:
    """Ready when the store answers a ping; backend configuration is reported alongside"""
    store_state = await _probe_store(store)
    backends = {
        key: "configured" if info.configured else "not_configured"
        for key, info in payment_router.get_provider_status().items()
    }

    ready = store_state == "healthy"
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "healthy" if ready else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "store": store_state,
            "store_backend": get_settings().store_backend,
            "payment_providers": backends,
        },
    }


@router.get("/metrics", summary="Prometheus metrics")
def metrics():
    """Prometheus exposition; 404 when METRICS_ENABLED is false"""
    return metrics_endpoint()
