"""
Paygate - Payment Routing Gateway and Developer Platform
Main application entry point with OpenAPI v3 documentation and observability
"""

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import uvicorn
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Import API routers
from src.api.health import router as health_router
from src.api.developer import router as developer_router
from src.api.platform import router as platform_router
from src.api.payments import router as payments_router
from src.api.provider_webhooks import router as provider_webhooks_router

# Import observability components
from src.middleware.logging import LoggingMiddleware
from src.middleware.error_middleware import (
    ErrorMiddleware,
    api_error_handler,
    http_exception_handler,
    validation_exception_handler,
)
from src.middleware.audit import ApiAuditMiddleware
from src.middleware.rate_limit import check_burst_rate_limit
from src.models.errors import APIError
from src.utils.logger import log_event

# Core components
from src.config.settings import get_settings
from src.database.connection import init_db
from src.database.sql_store import build_platform_store
from src.integrations import build_default_adapters
from src.services.payment_router import PaymentRouter, load_routing_config
from src.workers.webhook_dispatcher import WebhookDispatcher

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager with structured logging and dispatcher management"""
    # Startup
    log_event(
        "app_startup",
        "Application starting up",
        version=settings.app_version,
        store_backend=settings.store_backend,
    )

    if settings.store_backend == "sql":
        await init_db()

    # DISPATCHER_ENABLED=false skips the scheduler; retries then wait in-process
    await app.state.dispatcher.start()

    yield

    # Shutdown
    log_event("app_shutdown", "Application shutting down")
    await app.state.dispatcher.stop()
    await app.state.payment_router.aclose()
    await app.state.store.close()


# Create FastAPI app with OpenAPI configuration
app = FastAPI(
    title="Paygate API",
    description="""
    Paygate Payment Routing Gateway

    **Version:** 0.1.0

    Routes payments across Stripe, Adyen, GoDaddy Payments, Square and Coinbase Commerce,
    and exposes a developer platform: API keys with tiered quotas, signed outbound
    webhooks, delivery history and audit logs.

    Developer portal endpoints require a bearer JWT. Platform and payment endpoints
    require an `X-API-Key` header; payment mutations also require `X-API-Secret`.
    """,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    servers=[
        {"url": "http://localhost:8000", "description": "Development server"},
    ],
)

# Shared components, reached through src.dependencies.services
app.state.store = build_platform_store(settings)
app.state.payment_router = PaymentRouter(load_routing_config(), build_default_adapters())
app.state.dispatcher = WebhookDispatcher(app.state.store, settings)


# Customize OpenAPI schema to add x-api-version
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        servers=app.servers,
    )
    openapi_schema["info"]["x-api-version"] = "0.1.0"
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

# Configure middleware - order matters! The last one added runs first.
# 1. CORS middleware
cors_origins = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,  # no '*'
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# 2. Audit middleware (records API-key calls once a response exists)
app.add_middleware(ApiAuditMiddleware)

# 3. Error middleware (catches all exceptions)
include_debug = settings.environment == "development"
app.add_middleware(ErrorMiddleware, include_debug_info=include_debug)

# 4. Logging middleware (logs requests/responses, assigns request IDs)
app.add_middleware(LoggingMiddleware)

# Exception handlers render every error in the standard envelope
app.add_exception_handler(APIError, api_error_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

# Include observability routers first (no auth required)
app.include_router(health_router)

# Developer portal (JWT)
app.include_router(developer_router, prefix="/api")

# Platform and payments (API key, burst limited per client)
burst_limited = [Depends(check_burst_rate_limit)]
app.include_router(platform_router, prefix="/api/v1", dependencies=burst_limited)
app.include_router(payments_router, prefix="/api/v1", dependencies=burst_limited)

# Backend callbacks (verified by signature)
app.include_router(provider_webhooks_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with basic service information"""
    return {
        "message": "Paygate Payment Routing API",
        "version": settings.app_version,
        "status": "running",
        "docs": "/docs",
        "health": {
            "liveness": "/healthz",
            "readiness": "/readyz",
            "metrics": "/metrics",
        },
    }


if __name__ == "__main__":
    # For development only
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.environment == "development",
        timeout_keep_alive=30,
        timeout_graceful_shutdown=10,
    )
