"""
FastAPI dependencies for the long-lived gateway components held on app.state
"""

from typing import Annotated

from fastapi import Depends, Request

from ..database.store import PlatformStore
from ..services.admission import AdmissionService
from ..services.api_key_service import ApiKeyService
from ..services.payment_router import PaymentRouter
from ..services.webhook_service import WebhookService
from ..workers.webhook_dispatcher import WebhookDispatcher


def get_platform_store(request: Request) -> PlatformStore:
    return request.app.state.store


def get_payment_router(request: Request) -> PaymentRouter:
    return request.app.state.payment_router


def get_webhook_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.dispatcher


def get_api_key_service(store: Annotated[PlatformStore, Depends(get_platform_store)]) -> ApiKeyService:
    return ApiKeyService(store)


def get_admission_service(store: Annotated[PlatformStore, Depends(get_platform_store)]) -> AdmissionService:
    return AdmissionService(store)


def get_webhook_service(
    store: Annotated[PlatformStore, Depends(get_platform_store)],
    dispatcher: Annotated[WebhookDispatcher, Depends(get_webhook_dispatcher)],
) -> WebhookService:
    return WebhookService(store, dispatcher)


# Type aliases for easier use
Store = Annotated[PlatformStore, Depends(get_platform_store)]
Router = Annotated[PaymentRouter, Depends(get_payment_router)]
Dispatcher = Annotated[WebhookDispatcher, Depends(get_webhook_dispatcher)]
ApiKeys = Annotated[ApiKeyService, Depends(get_api_key_service)]
Admission = Annotated[AdmissionService, Depends(get_admission_service)]
Webhooks = Annotated[WebhookService, Depends(get_webhook_service)]
