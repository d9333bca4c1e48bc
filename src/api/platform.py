"""
Platform API for integrators (API-key authenticated)
"""

import os
from datetime import timedelta
from typing import Any, Dict, List

from fastapi import APIRouter, status

from ..dependencies.api_keys import AdminKey, CurrentApiKey, WriteKey
from ..dependencies.services import Dispatcher, Store
from ..models.api import ApiErrorResponse, ApiResponse
from ..models.platform import (
    TIER_LIMITS,
    ApiKeyView,
    ExternalEventRequest,
    OrderEventRequest,
    UsageResponse,
    WebhookView,
)
from ..utils.logger import log

router = APIRouter(tags=["Platform API"])

KEY_ERRORS = {
    401: {"model": ApiErrorResponse, "description": "Missing or invalid API key"},
    403: {"model": ApiErrorResponse, "description": "Key deactivated, expired or lacking permission"},
    429: {"model": ApiErrorResponse, "description": "Daily quota or burst limit exceeded"},
}


@router.get(
    "/platform/status",
    response_model=ApiResponse[Dict[str, Any]],
    summary="Platform status",
    description="Public service status and the tier catalogue",
)
async def platform_status():
    return ApiResponse(
        data={
            "status": "operational",
            "version": os.getenv("APP_VERSION", "0.1.0"),
            "tiers": {tier.value: limits.model_dump() for tier, limits in TIER_LIMITS.items()},
        }
    )


@router.get(
    "/usage",
    response_model=ApiResponse[UsageResponse],
    responses=KEY_ERRORS,
    summary="Current key usage",
)
async def get_usage(api_key: CurrentApiKey):
    usage = UsageResponse(
        tier=api_key.tier,
        daily_requests=api_key.daily_requests,
        daily_limit=api_key.daily_limit,
        remaining=max(0, api_key.daily_limit - api_key.daily_requests),
        reset_at=api_key.last_reset_at + timedelta(hours=24),
        rate_limit=api_key.rate_limit,
        permissions=api_key.permissions,
        is_sandbox=api_key.is_sandbox,
    )
    return ApiResponse(data=usage)


async def _emit(dispatcher, event: str, data: Dict[str, Any], api_key) -> Dict[str, Any]:
    subscribers = await dispatcher.dispatch(event, data)
    log.info(
        "Business event received",
        extra={
            "event_type": "business_event_received",
            "event": event,
            "api_key_id": str(api_key.id),
            "subscribers": subscribers,
        },
    )
    return {"event": event, "subscribers": subscribers}


@router.post(
    "/webhooks/external/order",
    response_model=ApiResponse[Dict[str, Any]],
    status_code=status.HTTP_202_ACCEPTED,
    responses=KEY_ERRORS,
    summary="Inbound order update",
    description="Accept an order update from an integrator and fan it out as `order.updated`",
)
async def external_order_update(payload: ExternalEventRequest, api_key: WriteKey, dispatcher: Dispatcher):
    data = await _emit(dispatcher, "order.updated", payload.data, api_key)
    return ApiResponse(data=data, message="Order update received")


@router.post(
    "/webhooks/external/inventory",
    response_model=ApiResponse[Dict[str, Any]],
    status_code=status.HTTP_202_ACCEPTED,
    responses=KEY_ERRORS,
    summary="Inbound inventory sync",
    description="Accept an inventory sync and fan it out as `inventory.sync`",
)
async def external_inventory_sync(payload: ExternalEventRequest, api_key: WriteKey, dispatcher: Dispatcher):
    data = await _emit(dispatcher, "inventory.sync", payload.data, api_key)
    return ApiResponse(data=data, message="Inventory sync received")


@router.post(
    "/orders/{order_id}/events",
    response_model=ApiResponse[Dict[str, Any]],
    status_code=status.HTTP_202_ACCEPTED,
    responses=KEY_ERRORS,
    summary="Order lifecycle event",
    description="Publish `order.created` (status `created`) or `order.<status>` for an order",
)
async def publish_order_event(
    order_id: str, payload: OrderEventRequest, api_key: WriteKey, dispatcher: Dispatcher
):
    order_status = payload.status.strip().lower()
    event = "order.created" if order_status == "created" else f"order.{order_status}"
    data = await _emit(
        dispatcher, event, {**payload.data, "order_id": order_id, "status": order_status}, api_key
    )
    return ApiResponse(data=data, message="Order event published")


@router.get(
    "/admin/api-keys",
    response_model=ApiResponse[List[ApiKeyView]],
    responses=KEY_ERRORS,
    summary="All API keys (admin)",
)
async def admin_list_api_keys(api_key: AdminKey, store: Store):
    return ApiResponse(data=[ApiKeyView.model_validate(key) for key in await store.list_api_keys()])


@router.get(
    "/admin/webhooks",
    response_model=ApiResponse[List[WebhookView]],
    responses=KEY_ERRORS,
    summary="All webhooks (admin)",
)
async def admin_list_webhooks(api_key: AdminKey, store: Store):
    return ApiResponse(data=[WebhookView.model_validate(item) for item in await store.list_webhooks()])
