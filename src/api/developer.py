"""
Developer portal API: API keys, webhooks, delivery history and audit logs
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, status

from ..dependencies.auth import CurrentUser
from ..dependencies.services import ApiKeys, Webhooks
from ..models.api import ApiErrorResponse, ApiResponse
from ..models.platform import (
    ApiKeyView,
    AuditLog,
    CreateApiKeyRequest,
    CreateWebhookRequest,
    IssuedApiKey,
    IssuedWebhook,
    WebhookDelivery,
    WebhookView,
)

router = APIRouter(prefix="/developer", tags=["Developer Portal"])

AUTH_ERRORS = {
    401: {"model": ApiErrorResponse, "description": "Missing or invalid bearer token"},
}
NOT_FOUND = {404: {"model": ApiErrorResponse, "description": "Not found or not owned by the caller"}}


@router.post(
    "/keys",
    response_model=ApiResponse[IssuedApiKey],
    status_code=status.HTTP_201_CREATED,
    responses={**AUTH_ERRORS, 400: {"model": ApiErrorResponse, "description": "Invalid request data"}},
    summary="Create API key",
    description="Issue a key pair for the chosen tier. The secret is returned only in this response.",
)
async def create_api_key(payload: CreateApiKeyRequest, current_user: CurrentUser, api_keys: ApiKeys):
    issued = await api_keys.create_key(
        user_id=current_user.user_id,
        name=payload.name,
        tier=payload.tier,
        is_sandbox=payload.is_sandbox,
        expires_at=payload.expires_at,
    )
    return ApiResponse(
        id=issued.id,
        data=issued,
        message="API key created. Store the secret key securely; it will not be shown again.",
    )


@router.get(
    "/keys",
    response_model=ApiResponse[List[ApiKeyView]],
    responses=AUTH_ERRORS,
    summary="List API keys",
)
async def list_api_keys(current_user: CurrentUser, api_keys: ApiKeys):
    keys = await api_keys.list_keys(current_user.user_id)
    return ApiResponse(data=[ApiKeyView.model_validate(key) for key in keys])


@router.post(
    "/keys/{key_id}/rotate",
    response_model=ApiResponse[IssuedApiKey],
    responses={**AUTH_ERRORS, **NOT_FOUND},
    summary="Rotate API key",
    description="Replace both the public key and the secret. The old pair stops working immediately.",
)
async def rotate_api_key(key_id: UUID, current_user: CurrentUser, api_keys: ApiKeys):
    issued = await api_keys.rotate_key(current_user.user_id, key_id)
    return ApiResponse(id=issued.id, data=issued, message="API key rotated")


@router.delete(
    "/keys/{key_id}",
    response_model=ApiResponse[ApiKeyView],
    responses={**AUTH_ERRORS, **NOT_FOUND},
    summary="Deactivate API key",
)
async def deactivate_api_key(key_id: UUID, current_user: CurrentUser, api_keys: ApiKeys):
    api_key = await api_keys.deactivate_key(current_user.user_id, key_id)
    return ApiResponse(id=api_key.id, data=ApiKeyView.model_validate(api_key), message="API key deactivated")


@router.post(
    "/webhooks",
    response_model=ApiResponse[IssuedWebhook],
    status_code=status.HTTP_201_CREATED,
    responses={**AUTH_ERRORS, 400: {"model": ApiErrorResponse, "description": "No active API key or invalid data"}},
    summary="Register webhook",
    description="Subscribe a URL to events (use `*` for all). The signing secret is returned only here.",
)
async def create_webhook(payload: CreateWebhookRequest, current_user: CurrentUser, webhooks: Webhooks):
    issued = await webhooks.create_webhook(
        current_user.user_id, str(payload.url), payload.events, payload.api_key_id
    )
    return ApiResponse(id=issued.id, data=issued, message="Webhook registered")


@router.get(
    "/webhooks",
    response_model=ApiResponse[List[WebhookView]],
    responses=AUTH_ERRORS,
    summary="List webhooks",
)
async def list_webhooks(current_user: CurrentUser, webhooks: Webhooks):
    items = await webhooks.list_webhooks(current_user.user_id)
    return ApiResponse(data=[WebhookView.model_validate(item) for item in items])


@router.get(
    "/webhooks/{webhook_id}/deliveries",
    response_model=ApiResponse[List[WebhookDelivery]],
    responses={**AUTH_ERRORS, **NOT_FOUND},
    summary="Delivery history",
    description="The 50 most recent delivery attempts, newest first",
)
async def list_webhook_deliveries(webhook_id: UUID, current_user: CurrentUser, webhooks: Webhooks):
    deliveries = await webhooks.list_deliveries(current_user.user_id, webhook_id)
    return ApiResponse(data=deliveries)


@router.post(
    "/webhooks/{webhook_id}/test",
    response_model=ApiResponse[dict],
    status_code=status.HTTP_202_ACCEPTED,
    responses={**AUTH_ERRORS, **NOT_FOUND},
    summary="Send test ping",
    description="Emit a `test.ping` event to every webhook subscribed to it",
)
async def send_test_webhook(webhook_id: UUID, current_user: CurrentUser, webhooks: Webhooks):
    subscribers = await webhooks.send_test_ping(current_user.user_id, webhook_id)
    return ApiResponse(data={"event": "test.ping", "subscribers": subscribers}, message="Test event dispatched")


@router.delete(
    "/webhooks/{webhook_id}",
    response_model=ApiResponse[WebhookView],
    responses={**AUTH_ERRORS, **NOT_FOUND},
    summary="Delete webhook",
    description="Deactivates the subscription; delivery history is kept",
)
async def delete_webhook(webhook_id: UUID, current_user: CurrentUser, webhooks: Webhooks):
    webhook = await webhooks.delete_webhook(current_user.user_id, webhook_id)
    return ApiResponse(id=webhook.id, data=WebhookView.model_validate(webhook), message="Webhook deleted")


@router.get(
    "/audit-logs",
    response_model=ApiResponse[List[AuditLog]],
    responses=AUTH_ERRORS,
    summary="API audit log",
    description="The 100 most recent API calls made with the caller's keys",
)
async def list_audit_logs(current_user: CurrentUser, webhooks: Webhooks):
    return ApiResponse(data=await webhooks.list_audit_logs(current_user.user_id))
