"""
Payments API: routed checkout, post-payment operations and routing administration
"""

from decimal import Decimal
from typing import Dict

from fastapi import APIRouter, Query, status

from ..dependencies.api_keys import AdminKey, ReadKey, SignedWriteKey
from ..dependencies.services import Router
from ..models.api import ApiErrorResponse, ApiResponse
from ..models.payments import (
    CancelResult,
    CaptureResult,
    FeeComparisonEntry,
    OrderType,
    PaymentOrder,
    PaymentResult,
    PaymentStatusResult,
    ProviderActionRequest,
    ProviderInfo,
    ProviderKey,
    RefundRequest,
    RefundResult,
    RoutingConfig,
    RoutingConfigUpdate,
    RoutingStats,
)

router = APIRouter(prefix="/payments", tags=["Payments"])

PAYMENT_ERRORS = {
    400: {"model": ApiErrorResponse, "description": "Invalid request or unknown provider"},
    401: {"model": ApiErrorResponse, "description": "Missing or invalid API credentials"},
    403: {"model": ApiErrorResponse, "description": "Insufficient permissions"},
    502: {"model": ApiErrorResponse, "description": "Payment backend returned an error"},
    503: {"model": ApiErrorResponse, "description": "No usable payment backend configured"},
}


@router.post(
    "",
    response_model=ApiResponse[PaymentResult],
    status_code=status.HTTP_201_CREATED,
    responses=PAYMENT_ERRORS,
    summary="Create payment",
    description="Route the order to one payment backend and create the payment there",
)
async def create_payment(order: PaymentOrder, api_key: SignedWriteKey, payment_router: Router):
    """
    Create a payment for an order.

    The backend is chosen from the order type and the international flag; when
    it has no credentials the fallback chain is used. The response names the
    backend, which later capture/refund/cancel calls must pass back.
    """
    result = await payment_router.create_payment(order)
    return ApiResponse(data=result, message=f"Payment created with {result.provider.value}")


@router.post(
    "/{intent_id}/capture",
    response_model=ApiResponse[CaptureResult],
    responses=PAYMENT_ERRORS,
    summary="Capture payment",
)
async def capture_payment(
    intent_id: str, payload: ProviderActionRequest, api_key: SignedWriteKey, payment_router: Router
):
    return ApiResponse(data=await payment_router.capture_payment(intent_id, payload.provider))


@router.post(
    "/{intent_id}/refund",
    response_model=ApiResponse[RefundResult],
    responses=PAYMENT_ERRORS,
    summary="Refund payment",
    description="Full refund, or partial when `amount` is given",
)
async def refund_payment(intent_id: str, payload: RefundRequest, api_key: SignedWriteKey, payment_router: Router):
    result = await payment_router.refund_payment(intent_id, payload.provider, payload.amount, payload.reason)
    return ApiResponse(data=result)


@router.post(
    "/{intent_id}/cancel",
    response_model=ApiResponse[CancelResult],
    responses=PAYMENT_ERRORS,
    summary="Cancel payment",
)
async def cancel_payment(
    intent_id: str, payload: ProviderActionRequest, api_key: SignedWriteKey, payment_router: Router
):
    return ApiResponse(data=await payment_router.cancel_payment(intent_id, payload.provider))


@router.get(
    "/{intent_id}/status",
    response_model=ApiResponse[PaymentStatusResult],
    responses=PAYMENT_ERRORS,
    summary="Payment status",
)
async def get_payment_status(
    intent_id: str,
    api_key: ReadKey,
    payment_router: Router,
    provider: ProviderKey = Query(..., description="Backend that created the payment"),
):
    return ApiResponse(data=await payment_router.get_status(intent_id, provider))


@router.get(
    "/providers",
    response_model=ApiResponse[Dict[str, ProviderInfo]],
    summary="Payment backends",
    description="Which backends have credentials configured",
)
async def list_providers(api_key: ReadKey, payment_router: Router):
    return ApiResponse(data=payment_router.get_provider_status())


@router.get(
    "/fees",
    response_model=ApiResponse[Dict[str, FeeComparisonEntry]],
    summary="Fee comparison",
)
async def compare_fees(
    api_key: ReadKey,
    payment_router: Router,
    amount: Decimal = Query(..., ge=0, description="Amount in major units"),
    order_type: OrderType = Query(OrderType.ONLINE),
):
    return ApiResponse(data=payment_router.get_fee_comparison(amount, order_type))


@router.get(
    "/routing",
    response_model=ApiResponse[RoutingConfig],
    summary="Routing configuration (admin)",
)
async def get_routing_config(api_key: AdminKey, payment_router: Router):
    return ApiResponse(data=payment_router.get_routing_config())


@router.patch(
    "/routing",
    response_model=ApiResponse[RoutingConfig],
    summary="Update routing configuration (admin)",
    description="Partial update; applies to the next routed order",
)
async def update_routing_config(payload: RoutingConfigUpdate, api_key: AdminKey, payment_router: Router):
    config = payment_router.update_routing_config(payload)
    return ApiResponse(data=config, message="Routing configuration updated")


@router.get(
    "/routing/stats",
    response_model=ApiResponse[RoutingStats],
    summary="Routing statistics (admin)",
)
async def get_routing_stats(api_key: AdminKey, payment_router: Router):
    return ApiResponse(data=payment_router.get_routing_stats())
