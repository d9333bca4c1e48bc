"""
Inbound dispute callbacks from payment backends
"""

import json
from typing import Any, Dict

from fastapi import APIRouter, Request

from ..dependencies.services import Dispatcher, Router
from ..models.api import ApiErrorResponse, ApiResponse
from ..models.errors import InvalidCallbackSignatureError, ValidationError
from ..models.payments import DisputeResolution, DisputeResult
from ..utils.logger import log

router = APIRouter(prefix="/webhooks/payments", tags=["Payment Callbacks"])


@router.post(
    "/{provider}/disputes",
    response_model=ApiResponse[DisputeResult],
    responses={
        400: {"model": ApiErrorResponse, "description": "Unknown provider or malformed payload"},
        401: {"model": ApiErrorResponse, "description": "Callback signature did not verify"},
    },
    summary="Dispute callback",
    description="Classify a backend's dispute notification and notify subscribers with `payment.disputed`",
)
async def receive_dispute(provider: str, request: Request, payment_router: Router, dispatcher: Dispatcher):
    """
    Handle a dispute notification from a payment backend.

    The raw body is verified before parsing. Callbacks that need no action are
    acknowledged but not fanned out to webhook subscribers.
    """
    body = await request.body()
    if not payment_router.verify_callback(provider, body, request.headers):
        log.warning(
            f"Rejected {provider} callback with bad signature",
            extra={"event_type": "provider_callback_rejected", "provider": provider},
        )
        raise InvalidCallbackSignatureError(provider)

    try:
        payload: Dict[str, Any] = json.loads(body or b"{}")
    except json.JSONDecodeError:
        raise ValidationError("Callback body is not valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Callback body must be a JSON object")

    result = await payment_router.handle_dispute(payload, provider)

    if result.resolution != DisputeResolution.NO_ACTION:
        await dispatcher.dispatch(
            "payment.disputed",
            {
                "provider": result.provider.value,
                "dispute_id": result.dispute_id,
                "resolution": result.resolution.value,
            },
        )

    return ApiResponse(data=result, message="Callback processed")
