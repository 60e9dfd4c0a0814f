"""
Checkout API routes.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_checkout_service
from application.dtos.checkout import CheckoutRequest
from application.services.checkout_service import CheckoutService
from core.response import success_response


router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.post("", summary="Create orders and a payment session for a cart")
async def checkout(payload: CheckoutRequest, service: CheckoutService = Depends(get_checkout_service)):
    """
    购物车结账

    Every cart item becomes one order; all of them share a correlation id that
    is also the gateway order reference. A gateway failure removes the orders
    again and answers 503 so the client can retry the whole checkout.
    """
    result = await service.checkout(payload)
    return success_response(data=result.model_dump(mode="json"), message="Checkout created")
