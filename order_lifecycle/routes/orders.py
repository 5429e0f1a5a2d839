from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from order_lifecycle.dependencies import get_lifecycle_manager
from order_lifecycle.errors import (
    InvalidArgumentError,
    InvalidTransitionError,
    LifecycleError,
    OrderBusyError,
    OrderNotFoundError,
    PartialFailureError,
    PaymentGatewayError,
    PersistenceError,
)
from order_lifecycle.lifecycle import OrderLifecycleManager, TransitionResult

router = APIRouter(prefix="/orders", tags=["orders"])

ERROR_STATUS: dict[type[LifecycleError], int] = {
    OrderNotFoundError: 404,
    InvalidArgumentError: 400,
    InvalidTransitionError: 409,
    OrderBusyError: 409,
    PaymentGatewayError: 502,
    PersistenceError: 503,
    PartialFailureError: 500,
}


class ShipOrderBody(BaseModel):
    carrier: str = Field(..., description="Shipping carrier, e.g. DHL")
    tracking_number: str = Field(..., description="Carrier tracking number")


def error_response(order_id: int, error: LifecycleError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS.get(type(error), 500),
        content={"status": "error", "order_id": order_id, "error": type(error).__name__, "detail": str(error)},
    )


def transition_response(result: TransitionResult) -> JSONResponse:
    if not result.ok:
        return error_response(result.order_id, result.error)
    content = {
        "status": "ok",
        "transition": result.transition.value,
        "order": result.order.to_dict(),
    }
    if result.refund is not None:
        content["refund_id"] = result.refund.refund_id
    return JSONResponse(status_code=200, content=content)


@router.get("/{order_id}")
async def order_details(order_id: int, manager: OrderLifecycleManager = Depends(get_lifecycle_manager)) -> JSONResponse:
    """Order header with its line items."""
    result = await manager.get_order_view(order_id)
    if not result.ok:
        return error_response(order_id, result.error)
    return JSONResponse(status_code=200, content=result.view.to_dict())


@router.post("/{order_id}/process")
async def set_in_process(order_id: int, manager: OrderLifecycleManager = Depends(get_lifecycle_manager)) -> JSONResponse:
    return transition_response(await manager.advance_to_processing(order_id))


@router.post("/{order_id}/ship")
async def set_shipped(
    order_id: int,
    body: ShipOrderBody,
    manager: OrderLifecycleManager = Depends(get_lifecycle_manager),
) -> JSONResponse:
    return transition_response(await manager.mark_shipped(order_id, body.carrier, body.tracking_number))


@router.post("/{order_id}/cancel")
async def cancel_order(order_id: int, manager: OrderLifecycleManager = Depends(get_lifecycle_manager)) -> JSONResponse:
    """
    Cancel the order. A captured payment is refunded first; a failed refund leaves the order as it was (502).
    """
    return transition_response(await manager.cancel_order(order_id))
