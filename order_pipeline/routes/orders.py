import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from order_pipeline.db import OrderStore, get_store
from order_pipeline.models import (
    CanTransitionResult,
    ErrorKind,
    OrderStatusHistoryEntry,
    TaggedTransitionResult,
    ValidationResult,
)
from order_pipeline.payment_validation import PaymentValidator
from order_pipeline.transitions import OrderStatusManager, TransitionRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

# HTTP status for each failed transition kind; everything else is 200
_FAILURE_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.VALIDATION_FAILURE: 422,
    ErrorKind.INFRASTRUCTURE: 503,
}


class TransitionBody(BaseModel):
    target_status: str = Field(..., description="Status to move the order to")
    changed_by: str | None = Field(default=None, description="Actor recorded in the status history")
    reason: str = Field(default="", description="Free-text reason recorded in the status history")
    force: bool = Field(default=False, description="Skip the transition graph (administrative correction)")


class BatchTransitionItem(TransitionBody):
    order_id: int


class BatchTransitionBody(BaseModel):
    transitions: list[BatchTransitionItem]


@router.post("/{order_id}/transition")
async def transition_order(order_id: int, body: TransitionBody, store: OrderStore = Depends(get_store)) -> JSONResponse:
    """
    Move one order to target_status. Idempotent: an order already in target_status
    returns 200 with idempotent=true and no history row is written.
    """
    result = await OrderStatusManager(store).transition(
        order_id,
        body.target_status,
        changed_by=body.changed_by,
        reason=body.reason,
        force=body.force,
    )
    status_code = 200 if result.success else _FAILURE_STATUS[result.error_kind]
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


@router.post("/transitions/batch")
async def batch_transition_orders(
    body: BatchTransitionBody,
    store: OrderStore = Depends(get_store),
) -> list[TaggedTransitionResult]:
    """Apply transitions one by one; each entry reports its own outcome."""
    requests = [
        TransitionRequest(
            order_id=t.order_id,
            new_status=t.target_status,
            changed_by=t.changed_by,
            reason=t.reason,
            force=t.force,
        )
        for t in body.transitions
    ]
    return await OrderStatusManager(store).batch_transition(requests)


@router.get("/{order_id}/can-transition/{target_status}")
async def can_transition(order_id: int, target_status: str, store: OrderStore = Depends(get_store)) -> CanTransitionResult:
    return await OrderStatusManager(store).can_transition_to(order_id, target_status)


@router.get("/{order_id}/history", response_model=list[OrderStatusHistoryEntry])
async def order_history(order_id: int, store: OrderStore = Depends(get_store)):
    """Status history, newest first. Empty list for an order with no recorded changes."""
    try:
        return await OrderStatusManager(store).get_history(order_id)
    except Exception:
        logger.exception("Failed to read status history for order_id=%s", order_id)
        return JSONResponse(
            status_code=503,
            content={"status": "error", "message": "Status history unavailable"},
        )


@router.get("/{order_id}/payment-readiness")
async def payment_readiness(order_id: int, store: OrderStore = Depends(get_store)) -> ValidationResult:
    return await PaymentValidator(store).validate_order_ready_for_payment(order_id)
