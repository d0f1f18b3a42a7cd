from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from order_pipeline.db import OrderStore, get_store
from order_pipeline.models import TaggedValidationResult, ValidationResult
from order_pipeline.payment_validation import PaymentValidator

router = APIRouter(prefix="/payments", tags=["payments"])


class BatchValidationBody(BaseModel):
    payment_ids: list[int] = Field(..., description="Payments to validate, reported in this order")


@router.get("/{payment_id}/validation")
async def validate_payment(payment_id: int, store: OrderStore = Depends(get_store)) -> ValidationResult:
    """
    Post-payment consistency report for one payment. Read-only: safe to call any
    number of times. Always 200; check `valid` and `errors` in the body.
    """
    return await PaymentValidator(store).validate_post_payment_state(payment_id)


@router.post("/validation/batch")
async def batch_validate(body: BatchValidationBody, store: OrderStore = Depends(get_store)) -> list[TaggedValidationResult]:
    return await PaymentValidator(store).batch_validate_payments(body.payment_ids)
