"""
Post-payment validation: read-only consistency checks between a payment, its order
and the order's other payments. Nothing here writes to the store, so every check can
be repeated freely and returns the same report for the same data.

Each check returns a ValidationResult: errors make it invalid, warnings are advisory.
"""
import logging
from decimal import Decimal, InvalidOperation

from order_pipeline.db import OrderStore
from order_pipeline.metrics import payment_validations_total
from order_pipeline.models import Order, Payment, TaggedValidationResult, ValidationResult
from order_pipeline.order_state import OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

# Differences at or below this are treated as rounding noise, not a mismatch
AMOUNT_TOLERANCE = Decimal("0.01")

_PAYMENT_OK_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.PROCESSING})
_PAYMENT_BAD_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.FAILED})
_ORDER_OK_STATUSES = frozenset({
    OrderStatus.PAYMENT_COMPLETED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
})
_ORDER_BAD_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PAYMENT_PENDING})
_ORDER_PAYABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.PAYMENT_PENDING)


def parse_amount(value) -> Decimal | None:
    """Decimal for a store/JSON amount, None when it is absent or not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None


def validate_payment_amount(payment: Payment | None, order: Order | None) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []

    if payment is None or order is None:
        errors.append("Payment or order data missing")
        return ValidationResult.build(errors, warnings)

    payment_amount = parse_amount(payment.amount)
    order_amount = parse_amount(order.total_amount)
    if payment_amount is None or order_amount is None:
        errors.append("Invalid amount format")
        return ValidationResult.build(errors, warnings)

    difference = abs(payment_amount - order_amount)
    if difference > AMOUNT_TOLERANCE:
        errors.append(f"Payment amount ({payment_amount}) does not match order total ({order_amount})")

    # strict comparison: any difference is worth a warning, even inside the tolerance
    if payment_amount < order_amount:
        warnings.append("Payment amount is less than order total")
    elif payment_amount > order_amount:
        warnings.append("Payment amount is greater than order total")

    return ValidationResult.build(errors, warnings, {
        "payment_amount": payment_amount,
        "order_amount": order_amount,
        "difference": difference,
    })


def validate_payment_status(payment: Payment | None) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []

    if payment is None:
        errors.append("Payment data missing")
        return ValidationResult.build(errors, warnings)

    if payment.status in _PAYMENT_BAD_STATUSES:
        errors.append(f"Payment status '{payment.status}' is invalid for post-payment validation")
    elif payment.status not in _PAYMENT_OK_STATUSES:
        warnings.append(f"Unexpected payment status: {payment.status}")

    return ValidationResult.build(errors, warnings, {"payment_status": payment.status})


def validate_order_status(order: Order | None) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []

    if order is None:
        errors.append("Order data missing")
        return ValidationResult.build(errors, warnings)

    if order.status in _ORDER_BAD_STATUSES:
        errors.append(f"Order status '{order.status}' is inconsistent with completed payment")
    elif order.status not in _ORDER_OK_STATUSES:
        warnings.append(f"Order status '{order.status}' may need review after payment")

    return ValidationResult.build(errors, warnings, {"order_status": order.status})


def validate_total_payments(payments: list[Payment] | None, order: Order | None) -> ValidationResult:
    """Sum of completed payments against the order total. Overpayment is only a warning."""
    errors: list[str] = []
    warnings: list[str] = []

    if order is None:
        errors.append("Order data missing")
        return ValidationResult.build(errors, warnings)

    if not payments:
        errors.append("No payments found for order")
        return ValidationResult.build(errors, warnings)

    order_amount = parse_amount(order.total_amount)
    if order_amount is None:
        errors.append("Invalid amount format")
        return ValidationResult.build(errors, warnings)

    completed = [p for p in payments if p.status == PaymentStatus.COMPLETED]
    total_paid = Decimal("0")
    for p in completed:
        amount = parse_amount(p.amount)
        if amount is None:
            errors.append(f"Invalid amount format for payment {p.id}")
            continue
        total_paid += amount

    if total_paid < order_amount - AMOUNT_TOLERANCE:
        errors.append(f"Total payments ({total_paid}) less than order amount ({order_amount})")
    elif total_paid > order_amount + AMOUNT_TOLERANCE:
        warnings.append(f"Total payments ({total_paid}) exceeds order amount ({order_amount})")

    return ValidationResult.build(errors, warnings, {
        "total_paid": total_paid,
        "order_amount": order_amount,
        "completed_payments": len(completed),
        "total_payments": len(payments),
    })


class PaymentValidator:
    def __init__(self, store: OrderStore):
        self.store = store

    async def get_payment(self, payment_id: int) -> Payment | None:
        return await self.store.get_payment(payment_id)

    async def get_order(self, order_id: int) -> Order | None:
        return await self.store.get_order(order_id)

    async def get_payments_for_order(self, order_id: int) -> list[Payment]:
        return await self.store.list_payments_for_order(order_id)

    async def validate_transaction_id(self, payment: Payment | None) -> ValidationResult:
        """Transaction id must be present and not shared with any other payment."""
        errors: list[str] = []
        warnings: list[str] = []

        if payment is None:
            errors.append("Payment data missing")
            return ValidationResult.build(errors, warnings)

        if not payment.transaction_id or not payment.transaction_id.strip():
            errors.append("Transaction ID is missing")
            return ValidationResult.build(errors, warnings)

        try:
            count = await self.store.count_payments_with_transaction_id(payment.transaction_id, payment.id)
        except Exception as e:
            logger.exception("Transaction id uniqueness check failed for payment_id=%s", payment.id)
            errors.append(f"Error checking transaction ID uniqueness: {e}")
        else:
            if count > 0:
                errors.append(f"Duplicate transaction ID found: {payment.transaction_id}")

        return ValidationResult.build(errors, warnings, {"transaction_id": payment.transaction_id})

    async def validate_post_payment_state(self, payment_id: int) -> ValidationResult:
        """Run every post-payment check for one payment and merge the reports."""
        errors: list[str] = []
        warnings: list[str] = []
        data: dict = {"payment_id": payment_id}

        try:
            payment = await self.get_payment(payment_id)
            if payment is None:
                errors.append(f"Payment {payment_id} not found")
                return self._finish(errors, warnings, data)
            data["payment"] = {
                "id": payment.id,
                "order_id": payment.order_id,
                "amount": payment.amount,
                "status": payment.status,
            }

            order = await self.get_order(payment.order_id)
            if order is None:
                errors.append(f"Order {payment.order_id} not found for payment {payment_id}")
                return self._finish(errors, warnings, data)
            data["order"] = {
                "id": order.id,
                "total_amount": order.total_amount,
                "status": order.status,
            }

            # merged as each check runs so a later store failure keeps earlier findings
            for check in (
                validate_payment_status(payment),
                validate_order_status(order),
                validate_payment_amount(payment, order),
            ):
                self._merge(check, errors, warnings, data)
            self._merge(await self.validate_transaction_id(payment), errors, warnings, data)
            payments = await self.get_payments_for_order(payment.order_id)
            self._merge(validate_total_payments(payments, order), errors, warnings, data)
        except Exception as e:
            logger.exception("Post-payment validation failed for payment_id=%s", payment_id)
            errors.append(f"Validation error: {e}")

        return self._finish(errors, warnings, data)

    async def validate_order_ready_for_payment(self, order_id: int) -> ValidationResult:
        """Pre-check before a payment is started for the order."""
        errors: list[str] = []
        warnings: list[str] = []
        data: dict = {"order_id": order_id}

        try:
            order = await self.get_order(order_id)
        except Exception as e:
            logger.exception("Failed to load order_id=%s", order_id)
            errors.append(f"Validation error: {e}")
            return ValidationResult.build(errors, warnings, data)

        if order is None:
            errors.append(f"Order {order_id} not found")
            return ValidationResult.build(errors, warnings, data)

        if order.status not in _ORDER_PAYABLE_STATUSES:
            expected = " or ".join(s.value for s in _ORDER_PAYABLE_STATUSES)
            errors.append(f"Order status '{order.status}' not ready for payment. Expected: {expected}")

        amount = parse_amount(order.total_amount)
        if amount is None:
            errors.append("Invalid amount format")
        elif amount <= 0:
            errors.append("Order amount must be greater than zero")

        data["order_status"] = order.status
        data["order_amount"] = order.total_amount
        return ValidationResult.build(errors, warnings, data)

    async def batch_validate_payments(self, payment_ids: list[int]) -> list[TaggedValidationResult]:
        results = []
        for payment_id in payment_ids:
            result = await self.validate_post_payment_state(payment_id)
            results.append(TaggedValidationResult(payment_id=payment_id, **result.model_dump()))
        return results

    @staticmethod
    def _merge(check: ValidationResult, errors: list[str], warnings: list[str], data: dict) -> None:
        errors.extend(check.errors)
        warnings.extend(check.warnings)
        data.update(check.data)

    @staticmethod
    def _finish(errors: list[str], warnings: list[str], data: dict) -> ValidationResult:
        result = ValidationResult.build(errors, warnings, data)
        payment_validations_total.labels(outcome="valid" if result.valid else "invalid").inc()
        return result
