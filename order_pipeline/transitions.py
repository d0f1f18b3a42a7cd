"""
Order status transitions with an audit trail.

- transition() is idempotent: asking for the status the order already has is a
  successful no-op and writes no history row.
- The status write is conditional on the status read a moment earlier, so two
  concurrent transitions of one order cannot both apply; the loser gets a conflict.
- History rows are best-effort: once the order row is updated the transition stands,
  even if the audit insert fails.
"""
import logging
from dataclasses import dataclass

from order_pipeline.config import settings
from order_pipeline.db import OrderStore
from order_pipeline.metrics import (
    order_status_history_write_failures_total,
    order_transitions_forced_total,
    order_transitions_rejected_total,
    order_transitions_total,
)
from order_pipeline.models import (
    CanTransitionResult,
    ErrorKind,
    OrderStatusHistoryEntry,
    TaggedTransitionResult,
    TransitionResult,
)
from order_pipeline.order_state import parse_order_status, validate_transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionRequest:
    order_id: int
    new_status: str
    changed_by: str | None = None
    reason: str = ""
    force: bool = False


class OrderStatusManager:
    def __init__(self, store: OrderStore):
        self.store = store

    async def get_current_order_status(self, order_id: int) -> str | None:
        """Current status of the order, None if it does not exist. Store errors propagate."""
        order = await self.store.get_order(order_id)
        return order.status if order is not None else None

    async def log_status_change(
        self,
        order_id: int,
        previous_status: str | None,
        new_status: str,
        changed_by: str | None = None,
        reason: str = "",
    ) -> bool:
        """Append one history row. Returns False (and logs) instead of raising on failure."""
        try:
            await self.store.insert_status_history(
                order_id,
                previous_status,
                new_status,
                changed_by or settings.default_actor,
                reason,
            )
        except Exception:
            order_status_history_write_failures_total.inc()
            logger.exception(
                "Failed to log status change for order_id=%s (%s -> %s)",
                order_id,
                previous_status,
                new_status,
            )
            return False
        return True

    async def transition(
        self,
        order_id: int,
        new_status: str,
        changed_by: str | None = None,
        reason: str = "",
        force: bool = False,
    ) -> TransitionResult:
        """
        Move order_id to new_status.
        force=True skips the transition graph (administrative correction) but never
        allows a status outside the vocabulary.
        """
        target = parse_order_status(new_status)
        if target is None:
            order_transitions_total.labels(result="rejected").inc()
            return TransitionResult(
                success=False,
                message=f"Invalid target status: {new_status}",
                error_kind=ErrorKind.VALIDATION_FAILURE,
            )
        target_value = target.value

        try:
            current_status = await self.get_current_order_status(order_id)
        except Exception as e:
            order_transitions_total.labels(result="error").inc()
            logger.exception("Failed to load status for order_id=%s", order_id)
            return TransitionResult(
                success=False,
                message=f"Error: {e}",
                error_kind=ErrorKind.INFRASTRUCTURE,
            )

        if current_status is None:
            order_transitions_total.labels(result="not_found").inc()
            return TransitionResult(
                success=False,
                message=f"Order {order_id} not found",
                error_kind=ErrorKind.NOT_FOUND,
            )

        if current_status == target_value:
            order_transitions_total.labels(result="idempotent").inc()
            return TransitionResult(
                success=True,
                message=f"Order {order_id} already in status {target_value}",
                previous_status=current_status,
                new_status=current_status,
                idempotent=True,
            )

        if force:
            order_transitions_forced_total.inc()
            logger.warning(
                "Forced transition order_id=%s %s -> %s by %s (reason=%r)",
                order_id,
                current_status,
                target_value,
                changed_by or settings.default_actor,
                reason,
            )
        else:
            check = validate_transition(current_status, target_value)
            if not check.valid:
                order_transitions_total.labels(result="rejected").inc()
                order_transitions_rejected_total.labels(
                    current_status=current_status,
                    target_status=target_value,
                ).inc()
                logger.info("Rejected transition order_id=%s: %s", order_id, check.reason)
                return TransitionResult(
                    success=False,
                    message=check.reason,
                    previous_status=current_status,
                    error_kind=ErrorKind.INVALID_TRANSITION,
                )

        try:
            updated = await self.store.update_order_status(order_id, target_value, current_status)
        except Exception as e:
            order_transitions_total.labels(result="error").inc()
            logger.exception("Failed to update status for order_id=%s", order_id)
            return TransitionResult(
                success=False,
                message=f"Error: {e}",
                error_kind=ErrorKind.INFRASTRUCTURE,
            )

        if not updated:
            order_transitions_total.labels(result="conflict").inc()
            logger.warning(
                "Concurrent status change on order_id=%s: expected %s, transition to %s not applied",
                order_id,
                current_status,
                target_value,
            )
            return TransitionResult(
                success=False,
                message=f"Order {order_id} changed status concurrently (expected {current_status}); retry",
                previous_status=current_status,
                error_kind=ErrorKind.CONFLICT,
            )

        await self.log_status_change(order_id, current_status, target_value, changed_by, reason)
        order_transitions_total.labels(result="applied").inc()
        logger.info("Order %s transitioned %s -> %s", order_id, current_status, target_value)
        return TransitionResult(
            success=True,
            message=f"Order {order_id} transitioned from {current_status} to {target_value}",
            previous_status=current_status,
            new_status=target_value,
            idempotent=False,
        )

    async def batch_transition(self, requests: list[TransitionRequest]) -> list[TaggedTransitionResult]:
        """Apply each request in order; one failure does not stop or undo the others."""
        results = []
        for req in requests:
            result = await self.transition(
                req.order_id,
                req.new_status,
                changed_by=req.changed_by,
                reason=req.reason,
                force=req.force,
            )
            results.append(TaggedTransitionResult(order_id=req.order_id, **result.model_dump()))
        return results

    async def can_transition_to(self, order_id: int, target_status: str) -> CanTransitionResult:
        """Preview of transition() without side effects."""
        target = parse_order_status(target_status)
        if target is None:
            return CanTransitionResult(
                can_transition=False,
                reason=f"Invalid target status: {target_status}",
                error_kind=ErrorKind.VALIDATION_FAILURE,
            )
        target_status = target.value

        try:
            current_status = await self.get_current_order_status(order_id)
        except Exception as e:
            logger.exception("Failed to load status for order_id=%s", order_id)
            return CanTransitionResult(
                can_transition=False,
                reason=f"Error: {e}",
                error_kind=ErrorKind.INFRASTRUCTURE,
            )

        if current_status is None:
            return CanTransitionResult(
                can_transition=False,
                reason=f"Order {order_id} not found",
                error_kind=ErrorKind.NOT_FOUND,
            )

        if current_status == target_status:
            return CanTransitionResult(
                can_transition=True,
                reason=f"Already in status {target_status}",
                current_status=current_status,
                idempotent=True,
            )

        check = validate_transition(current_status, target_status)
        return CanTransitionResult(
            can_transition=check.valid,
            reason=check.reason or "Transition is valid",
            current_status=current_status,
            error_kind=None if check.valid else ErrorKind.INVALID_TRANSITION,
        )

    async def get_history(self, order_id: int) -> list[OrderStatusHistoryEntry]:
        """All history rows for the order, newest first."""
        return await self.store.list_status_history(order_id)
