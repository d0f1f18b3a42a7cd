"""
Order lifecycle state machine. Valid transitions enforce business rules.
"""
from enum import Enum
from types import MappingProxyType
from typing import Mapping, NamedTuple


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_COMPLETED = "payment_completed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# Current status -> allowed next statuses (tuple order is the order used in messages)
VALID_TRANSITIONS: Mapping[OrderStatus, tuple[OrderStatus, ...]] = MappingProxyType({
    OrderStatus.PENDING: (OrderStatus.PAYMENT_PENDING, OrderStatus.CANCELLED),
    OrderStatus.PAYMENT_PENDING: (OrderStatus.PAYMENT_COMPLETED, OrderStatus.CANCELLED),
    OrderStatus.PAYMENT_COMPLETED: (OrderStatus.PROCESSING, OrderStatus.REFUNDED),
    OrderStatus.PROCESSING: (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    OrderStatus.SHIPPED: (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
    OrderStatus.DELIVERED: (OrderStatus.REFUNDED,),
    OrderStatus.CANCELLED: (),  # terminal
    OrderStatus.REFUNDED: (),  # terminal
})

TERMINAL_STATUSES = frozenset(s for s, allowed in VALID_TRANSITIONS.items() if not allowed)


class TransitionCheck(NamedTuple):
    valid: bool
    reason: str = ""


def parse_order_status(value: str | None) -> OrderStatus | None:
    """Map a raw status string onto the vocabulary. None when it is not a known status."""
    try:
        return OrderStatus(value)
    except ValueError:
        return None


def allowed_transitions(current_status: str) -> tuple[OrderStatus, ...]:
    current = parse_order_status(current_status)
    if current is None:
        return ()
    return VALID_TRANSITIONS[current]


def is_valid_transition(current_status: str, new_status: str) -> bool:
    """True if new_status is allowed after current_status."""
    return new_status in allowed_transitions(current_status)


def validate_transition(current_status: str, new_status: str) -> TransitionCheck:
    """Pure check of one proposed transition; reason explains a rejection."""
    current = parse_order_status(current_status)
    if current is None:
        return TransitionCheck(False, f"Invalid current status: {current_status}")
    allowed = VALID_TRANSITIONS[current]
    if new_status not in allowed:
        listed = ", ".join(s.value for s in allowed) or "none"
        return TransitionCheck(
            False,
            f"Cannot transition from {current.value} to {_display(new_status)}. Allowed: {listed}",
        )
    return TransitionCheck(True)


def _display(status: str) -> str:
    return status.value if isinstance(status, Enum) else str(status)
