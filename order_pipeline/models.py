"""
Records read from the store and the structured results returned to callers.
Expected failures (not found, invalid transition, failed check, store error) travel
inside these results instead of as exceptions.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int | None = None
    total_amount: Any = None  # NUMERIC from the store; parsed by the validator
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Payment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    order_id: int
    payment_method: str | None = None
    amount: Any = None
    status: str
    transaction_id: str | None = None
    payment_data: Any = Field(default_factory=dict)  # JSONB: object, array or scalar
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OrderItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    order_id: int
    product_id: int
    quantity: int
    price: Decimal
    created_at: datetime | None = None


class OrderStatusHistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None = None
    order_id: int
    previous_status: str | None
    new_status: str
    changed_by: str | None = None
    reason: str | None = None
    created_at: datetime | None = None


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    VALIDATION_FAILURE = "validation_failure"
    CONFLICT = "conflict"
    INFRASTRUCTURE = "infrastructure"


class TransitionResult(BaseModel):
    success: bool
    message: str
    previous_status: str | None = None
    new_status: str | None = None
    idempotent: bool = False
    error_kind: ErrorKind | None = None


class TaggedTransitionResult(TransitionResult):
    order_id: int


class CanTransitionResult(BaseModel):
    can_transition: bool
    reason: str
    current_status: str | None = None
    idempotent: bool = False
    error_kind: ErrorKind | None = None


class ValidationResult(BaseModel):
    """Outcome of one check. valid is False iff errors is non-empty; warnings never count."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def build(cls, errors: list[str], warnings: list[str], data: dict | None = None) -> "ValidationResult":
        return cls(valid=not errors, errors=errors, warnings=warnings, data=data or {})


class TaggedValidationResult(ValidationResult):
    payment_id: int
