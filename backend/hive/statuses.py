"""
Status vocabularies for transactions and orders.

Every status dimension is a closed enum with an explicit allow-list of
transitions. Columns store the enum value as a plain string; services call
``can_transition`` / ``require_transition`` before writing.

Re-applying the current status is always allowed and is treated as a no-op
by callers.
"""

from __future__ import annotations

from enum import Enum


class StatusTransitionError(ValueError):
    """Raised when a status change is not in the allow-list."""


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    ABANDONED = "abandoned"


class CheckoutMode(str, Enum):
    # Order is built from Transaction metadata once payment succeeds
    DEFERRED_INTENT = "deferred_intent"
    # Order existed before payment; confirmation only syncs its statuses
    PRE_CREATED = "pre_created"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DeliveryMethod(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


TRANSACTION_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.SUCCESS,
        TransactionStatus.FAILED,
        TransactionStatus.ABANDONED,
    }),
    # A late success from the gateway is authoritative (money has moved)
    TransactionStatus.FAILED: frozenset({TransactionStatus.SUCCESS}),
    TransactionStatus.ABANDONED: frozenset({TransactionStatus.SUCCESS, TransactionStatus.FAILED}),
    TransactionStatus.SUCCESS: frozenset(),
}

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

DELIVERY_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.PROCESSING, DeliveryStatus.CANCELLED}),
    DeliveryStatus.PROCESSING: frozenset({DeliveryStatus.SHIPPED, DeliveryStatus.CANCELLED}),
    DeliveryStatus.SHIPPED: frozenset({DeliveryStatus.DELIVERED}),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.CANCELLED: frozenset(),
}

_TABLES = {
    TransactionStatus: TRANSACTION_TRANSITIONS,
    OrderStatus: ORDER_TRANSITIONS,
    PaymentStatus: PAYMENT_TRANSITIONS,
    DeliveryStatus: DELIVERY_TRANSITIONS,
}


def parse_status(enum_cls, value):
    """Coerce a raw string (any case) into ``enum_cls``; raises StatusTransitionError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise StatusTransitionError(f"Invalid {enum_cls.__name__} '{value}'. Must be one of: {allowed}")


def can_transition(current, target) -> bool:
    if current == target:
        return True
    table = _TABLES[type(target)]
    return target in table[type(target)(current)]


def require_transition(current, target) -> None:
    if not can_transition(current, target):
        raise StatusTransitionError(
            f"Cannot move {type(target).__name__} from '{type(target)(current).value}' to '{target.value}'"
        )


def sources_for(target) -> list[str]:
    """All stored status values from which ``target`` may be reached (excluding itself)."""
    table = _TABLES[type(target)]
    return [source.value for source, targets in table.items() if target in targets]
