# Overview: Status enums and the single transition table per entity.

"""
Engine state machines (authoritative)

- Sale:   PARKED -> COMPLETED (conversion through create_sale)
          COMPLETED -> VOIDED | REFUNDED
          VOIDED, REFUNDED are terminal.
- Shift:  OPEN -> CLOSED -> RECONCILED (terminal).
- Order:  pending -> confirmed | cancelled
          confirmed -> processing -> ready -> completed
          completed, cancelled are terminal.

Every mutating operation asks require_transition() before touching a status
column; nothing else compares status strings to decide legality.
"""

from __future__ import annotations

import enum

from .errors import ConflictError, ValidationError


class SaleStatus(str, enum.Enum):
    PARKED = "PARKED"
    COMPLETED = "COMPLETED"
    VOIDED = "VOIDED"
    REFUNDED = "REFUNDED"


class ShiftStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    RECONCILED = "RECONCILED"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MovementType(str, enum.Enum):
    SALE = "SALE"
    ADJUSTMENT = "ADJUSTMENT"
    RECEIVE = "RECEIVE"
    ONLINE_SALE = "ONLINE_SALE"
    VOID_RESTORE = "VOID-RESTORE"
    TRANSFER = "TRANSFER"


class PaymentMethodType(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    WALLET = "WALLET"
    OTHER = "OTHER"


SALE_TRANSITIONS: dict[SaleStatus, frozenset[SaleStatus]] = {
    SaleStatus.PARKED: frozenset({SaleStatus.COMPLETED}),
    SaleStatus.COMPLETED: frozenset({SaleStatus.VOIDED, SaleStatus.REFUNDED}),
    SaleStatus.VOIDED: frozenset(),
    SaleStatus.REFUNDED: frozenset(),
}

SHIFT_TRANSITIONS: dict[ShiftStatus, frozenset[ShiftStatus]] = {
    ShiftStatus.OPEN: frozenset({ShiftStatus.CLOSED}),
    ShiftStatus.CLOSED: frozenset({ShiftStatus.RECONCILED}),
    ShiftStatus.RECONCILED: frozenset(),
}

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.READY}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

_TABLES = {
    SaleStatus: SALE_TRANSITIONS,
    ShiftStatus: SHIFT_TRANSITIONS,
    OrderStatus: ORDER_TRANSITIONS,
}

# Orders that process_order may still fulfil.
ORDER_PROCESSABLE = frozenset({
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.READY,
})


def coerce_status(enum_cls, value):
    """Parse a raw status value into enum_cls; unknown values are a ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = [member.value for member in enum_cls]
        raise ValidationError(
            f"Invalid status: {value!r}",
            details={"allowed": allowed},
        ) from None


def can_transition(current, target) -> bool:
    table = _TABLES[type(target)]
    return target in table[coerce_status(type(target), current)]


def require_transition(current, target, *, entity: str) -> None:
    """Raise ConflictError unless current -> target is a legal move for the entity."""
    enum_cls = type(target)
    current = coerce_status(enum_cls, current)
    if not can_transition(current, target):
        raise ConflictError(
            f"Cannot move {entity} from {current.value} to {target.value}",
            details={"entity": entity, "from": current.value, "to": target.value},
        )
