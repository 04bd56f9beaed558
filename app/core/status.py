"""
Fulfillment status enums and the transition tables that guard them.

Order, Payment and Enrollment statuses are only written through transition();
anything not listed in the tables below raises InvalidTransitionError.
"""
from datetime import datetime
from enum import Enum

from .errors import InvalidTransitionError


class OrderStatus(str, Enum):
    NEW = "new"
    PENDING_PAYMENT = "pending_payment"
    PAID = "paid"
    UNDER_PROCESS = "under_process"
    PROCESSED = "processed"
    EXPIRED = "expired"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class EnrollmentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    NOTIFIED = "notified"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


_ORDER = {
    OrderStatus.NEW: {
        OrderStatus.PENDING_PAYMENT,
        OrderStatus.PAID,
        OrderStatus.CANCELLED,
        OrderStatus.EXPIRED,
    },
    OrderStatus.PENDING_PAYMENT: {
        OrderStatus.PAID,
        OrderStatus.FAILED,
        OrderStatus.CANCELLED,
        OrderStatus.EXPIRED,
    },
    OrderStatus.FAILED: {OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED},
    OrderStatus.PAID: {
        OrderStatus.UNDER_PROCESS,
        OrderStatus.PROCESSED,
        OrderStatus.REFUNDED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.UNDER_PROCESS: {OrderStatus.PROCESSED, OrderStatus.REFUNDED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSED: {OrderStatus.REFUNDED},
    OrderStatus.EXPIRED: set(),
    OrderStatus.REFUNDED: set(),
    OrderStatus.CANCELLED: set(),
}

_PAYMENT = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.REFUNDED: set(),
}

_ENROLLMENT = {
    EnrollmentStatus.PENDING: {EnrollmentStatus.PAID, EnrollmentStatus.CANCELLED},
    EnrollmentStatus.PAID: {
        EnrollmentStatus.NOTIFIED,
        EnrollmentStatus.COMPLETED,
        EnrollmentStatus.CANCELLED,
    },
    # notified -> paid: live session detached again
    EnrollmentStatus.NOTIFIED: {
        EnrollmentStatus.PAID,
        EnrollmentStatus.COMPLETED,
        EnrollmentStatus.CANCELLED,
    },
    EnrollmentStatus.COMPLETED: set(),
    # cancelled -> paid: the course was bought again
    EnrollmentStatus.CANCELLED: {EnrollmentStatus.PAID},
}

_TABLES = {
    OrderStatus: ("order", _ORDER),
    PaymentStatus: ("payment", _PAYMENT),
    EnrollmentStatus: ("enrollment", _ENROLLMENT),
}

# Enrollment statuses that grant course access and hold a session seat
ACTIVE_ENROLLMENT_STATUSES = (
    EnrollmentStatus.PAID,
    EnrollmentStatus.NOTIFIED,
    EnrollmentStatus.COMPLETED,
)
FINISHED_ENROLLMENT_STATUSES = (EnrollmentStatus.COMPLETED, EnrollmentStatus.CANCELLED)


def can_transition(current: Enum, new: Enum) -> bool:
    kind_table = _TABLES.get(type(current))
    if kind_table is None or type(new) is not type(current):
        return False
    _, table = kind_table
    return new in table.get(current, set())


def is_terminal(status: Enum) -> bool:
    _, table = _TABLES[type(status)]
    return not table.get(status)


def transition(entity, new_status: Enum) -> None:
    """Move entity.status to new_status or raise InvalidTransitionError. Stamps updated_at."""
    current = entity.status
    kind, _ = _TABLES[type(new_status)]
    if not isinstance(current, type(new_status)):
        current = type(new_status)(current)
    if not can_transition(current, new_status):
        raise InvalidTransitionError(kind, current.value, new_status.value)
    entity.status = new_status.value
    if hasattr(entity, "updated_at"):
        entity.updated_at = datetime.utcnow()
