"""
Scheduled payment state machine

PENDING → PROCESSING → COMPLETED / PENDING (retry) / FAILED
Any non-completed, non-processing installment may be SKIPPED.
FAILED and SKIPPED installments may be reset to PENDING by an operator retry.
"""

from enum import Enum

from .exceptions import InvalidStatusTransition


class ScheduledPaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class PaymentPlanStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


TERMINAL_STATUSES = frozenset(
    {
        ScheduledPaymentStatus.COMPLETED,
        ScheduledPaymentStatus.FAILED,
        ScheduledPaymentStatus.SKIPPED,
    }
)

# Installments that still keep a payment plan open
OPEN_STATUSES = frozenset({ScheduledPaymentStatus.PENDING, ScheduledPaymentStatus.PROCESSING})

VALID_TRANSITIONS = {
    ScheduledPaymentStatus.PENDING: {
        ScheduledPaymentStatus.PROCESSING,
        ScheduledPaymentStatus.SKIPPED,
    },
    ScheduledPaymentStatus.PROCESSING: {
        ScheduledPaymentStatus.COMPLETED,
        ScheduledPaymentStatus.PENDING,
        ScheduledPaymentStatus.FAILED,
    },
    ScheduledPaymentStatus.FAILED: {
        ScheduledPaymentStatus.PENDING,
        ScheduledPaymentStatus.SKIPPED,
    },
    ScheduledPaymentStatus.SKIPPED: {ScheduledPaymentStatus.PENDING},
    ScheduledPaymentStatus.COMPLETED: set(),
}


def validate_status_transition(current_status, new_status) -> bool:
    """
    Check whether a scheduled payment may move from current_status to new_status

    Args:
        current_status: Current status (enum member or its string value)
        new_status: Desired status (enum member or its string value)

    Returns:
        bool: True if the edge is part of the state machine
    """
    try:
        current = ScheduledPaymentStatus(current_status)
        new = ScheduledPaymentStatus(new_status)
    except ValueError:
        return False
    return new in VALID_TRANSITIONS[current]


def transition(scheduled_payment, new_status) -> None:
    """Move a scheduled payment to new_status, rejecting edges outside the state machine"""
    new = ScheduledPaymentStatus(new_status)
    if not validate_status_transition(scheduled_payment.status, new):
        current = scheduled_payment.status
        raise InvalidStatusTransition(getattr(current, "value", current), new.value)
    scheduled_payment.status = new.value
