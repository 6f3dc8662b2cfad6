"""State machine for the appointment lifecycle."""

from enum import Enum

from telemed_settlement.errors import InvalidTransition


class AppointmentStatus(Enum):
    """Clinical status of an appointment."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    CANCELED = "canceled"


class BookingStatus(Enum):
    """Whether payment for the booking went through."""
    PENDING = "pending"
    BOOKED = "booked"
    NOT_BOOKED = "not_booked"


class PaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatus(Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    PROCESSED = "Processed"
    FAILED = "Failed"


class PrescriptionStatus(Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"


# Legal clinical transitions. Payment and refund state evolve separately
# and are cross-checked by the settlement service.
TRANSITIONS = {
    AppointmentStatus.PENDING: {
        AppointmentStatus.ACCEPTED,
        AppointmentStatus.REJECTED,
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.CANCELED,
    },
    AppointmentStatus.ACCEPTED: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.CANCELED,
    },
    AppointmentStatus.RESCHEDULED: {
        AppointmentStatus.ACCEPTED,
        AppointmentStatus.REJECTED,
        AppointmentStatus.CANCELED,
    },
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.REJECTED: set(),
    AppointmentStatus.CANCELED: set(),
}

TERMINAL_STATES = {status for status, targets in TRANSITIONS.items() if not targets}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Check whether the table allows moving from current to target."""
    return target in TRANSITIONS[current]


def sources_for(target: AppointmentStatus) -> list[AppointmentStatus]:
    """All statuses from which target is reachable in one step."""
    return [status for status, targets in TRANSITIONS.items() if target in targets]


def check_transition(current: AppointmentStatus | str, target: AppointmentStatus) -> AppointmentStatus:
    """Validate a transition, returning the target or raising InvalidTransition."""
    if isinstance(current, str):
        current = AppointmentStatus(current)
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move appointment from '{current.value}' to '{target.value}'",
            current=current.value,
            target=target.value,
        )
    return target
