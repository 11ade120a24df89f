"""
Booking state machine.

pending_estimation (call_worker) -> pending (direct) -> accepted -> in_progress -> completed
pending -> rejected, pending/accepted -> cancelled.

TRANSITIONS is the only place allowed transitions live; every status change on a
booking goes through apply_transition().
"""
from datetime import datetime, timezone
from enum import Enum

from .errors import InvalidTransitionError, ValidationError


class BookingType(str, Enum):
    INSTANT = "instant"
    SCHEDULED = "scheduled"
    CALL_WORKER = "call_worker"


class PaymentMethod(str, Enum):
    CASH = "cash"
    ONLINE = "online"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class BookingStatus(str, Enum):
    PENDING_ESTIMATION = "pending_estimation"
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class EstimateStatus(str, Enum):
    LIVE = "live"
    SELECTED = "selected"
    VOID = "void"


class SlotStatus(str, Enum):
    ACTIVE = "active"
    BUSY = "busy"
    BOOKED = "booked"


class TransactionStatus(str, Enum):
    INITIATED = "initiated"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class Gateway(str, Enum):
    CASH = "cash"
    BKASH = "bkash"
    SSLCOMMERZ = "sslcommerz"


class Action(str, Enum):
    SELECT = "select"
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    START = "start"
    COMPLETE = "complete"
    MARK_CASH_PAID = "mark_cash_paid"


class Actor(str, Enum):
    CUSTOMER = "customer"
    WORKER = "worker"


# (from, action) -> (actor, to)
TRANSITIONS = {
    (BookingStatus.PENDING_ESTIMATION, Action.SELECT): (Actor.CUSTOMER, BookingStatus.PENDING),
    (BookingStatus.PENDING, Action.ACCEPT): (Actor.WORKER, BookingStatus.ACCEPTED),
    (BookingStatus.PENDING, Action.REJECT): (Actor.WORKER, BookingStatus.REJECTED),
    (BookingStatus.PENDING, Action.CANCEL): (Actor.CUSTOMER, BookingStatus.CANCELLED),
    (BookingStatus.ACCEPTED, Action.CANCEL): (Actor.CUSTOMER, BookingStatus.CANCELLED),
    (BookingStatus.ACCEPTED, Action.START): (Actor.WORKER, BookingStatus.IN_PROGRESS),
    (BookingStatus.IN_PROGRESS, Action.COMPLETE): (Actor.WORKER, BookingStatus.COMPLETED),
    (BookingStatus.COMPLETED, Action.MARK_CASH_PAID): (Actor.WORKER, BookingStatus.COMPLETED),
}

REASON_REQUIRED = {Action.REJECT, Action.CANCEL}


def _actor_matches(booking, actor: Actor, actor_id: str) -> bool:
    if actor == Actor.CUSTOMER:
        return booking.customer_id == actor_id
    return booking.worker_id is not None and booking.worker_id == actor_id


def resolve_transition(booking, action: Action, actor_id: str) -> BookingStatus:
    """
    Returns the target status for `action` or raises InvalidTransitionError.
    Does not mutate the booking.
    """
    current = BookingStatus(booking.status)
    entry = TRANSITIONS.get((current, action))
    if entry is None:
        raise InvalidTransitionError(f"Cannot {action.value} a booking in status {current.value}")

    actor, target = entry
    if not _actor_matches(booking, actor, actor_id):
        raise InvalidTransitionError(f"Only the booking's {actor.value} can {action.value} it")
    return target


def apply_transition(booking, action: Action, actor_id: str, reason: str | None = None) -> BookingStatus:
    """
    Validates and applies `action` to `booking` in place. Returns the previous status.
    Callers must hold the booking lock.
    """
    target = resolve_transition(booking, action, actor_id)
    if action in REASON_REQUIRED and not (reason or "").strip():
        raise ValidationError(f"A reason is required to {action.value} a booking")

    previous = BookingStatus(booking.status)
    now = datetime.now(timezone.utc)

    if action == Action.REJECT:
        booking.rejection_reason = reason.strip()
    elif action == Action.CANCEL:
        booking.cancellation_reason = reason.strip()
    elif action == Action.COMPLETE:
        # the agreed estimate is the price; workers do not re-price at completion
        booking.final_price = booking.estimated_price
        booking.completed_at = now

    booking.status = target
    booking.updated_at = now
    return previous
