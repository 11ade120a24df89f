from sqlalchemy.ext.asyncio import AsyncSession

from .events import EventKind
from .fanout import Fanout, fanout as default_fanout
from .lifecycle import Action, BookingStatus, apply_transition
from .locks import commit_or_conflict, locked_booking
from .models import Booking


async def transition(
    db: AsyncSession,
    booking_id: int,
    action: Action,
    actor_id: str,
    reason: str | None = None,
    fanout: Fanout = default_fanout,
) -> Booking:
    async with locked_booking(db, booking_id) as booking:
        previous = apply_transition(booking, action, actor_id, reason)

        # tell the other side of the booking
        if actor_id == booking.customer_id:
            recipients = [booking.worker_id]
        else:
            recipients = [booking.customer_id]

        data = {"previous_status": previous.value, "action": action.value}
        if reason:
            data["reason"] = reason.strip()

        kind = EventKind.COMPLETED if booking.status == BookingStatus.COMPLETED else EventKind.STATUS_CHANGED
        fanout.record(db, booking, kind, recipients, data)

        await commit_or_conflict(db)
        await fanout.flush(db, booking_id)

    return booking


async def accept_booking(db: AsyncSession, booking_id: int, worker_id: str, fanout: Fanout = default_fanout) -> Booking:
    return await transition(db, booking_id, Action.ACCEPT, worker_id, fanout=fanout)


async def reject_booking(
    db: AsyncSession, booking_id: int, worker_id: str, reason: str | None, fanout: Fanout = default_fanout
) -> Booking:
    return await transition(db, booking_id, Action.REJECT, worker_id, reason=reason, fanout=fanout)


async def cancel_booking(
    db: AsyncSession, booking_id: int, customer_id: str, reason: str | None, fanout: Fanout = default_fanout
) -> Booking:
    return await transition(db, booking_id, Action.CANCEL, customer_id, reason=reason, fanout=fanout)


async def start_job(db: AsyncSession, booking_id: int, worker_id: str, fanout: Fanout = default_fanout) -> Booking:
    return await transition(db, booking_id, Action.START, worker_id, fanout=fanout)


async def complete_job(db: AsyncSession, booking_id: int, worker_id: str, fanout: Fanout = default_fanout) -> Booking:
    return await transition(db, booking_id, Action.COMPLETE, worker_id, fanout=fanout)
