from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .directory import WorkerDirectory
from .errors import InvalidStateError, ValidationError
from .events import EventKind
from .fanout import Fanout, fanout as default_fanout
from .lifecycle import Action, BookingStatus, EstimateStatus, apply_transition
from .locks import commit_or_conflict, locked_booking
from .models import Booking, Estimate


async def select_worker(
    db: AsyncSession,
    booking_id: int,
    customer_id: str,
    worker_id: str,
    directory: WorkerDirectory | None = None,
    fanout: Fanout = default_fanout,
) -> Booking:
    """
    Commits one bidder to an open booking. Irreversible: the chosen estimate becomes
    `selected`, every other live estimate is voided, and the booking moves to pending.
    A second selection on the same booking fails with InvalidStateError.
    """
    async with locked_booking(db, booking_id) as booking:
        if booking.status != BookingStatus.PENDING_ESTIMATION:
            raise InvalidStateError(f"Booking already has a worker (status {booking.status.value})")

        res = await db.execute(
            select(Estimate)
            .where(Estimate.booking_id == booking_id, Estimate.status == EstimateStatus.LIVE)
            .with_for_update()
        )
        pool = list(res.scalars().all())
        chosen = next((e for e in pool if e.worker_id == worker_id), None)
        if chosen is None:
            raise InvalidStateError("Worker has no live estimate on this booking")

        if directory is not None:
            worker = await directory.get_worker(worker_id)
            if not worker.assignable:
                raise ValidationError("This worker is not verified yet")

        apply_transition(booking, Action.SELECT, customer_id)
        booking.worker_id = worker_id
        booking.estimated_price = chosen.price

        losers = []
        for estimate in pool:
            if estimate is chosen:
                estimate.status = EstimateStatus.SELECTED
            else:
                estimate.status = EstimateStatus.VOID
                losers.append(estimate.worker_id)

        fanout.record(
            db,
            booking,
            EventKind.WORKER_SELECTED,
            [booking.customer_id, worker_id, *losers],
            {"selected_worker_id": worker_id, "price": str(chosen.price), "previous_status": BookingStatus.PENDING_ESTIMATION.value},
        )
        await commit_or_conflict(db)
        await fanout.flush(db, booking_id)

    return booking
