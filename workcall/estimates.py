from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .directory import WorkerDirectory
from .errors import InvalidStateError, ValidationError
from .events import EventKind
from .fanout import Fanout, fanout as default_fanout
from .ledger import CENT, get_booking
from .lifecycle import BookingStatus, BookingType, EstimateStatus
from .locks import commit_or_conflict, locked_booking
from .models import Estimate


async def submit_estimate(
    db: AsyncSession,
    booking_id: int,
    worker_id: str,
    price: Decimal,
    note: str | None,
    directory: WorkerDirectory,
    fanout: Fanout = default_fanout,
) -> Estimate:
    """
    Adds or revises the worker's estimate on an open call-worker booking.
    Rejected once the booking has left pending_estimation (selection voids the pool).
    """
    price = Decimal(str(price))
    if price <= 0:
        raise ValidationError("Estimate price must be greater than 0")
    price = price.quantize(CENT)

    worker = await directory.get_worker(worker_id)
    if not worker.assignable:
        raise ValidationError("This worker is not verified yet")

    async with locked_booking(db, booking_id) as booking:
        if booking.booking_type != BookingType.CALL_WORKER:
            raise InvalidStateError("Estimates are only collected for call-worker requests")
        if booking.status != BookingStatus.PENDING_ESTIMATION:
            raise InvalidStateError(f"Booking is no longer accepting estimates (status {booking.status.value})")
        if booking.customer_id == worker_id:
            raise ValidationError("Customers cannot bid on their own request")

        now = datetime.now(timezone.utc)
        estimate = await db.get(Estimate, (booking_id, worker_id))
        revised = estimate is not None
        if estimate is None:
            estimate = Estimate(booking_id=booking_id, worker_id=worker_id, status=EstimateStatus.LIVE)
            db.add(estimate)
        estimate.price = price
        estimate.note = (note or "").strip() or None
        estimate.submitted_at = now

        fanout.record(
            db,
            booking,
            EventKind.ESTIMATE_SUBMITTED,
            [booking.customer_id],
            {"estimate": {"worker_id": worker_id, "price": str(price), "note": estimate.note, "revised": revised}},
        )
        await commit_or_conflict(db)
        await fanout.flush(db, booking_id)

    return estimate


async def list_estimates(db: AsyncSession, booking_id: int) -> list[Estimate]:
    await get_booking(db, booking_id)
    res = await db.execute(
        select(Estimate)
        .where(Estimate.booking_id == booking_id, Estimate.status == EstimateStatus.LIVE)
        .order_by(Estimate.submitted_at, Estimate.worker_id)
    )
    return list(res.scalars().all())
