"""
Ledger of bookings: creation and reads. Every later mutation goes through
jobs.py / selection.py / settlement.py under the booking lock.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import MAX_PRICE, MIN_PRICE, SLOT_DURATION_HOURS
from .directory import WorkerDirectory
from .errors import ConflictError, NotFoundError, ValidationError, WorkCallError
from .events import EventKind
from .fanout import Fanout, fanout as default_fanout
from .lifecycle import BookingStatus, BookingType, PaymentStatus
from .locks import booking_lock
from .models import Booking
from .schemas import CreateBookingRequest
from .slots import claim_slot

CENT = Decimal("0.01")
MAX_PAGE_SIZE = 100


def generate_booking_number() -> str:
    return f"BK-{datetime.now(timezone.utc):%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def price_for(hourly_rate: Decimal, hours) -> Decimal:
    price = Decimal(str(hourly_rate)) * Decimal(str(hours))
    price = max(Decimal(MIN_PRICE), min(Decimal(MAX_PRICE), price))
    return price.quantize(CENT, rounding=ROUND_HALF_UP)


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _validate(customer_id: str, req: CreateBookingRequest):
    missing = [
        name
        for name in ("booking_type", "service_description", "service_location", "payment_method")
        if _blank(getattr(req, name))
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    if req.booking_type == BookingType.CALL_WORKER:
        if req.worker_id:
            raise ValidationError("Call-worker requests are open; do not pass worker_id")
        if req.slot_id is not None:
            raise ValidationError("Slots can only be booked with a specific worker")
    else:
        if not req.worker_id:
            raise ValidationError("worker_id is required for instant and scheduled bookings")
        if req.worker_id == customer_id:
            raise ValidationError("Customers cannot book themselves")

    has_adhoc = req.scheduled_date is not None or req.scheduled_time is not None
    if req.slot_id is not None and has_adhoc:
        raise ValidationError("Pass either slot_id or scheduled_date/scheduled_time, not both")

    if req.booking_type == BookingType.INSTANT and (has_adhoc or req.slot_id is not None):
        raise ValidationError("Instant bookings cannot be scheduled")

    if req.booking_type == BookingType.SCHEDULED and req.slot_id is None:
        if req.scheduled_date is None or req.scheduled_time is None:
            raise ValidationError("Scheduled bookings require a slot or both date and time")

    if req.estimated_hours is not None and req.estimated_hours <= 0:
        raise ValidationError("estimated_hours must be positive")

    if (req.location_latitude is None) != (req.location_longitude is None):
        raise ValidationError("Pass both latitude and longitude, or neither")


async def create_booking(
    db: AsyncSession,
    customer_id: str,
    req: CreateBookingRequest,
    directory: WorkerDirectory,
    fanout: Fanout = default_fanout,
) -> Booking:
    _validate(customer_id, req)

    worker = None
    if req.booking_type != BookingType.CALL_WORKER:
        worker = await directory.get_worker(req.worker_id)
        if not worker.assignable:
            raise ValidationError("This worker is not verified yet")
        if req.booking_type == BookingType.INSTANT and worker.availability_status != "available":
            raise ConflictError("Worker is currently not available. Try a scheduled booking instead.")

    now = datetime.now(timezone.utc)
    booking = Booking(
        booking_number=generate_booking_number(),
        customer_id=customer_id,
        worker_id=req.worker_id if worker else None,
        service_category_id=req.service_category_id or (worker.service_category_id if worker else None),
        booking_type=req.booking_type,
        payment_method=req.payment_method,
        service_description=req.service_description.strip(),
        service_location=req.service_location.strip(),
        location_latitude=req.location_latitude,
        location_longitude=req.location_longitude,
        scheduled_date=req.scheduled_date,
        scheduled_time=req.scheduled_time,
        status=BookingStatus.PENDING if worker else BookingStatus.PENDING_ESTIMATION,
        payment_status=PaymentStatus.PENDING,
        event_seq=0,
        created_at=now,
        updated_at=now,
    )

    try:
        hours = req.estimated_hours or 1
        if req.slot_id is not None:
            slot = await claim_slot(db, req.slot_id, req.worker_id)
            booking.slot_id = slot.id
            booking.scheduled_date = slot.slot_date
            booking.scheduled_time = slot.start_time
            hours = SLOT_DURATION_HOURS

        if worker:
            booking.estimated_price = price_for(worker.hourly_rate, hours)

        db.add(booking)
        await db.flush()

        if worker:
            recipients = [booking.worker_id]
        elif booking.service_category_id:
            recipients = [f"category:{booking.service_category_id}"]
        else:
            recipients = ["workers"]
        fanout.record(db, booking, EventKind.STATUS_CHANGED, recipients, {"previous_status": None})

        await db.commit()
    except WorkCallError:
        await db.rollback()
        raise

    async with booking_lock(booking.id):
        await fanout.flush(db, booking.id)
    return booking


async def get_booking(db: AsyncSession, booking_id: int) -> Booking:
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


async def list_bookings(
    db: AsyncSession,
    customer_id: str | None = None,
    worker_id: str | None = None,
    status: BookingStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> list[Booking]:
    if customer_id is None and worker_id is None:
        raise ValidationError("customer_id or worker_id is required")

    stmt = select(Booking)
    if customer_id is not None:
        stmt = stmt.where(Booking.customer_id == customer_id)
    if worker_id is not None:
        stmt = stmt.where(Booking.worker_id == worker_id)
    if status is not None:
        stmt = stmt.where(Booking.status == status)

    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = (max(page, 1) - 1) * limit
    res = await db.execute(stmt.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit).offset(offset))
    return list(res.scalars().all())
