from datetime import date, datetime, timedelta

from dateutil import parser
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .config import SLOT_DURATION_HOURS
from .errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from .lifecycle import SlotStatus
from .models import Slot

SLOT_DURATION = timedelta(hours=SLOT_DURATION_HOURS)


def _parse_start(value: str) -> datetime:
    try:
        start = parser.isoparse(value)
    except (ValueError, OverflowError):
        raise ValidationError(f"Invalid slot start: {value}")

    if start.minute or start.second or start.microsecond:
        raise ValidationError(f"Slot start must be on the hour: {value}")
    if (start + SLOT_DURATION).date() != start.date():
        raise ValidationError(f"Slot must end on the same day: {value}")
    return start.replace(tzinfo=None)


async def create_slots(db: AsyncSession, worker_id: str, starts: list[str]) -> list[Slot]:
    parsed = sorted({_parse_start(s) for s in starts})

    created = []
    for start in parsed:
        res = await db.execute(
            select(Slot).where(
                Slot.worker_id == worker_id,
                Slot.slot_date == start.date(),
                Slot.start_time == start.time(),
            )
        )
        if res.scalar_one_or_none():
            await db.rollback()
            raise ConflictError(f"Slot already published: {start.isoformat()}")

        slot = Slot(
            worker_id=worker_id,
            slot_date=start.date(),
            start_time=start.time(),
            end_time=(start + SLOT_DURATION).time(),
            status=SlotStatus.ACTIVE,
        )
        db.add(slot)
        created.append(slot)

    await db.commit()
    return created


async def list_slots(
    db: AsyncSession,
    worker_id: str,
    status: SlotStatus | None = None,
    from_date: date | None = None,
) -> list[Slot]:
    stmt = select(Slot).where(Slot.worker_id == worker_id)
    if status is not None:
        stmt = stmt.where(Slot.status == status)
    if from_date is not None:
        stmt = stmt.where(Slot.slot_date >= from_date)
    res = await db.execute(stmt.order_by(Slot.slot_date, Slot.start_time))
    return list(res.scalars().all())


async def list_active_slots(db: AsyncSession, worker_id: str) -> list[Slot]:
    return await list_slots(db, worker_id, status=SlotStatus.ACTIVE)


async def get_slot(db: AsyncSession, slot_id: int) -> Slot:
    slot = await db.get(Slot, slot_id)
    if not slot:
        raise NotFoundError("Slot not found")
    return slot


async def update_slot_status(db: AsyncSession, slot_id: int, worker_id: str, status: SlotStatus) -> Slot:
    """Worker toggles a slot between active and busy. booked is only reachable through a booking."""
    if status == SlotStatus.BOOKED:
        raise ValidationError("Slots are booked by creating a booking")

    slot = await get_slot(db, slot_id)
    if slot.worker_id != worker_id:
        raise NotFoundError("Slot not found")
    if slot.status == SlotStatus.BOOKED:
        raise InvalidStateError("Slot is already booked")

    slot.status = status
    await db.commit()
    return slot


async def claim_slot(db: AsyncSession, slot_id: int, worker_id: str) -> Slot:
    """
    Marks an active slot booked inside the caller's transaction (no commit).
    The conditional UPDATE makes the active -> booked step atomic across sessions.
    """
    slot = await get_slot(db, slot_id)
    if slot.worker_id != worker_id:
        raise ConflictError("Slot does not belong to this worker")
    if slot.status != SlotStatus.ACTIVE:
        raise ConflictError(f"Slot is not available (status {slot.status.value})")

    res = await db.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.status == SlotStatus.ACTIVE)
        .values(status=SlotStatus.BOOKED)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ConflictError("Slot was booked by another request")

    await db.refresh(slot)
    return slot
