"""
Per-booking mutual exclusion.

Inside one process, transitions on the same booking are serialized by an asyncio.Lock
keyed on the booking id. Across processes the booking row is read FOR UPDATE and the
mapper's version column rejects a stale write (see models.Booking).
"""
import asyncio
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from .errors import ConflictError, NotFoundError
from .models import Booking

_locks: dict[int, asyncio.Lock] = {}
_waiters: dict[int, int] = {}


@asynccontextmanager
async def booking_lock(booking_id: int):
    lock = _locks.get(booking_id)
    if lock is None:
        lock = _locks[booking_id] = asyncio.Lock()
    _waiters[booking_id] = _waiters.get(booking_id, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _waiters[booking_id] -= 1
        if _waiters[booking_id] == 0:
            del _waiters[booking_id]
            _locks.pop(booking_id, None)


async def load_booking_for_update(db: AsyncSession, booking_id: int) -> Booking:
    res = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    booking = res.scalar_one_or_none()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


@asynccontextmanager
async def locked_booking(db: AsyncSession, booking_id: int):
    """Holds the booking lock and yields the row read FOR UPDATE; rolls back on error."""
    async with booking_lock(booking_id):
        try:
            yield await load_booking_for_update(db, booking_id)
        except Exception:
            await db.rollback()
            raise


async def commit_or_conflict(db: AsyncSession):
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise ConflictError("Booking was modified concurrently; re-read and retry")
