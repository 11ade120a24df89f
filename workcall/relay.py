import asyncio

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import RELAY_INTERVAL_SECONDS
from .db import SessionLocal
from .fanout import Fanout, fanout as default_fanout
from .locks import booking_lock
from .models import Notification

RELAY_BATCH = 50


async def relay_pending(db: AsyncSession, fanout: Fanout, limit: int = RELAY_BATCH) -> int:
    """
    Re-publishes outbox rows that were not pushed after their commit.
    Bookings are taken oldest-first; within a booking, Fanout.flush keeps seq order.
    """
    res = await db.execute(
        select(Notification.booking_id)
        .where(Notification.published_at.is_(None))
        .group_by(Notification.booking_id)
        .order_by(func.min(Notification.id))
        .limit(limit)
    )
    booking_ids = [row[0] for row in res.all()]

    published = 0
    for booking_id in booking_ids:
        async with booking_lock(booking_id):
            published += await fanout.flush(db, booking_id)
    return published


async def relay_loop(stop_event: asyncio.Event, fanout: Fanout = default_fanout):
    while not stop_event.is_set():
        try:
            async with SessionLocal() as db:
                published = await relay_pending(db, fanout)
            if published:
                print(f"[booking-service] relay re-published {published} event(s)")
        except Exception as e:
            print(f"[booking-service] relay tick failed: {e}")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=RELAY_INTERVAL_SECONDS)
        except asyncio.TimeoutError:
            continue
