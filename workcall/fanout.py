"""
Notification fan-out.

Events are written to the notifications table (the outbox) inside the same transaction
as the state change that caused them, numbered by booking.event_seq. After commit they
are pushed in seq order to RabbitMQ and to locally connected websockets. A publish
failure stops the flush for that booking so later events never overtake earlier ones;
relay.py retries whatever is left unpublished.
"""
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .events import EventKind, build_event, routing_key, to_json
from .hub import ConnectionHub, hub
from .models import Booking, Notification
from .rabbitmq import RabbitPublisher, publisher


def booking_snapshot(booking: Booking) -> dict:
    return {
        "booking_id": booking.id,
        "booking_number": booking.booking_number,
        "status": booking.status.value if booking.status else None,
        "payment_status": booking.payment_status.value if booking.payment_status else None,
        "customer_id": booking.customer_id,
        "worker_id": booking.worker_id,
        "estimated_price": str(booking.estimated_price) if booking.estimated_price is not None else None,
        "final_price": str(booking.final_price) if booking.final_price is not None else None,
    }


def notification_event(n: Notification) -> dict:
    data = dict(n.payload or {})
    data.update({"booking_id": n.booking_id, "seq": n.seq, "recipients": n.recipients})
    return build_event(n.kind, data, event_id=f"{n.booking_id}:{n.seq}")


class Fanout:
    def __init__(self, publisher: RabbitPublisher, hub: ConnectionHub):
        self.publisher = publisher
        self.hub = hub

    def record(
        self,
        db: AsyncSession,
        booking: Booking,
        kind: EventKind,
        recipients: list[str],
        data: dict | None = None,
    ) -> Notification:
        """Adds an outbox row; the caller commits it together with the state change."""
        booking.event_seq = (booking.event_seq or 0) + 1
        payload = booking_snapshot(booking)
        if data:
            payload.update(data)

        notification = Notification(
            booking_id=booking.id,
            seq=booking.event_seq,
            kind=kind.value,
            recipients=list(dict.fromkeys(r for r in recipients if r)),
            payload=payload,
        )
        db.add(notification)
        return notification

    async def deliver(self, n: Notification) -> bool:
        event = notification_event(n)
        body = to_json(event)
        ok = await self.publisher.publish(routing_key(n.kind), body, message_id=event["event_id"])
        if not ok:
            return False
        await self.hub.push(n.recipients, body)
        return True

    async def flush(self, db: AsyncSession, booking_id: int) -> int:
        res = await db.execute(
            select(Notification)
            .where(Notification.booking_id == booking_id, Notification.published_at.is_(None))
            .order_by(Notification.seq)
        )
        published = 0
        for n in res.scalars().all():
            if not await self.deliver(n):
                break
            n.published_at = datetime.now(timezone.utc)
            published += 1

        if published:
            await db.commit()
        return published


fanout = Fanout(publisher, hub)


async def list_notifications(
    db: AsyncSession,
    audiences: set[str],
    after: int = 0,
    limit: int = 50,
    scan_batch: int = 200,
) -> list[Notification]:
    """
    Polling fallback for clients without a live socket: notifications with id > after
    whose recipients include any of `audiences`, oldest first.
    """
    found: list[Notification] = []
    cursor = after
    while len(found) < limit:
        res = await db.execute(
            select(Notification).where(Notification.id > cursor).order_by(Notification.id).limit(scan_batch)
        )
        rows = list(res.scalars().all())
        if not rows:
            break
        for n in rows:
            if audiences.intersection(n.recipients or []):
                found.append(n)
                if len(found) == limit:
                    break
        cursor = rows[-1].id
    return found
