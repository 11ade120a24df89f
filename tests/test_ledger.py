from datetime import date, time
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from workcall import ledger, slots
from workcall.errors import ConflictError, NotFoundError, ValidationError
from workcall.lifecycle import BookingStatus, BookingType, PaymentStatus, SlotStatus
from workcall.models import Booking

from .factories import CUSTOMER, booking_request, call_worker_request


async def test_instant_booking_is_priced_from_the_hourly_rate(db, directory, fanout, publisher):
    booking = await ledger.create_booking(db, CUSTOMER, booking_request(), directory, fanout=fanout)

    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.PENDING
    assert booking.estimated_price == Decimal("1000.00")
    assert booking.final_price is None
    assert booking.booking_number.startswith("BK-")

    events = publisher.events_for(booking.id)
    assert [e["event_type"] for e in events] == ["status-changed"]
    assert events[0]["data"]["recipients"] == ["w1"]


def test_price_is_clamped():
    assert ledger.price_for(Decimal("50"), 1) == Decimal("150.00")
    assert ledger.price_for(Decimal("6000"), 2) == Decimal("10000.00")
    assert ledger.price_for(Decimal("333.333"), 1) == Decimal("333.33")


async def test_call_worker_booking_waits_for_estimates(db, directory, fanout, publisher):
    booking = await ledger.create_booking(db, CUSTOMER, call_worker_request(), directory, fanout=fanout)

    assert booking.status == BookingStatus.PENDING_ESTIMATION
    assert booking.worker_id is None
    assert booking.estimated_price is None
    assert publisher.events_for(booking.id)[0]["data"]["recipients"] == ["category:plumbing"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"service_description": "   "},
        {"service_location": None},
        {"payment_method": None},
        {"booking_type": None},
        {"worker_id": None},
        {"worker_id": CUSTOMER},
        {"estimated_hours": 0},
        {"location_latitude": 23.7},
        {"scheduled_date": date(2026, 11, 2)},
        {"booking_type": BookingType.SCHEDULED, "scheduled_date": date(2026, 11, 2)},
        {"booking_type": BookingType.SCHEDULED, "slot_id": 1, "scheduled_date": date(2026, 11, 2)},
        {"booking_type": BookingType.CALL_WORKER},
    ],
)
async def test_invalid_requests_are_rejected(db, directory, fanout, overrides):
    with pytest.raises(ValidationError):
        await ledger.create_booking(db, CUSTOMER, booking_request(**overrides), directory, fanout=fanout)


async def test_worker_must_exist_and_be_verified(db, directory, fanout):
    with pytest.raises(NotFoundError):
        await ledger.create_booking(db, CUSTOMER, booking_request(worker_id="ghost"), directory, fanout=fanout)
    with pytest.raises(ValidationError):
        await ledger.create_booking(db, CUSTOMER, booking_request(worker_id="w-new"), directory, fanout=fanout)


async def test_instant_booking_needs_an_available_worker(db, directory, fanout):
    with pytest.raises(ConflictError):
        await ledger.create_booking(db, CUSTOMER, booking_request(worker_id="w-busy"), directory, fanout=fanout)

    booking = await ledger.create_booking(
        db,
        CUSTOMER,
        booking_request(
            worker_id="w-busy",
            booking_type=BookingType.SCHEDULED,
            scheduled_date=date(2026, 11, 2),
            scheduled_time=time(10, 0),
        ),
        directory,
        fanout=fanout,
    )
    assert booking.status == BookingStatus.PENDING


async def test_slot_booking_copies_time_and_books_the_slot(db, directory, fanout):
    [slot] = await slots.create_slots(db, "w1", ["2026-11-02T10:00:00"])

    booking = await ledger.create_booking(
        db,
        CUSTOMER,
        booking_request(booking_type=BookingType.SCHEDULED, slot_id=slot.id, estimated_hours=None),
        directory,
        fanout=fanout,
    )
    assert booking.scheduled_date == date(2026, 11, 2)
    assert booking.scheduled_time == time(10, 0)
    assert booking.estimated_price == Decimal("1000.00")

    refreshed = await slots.get_slot(db, slot.id)
    assert refreshed.status == SlotStatus.BOOKED

    before = await db.scalar(select(func.count()).select_from(Booking))
    with pytest.raises(ConflictError):
        await ledger.create_booking(
            db,
            "cust-2",
            booking_request(booking_type=BookingType.SCHEDULED, slot_id=slot.id),
            directory,
            fanout=fanout,
        )
    assert await db.scalar(select(func.count()).select_from(Booking)) == before == 1


async def test_slot_of_another_worker_is_refused(db, directory, fanout):
    [slot] = await slots.create_slots(db, "w2", ["2026-11-02T12:00:00"])
    with pytest.raises(ConflictError):
        await ledger.create_booking(
            db,
            CUSTOMER,
            booking_request(booking_type=BookingType.SCHEDULED, slot_id=slot.id),
            directory,
            fanout=fanout,
        )


async def test_get_and_list(db, directory, fanout):
    first = await ledger.create_booking(db, CUSTOMER, booking_request(), directory, fanout=fanout)
    second = await ledger.create_booking(db, CUSTOMER, booking_request(worker_id="w2"), directory, fanout=fanout)
    await ledger.create_booking(db, "cust-2", booking_request(), directory, fanout=fanout)

    assert (await ledger.get_booking(db, first.id)).id == first.id
    with pytest.raises(NotFoundError):
        await ledger.get_booking(db, 9999)

    mine = await ledger.list_bookings(db, customer_id=CUSTOMER)
    assert [b.id for b in mine] == [second.id, first.id]

    for_w1 = await ledger.list_bookings(db, worker_id="w1", limit=500)
    assert len(for_w1) == 2

    page_two = await ledger.list_bookings(db, customer_id=CUSTOMER, page=2, limit=1)
    assert [b.id for b in page_two] == [first.id]
