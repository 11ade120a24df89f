from decimal import Decimal

import pytest

from workcall import estimates, ledger, selection
from workcall.errors import InvalidStateError, NotFoundError, ValidationError
from workcall.lifecycle import EstimateStatus

from .factories import CUSTOMER, booking_request, call_worker_request


async def _open_request(db, directory, fanout):
    return await ledger.create_booking(db, CUSTOMER, call_worker_request(), directory, fanout=fanout)


async def test_estimates_are_listed_in_submission_order(db, directory, fanout):
    booking = await _open_request(db, directory, fanout)

    await estimates.submit_estimate(db, booking.id, "w2", Decimal("800"), "two hours", directory, fanout=fanout)
    await estimates.submit_estimate(db, booking.id, "w1", Decimal("700"), None, directory, fanout=fanout)

    rows = await estimates.list_estimates(db, booking.id)
    assert [(e.worker_id, e.price) for e in rows] == [("w2", Decimal("800.00")), ("w1", Decimal("700.00"))]
    assert all(e.status == EstimateStatus.LIVE for e in rows)


async def test_resubmission_replaces_and_moves_to_the_end(db, directory, fanout, publisher):
    booking = await _open_request(db, directory, fanout)

    await estimates.submit_estimate(db, booking.id, "w1", Decimal("700"), None, directory, fanout=fanout)
    await estimates.submit_estimate(db, booking.id, "w2", Decimal("800"), None, directory, fanout=fanout)
    await estimates.submit_estimate(db, booking.id, "w1", Decimal("650"), "can start today", directory, fanout=fanout)

    rows = await estimates.list_estimates(db, booking.id)
    assert [(e.worker_id, e.price) for e in rows] == [("w2", Decimal("800.00")), ("w1", Decimal("650.00"))]
    assert rows[1].note == "can start today"

    submitted = [e for e in publisher.events_for(booking.id) if e["event_type"] == "estimate-submitted"]
    assert len(submitted) == 3
    assert submitted[-1]["data"]["recipients"] == [CUSTOMER]
    assert submitted[-1]["data"]["estimate"]["revised"] is True


@pytest.mark.parametrize("price", [Decimal("0"), Decimal("-10")])
async def test_price_must_be_positive(db, directory, fanout, price):
    booking = await _open_request(db, directory, fanout)
    with pytest.raises(ValidationError):
        await estimates.submit_estimate(db, booking.id, "w1", price, None, directory, fanout=fanout)


async def test_unverified_or_unknown_workers_cannot_bid(db, directory, fanout):
    booking = await _open_request(db, directory, fanout)
    with pytest.raises(ValidationError):
        await estimates.submit_estimate(db, booking.id, "w-new", Decimal("500"), None, directory, fanout=fanout)
    with pytest.raises(NotFoundError):
        await estimates.submit_estimate(db, booking.id, "ghost", Decimal("500"), None, directory, fanout=fanout)


async def test_direct_bookings_do_not_take_estimates(db, directory, fanout):
    booking = await ledger.create_booking(db, CUSTOMER, booking_request(), directory, fanout=fanout)
    with pytest.raises(InvalidStateError):
        await estimates.submit_estimate(db, booking.id, "w2", Decimal("500"), None, directory, fanout=fanout)


async def test_no_estimates_after_selection(db, directory, fanout):
    booking = await _open_request(db, directory, fanout)
    await estimates.submit_estimate(db, booking.id, "w1", Decimal("700"), None, directory, fanout=fanout)
    await selection.select_worker(db, booking.id, CUSTOMER, "w1", fanout=fanout)

    with pytest.raises(InvalidStateError):
        await estimates.submit_estimate(db, booking.id, "w2", Decimal("600"), None, directory, fanout=fanout)
    with pytest.raises(InvalidStateError):
        await estimates.submit_estimate(db, booking.id, "w1", Decimal("600"), None, directory, fanout=fanout)


async def test_unknown_booking(db, directory, fanout):
    with pytest.raises(NotFoundError):
        await estimates.submit_estimate(db, 4242, "w1", Decimal("700"), None, directory, fanout=fanout)
    with pytest.raises(NotFoundError):
        await estimates.list_estimates(db, 4242)
