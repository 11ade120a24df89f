import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import select

from workcall import estimates, ledger, selection
from workcall.errors import InvalidStateError, InvalidTransitionError
from workcall.lifecycle import BookingStatus, EstimateStatus
from workcall.models import Estimate

from .factories import CUSTOMER, call_worker_request


async def _with_bids(db, directory, fanout, bids):
    booking = await ledger.create_booking(db, CUSTOMER, call_worker_request(), directory, fanout=fanout)
    for worker_id, price in bids:
        await estimates.submit_estimate(db, booking.id, worker_id, Decimal(price), None, directory, fanout=fanout)
    return booking


async def _statuses(db, booking_id):
    res = await db.execute(select(Estimate).where(Estimate.booking_id == booking_id).execution_options(populate_existing=True))
    return {e.worker_id: e.status for e in res.scalars().all()}


async def test_selection_assigns_worker_and_voids_the_rest(db, directory, fanout, publisher):
    booking = await _with_bids(db, directory, fanout, [("w1", "700"), ("w2", "650"), ("w3", "900")])

    selected = await selection.select_worker(db, booking.id, CUSTOMER, "w2", directory, fanout=fanout)

    assert selected.status == BookingStatus.PENDING
    assert selected.worker_id == "w2"
    assert selected.estimated_price == Decimal("650.00")
    assert await _statuses(db, booking.id) == {
        "w1": EstimateStatus.VOID,
        "w2": EstimateStatus.SELECTED,
        "w3": EstimateStatus.VOID,
    }
    assert await estimates.list_estimates(db, booking.id) == []

    [event] = [e for e in publisher.events_for(booking.id) if e["event_type"] == "worker-selected"]
    assert set(event["data"]["recipients"]) == {CUSTOMER, "w1", "w2", "w3"}
    assert event["data"]["selected_worker_id"] == "w2"


async def test_selection_is_irreversible(db, directory, fanout):
    booking = await _with_bids(db, directory, fanout, [("w1", "700"), ("w2", "650")])
    await selection.select_worker(db, booking.id, CUSTOMER, "w1", fanout=fanout)

    with pytest.raises(InvalidStateError):
        await selection.select_worker(db, booking.id, CUSTOMER, "w2", fanout=fanout)


async def test_worker_without_a_live_estimate_cannot_be_selected(db, directory, fanout):
    booking = await _with_bids(db, directory, fanout, [("w1", "700")])
    with pytest.raises(InvalidStateError):
        await selection.select_worker(db, booking.id, CUSTOMER, "w3", fanout=fanout)

    refreshed = await ledger.get_booking(db, booking.id)
    assert refreshed.status == BookingStatus.PENDING_ESTIMATION


async def test_only_the_requesting_customer_selects(db, directory, fanout):
    booking = await _with_bids(db, directory, fanout, [("w1", "700")])
    with pytest.raises(InvalidTransitionError):
        await selection.select_worker(db, booking.id, "cust-2", "w1", fanout=fanout)


async def test_concurrent_selections_have_exactly_one_winner(db, session_factory, directory, fanout):
    booking = await _with_bids(db, directory, fanout, [("w1", "700"), ("w2", "650")])

    async def select(worker_id):
        async with session_factory() as session:
            return await selection.select_worker(session, booking.id, CUSTOMER, worker_id, fanout=fanout)

    results = await asyncio.gather(select("w1"), select("w2"), return_exceptions=True)

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], InvalidStateError)

    async with session_factory() as session:
        final = await ledger.get_booking(session, booking.id)
        assert final.worker_id == winners[0].worker_id
        statuses = await _statuses(session, booking.id)
    assert sorted(statuses.values()) == sorted([EstimateStatus.SELECTED, EstimateStatus.VOID])
