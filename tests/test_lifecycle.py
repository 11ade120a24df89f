from types import SimpleNamespace

import pytest

from workcall.errors import InvalidTransitionError, ValidationError
from workcall.lifecycle import TRANSITIONS, Action, BookingStatus, apply_transition, resolve_transition


def _booking(status, customer_id="cust-1", worker_id="w1"):
    return SimpleNamespace(
        status=status,
        customer_id=customer_id,
        worker_id=worker_id,
        estimated_price=1000,
        final_price=None,
        completed_at=None,
        rejection_reason=None,
        cancellation_reason=None,
        updated_at=None,
    )


def test_happy_path_runs_to_completed():
    b = _booking(BookingStatus.PENDING)
    apply_transition(b, Action.ACCEPT, "w1")
    apply_transition(b, Action.START, "w1")
    previous = apply_transition(b, Action.COMPLETE, "w1")

    assert previous == BookingStatus.IN_PROGRESS
    assert b.status == BookingStatus.COMPLETED
    assert b.final_price == b.estimated_price
    assert b.completed_at is not None


@pytest.mark.parametrize(
    "status,action",
    [
        (BookingStatus.PENDING, Action.START),
        (BookingStatus.PENDING, Action.COMPLETE),
        (BookingStatus.ACCEPTED, Action.COMPLETE),
        (BookingStatus.ACCEPTED, Action.ACCEPT),
        (BookingStatus.IN_PROGRESS, Action.CANCEL),
        (BookingStatus.COMPLETED, Action.ACCEPT),
        (BookingStatus.CANCELLED, Action.ACCEPT),
        (BookingStatus.REJECTED, Action.START),
        (BookingStatus.PENDING_ESTIMATION, Action.ACCEPT),
    ],
)
def test_moves_outside_the_table_are_rejected(status, action):
    b = _booking(status)
    with pytest.raises(InvalidTransitionError):
        apply_transition(b, action, "w1", reason="because")
    assert b.status == status


def test_terminal_states_have_no_outgoing_moves():
    for status in (BookingStatus.REJECTED, BookingStatus.CANCELLED):
        assert not [key for key in TRANSITIONS if key[0] == status]
    assert [a for (s, a) in TRANSITIONS if s == BookingStatus.COMPLETED] == [Action.MARK_CASH_PAID]


def test_wrong_actor_is_rejected_and_booking_unchanged():
    b = _booking(BookingStatus.PENDING)
    with pytest.raises(InvalidTransitionError):
        apply_transition(b, Action.ACCEPT, "cust-1")
    with pytest.raises(InvalidTransitionError):
        apply_transition(b, Action.ACCEPT, "w2")
    with pytest.raises(InvalidTransitionError):
        apply_transition(b, Action.CANCEL, "w1", reason="no")
    assert b.status == BookingStatus.PENDING


def test_reject_and_cancel_need_a_reason():
    b = _booking(BookingStatus.PENDING)
    with pytest.raises(ValidationError):
        apply_transition(b, Action.REJECT, "w1", reason="  ")
    with pytest.raises(ValidationError):
        apply_transition(b, Action.CANCEL, "cust-1")

    apply_transition(b, Action.CANCEL, "cust-1", reason=" changed plans ")
    assert b.status == BookingStatus.CANCELLED
    assert b.cancellation_reason == "changed plans"


def test_resolve_does_not_mutate():
    b = _booking(BookingStatus.ACCEPTED)
    assert resolve_transition(b, Action.START, "w1") == BookingStatus.IN_PROGRESS
    assert b.status == BookingStatus.ACCEPTED


def test_illegal_move_wins_over_a_missing_reason():
    b = _booking(BookingStatus.COMPLETED)
    with pytest.raises(InvalidTransitionError):
        apply_transition(b, Action.CANCEL, "cust-1")
    assert b.status == BookingStatus.COMPLETED
