"""
Settlement engine.

The server-side amount is authoritative: it is computed when a gateway session is opened
and recorded on the initiated PaymentTransaction; confirmation settles exactly that record.
Confirmation is idempotent on the gateway's external id. A gateway session without a
local initiated record is never settled.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import loyalty
from .config import (
    LOYALTY_MAX_DISCOUNT_RATIO,
    LOYALTY_POINTS_PER_STEP,
    LOYALTY_STEP_VALUE,
    PAYMENT_CALLBACK_BASE_URL,
)
from .errors import (
    ConflictError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PaymentVerificationError,
    ValidationError,
)
from .events import EventKind
from .fanout import Fanout, fanout as default_fanout
from .gateways import PaymentGateway
from .ledger import CENT, MAX_PAGE_SIZE, get_booking
from .lifecycle import (
    Action,
    BookingStatus,
    Gateway,
    PaymentMethod,
    PaymentStatus,
    TransactionStatus,
    apply_transition,
)
from .locks import commit_or_conflict, locked_booking
from .models import Booking, PaymentTransaction


@dataclass
class AmountDue:
    base_amount: Decimal
    discount: Decimal
    amount_due: Decimal
    points_applied: int


@dataclass
class SettlementResult:
    booking_id: int
    external_id: str
    gateway: Gateway
    status: TransactionStatus
    amount: Decimal
    points_redeemed: int
    payment_status: PaymentStatus
    replayed: bool = False


def compute_amount_due(base_amount: Decimal, points_to_redeem: int, available_points: int) -> AmountDue:
    """
    Every LOYALTY_POINTS_PER_STEP points take LOYALTY_STEP_VALUE off, capped at
    LOYALTY_MAX_DISCOUNT_RATIO of the base. Only the points needed for the applied
    discount are consumed.
    """
    if points_to_redeem is None:
        points_to_redeem = 0
    if points_to_redeem < 0:
        raise ValidationError("Points to redeem cannot be negative")
    if points_to_redeem > available_points:
        raise ValidationError(f"Insufficient points. You have {available_points} points available.")

    base = Decimal(str(base_amount)).quantize(CENT)
    step_value = Decimal(LOYALTY_STEP_VALUE)
    cap = (base * Decimal(str(LOYALTY_MAX_DISCOUNT_RATIO))).quantize(CENT, rounding=ROUND_DOWN)

    requested_steps = points_to_redeem // LOYALTY_POINTS_PER_STEP
    max_steps = int(cap // step_value) if cap > 0 else 0
    steps = min(requested_steps, max_steps)

    discount = (step_value * steps).quantize(CENT)
    amount_due = max(Decimal("0.00"), base - discount)
    return AmountDue(
        base_amount=base,
        discount=discount,
        amount_due=amount_due,
        points_applied=steps * LOYALTY_POINTS_PER_STEP,
    )


def base_amount_for(booking: Booking) -> Decimal:
    base = booking.final_price if booking.final_price is not None else booking.estimated_price
    if base is None:
        raise InvalidStateError("Booking has no agreed price yet")
    return base


def _result(tx: PaymentTransaction, booking: Booking, replayed: bool = False) -> SettlementResult:
    return SettlementResult(
        booking_id=tx.booking_id,
        external_id=tx.external_id,
        gateway=tx.gateway,
        status=tx.status,
        amount=tx.amount,
        points_redeemed=tx.points_redeemed,
        payment_status=booking.payment_status,
        replayed=replayed,
    )


async def _customer_booking(db: AsyncSession, booking_id: int, customer_id: str) -> Booking:
    booking = await get_booking(db, booking_id)
    if booking.customer_id != customer_id:
        raise NotFoundError("Booking not found")
    return booking


async def quote(db: AsyncSession, booking_id: int, customer_id: str, points_to_redeem: int) -> AmountDue:
    """Advisory preview; create_gateway_session recomputes it."""
    booking = await _customer_booking(db, booking_id, customer_id)
    available = await loyalty.available_points(db, customer_id)
    return compute_amount_due(base_amount_for(booking), points_to_redeem, available)


def _check_payable_online(booking: Booking):
    if booking.payment_method != PaymentMethod.ONLINE:
        raise InvalidStateError("Booking is not set up for online payment")
    if booking.status != BookingStatus.COMPLETED:
        raise InvalidStateError(f"Booking must be completed before payment (status {booking.status.value})")
    if booking.payment_status != PaymentStatus.PENDING:
        raise InvalidStateError(f"Booking payment is already {booking.payment_status.value}")


async def create_gateway_session(
    db: AsyncSession,
    booking_id: int,
    customer_id: str,
    gateway: Gateway,
    points_to_redeem: int,
    gateways: dict[Gateway, PaymentGateway],
    callback_base_url: str = PAYMENT_CALLBACK_BASE_URL,
) -> tuple[PaymentTransaction, str]:
    """
    Opens a session with the provider and records it as initiated.
    If the provider call fails or times out nothing is recorded.
    """
    provider = gateways.get(gateway)
    if gateway == Gateway.CASH or provider is None:
        raise ValidationError(f"Unsupported payment gateway: {gateway.value}")

    booking = await _customer_booking(db, booking_id, customer_id)
    _check_payable_online(booking)

    available = await loyalty.available_points(db, customer_id)
    due = compute_amount_due(base_amount_for(booking), points_to_redeem, available)
    if due.amount_due <= 0:
        raise ValidationError("Nothing to pay for this booking")

    callback_url = f"{callback_base_url.rstrip('/')}/payments/{gateway.value}/callback?booking_id={booking.id}"
    session = await provider.create_session(due.amount_due, callback_url, booking.booking_number)

    async with locked_booking(db, booking_id) as booking:
        _check_payable_online(booking)
        tx = PaymentTransaction(
            booking_id=booking.id,
            gateway=gateway,
            external_id=session.session_id,
            base_amount=due.base_amount,
            discount_amount=due.discount,
            amount=due.amount_due,
            points_redeemed=due.points_applied,
            status=TransactionStatus.INITIATED,
        )
        db.add(tx)
        await db.commit()

    print(f"[booking-service] {gateway.value} session {session.session_id} opened for {booking.booking_number}: {due.amount_due}")
    return tx, session.redirect_url


async def _get_transaction(db: AsyncSession, external_id: str, lock: bool = False) -> PaymentTransaction | None:
    stmt = select(PaymentTransaction).where(PaymentTransaction.external_id == external_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def confirm_payment(
    db: AsyncSession,
    external_id: str,
    booking_id: int,
    points_to_redeem: int | None,
    gateways: dict[Gateway, PaymentGateway],
    fanout: Fanout = default_fanout,
) -> SettlementResult:
    tx = await _get_transaction(db, external_id)
    if tx is None:
        raise NotFoundError("No payment session recorded for this payment id")
    if tx.booking_id != booking_id:
        raise ValidationError("Payment id does not belong to this booking")
    if tx.status == TransactionStatus.CONFIRMED:
        return _result(tx, await get_booking(db, booking_id), replayed=True)

    async with locked_booking(db, booking_id) as booking:
        tx = await _get_transaction(db, external_id, lock=True)
        if tx.status == TransactionStatus.CONFIRMED:
            return _result(tx, booking, replayed=True)
        if tx.status == TransactionStatus.FAILED:
            raise PaymentVerificationError(f"Payment verification failed: {tx.failure_reason}")
        if points_to_redeem is not None and points_to_redeem != tx.points_redeemed:
            raise ValidationError(
                f"Points to redeem ({points_to_redeem}) differ from the {tx.points_redeemed} recorded for this payment"
            )
        if booking.payment_status != PaymentStatus.PENDING:
            raise ConflictError(f"Booking payment is already {booking.payment_status.value}")
        if tx.points_redeemed:
            # the discount was priced against the balance at session time; it may have been spent since
            available = await loyalty.available_points(db, booking.customer_id)
            if available < tx.points_redeemed:
                raise ValidationError(
                    f"Insufficient points. This payment redeems {tx.points_redeemed} points "
                    f"but only {available} are available."
                )

        provider = gateways.get(tx.gateway)
        if provider is None:
            raise ValidationError(f"Unsupported payment gateway: {tx.gateway.value}")

        verification = await provider.verify(external_id)
        if not verification.ok or (verification.amount is not None and verification.amount < tx.amount):
            reason = f"gateway status {verification.status}"
            if verification.ok:
                reason = f"paid {verification.amount}, expected {tx.amount}"
            tx.status = TransactionStatus.FAILED
            tx.failure_reason = reason
            await db.commit()
            print(f"[booking-service] payment {external_id} failed verification: {reason}")
            raise PaymentVerificationError(f"Payment verification failed: {reason}")

        now = datetime.now(timezone.utc)
        if tx.points_redeemed:
            await loyalty.debit(
                db,
                booking.customer_id,
                tx.points_redeemed,
                f"Redeemed for {tx.discount_amount} discount on {booking.booking_number}",
                booking_id=booking.id,
            )

        booking.payment_status = PaymentStatus.PAID
        booking.payment_transaction_id = external_id
        booking.updated_at = now
        tx.status = TransactionStatus.CONFIRMED
        tx.confirmed_at = now

        if booking.status == BookingStatus.COMPLETED:
            await loyalty.award_for_booking(db, booking, tx.amount)

        fanout.record(
            db,
            booking,
            EventKind.STATUS_CHANGED,
            [booking.worker_id, booking.customer_id],
            {"payment_status": PaymentStatus.PAID.value, "gateway": tx.gateway.value, "amount": str(tx.amount)},
        )
        await commit_or_conflict(db)
        await fanout.flush(db, booking_id)

    return _result(tx, booking)


async def mark_cash_payment(
    db: AsyncSession,
    booking_id: int,
    worker_id: str,
    fanout: Fanout = default_fanout,
) -> SettlementResult:
    async with locked_booking(db, booking_id) as booking:
        if booking.payment_method != PaymentMethod.CASH:
            raise InvalidTransitionError("Only cash bookings can be marked as paid in cash")

        external_id = f"CASH-{booking.booking_number}"
        if booking.payment_status == PaymentStatus.PAID and booking.worker_id == worker_id:
            tx = await _get_transaction(db, external_id)
            return SettlementResult(
                booking_id=booking.id,
                external_id=external_id,
                gateway=Gateway.CASH,
                status=TransactionStatus.CONFIRMED,
                amount=tx.amount if tx else booking.final_price,
                points_redeemed=0,
                payment_status=booking.payment_status,
                replayed=True,
            )
        if booking.payment_status == PaymentStatus.REFUNDED:
            raise InvalidStateError("Booking payment was refunded")

        apply_transition(booking, Action.MARK_CASH_PAID, worker_id)

        now = datetime.now(timezone.utc)
        booking.payment_status = PaymentStatus.PAID
        booking.payment_transaction_id = external_id
        tx = PaymentTransaction(
            booking_id=booking.id,
            gateway=Gateway.CASH,
            external_id=external_id,
            base_amount=booking.final_price,
            discount_amount=Decimal("0.00"),
            amount=booking.final_price,
            points_redeemed=0,
            status=TransactionStatus.CONFIRMED,
            confirmed_at=now,
        )
        db.add(tx)
        await loyalty.award_for_booking(db, booking, booking.final_price)

        fanout.record(
            db,
            booking,
            EventKind.STATUS_CHANGED,
            [booking.customer_id],
            {"payment_status": PaymentStatus.PAID.value, "gateway": Gateway.CASH.value, "amount": str(booking.final_price)},
        )
        await commit_or_conflict(db)
        await fanout.flush(db, booking_id)

    return _result(tx, booking)


async def refund_payment(
    db: AsyncSession,
    booking_id: int,
    reason: str | None,
    fanout: Fanout = default_fanout,
) -> Booking:
    async with locked_booking(db, booking_id) as booking:
        if booking.payment_status != PaymentStatus.PAID:
            raise InvalidStateError(f"Only paid bookings can be refunded (payment {booking.payment_status.value})")

        booking.payment_status = PaymentStatus.REFUNDED
        booking.updated_at = datetime.now(timezone.utc)

        data = {"payment_status": PaymentStatus.REFUNDED.value}
        if reason:
            data["reason"] = reason.strip()
        fanout.record(db, booking, EventKind.STATUS_CHANGED, [booking.customer_id, booking.worker_id], data)

        await commit_or_conflict(db)
        await fanout.flush(db, booking_id)

    return booking


async def list_payments(
    db: AsyncSession,
    customer_id: str | None = None,
    worker_id: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Booking], int]:
    """
    Paid bookings, most recently settled first, with the total count for paging.
    Passing neither customer_id nor worker_id lists every paid booking (admin view).
    """
    where = [Booking.payment_status == PaymentStatus.PAID]
    if customer_id is not None:
        where.append(Booking.customer_id == customer_id)
    if worker_id is not None:
        where.append(Booking.worker_id == worker_id)

    total = await db.scalar(select(func.count()).select_from(Booking).where(*where))

    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = (max(page, 1) - 1) * limit
    res = await db.execute(
        select(Booking)
        .where(*where)
        .order_by(Booking.updated_at.desc(), Booking.created_at.desc(), Booking.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(res.scalars().all()), total or 0
