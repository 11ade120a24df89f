from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import LOYALTY_EARN_UNIT
from .errors import ValidationError
from .models import Booking, LoyaltyAccount, LoyaltyHistory

SILVER_AT = 50
GOLD_AT = 150


def tier_for(points: int) -> str:
    if points >= GOLD_AT:
        return "Gold"
    if points >= SILVER_AT:
        return "Silver"
    return "Bronze"


async def get_account(db: AsyncSession, customer_id: str, lock: bool = False) -> LoyaltyAccount:
    """Returns the customer's account, creating an empty one (not committed) on first use."""
    stmt = select(LoyaltyAccount).where(LoyaltyAccount.customer_id == customer_id)
    if lock:
        stmt = stmt.with_for_update()
    res = await db.execute(stmt)
    account = res.scalar_one_or_none()
    if account is None:
        account = LoyaltyAccount(customer_id=customer_id, points=0, tier=tier_for(0))
        db.add(account)
        await db.flush()
    return account


async def available_points(db: AsyncSession, customer_id: str) -> int:
    res = await db.execute(select(LoyaltyAccount.points).where(LoyaltyAccount.customer_id == customer_id))
    return res.scalar_one_or_none() or 0


async def credit(
    db: AsyncSession,
    customer_id: str,
    points: int,
    description: str,
    booking_id: int | None = None,
) -> LoyaltyAccount:
    if points <= 0:
        raise ValidationError("Points to credit must be greater than 0")
    account = await get_account(db, customer_id, lock=True)
    account.points += points
    account.tier = tier_for(account.points)
    db.add(
        LoyaltyHistory(
            customer_id=customer_id,
            booking_id=booking_id,
            points_earned=points,
            points_used=0,
            description=description,
        )
    )
    return account


async def debit(
    db: AsyncSession,
    customer_id: str,
    points: int,
    description: str,
    booking_id: int | None = None,
) -> int:
    """
    Deducts exactly `points`, or raises ValidationError when the balance is short.
    The caller commits.
    """
    if points <= 0:
        return 0
    account = await get_account(db, customer_id, lock=True)
    if account.points < points:
        raise ValidationError(f"Insufficient points. You have {account.points} points available.")

    account.points -= points
    account.tier = tier_for(account.points)
    db.add(
        LoyaltyHistory(
            customer_id=customer_id,
            booking_id=booking_id,
            points_earned=0,
            points_used=points,
            description=description,
        )
    )
    return points


async def award_for_booking(db: AsyncSession, booking: Booking, amount_paid: Decimal) -> int:
    """1 point per LOYALTY_EARN_UNIT paid, at most once per booking."""
    points = int(Decimal(amount_paid) // LOYALTY_EARN_UNIT)
    if points <= 0:
        return 0

    res = await db.execute(
        select(LoyaltyHistory.id).where(
            LoyaltyHistory.booking_id == booking.id,
            LoyaltyHistory.points_earned > 0,
        )
    )
    if res.first() is not None:
        return 0

    await credit(db, booking.customer_id, points, "Booking completed and paid", booking_id=booking.id)
    return points


async def list_history(db: AsyncSession, customer_id: str, limit: int = 50) -> list[LoyaltyHistory]:
    res = await db.execute(
        select(LoyaltyHistory)
        .where(LoyaltyHistory.customer_id == customer_id)
        .order_by(LoyaltyHistory.created_at.desc(), LoyaltyHistory.id.desc())
        .limit(limit)
    )
    return list(res.scalars().all())
