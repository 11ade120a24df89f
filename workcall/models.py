from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)

from .db import Base
from .lifecycle import (
    BookingStatus,
    BookingType,
    EstimateStatus,
    Gateway,
    PaymentMethod,
    PaymentStatus,
    SlotStatus,
    TransactionStatus,
)


def _enum(enum_cls):
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda e: [m.value for m in e],
    )


def _now():
    return datetime.now(timezone.utc)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    booking_number = Column(String, unique=True, nullable=False, index=True)

    customer_id = Column(String, nullable=False, index=True)
    worker_id = Column(String, nullable=True, index=True)  # null only while pending_estimation
    service_category_id = Column(String, nullable=True)

    booking_type = Column(_enum(BookingType), nullable=False)
    payment_method = Column(_enum(PaymentMethod), nullable=False)

    service_description = Column(Text, nullable=False)
    service_location = Column(String, nullable=False)
    location_latitude = Column(Float, nullable=True)
    location_longitude = Column(Float, nullable=True)

    scheduled_date = Column(Date, nullable=True)
    scheduled_time = Column(Time, nullable=True)
    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=True)

    estimated_price = Column(Numeric(12, 2), nullable=True)
    final_price = Column(Numeric(12, 2), nullable=True)

    status = Column(_enum(BookingStatus), nullable=False, index=True)
    payment_status = Column(_enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    payment_transaction_id = Column(String, nullable=True)

    rejection_reason = Column(String, nullable=True)
    cancellation_reason = Column(String, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    event_seq = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class Estimate(Base):
    __tablename__ = "estimates"

    booking_id = Column(Integer, ForeignKey("bookings.id"), primary_key=True)
    worker_id = Column(String, primary_key=True)

    price = Column(Numeric(12, 2), nullable=False)
    note = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    status = Column(_enum(EstimateStatus), nullable=False, default=EstimateStatus.LIVE)


class Slot(Base):
    __tablename__ = "slots"
    __table_args__ = (UniqueConstraint("worker_id", "slot_date", "start_time", name="uq_slots_worker_start"),)

    id = Column(Integer, primary_key=True)
    worker_id = Column(String, nullable=False, index=True)
    slot_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(_enum(SlotStatus), nullable=False, default=SlotStatus.ACTIVE)


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    gateway = Column(_enum(Gateway), nullable=False)
    external_id = Column(String, unique=True, nullable=False, index=True)

    base_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    amount = Column(Numeric(12, 2), nullable=False)
    points_redeemed = Column(Integer, nullable=False, default=0)

    status = Column(_enum(TransactionStatus), nullable=False, default=TransactionStatus.INITIATED)
    failure_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)


class LoyaltyAccount(Base):
    __tablename__ = "loyalty_accounts"

    customer_id = Column(String, primary_key=True)
    points = Column(Integer, nullable=False, default=0)
    tier = Column(String, nullable=False, default="Bronze")


class LoyaltyHistory(Base):
    __tablename__ = "loyalty_history"

    id = Column(Integer, primary_key=True)
    customer_id = Column(String, nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    points_earned = Column(Integer, nullable=False, default=0)
    points_used = Column(Integer, nullable=False, default=0)
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (UniqueConstraint("booking_id", "seq", name="uq_notifications_booking_seq"),)

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    seq = Column(Integer, nullable=False)
    kind = Column(String, nullable=False)
    recipients = Column(JSON, nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    published_at = Column(DateTime(timezone=True), nullable=True, index=True)
