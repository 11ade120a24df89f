from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

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


# Required fields are checked by the ledger so callers get a uniform ValidationError envelope.
class CreateBookingRequest(BaseModel):
    booking_type: Optional[BookingType] = None
    worker_id: Optional[str] = None
    service_category_id: Optional[str] = None
    service_description: Optional[str] = None
    service_location: Optional[str] = None
    location_latitude: Optional[float] = None
    location_longitude: Optional[float] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    slot_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    estimated_hours: Optional[float] = None


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_number: str
    customer_id: str
    worker_id: Optional[str] = None
    service_category_id: Optional[str] = None
    booking_type: BookingType
    payment_method: PaymentMethod
    service_description: str
    service_location: str
    location_latitude: Optional[float] = None
    location_longitude: Optional[float] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    slot_id: Optional[int] = None
    estimated_price: Optional[Decimal] = None
    final_price: Optional[Decimal] = None
    status: BookingStatus
    payment_status: PaymentStatus
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class SubmitEstimateRequest(BaseModel):
    price: Decimal
    note: Optional[str] = None


class EstimateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: int
    worker_id: str
    price: Decimal
    note: Optional[str] = None
    submitted_at: datetime
    status: EstimateStatus


class SelectWorkerRequest(BaseModel):
    worker_id: str


class ReasonRequest(BaseModel):
    reason: Optional[str] = None


class AmountDueRequest(BaseModel):
    booking_id: int
    points_to_redeem: int = 0


class AmountDueResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    base_amount: Decimal
    discount: Decimal
    amount_due: Decimal
    points_applied: int


class CreatePaymentSessionRequest(BaseModel):
    booking_id: int
    gateway: Gateway
    points_to_redeem: int = 0


class PaymentSessionResponse(BaseModel):
    booking_id: int
    gateway: Gateway
    external_id: str
    redirect_url: str
    amount: Decimal
    points_redeemed: int


class ConfirmPaymentRequest(BaseModel):
    external_id: str
    booking_id: int
    points_to_redeem: Optional[int] = None


class SettlementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    booking_id: int
    external_id: str
    gateway: Gateway
    status: TransactionStatus
    amount: Decimal
    points_redeemed: int
    payment_status: PaymentStatus
    replayed: bool = False


class RefundRequest(BaseModel):
    booking_id: int
    reason: Optional[str] = None


class LoyaltyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    customer_id: str
    points: int
    tier: str


class CreateSlots(BaseModel):
    # ISO datetimes for each 2-hour block start, e.g. "2026-10-20T10:00:00"
    starts: List[str] = Field(min_length=1)


class UpdateSlotStatus(BaseModel):
    status: SlotStatus


class SlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    worker_id: str
    slot_date: date
    start_time: time
    end_time: time
    status: SlotStatus


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    seq: int
    kind: str
    recipients: List[str]
    payload: dict
    created_at: datetime
