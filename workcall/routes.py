from datetime import date
from typing import Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from . import estimates as estimates_svc
from . import jobs, ledger, loyalty, selection, settlement, slots as slots_svc
from .db import get_db
from .directory import WorkerDirectory, get_directory
from .errors import NotFoundError, ValidationError, WorkCallError, success
from .fanout import Fanout, fanout as default_fanout, list_notifications
from .gateways import PaymentGateway, get_gateways
from .hub import hub
from .idempotency import is_processed, mark_processed
from .lifecycle import BookingStatus, Gateway, SlotStatus
from .rbac import ADMIN, CUSTOMER, WORKER, has_role, require_role
from .schemas import (
    AmountDueRequest,
    AmountDueResponse,
    BookingResponse,
    ConfirmPaymentRequest,
    CreateBookingRequest,
    CreatePaymentSessionRequest,
    CreateSlots,
    EstimateResponse,
    LoyaltyResponse,
    NotificationResponse,
    PaymentSessionResponse,
    ReasonRequest,
    RefundRequest,
    SelectWorkerRequest,
    SettlementResponse,
    SlotResponse,
    SubmitEstimateRequest,
    UpdateSlotStatus,
)
from .security import decode_token, get_current_user

router = APIRouter()

# gateway redirect parameters that mean the customer abandoned the payment
CALLBACK_ABORTED = {"cancel", "cancelled", "failure", "failed"}


def get_fanout() -> Fanout:
    return default_fanout


def _dump(schema, obj) -> dict:
    return schema.model_validate(obj).model_dump(mode="json")


def _booking(b) -> dict:
    return _dump(BookingResponse, b)


async def _visible_booking(db: AsyncSession, booking_id: int, user: dict):
    booking = await ledger.get_booking(db, booking_id)
    if has_role(user, ADMIN) or user["sub"] in (booking.customer_id, booking.worker_id):
        return booking
    raise NotFoundError("Booking not found")


def _audiences(user: dict) -> set[str]:
    audiences = {user["sub"]}
    if has_role(user, WORKER):
        audiences.add("workers")
        category = user.get("service_category_id")
        if category:
            audiences.add(f"category:{category}")
    return audiences


# ================= BOOKINGS =================

@router.post("/bookings", status_code=201, tags=["Bookings"])
async def create_booking(
    data: CreateBookingRequest,
    db: AsyncSession = Depends(get_db),
    directory: WorkerDirectory = Depends(get_directory),
    fanout: Fanout = Depends(get_fanout),
    user=Depends(get_current_user),
):
    customer_id = require_role(user, [CUSTOMER])
    booking = await ledger.create_booking(db, customer_id, data, directory, fanout=fanout)
    return success(_booking(booking))


@router.get("/bookings", tags=["Bookings"])
async def list_bookings(
    status: Optional[BookingStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    customer_id: Optional[str] = None,
    worker_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    sub = require_role(user, [CUSTOMER, WORKER, ADMIN])
    if not has_role(user, ADMIN):
        if has_role(user, WORKER):
            customer_id, worker_id = None, sub
        else:
            customer_id, worker_id = sub, None

    bookings = await ledger.list_bookings(
        db, customer_id=customer_id, worker_id=worker_id, status=status, page=page, limit=limit
    )
    return success({"bookings": [_booking(b) for b in bookings], "page": page})


@router.get("/bookings/{booking_id}", tags=["Bookings"])
async def get_booking(booking_id: int, db: AsyncSession = Depends(get_db), user=Depends(get_current_user)):
    booking = await _visible_booking(db, booking_id, user)
    return success(_booking(booking))


@router.post("/bookings/{booking_id}/estimates", status_code=201, tags=["Estimates"])
async def submit_estimate(
    booking_id: int,
    data: SubmitEstimateRequest,
    db: AsyncSession = Depends(get_db),
    directory: WorkerDirectory = Depends(get_directory),
    fanout: Fanout = Depends(get_fanout),
    user=Depends(get_current_user),
):
    worker_id = require_role(user, [WORKER])
    estimate = await estimates_svc.submit_estimate(
        db, booking_id, worker_id, data.price, data.note, directory, fanout=fanout
    )
    return success(_dump(EstimateResponse, estimate))


@router.get("/bookings/{booking_id}/estimates", tags=["Estimates"])
async def list_estimates(booking_id: int, db: AsyncSession = Depends(get_db), user=Depends(get_current_user)):
    booking = await _visible_booking(db, booking_id, user)
    rows = await estimates_svc.list_estimates(db, booking.id)
    return success([_dump(EstimateResponse, e) for e in rows])


@router.post("/bookings/{booking_id}/select", tags=["Estimates"])
async def select_worker(
    booking_id: int,
    data: SelectWorkerRequest,
    db: AsyncSession = Depends(get_db),
    directory: WorkerDirectory = Depends(get_directory),
    fanout: Fanout = Depends(get_fanout),
    user=Depends(get_current_user),
):
    customer_id = require_role(user, [CUSTOMER])
    booking = await selection.select_worker(db, booking_id, customer_id, data.worker_id, directory, fanout=fanout)
    return success(_booking(booking))


@router.post("/bookings/{booking_id}/accept", tags=["Jobs"])
async def accept_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    fanout: Fanout = Depends(get_fanout),
    user=Depends(get_current_user),
):
    worker_id = require_role(user, [WORKER])
    return success(_booking(await jobs.accept_booking(db, booking_id, worker_id, fanout=fanout)))


@router.post("/bookings/{booking_id}/reject", tags=["Jobs"])
async def reject_booking(
    booking_id: int,
    data: ReasonRequest,
    db: AsyncSession = Depends(get_db),
    fanout: Fanout = Depends(get_fanout),
    user=Depends(get_current_user),
):
    worker_id = require_role(user, [WORKER])
    return success(_booking(await jobs.reject_booking(db, booking_id, worker_id, data.reason, fanout=fanout)))


@router.post("/bookings/{booking_id}/cancel", tags=["Jobs"])
async def cancel_booking(
    booking_id: int,
    data: ReasonRequest,
    db: AsyncSession = Depends(get_db),
    fanout: Fanout = Depends(get_fanout),
    user=Depends(get_current_user),
):
    customer_id = require_role(user, [CUSTOMER])
    return success(_booking(await jobs.cancel_booking(db, booking_id, customer_id, data.reason, fanout=fanout)))


@router.post("/bookings/{booking_id}/start", tags=["Jobs"])
async def start_job(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    fanout: Fanout = Depends(get_fanout),
    user=Depends(get_current_user),
):
    worker_id = require_role(user, [WORKER])
    return success(_booking(await jobs.start_job(db, booking_id, worker_id, fanout=fanout)))


@router.post("/bookings/{booking_id}/complete", tags=["Jobs"])
async def complete_job(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    fanout: Fanout = Depends(get_fanout),
    user=Depends(get_current_user),
):
    worker_id = require_role(user, [WORKER])
    return success(_booking(await jobs.complete_job(db, booking_id, worker_id, fanout=fanout)))


@router.post("/bookings/{booking_id}/cash-payment", tags=["Payments"])
async def mark_cash_payment(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    fanout: Fanout = Depends(get_fanout),
    user=Depends(get_current_user),
):
    worker_id = require_role(user, [WORKER])
    result = await settlement.mark_cash_payment(db, booking_id, worker_id, fanout=fanout)
    return success(_dump(SettlementResponse, result))


# ================= PAYMENTS =================

@router.post("/payments/amount-due", tags=["Payments"])
async def amount_due(data: AmountDueRequest, db: AsyncSession = Depends(get_db), user=Depends(get_current_user)):
    customer_id = require_role(user, [CUSTOMER])
    due = await settlement.quote(db, data.booking_id, customer_id, data.points_to_redeem)
    return success(_dump(AmountDueResponse, due))


@router.post("/payments/sessions", status_code=201, tags=["Payments"])
async def create_payment_session(
    data: CreatePaymentSessionRequest,
    db: AsyncSession = Depends(get_db),
    gateways: dict[Gateway, PaymentGateway] = Depends(get_gateways),
    user=Depends(get_current_user),
):
    customer_id = require_role(user, [CUSTOMER])
    tx, redirect_url = await settlement.create_gateway_session(
        db, data.booking_id, customer_id, data.gateway, data.points_to_redeem, gateways
    )
    response = PaymentSessionResponse(
        booking_id=tx.booking_id,
        gateway=tx.gateway,
        external_id=tx.external_id,
        redirect_url=redirect_url,
        amount=tx.amount,
        points_redeemed=tx.points_redeemed,
    )
    return success(response.model_dump(mode="json"))


@router.post("/payments/confirm", tags=["Payments"])
async def confirm_payment(
    data: ConfirmPaymentRequest,
    db: AsyncSession = Depends(get_db),
    gateways: dict[Gateway, PaymentGateway] = Depends(get_gateways),
    fanout: Fanout = Depends(get_fanout),
    user=Depends(get_current_user),
):
    sub = require_role(user, [CUSTOMER, ADMIN])
    if not has_role(user, ADMIN):
        await _visible_booking(db, data.booking_id, {"sub": sub})

    result = await settlement.confirm_payment(
        db, data.external_id, data.booking_id, data.points_to_redeem, gateways, fanout=fanout
    )
    return success(_dump(SettlementResponse, result))


@router.get("/payments/history", tags=["Payments"])
async def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    sub = require_role(user, [CUSTOMER, WORKER, ADMIN])
    customer_id = worker_id = None
    if not has_role(user, ADMIN):
        if has_role(user, WORKER):
            worker_id = sub
        else:
            customer_id = sub

    bookings, total = await settlement.list_payments(
        db, customer_id=customer_id, worker_id=worker_id, page=page, limit=limit
    )
    return success(
        {
            "bookings": [_booking(b) for b in bookings],
            "pagination": {"page": page, "limit": min(limit, ledger.MAX_PAGE_SIZE), "total": total},
        }
    )


async def _callback_params(request: Request) -> dict:
    params = dict(request.query_params)
    if request.method == "POST":
        body = (await request.body()).decode("utf-8", errors="replace")
        for key, values in parse_qs(body).items():
            params.setdefault(key, values[0])
    return params


@router.api_route("/payments/{gateway}/callback", methods=["GET", "POST"], tags=["Payments"])
async def payment_callback(
    gateway: Gateway,
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateways: dict[Gateway, PaymentGateway] = Depends(get_gateways),
    fanout: Fanout = Depends(get_fanout),
):
    """
    Redirect target for both providers. bKash sends paymentID/status in the query,
    SSLCommerz posts tran_id/status as a form. Settlement happens through confirm_payment,
    which re-verifies with the provider, so nothing in the redirect is trusted.
    """
    params = await _callback_params(request)
    external_id = params.get("paymentID") or params.get("tran_id")
    booking_id = params.get("booking_id")
    if not external_id or not booking_id or not booking_id.isdigit():
        raise ValidationError("Callback is missing the payment id or booking id")

    provider_status = (params.get("status") or "").lower()
    if provider_status in CALLBACK_ABORTED:
        print(f"[booking-service] {gateway.value} callback for {external_id}: {provider_status}")
        return success({"external_id": external_id, "booking_id": int(booking_id), "status": provider_status})

    if await is_processed(gateway.value, external_id):
        return success({"external_id": external_id, "booking_id": int(booking_id), "replayed": True})

    result = await settlement.confirm_payment(db, external_id, int(booking_id), None, gateways, fanout=fanout)
    await mark_processed(gateway.value, external_id)
    return success(_dump(SettlementResponse, result))


@router.post("/payments/refund", tags=["Payments"])
async def refund_payment(
    data: RefundRequest,
    db: AsyncSession = Depends(get_db),
    fanout: Fanout = Depends(get_fanout),
    user=Depends(get_current_user),
):
    require_role(user, [ADMIN])
    booking = await settlement.refund_payment(db, data.booking_id, data.reason, fanout=fanout)
    return success(_booking(booking))


# ================= LOYALTY =================

@router.get("/loyalty/me", tags=["Loyalty"])
async def my_loyalty(db: AsyncSession = Depends(get_db), user=Depends(get_current_user)):
    customer_id = require_role(user, [CUSTOMER])
    account = await loyalty.get_account(db, customer_id)
    history = await loyalty.list_history(db, customer_id)
    await db.commit()

    data = _dump(LoyaltyResponse, account)
    data["history"] = [
        {
            "booking_id": h.booking_id,
            "points_earned": h.points_earned,
            "points_used": h.points_used,
            "description": h.description,
            "created_at": h.created_at.isoformat() if h.created_at else None,
        }
        for h in history
    ]
    return success(data)


# ================= SLOTS =================

@router.post("/slots", status_code=201, tags=["Slots"])
async def create_slots(data: CreateSlots, db: AsyncSession = Depends(get_db), user=Depends(get_current_user)):
    worker_id = require_role(user, [WORKER])
    rows = await slots_svc.create_slots(db, worker_id, data.starts)
    return success([_dump(SlotResponse, s) for s in rows])


@router.get("/workers/{worker_id}/slots", tags=["Slots"])
async def list_worker_slots(
    worker_id: str,
    status: Optional[SlotStatus] = None,
    from_date: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    require_role(user, [CUSTOMER, WORKER, ADMIN])
    rows = await slots_svc.list_slots(db, worker_id, status=status, from_date=from_date)
    return success([_dump(SlotResponse, s) for s in rows])


@router.patch("/slots/{slot_id}", tags=["Slots"])
async def update_slot(
    slot_id: int,
    data: UpdateSlotStatus,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    worker_id = require_role(user, [WORKER])
    slot = await slots_svc.update_slot_status(db, slot_id, worker_id, data.status)
    return success(_dump(SlotResponse, slot))


# ================= NOTIFICATIONS =================

@router.get("/notifications", tags=["Notifications"])
async def poll_notifications(
    after: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    rows = await list_notifications(db, _audiences(user), after=after, limit=limit)
    return success([_dump(NotificationResponse, n) for n in rows])


@router.websocket("/ws/{user_id}")
async def notifications_socket(websocket: WebSocket, user_id: str, token: Optional[str] = None):
    try:
        user = decode_token(token)
    except WorkCallError:
        await websocket.close(code=4401)
        return
    if user["sub"] != user_id:
        await websocket.close(code=4403)
        return

    await websocket.accept()
    audiences = _audiences(user)
    for audience in audiences:
        hub.register(audience, websocket)
    try:
        while True:
            # clients only send keepalives
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        for audience in audiences:
            hub.unregister(audience, websocket)
