import asyncio

from fastapi import Depends, FastAPI

from .config import RATE_LIMIT_PER_MINUTE
from .errors import NotFoundError, install_error_handlers, success
from .gateways import gateways
from .middleware import RateLimitMiddleware, RequestLoggingMiddleware
from .rabbitmq import publisher
from .rbac import ADMIN, require_role
from .relay import relay_loop
from .routes import router
from .security import get_current_user

OPENAPI_TAGS = [
    {"name": "System", "description": "Health and payment gateway breakers."},
    {"name": "Bookings", "description": "Create and read bookings."},
    {"name": "Estimates", "description": "Call-worker estimates and worker selection."},
    {"name": "Jobs", "description": "Accept, reject, cancel, start and complete."},
    {"name": "Payments", "description": "Amount due, gateway sessions, confirmation, refunds."},
    {"name": "Loyalty", "description": "Customer loyalty points."},
    {"name": "Slots", "description": "Worker 2-hour availability slots."},
    {"name": "Notifications", "description": "Polling fallback and websocket push."},
]

app = FastAPI(title="Booking Service", openapi_tags=OPENAPI_TAGS)
install_error_handlers(app)

app.add_middleware(RequestLoggingMiddleware)
if RATE_LIMIT_PER_MINUTE > 0:
    app.add_middleware(RateLimitMiddleware, max_per_minute=RATE_LIMIT_PER_MINUTE)

app.include_router(router)

_relay_stop: asyncio.Event | None = None
_relay_task: asyncio.Task | None = None


def _breaker_registry():
    return {g.breaker.name: g.breaker for g in gateways.values() if g.breaker}


@app.get("/health", tags=["System"])
async def health():
    return {"status": "ok", "service": "booking-service"}


@app.get("/system/breakers", tags=["System"])
async def breakers_status(user=Depends(get_current_user)):
    require_role(user, [ADMIN])
    statuses = await asyncio.gather(*[b.status() for b in _breaker_registry().values()])
    return success({"breakers": sorted(statuses, key=lambda x: x["name"])})


@app.post("/system/breakers/{name}/{action}", tags=["System"])
async def breaker_switch(name: str, action: str, user=Depends(get_current_user)):
    require_role(user, [ADMIN])
    breaker = _breaker_registry().get(name)
    if not breaker or action not in ("open", "close"):
        raise NotFoundError("Breaker not found")
    if action == "open":
        await breaker.open()
    else:
        await breaker.close()
    return success({"breaker": await breaker.status()})


@app.on_event("startup")
async def startup():
    global _relay_stop, _relay_task
    try:
        await publisher.connect()
    except Exception as e:
        print(f"[booking-service] starting without RabbitMQ, events will be relayed later: {e}")

    _relay_stop = asyncio.Event()
    _relay_task = asyncio.create_task(relay_loop(_relay_stop))


@app.on_event("shutdown")
async def shutdown():
    if _relay_stop:
        _relay_stop.set()
    if _relay_task:
        try:
            await asyncio.wait_for(_relay_task, timeout=5)
        except asyncio.TimeoutError:
            _relay_task.cancel()
    await publisher.close()
