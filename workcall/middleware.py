import json
import time
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .redis_client import redis_client

UNLIMITED_PATHS = ("/health", "/docs", "/openapi.json")


def _log_line(request: Request, request_id: str, status: int, duration_ms: float) -> str:
    return json.dumps(
        {
            "service": "booking-service",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": status,
            "duration_ms": round(duration_ms, 2),
            "user_sub": getattr(request.state, "user_sub", None),
            "user_roles": getattr(request.state, "user_roles", None),
        }
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception:
            print(_log_line(request, request_id, 500, (time.perf_counter() - start) * 1000))
            raise

        response.headers["X-Request-Id"] = request_id
        print(_log_line(request, request_id, response.status_code, (time.perf_counter() - start) * 1000))
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed one-minute window per client ip, counted in redis."""

    def __init__(self, app, max_per_minute: int = 120):
        super().__init__(app)
        self.max_per_minute = max_per_minute

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in UNLIMITED_PATHS or path.startswith("/docs/") or path.startswith("/ws/"):
            return await call_next(request)

        ip = request.client.host if request.client else "unknown"
        epoch_minute = int(time.time() // 60)
        key = f"rl:ip:{ip}:{epoch_minute}"

        count = await redis_client.incr(key)
        if count == 1:
            await redis_client.expire(key, 70)

        if count > self.max_per_minute:
            retry_after = 60 - int(time.time() % 60)
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": {"code": "rate_limited", "message": "Too many requests", "retry_after": retry_after},
                },
                headers={"Retry-After": str(retry_after)},
            )

        return await call_next(request)
