import time

from .redis_client import redis_client

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


class CircuitBreakerOpen(Exception):
    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class CircuitBreaker:
    """
    Redis-backed circuit breaker around one payment gateway, shared by every instance
    of the service.

    CLOSED counts failures inside a sliding window; reaching failure_threshold opens it.
    OPEN refuses calls (with the seconds left as retry_after) until reset_timeout passes,
    then lets one probe through as HALF_OPEN. A failed probe re-opens it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout_seconds: int = 30,
        failure_window_seconds: int = 60,
        redis=None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self.failure_window_seconds = failure_window_seconds
        self.redis = redis or redis_client

    def _key(self, suffix: str) -> str:
        return f"breaker:gateway:{self.name}:{suffix}"

    async def state(self) -> str:
        return await self.redis.get(self._key("state")) or CLOSED

    async def allow_request(self) -> None:
        if await self.state() != OPEN:
            return

        opened_at = await self.redis.get(self._key("opened_at"))
        if not opened_at:
            await self.close()
            return

        elapsed = time.time() - float(opened_at)
        if elapsed >= self.reset_timeout_seconds:
            await self.redis.set(self._key("state"), HALF_OPEN)
            return

        remaining = max(1, int(self.reset_timeout_seconds - elapsed))
        raise CircuitBreakerOpen(f"{self.name} is temporarily unavailable", retry_after=remaining)

    async def record_success(self) -> None:
        if await self.state() != CLOSED or await self.redis.get(self._key("failures")):
            await self.close()

    async def record_failure(self) -> None:
        if await self.state() == HALF_OPEN:
            await self.open()
            return

        failures = await self.redis.incr(self._key("failures"))
        if failures == 1:
            await self.redis.expire(self._key("failures"), self.failure_window_seconds)
        if failures >= self.failure_threshold:
            print(f"[booking-service] breaker {self.name} opened after {failures} failures")
            await self.open()

    async def open(self) -> None:
        ttl = self.reset_timeout_seconds + 30
        pipe = self.redis.pipeline()
        pipe.set(self._key("state"), OPEN, ex=ttl)
        pipe.set(self._key("opened_at"), str(time.time()), ex=ttl)
        await pipe.execute()

    async def close(self) -> None:
        pipe = self.redis.pipeline()
        pipe.delete(self._key("state"), self._key("failures"), self._key("opened_at"))
        await pipe.execute()

    async def status(self) -> dict:
        failures = await self.redis.get(self._key("failures"))
        return {"name": self.name, "state": await self.state(), "failures": int(failures or 0)}
