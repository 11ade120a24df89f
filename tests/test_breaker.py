import time

import pytest

from workcall.breaker import CircuitBreaker, CircuitBreakerOpen


class _Redis:
    """The handful of redis commands the breaker uses, kept in a dict."""

    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value

    async def incr(self, key):
        self.data[key] = str(int(self.data.get(key) or 0) + 1)
        return int(self.data[key])

    async def expire(self, key, seconds):
        return True

    async def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)

    def pipeline(self):
        return _Pipeline(self)


class _Pipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    def set(self, *args, **kwargs):
        self.ops.append(self.redis.set(*args, **kwargs))

    def delete(self, *keys):
        self.ops.append(self.redis.delete(*keys))

    async def execute(self):
        for op in self.ops:
            await op


async def test_opens_after_threshold_and_reports_retry_after():
    breaker = CircuitBreaker("bkash", failure_threshold=3, reset_timeout_seconds=30, redis=_Redis())

    for _ in range(2):
        await breaker.record_failure()
    await breaker.allow_request()

    await breaker.record_failure()
    with pytest.raises(CircuitBreakerOpen) as exc:
        await breaker.allow_request()
    assert 1 <= exc.value.retry_after <= 30
    assert (await breaker.status())["state"] == "OPEN"


async def test_half_open_probe_closes_or_reopens():
    redis = _Redis()
    breaker = CircuitBreaker("sslcommerz", failure_threshold=1, reset_timeout_seconds=30, redis=redis)

    await breaker.record_failure()
    redis.data[breaker._key("opened_at")] = str(time.time() - 31)

    await breaker.allow_request()
    assert await breaker.state() == "HALF_OPEN"
    await breaker.record_failure()
    assert await breaker.state() == "OPEN"

    redis.data[breaker._key("opened_at")] = str(time.time() - 31)
    await breaker.allow_request()
    await breaker.record_success()
    assert await breaker.status() == {"name": "sslcommerz", "state": "CLOSED", "failures": 0}
