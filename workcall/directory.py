from dataclasses import dataclass
from decimal import Decimal

import httpx

from .config import WORKER_SERVICE_URL, DIRECTORY_TIMEOUT_SECONDS
from .errors import NotFoundError, UpstreamError


@dataclass
class WorkerProfile:
    worker_id: str
    hourly_rate: Decimal
    is_verified: bool
    is_active: bool
    availability_status: str = "available"
    service_category_id: str | None = None

    @property
    def assignable(self) -> bool:
        return self.is_verified and self.is_active


class WorkerDirectory:
    """Read-only client for the worker profile service (verification comes from NID/face checks there)."""

    def __init__(
        self,
        base_url: str = WORKER_SERVICE_URL,
        timeout: float = DIRECTORY_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def get_worker(self, worker_id: str) -> WorkerProfile:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.get(f"{self.base_url}/workers/{worker_id}")
        except httpx.TimeoutException:
            raise UpstreamError("Timeout calling worker directory", http_status=504)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Worker directory unreachable: {e}")

        if r.status_code == 404:
            raise NotFoundError("Worker not found")
        if r.status_code != 200:
            raise UpstreamError(f"Worker directory responded {r.status_code}")

        data = r.json()
        return WorkerProfile(
            worker_id=str(data.get("worker_id") or worker_id),
            hourly_rate=Decimal(str(data.get("hourly_rate") or 0)),
            is_verified=bool(data.get("is_verified")),
            is_active=bool(data.get("is_active", True)),
            availability_status=data.get("availability_status") or "available",
            service_category_id=data.get("service_category_id"),
        )


worker_directory = WorkerDirectory()


def get_directory() -> WorkerDirectory:
    return worker_directory
