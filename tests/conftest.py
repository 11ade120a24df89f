import os

os.environ.setdefault("BOOKING_DB", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["RATE_LIMIT_PER_MINUTE"] = "0"
os.environ.pop("RABBIT_URL", None)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from workcall.db import Base  # noqa: E402
from workcall.fanout import Fanout  # noqa: E402
from workcall.hub import ConnectionHub  # noqa: E402

from .factories import FakeDirectory, FakeGateway, RecordingPublisher, worker  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def hub():
    return ConnectionHub()


@pytest.fixture
def fanout(publisher, hub):
    return Fanout(publisher, hub)


@pytest.fixture
def directory():
    return FakeDirectory(
        worker("w1", rate="500"),
        worker("w2", rate="400"),
        worker("w3", rate="450"),
        worker("w-busy", availability="busy"),
        worker("w-new", verified=False),
    )


@pytest.fixture
def bkash():
    return FakeGateway()


@pytest.fixture
def gateways(bkash):
    from workcall.lifecycle import Gateway

    return {Gateway.BKASH: bkash, Gateway.SSLCOMMERZ: FakeGateway(prefix="WC")}
