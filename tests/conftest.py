"""Shared pytest fixtures for the reservation payment lifecycle."""

from datetime import date, timedelta

import fakeredis
import pytest

from foodsave.catalog import PACKAGE_CATALOG
from foodsave.infra.sql import make_async_engine
from foodsave.model.reservation import create_schema, new_store
from foodsave.model.types import LineItem, Reservation
from foodsave.payments import MockPay

TODAY = date(2026, 3, 10)
MOCK_SECRET = "test-secret"


def fixed_today() -> date:
    return TODAY


def checkout_payload(**overrides) -> dict:
    """A valid checkout request body; override any field."""
    payload = {
        "items": [
            {"packageId": "fresh", "quantity": 2},
            {"packageId": "surprise", "quantity": 1},
        ],
        "name": "Jana Novakova",
        "phone": "+421900123456",
        "address": "Hlavna 1, Bratislava",
        "pickupDate": (TODAY + timedelta(days=1)).isoformat(),
        "pickupTime": "17:30",
        "email": "jana@example.com",
        "specialRequests": "No nuts please",
    }
    payload.update(overrides)
    return payload


def make_reservation(rid: str = "r1", **overrides) -> Reservation:
    items = [
        LineItem("fresh", "Cerstve pecivo", 1000, 2),
        LineItem("surprise", "Surprise box", 800, 1),
    ]
    fields = dict(
        id=rid,
        items=items,
        total_cents=2800,
        address="Hlavna 1, Bratislava",
        pickup_date="2026-03-11",
        pickup_time="17:30",
        customer_name="Jana Novakova",
        phone="+421900123456",
        email="jana@example.com",
        special_requests="No nuts please",
    )
    fields.update(overrides)
    return Reservation(**fields)


class RecordingNotifier:
    """Stands in for NotificationDispatcher; remembers who got notified."""

    def __init__(self):
        self.paid = []

    def reservation_paid(self, reservation):
        self.paid.append(reservation)
        return []


class UntouchableStore:
    """Fails the test if anything reaches for the store."""

    def __getattr__(self, name):
        raise AssertionError(f"store.{name} was touched")


@pytest.fixture
def catalog():
    return PACKAGE_CATALOG


@pytest.fixture
def mockpay():
    return MockPay(secret=MOCK_SECRET, base_url="http://testserver")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
async def sql_engine(tmp_path):
    engine, SessionAsync, gated = make_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'reservations.db'}"
    )
    async with engine.begin() as conn:
        await create_schema(conn)
    yield engine, SessionAsync, gated
    await engine.dispose()


@pytest.fixture
async def sql_store(sql_engine):
    _, SessionAsync, gated = sql_engine
    async with SessionAsync() as session:
        yield new_store(backend="sql", db=session, gated=gated)


@pytest.fixture
async def redis_client():
    r = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield r
    await r.flushall()
    await r.aclose()


@pytest.fixture
async def redis_store(redis_client):
    return new_store(backend="redis", r=redis_client)


@pytest.fixture(params=["sql", "redis"])
def store(request):
    if request.param == "sql":
        return request.getfixturevalue("sql_store")
    return request.getfixturevalue("redis_store")
