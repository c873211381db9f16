from datetime import date, timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from foodsave.catalog import PACKAGE_CATALOG
from foodsave.config import Settings
from foodsave.load_client import (
    Result, Stats, one_order, random_checkout_payload,
)
from foodsave.server import create_app

from conftest import MOCK_SECRET


def test_random_payload_is_a_valid_order():
    payload = random_checkout_payload()
    assert payload["items"]
    assert all(i["packageId"] in PACKAGE_CATALOG for i in payload["items"])
    pickup = date.fromisoformat(payload["pickupDate"])
    assert date.today() <= pickup <= date.today() + timedelta(days=5)


def test_stats_summary():
    stats = Stats()
    stats.add(Result(ok=True, outcome="paid", t_observed=0.1))
    stats.add(Result(ok=True, outcome="expired", t_observed=0.3))
    stats.add(Result(ok=True, outcome="TIMEOUT"))
    stats.add(Result(ok=False, outcome="ERROR", err="boom"))

    s = stats.summary()
    assert (s["total"], s["ok"], s["paid"], s["expired"]) == (4, 3, 1, 1)
    assert (s["timeout"], s["error"]) == (1, 1)
    assert s["avg_s"] == pytest.approx(0.2)


@pytest.fixture
def app(tmp_path):
    app = create_app(Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'load.db'}",
        payment_provider="mock",
        mock_secret=MOCK_SECRET,
        mock_webhook_url="http://testserver/api/checkout/webhook",
        base_url="http://testserver",
        log_json=False,
        log_level="WARNING",
    ))
    app.state.http = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )
    return app


@pytest.mark.parametrize("kind", ["completed", "expired"])
def test_one_order_against_the_app(app, kind):
    browser = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
    with TestClient(app) as client:
        result = client.portal.call(
            one_order, browser, "http://testserver", kind, 0.01, 2.0
        )
    assert result.ok, result.err
    assert result.outcome == ("paid" if kind == "completed" else "expired")
