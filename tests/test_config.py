from foodsave.config import DEFAULT_DATABASE_URL, Settings
from foodsave.helpers import ct_equal, format_euro, to_iso
from foodsave.infra import timings


def test_defaults_without_environment():
    s = Settings.from_env({})
    assert s.payment_provider == "stripe"
    assert s.database_url == DEFAULT_DATABASE_URL
    assert s.resv_backend == "sql"
    assert s.base_url == "http://localhost:3000"
    assert s.mock_webhook_url == "http://localhost:3000/api/checkout/webhook"
    assert s.webhook_secret == ""
    assert s.mock_secret == ""
    assert s.db_gate_limit is None
    assert not s.mail_enabled
    assert s.log_json


def test_stripe_is_the_provider_unless_mock_is_requested():
    s = Settings.from_env({
        "STRIPE_SECRET_KEY": "sk_test_x",
        "STRIPE_WEBHOOK_SECRET": "whsec_x",
    })
    assert s.payment_provider == "stripe"
    assert s.webhook_secret == "whsec_x"

    forced = Settings.from_env({
        "STRIPE_SECRET_KEY": "sk_test_x", "PAYMENT_PROVIDER": "MOCK",
    })
    assert forced.payment_provider == "mock"


def test_explicit_values():
    s = Settings.from_env({
        "PORT": "8080",
        "BASE_URL": "https://foodsave.test/",
        "RESV_BACKEND": "Redis",
        "DB_GATE_LIMIT": "4",
        "RESEND_API_KEY": "re_x",
        "RESEND_FROM_EMAIL": "orders@foodsave.test",
        "LOG_LEVEL": "debug",
        "LOG_JSON": "0",
    })
    assert s.base_url == "https://foodsave.test"
    assert s.mock_webhook_url == "https://foodsave.test/api/checkout/webhook"
    assert s.resv_backend == "redis"
    assert s.db_gate_limit == 4
    assert s.mail_enabled
    assert s.log_level == "DEBUG"
    assert not s.log_json


def test_port_shapes_default_urls():
    s = Settings.from_env({"PORT": "8080"})
    assert s.base_url == "http://localhost:8080"
    assert s.mock_webhook_url == "http://localhost:8080/api/checkout/webhook"


def test_helpers():
    assert format_euro(2800) == "28,00 €"
    assert format_euro(1250) == "12,50 €"
    assert format_euro(5) == "0,05 €"
    assert to_iso(None) is None
    assert to_iso(0) == "1970-01-01T00:00:00+00:00"
    assert ct_equal("abc", "abc")
    assert not ct_equal("abc", "abd")


async def test_timings_aggregate_and_flush():
    timings.flush()
    async with timings.timeit("unit.op"):
        pass
    timings.record_timing("unit.op", 0.5)

    [row] = timings.aggregates()
    assert row["kind"] == "unit.op"
    assert row["n"] == 2

    assert timings.flush() == 1
    assert timings.aggregates() == []


def test_missing_stripe_key_does_not_fall_back_to_mock():
    s = Settings.from_env({"STRIPE_WEBHOOK_SECRET": "whsec_x"})
    assert s.payment_provider == "stripe"
    assert s.stripe_secret_key == ""

    mock = Settings.from_env({"PAYMENT_PROVIDER": "mock"})
    assert mock.payment_provider == "mock"
    assert mock.webhook_secret == ""
