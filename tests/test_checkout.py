from datetime import timedelta

import pytest

from foodsave.catalog import Catalog, CatalogEntry, PACKAGE_CATALOG
from foodsave.checkout import (
    CheckoutOrchestrator, parse_quantity, validate_request,
)
from foodsave.errors import ConfigurationError, GatewayError, ValidationError
from foodsave.model.types import STATUS_PENDING
from foodsave.payments import StripeGateway
from foodsave.reconcile import ReconciliationResolver

from conftest import TODAY, checkout_payload, fixed_today


def orchestrator(store, gateway, catalog=PACKAGE_CATALOG):
    return CheckoutOrchestrator(
        catalog=catalog,
        store=store,
        gateway=gateway,
        base_url="http://testserver/",
        today=fixed_today,
    )


# ----------------------------
# Catalog
# ----------------------------
def test_catalog_lookup():
    entry = PACKAGE_CATALOG.lookup("surprise")
    assert entry == CatalogEntry("surprise", "Surprise box", 800)
    assert PACKAGE_CATALOG.lookup("caviar") is None
    assert PACKAGE_CATALOG.lookup(None) is None
    assert {e.id for e in PACKAGE_CATALOG} == {
        "fresh", "fruit", "pastry", "surprise"
    }


def test_catalog_is_read_only():
    with pytest.raises(TypeError):
        PACKAGE_CATALOG._entries["fresh"] = CatalogEntry("fresh", "x", 1)


# ----------------------------
# Validation
# ----------------------------
def test_total_is_computed_from_catalog_prices():
    req = validate_request(checkout_payload(), PACKAGE_CATALOG, TODAY)
    assert req.total_cents == 2800
    assert [(i.package_name, i.unit_price_cents) for i in req.items] == [
        ("Cerstve pecivo", 1000), ("Surprise box", 800)
    ]


def test_client_supplied_prices_and_names_are_ignored():
    payload = checkout_payload(
        items=[{"packageId": "fresh", "quantity": 3, "unitPriceCents": 1,
                "priceCents": 1, "packageName": "Free stuff"}],
        totalCents=3,
    )
    req = validate_request(payload, PACKAGE_CATALOG, TODAY)
    assert req.total_cents == 3000
    assert req.items[0].package_name == "Cerstve pecivo"


def test_total_follows_injected_catalog():
    catalog = Catalog([CatalogEntry("fresh", "Bread", 350)])
    req = validate_request(
        checkout_payload(items=[{"packageId": "fresh", "quantity": 4}]),
        catalog, TODAY,
    )
    assert req.total_cents == 1400


@pytest.mark.parametrize("offset,ok", [
    (-1, False), (0, True), (1, True), (5, True), (6, False),
])
def test_pickup_date_window(offset, ok):
    payload = checkout_payload(
        pickupDate=(TODAY + timedelta(days=offset)).isoformat()
    )
    if ok:
        req = validate_request(payload, PACKAGE_CATALOG, TODAY)
        assert req.pickup_date == (TODAY + timedelta(days=offset)).isoformat()
    else:
        with pytest.raises(ValidationError, match="Pickup date"):
            validate_request(payload, PACKAGE_CATALOG, TODAY)


@pytest.mark.parametrize("value", ["tomorrow", "2026-02-30", "10.03.2026", 20260310])
def test_unparseable_pickup_date(value):
    with pytest.raises(ValidationError, match="Invalid pickup date"):
        validate_request(checkout_payload(pickupDate=value),
                         PACKAGE_CATALOG, TODAY)


@pytest.mark.parametrize("value,expected", [
    (1, 1), (20, 20), (7, 7), ("3", 3), (2.0, 2), ("2.0", 2), ("1e1", 10),
    (" 4 ", 4), ("2.5", None), ("1e400", None), ("0x10", None),
    (0, None), (21, None), (-1, None), (1.5, None), ("abc", None),
    ("1_0", None), (True, None), (None, None), ([2], None),
])
def test_parse_quantity(value, expected):
    assert parse_quantity(value) == expected


@pytest.mark.parametrize("qty", [0, 21, 2.5, "two"])
def test_bad_quantity_rejected(qty):
    payload = checkout_payload(items=[{"packageId": "fresh", "quantity": qty}])
    with pytest.raises(ValidationError, match="Invalid quantity"):
        validate_request(payload, PACKAGE_CATALOG, TODAY)


def test_unknown_package_rejected():
    payload = checkout_payload(items=[{"packageId": "caviar", "quantity": 1}])
    with pytest.raises(ValidationError, match="Unknown package"):
        validate_request(payload, PACKAGE_CATALOG, TODAY)


@pytest.mark.parametrize("items", [None, [], "fresh", {"packageId": "fresh"}])
def test_items_must_be_a_non_empty_list(items):
    with pytest.raises(ValidationError, match="at least one package"):
        validate_request(checkout_payload(items=items), PACKAGE_CATALOG, TODAY)


@pytest.mark.parametrize("field", [
    "name", "phone", "address", "pickupTime", "pickupDate", "email",
])
def test_required_fields(field):
    with pytest.raises(ValidationError, match=field):
        validate_request(checkout_payload(**{field: "  "}),
                         PACKAGE_CATALOG, TODAY)


def test_customer_name_alias():
    payload = checkout_payload(customerName="Peter")
    del payload["name"]
    req = validate_request(payload, PACKAGE_CATALOG, TODAY)
    assert req.customer_name == "Peter"


def test_special_requests_truncated():
    req = validate_request(checkout_payload(specialRequests="x" * 600),
                           PACKAGE_CATALOG, TODAY)
    assert len(req.special_requests) == 500
    req = validate_request(checkout_payload(specialRequests=None),
                           PACKAGE_CATALOG, TODAY)
    assert req.special_requests == ""


def test_body_must_be_an_object():
    with pytest.raises(ValidationError):
        validate_request(["items"], PACKAGE_CATALOG, TODAY)


# ----------------------------
# Orchestration
# ----------------------------
async def test_create_checkout_persists_pending_and_links_session(
        sql_store, mockpay):
    out = await orchestrator(sql_store, mockpay).create_checkout(
        checkout_payload()
    )

    rid = out["reservationId"]
    assert out["url"].startswith("http://testserver/mockpay/cs_mock_")
    psid = out["url"].rsplit("/", 1)[-1]

    reservation = await sql_store.get(rid)
    assert reservation.status == STATUS_PENDING
    assert reservation.total_cents == 2800
    assert reservation.session_id == psid
    assert reservation.customer_name == "Jana Novakova"

    session = mockpay.get_session(psid)
    assert session["metadata"] == {"reservationId": rid}
    assert session["amount_total"] == 2800
    assert session["success_url"] == (
        "http://testserver/thank-you.html?session_id={CHECKOUT_SESSION_ID}"
    )
    assert session["cancel_url"] == "http://testserver/payment-failed.html"


async def test_validation_failure_persists_nothing(sql_store, mockpay):
    with pytest.raises(ValidationError):
        await orchestrator(sql_store, mockpay).create_checkout(
            checkout_payload(items=[{"packageId": "fresh", "quantity": 0}])
        )
    assert await sql_store.list_recent() == []
    assert mockpay._sessions == {}


async def test_unconfigured_gateway_is_a_configuration_error(sql_store):
    gateway = StripeGateway(secret_key="", webhook_secret="")
    with pytest.raises(ConfigurationError):
        await orchestrator(sql_store, gateway).create_checkout(
            checkout_payload()
        )
    assert await sql_store.list_recent() == []


class FailingGateway:
    name = "failing"
    configured = True
    webhook_configured = True

    async def create_session(self, **kw):
        raise GatewayError("Could not start the payment.")


async def test_gateway_failure_surfaces_and_leaves_pending(sql_store):
    with pytest.raises(GatewayError):
        await orchestrator(sql_store, FailingGateway()).create_checkout(
            checkout_payload()
        )
    [reservation] = await sql_store.list_recent()
    assert reservation.status == STATUS_PENDING
    assert reservation.session_id is None


class LinkFailingStore:
    """Persists like the real store but cannot save the session link."""

    def __init__(self, inner):
        self.inner = inner

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def attach_session(self, reservation_id, session_id):
        raise ConnectionError("database went away")


async def test_link_failure_is_not_fatal_and_reconciliation_heals(
        sql_store, mockpay):
    out = await orchestrator(
        LinkFailingStore(sql_store), mockpay
    ).create_checkout(checkout_payload())
    psid = out["url"].rsplit("/", 1)[-1]

    reservation = await sql_store.get(out["reservationId"])
    assert reservation.session_id is None

    resolver = ReconciliationResolver(store=sql_store, gateway=mockpay)
    summary = await resolver.resolve_session(psid)
    assert summary["status"] == STATUS_PENDING
    assert (await sql_store.get_by_session_id(psid)).id == reservation.id
