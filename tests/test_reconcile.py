import pytest

from foodsave.errors import GatewayError, NotFoundError
from foodsave.model.types import STATUS_PAID, STATUS_PENDING
from foodsave.reconcile import ReconciliationResolver

from conftest import make_reservation


async def open_session(mockpay, reservation_id):
    session = await mockpay.create_session(
        reservation_id=reservation_id,
        line_items=make_reservation().items,
        success_url="http://testserver/ok",
        cancel_url="http://testserver/cancel",
    )
    return session.id


@pytest.fixture
def resolver(store, mockpay):
    return ReconciliationResolver(store=store, gateway=mockpay)


async def test_found_by_session_id(resolver, store):
    await store.create(make_reservation("r1"))
    await store.transition("r1", STATUS_PAID, session_id="cs_1",
                           payment_id="pi_1")

    summary = await resolver.resolve_session("cs_1")
    assert summary == {
        "items": [
            {"packageId": "fresh", "packageName": "Cerstve pecivo",
             "unitPriceCents": 1000, "quantity": 2},
            {"packageId": "surprise", "packageName": "Surprise box",
             "unitPriceCents": 800, "quantity": 1},
        ],
        "totalCents": 2800,
        "status": STATUS_PAID,
        "customerName": "Jana Novakova",
        "pickupDate": "2026-03-11",
        "pickupTime": "17:30",
    }


async def test_unlinked_session_is_found_through_provider_and_backfilled(
        resolver, store, mockpay):
    await store.create(make_reservation("r1"))
    psid = await open_session(mockpay, "r1")

    summary = await resolver.resolve_session(psid)
    assert summary["status"] == STATUS_PENDING

    stored = await store.get("r1")
    assert stored.session_id == psid
    assert stored.status == STATUS_PENDING
    assert (await store.get_by_session_id(psid)).id == "r1"


async def test_existing_session_link_is_not_overwritten(
        resolver, store, mockpay):
    await store.create(make_reservation("r1"))
    await store.attach_session("r1", "cs_original")
    psid = await open_session(mockpay, "r1")

    summary = await resolver.resolve_session(psid)
    assert summary["customerName"] == "Jana Novakova"
    assert (await store.get("r1")).session_id == "cs_original"


async def test_unknown_session_is_not_found(resolver):
    with pytest.raises(NotFoundError, match="Reservation not found."):
        await resolver.resolve_session("cs_nope")


async def test_session_for_unknown_reservation_is_not_found(
        resolver, mockpay):
    psid = await open_session(mockpay, "ghost")
    with pytest.raises(NotFoundError):
        await resolver.resolve_session(psid)


class BrokenGateway:
    name = "broken"

    async def retrieve_session(self, session_id):
        raise GatewayError("provider unavailable")


async def test_provider_errors_read_as_not_found(store):
    resolver = ReconciliationResolver(store=store, gateway=BrokenGateway())
    with pytest.raises(NotFoundError):
        await resolver.resolve_session("cs_1")
