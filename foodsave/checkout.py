"""
Checkout orchestration.

A checkout request is validated and priced against the catalog, persisted as
a `pending` reservation and only then handed to the payment provider. The
provider session id is linked back onto the reservation afterwards; if that
last write fails the session can still be found again through the
reconciliation path (`reconcile.py`) via its correlation metadata.
"""
from __future__ import annotations
import re
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

from .catalog import Catalog
from .errors import ConfigurationError, ValidationError
from .infra.timings import timeit
from .logs import get_logger
from .model.reservation import ReservationStore
from .model.types import LineItem, Reservation, STATUS_PENDING, total_cents
from .payments import PaymentAdapter

logger = get_logger("checkout")

MIN_QUANTITY = 1
MAX_QUANTITY = 20
PICKUP_WINDOW_DAYS = 5
SPECIAL_REQUESTS_MAX = 500

# must be present and non-blank
REQUIRED_FIELDS = ("name", "phone", "address", "pickupTime", "pickupDate",
                   "email")

# plain decimal or exponent notation; no underscores, hex or inf/nan
_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class CheckoutRequest:
    items: List[LineItem]
    total_cents: int
    address: str
    pickup_date: str
    pickup_time: str
    customer_name: str
    phone: str
    email: str
    special_requests: str


def parse_quantity(value: Any) -> Optional[int]:
    # bool is an int subclass; True is not a quantity
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and _NUMBER_RE.match(value.strip()):
        value = float(value.strip())
    if isinstance(value, int):
        qty = value
    elif isinstance(value, float):
        # "2.0" and "1e1" are whole numbers; 2.5 and overflowing inf are not
        if not value.is_integer():
            return None
        qty = int(value)
    else:
        return None
    if qty < MIN_QUANTITY or qty > MAX_QUANTITY:
        return None
    return qty


def parse_pickup_date(value: Any, today: date) -> date:
    if not isinstance(value, str) or not _DATE_RE.match(value.strip()):
        raise ValidationError("Invalid pickup date.")
    try:
        picked = date.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError("Invalid pickup date.")
    if picked < today or picked > today + timedelta(days=PICKUP_WINDOW_DAYS):
        raise ValidationError(
            f"Pickup date must be between today and "
            f"{PICKUP_WINDOW_DAYS} days from now."
        )
    return picked


def _text(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    return str(value).strip()


def normalize_items(raw_items: Any, catalog: Catalog) -> List[LineItem]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Select at least one package.")
    items: List[LineItem] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError("Invalid item.")
        package_id = raw.get("packageId")
        entry = catalog.lookup(package_id)
        if entry is None:
            raise ValidationError(f"Unknown package: {package_id}.")
        qty = parse_quantity(raw.get("quantity"))
        if qty is None:
            raise ValidationError(
                f"Invalid quantity for {package_id}: must be a whole number "
                f"between {MIN_QUANTITY} and {MAX_QUANTITY}."
            )
        # name and price always come from the catalog, never from the client
        items.append(LineItem(
            package_id=entry.id,
            package_name=entry.name,
            unit_price_cents=entry.price_cents,
            quantity=qty,
        ))
    return items


def validate_request(
    payload: Any, catalog: Catalog, today: date
) -> CheckoutRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid request body.")

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Select at least one package.")

    fields = {k: _text(payload, k) for k in REQUIRED_FIELDS}
    if not fields["name"]:
        fields["name"] = _text(payload, "customerName")
    missing = [k for k, v in fields.items() if not v]
    if missing:
        raise ValidationError(
            "Please fill in all details (missing: " + ", ".join(missing) + ")."
        )

    pickup = parse_pickup_date(fields["pickupDate"], today)
    items = normalize_items(raw_items, catalog)

    special = payload.get("specialRequests")
    special = str(special)[:SPECIAL_REQUESTS_MAX] if special else ""

    return CheckoutRequest(
        items=items,
        total_cents=total_cents(items),
        address=fields["address"],
        pickup_date=pickup.isoformat(),
        pickup_time=fields["pickupTime"],
        customer_name=fields["name"],
        phone=fields["phone"],
        email=fields["email"],
        special_requests=special,
    )


class CheckoutOrchestrator:
    def __init__(
        self,
        *,
        catalog: Catalog,
        store: ReservationStore,
        gateway: PaymentAdapter,
        base_url: str,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.gateway = gateway
        self.base_url = base_url.rstrip("/")
        self.today = today

    @property
    def success_url(self) -> str:
        # the provider substitutes {CHECKOUT_SESSION_ID}
        return f"{self.base_url}/thank-you.html?session_id={{CHECKOUT_SESSION_ID}}"

    @property
    def cancel_url(self) -> str:
        return f"{self.base_url}/payment-failed.html"

    async def create_checkout(self, payload: Any) -> Dict[str, str]:
        if not self.gateway.configured:
            raise ConfigurationError("Payment gateway is not configured.")

        req = validate_request(payload, self.catalog, self.today())

        reservation = Reservation(
            id=uuid.uuid4().hex,
            items=req.items,
            total_cents=req.total_cents,
            address=req.address,
            pickup_date=req.pickup_date,
            pickup_time=req.pickup_time,
            customer_name=req.customer_name,
            phone=req.phone,
            email=req.email,
            special_requests=req.special_requests,
            status=STATUS_PENDING,
        )
        async with timeit("store.create"):
            reservation = await self.store.create(reservation)

        async with timeit("gateway.create_session"):
            session = await self.gateway.create_session(
                reservation_id=reservation.id,
                line_items=reservation.items,
                success_url=self.success_url,
                cancel_url=self.cancel_url,
                customer_email=reservation.email,
            )

        try:
            async with timeit("store.attach_session"):
                await self.store.attach_session(reservation.id, session.id)
        except Exception:
            # session exists at the provider; reconciliation can relink it
            logger.exception("session_link_failed",
                             reservation_id=reservation.id,
                             session_id=session.id)

        logger.info("checkout_created",
                    reservation_id=reservation.id,
                    session_id=session.id,
                    total_cents=reservation.total_cents,
                    items=len(reservation.items))
        return {"url": session.url, "reservationId": reservation.id}
