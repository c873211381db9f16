from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from ..helpers import to_iso

# pending -> paid | expired; paid and expired are terminal
STATUS_PENDING = "pending"
STATUS_PAID = "paid"
STATUS_EXPIRED = "expired"
STATUSES = (STATUS_PENDING, STATUS_PAID, STATUS_EXPIRED)
TERMINAL_STATUSES = frozenset({STATUS_PAID, STATUS_EXPIRED})


@dataclass(frozen=True)
class LineItem:
    package_id: str
    package_name: str
    unit_price_cents: int
    quantity: int

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "packageId": self.package_id,
            "packageName": self.package_name,
            "unitPriceCents": self.unit_price_cents,
            "quantity": self.quantity,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> LineItem:
        return cls(
            package_id=d["packageId"],
            package_name=d["packageName"],
            unit_price_cents=int(d["unitPriceCents"]),
            quantity=int(d["quantity"]),
        )


def total_cents(items: List[LineItem]) -> int:
    return sum(item.subtotal_cents for item in items)


@dataclass
class Reservation:
    items: List[LineItem]
    total_cents: int
    address: str
    pickup_date: str
    pickup_time: str
    customer_name: str
    phone: str
    email: str
    special_requests: str = ""
    status: str = STATUS_PENDING
    session_id: Optional[str] = None
    payment_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[float] = None
    updated_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def with_updates(self, **changes: Any) -> Reservation:
        return replace(self, **changes)

    def summary(self) -> Dict[str, Any]:
        # what the thank-you page polls for
        return {
            "items": [i.to_dict() for i in self.items],
            "totalCents": self.total_cents,
            "status": self.status,
            "customerName": self.customer_name,
            "pickupDate": self.pickup_date,
            "pickupTime": self.pickup_time,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "items": [i.to_dict() for i in self.items],
            "totalCents": self.total_cents,
            "address": self.address,
            "pickupDate": self.pickup_date,
            "pickupTime": self.pickup_time,
            "customerName": self.customer_name,
            "phone": self.phone,
            "email": self.email,
            "specialRequests": self.special_requests,
            "status": self.status,
            "sessionId": self.session_id,
            "paymentId": self.payment_id,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }
