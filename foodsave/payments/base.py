from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from ..model.types import LineItem


CORRELATION_KEY = "reservationId"
CURRENCY = "eur"

SESSION_COMPLETED = "completed"
SESSION_EXPIRED = "expired"


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: Optional[str]
    reservation_id: Optional[str]
    payment_id: Optional[str] = None
    status: Optional[str] = None


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentAdapter(ABC):
    name: str = ""

    @property
    @abstractmethod
    def configured(self) -> bool:
        """Can we open checkout sessions at all?"""

    @property
    @abstractmethod
    def webhook_configured(self) -> bool:
        """Do we hold the shared secret to authenticate webhooks?"""

    @abstractmethod
    async def create_session(
        self,
        *,
        reservation_id: str,
        line_items: List[LineItem],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession: ...

    @abstractmethod
    async def retrieve_session(self, session_id: str) -> CheckoutSession: ...

    # raises SignatureError; returns the decoded event on success
    @abstractmethod
    def verify_webhook(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> Dict[str, Any]: ...


# ----------------------------
# Event accessors (provider wire format: Stripe-shaped events)
# ----------------------------
def event_kind(event: Mapping[str, Any]) -> str:
    # "checkout.session.completed" -> "completed"; anything else -> ""
    etype = event.get("type") or ""
    prefix = "checkout.session."
    if not isinstance(etype, str) or not etype.startswith(prefix):
        return ""
    return etype[len(prefix):]


def event_session(event: Mapping[str, Any]) -> Dict[str, Any]:
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, Mapping) else None
    return obj if isinstance(obj, dict) else {}


def session_reservation_id(session: Mapping[str, Any]) -> Optional[str]:
    metadata = session.get("metadata") or {}
    if not isinstance(metadata, Mapping):
        return None
    rid = metadata.get(CORRELATION_KEY)
    return str(rid) if rid else None


def session_payment_id(session: Mapping[str, Any]) -> Optional[str]:
    pi = session.get("payment_intent")
    # payment_intent may come expanded
    if isinstance(pi, Mapping):
        pi = pi.get("id")
    return str(pi) if pi else None
