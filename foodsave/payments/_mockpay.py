import base64
import hashlib
import hmac
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional, Tuple

import orjson

from ..errors import ConfigurationError, GatewayError, SignatureError
from ..model.types import LineItem, total_cents
from .base import (
    CORRELATION_KEY, CURRENCY, SESSION_COMPLETED, CheckoutSession,
    PaymentAdapter,
)


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    """
    In-process stand-in for the hosted checkout. Sessions live in memory
    (so they are lost on restart), events are Stripe-shaped and signed with
    base64(HMAC-SHA256(secret, body)) in `x-mockpay-signature`.
    """

    name = "mock"
    SIGNATURE_HEADER = "x-mockpay-signature"

    def __init__(self, secret: str, base_url: str = "") -> None:
        self.secret = secret
        self.base_url = base_url.rstrip("/")
        self._sessions: Dict[str, Dict[str, Any]] = {}

    @property
    def configured(self) -> bool:
        return True

    @property
    def webhook_configured(self) -> bool:
        return bool(self.secret)

    async def create_session(
        self,
        *,
        reservation_id: str,
        line_items: List[LineItem],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        psid = f"cs_mock_{uuid.uuid4().hex}"
        self._sessions[psid] = {
            "id": psid,
            "object": "checkout.session",
            "status": "open",
            "amount_total": total_cents(line_items),
            "currency": CURRENCY,
            "customer_email": customer_email,
            "client_reference_id": reservation_id,
            "metadata": {CORRELATION_KEY: reservation_id},
            "payment_intent": None,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        return CheckoutSession(
            id=psid,
            url=f"{self.base_url}/mockpay/{psid}",
            reservation_id=reservation_id,
            status="open",
        )

    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        s = self._sessions.get(session_id)
        if s is None:
            raise GatewayError(f"No such checkout session: {session_id}")
        return CheckoutSession(
            id=s["id"],
            url=f"{self.base_url}/mockpay/{s['id']}",
            reservation_id=s["metadata"].get(CORRELATION_KEY),
            payment_id=s["payment_intent"],
            status=s["status"],
        )

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self._sessions.get(session_id)

    def sign(self, payload: bytes) -> str:
        mac = hmac.new(self.secret.encode(), payload, hashlib.sha256).digest()
        return base64.b64encode(mac).decode()

    def build_event(
            self, session_id: str, kind: str
    ) -> Tuple[bytes, Dict[str, str]]:
        """Settle a session and return (payload, headers) for the webhook."""
        s = self._sessions.get(session_id)
        if s is None:
            raise GatewayError(f"No such checkout session: {session_id}")
        if kind == SESSION_COMPLETED:
            s["status"] = "complete"
            s["payment_intent"] = (
                s["payment_intent"] or f"pi_mock_{uuid.uuid4().hex[:24]}"
            )
        else:
            s["status"] = kind
        event = {
            "id": f"evt_{uuid.uuid4().hex}",
            "object": "event",
            "type": f"checkout.session.{kind}",
            "created": int(time.time()),
            "data": {"object": dict(s)},
        }
        payload = orjson.dumps(event)
        return payload, {
            self.SIGNATURE_HEADER: self.sign(payload),
            "content-type": "application/json",
        }

    def verify_webhook(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> Dict[str, Any]:
        if not self.webhook_configured:
            raise ConfigurationError("MockPay webhook not configured.")
        sig = headers.get(self.SIGNATURE_HEADER)
        expected = self.sign(payload)
        if not sig or not hmac.compare_digest(expected, sig):
            raise SignatureError("Invalid signature")
        try:
            event = orjson.loads(payload)
        except orjson.JSONDecodeError:
            raise SignatureError("Invalid JSON")
        if not isinstance(event, dict):
            raise SignatureError("Invalid JSON")
        return event
