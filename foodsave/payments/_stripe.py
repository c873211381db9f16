import asyncio
from typing import Any, Dict, List, Mapping, Optional

import orjson
import stripe

from ..errors import ConfigurationError, GatewayError, SignatureError
from ..logs import get_logger
from ..model.types import LineItem
from .base import (
    CORRELATION_KEY, CURRENCY, CheckoutSession, PaymentAdapter,
)

logger = get_logger("payments.stripe")


def _field(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def _to_checkout_session(session: Any) -> CheckoutSession:
    rid = _field(_field(session, "metadata"), CORRELATION_KEY)
    pi = _field(session, "payment_intent")
    if pi is not None and not isinstance(pi, str):
        pi = _field(pi, "id")
    return CheckoutSession(
        id=_field(session, "id"),
        url=_field(session, "url"),
        reservation_id=str(rid) if rid else None,
        payment_id=pi or None,
        status=_field(session, "status"),
    )


class StripeGateway(PaymentAdapter):
    """Stripe Checkout. The SDK is blocking, so calls go to a worker thread."""

    name = "stripe"
    SIGNATURE_HEADER = "stripe-signature"

    def __init__(self, secret_key: str, webhook_secret: str) -> None:
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    @property
    def webhook_configured(self) -> bool:
        return bool(self.secret_key and self.webhook_secret)

    async def create_session(
        self,
        *,
        reservation_id: str,
        line_items: List[LineItem],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        if not self.configured:
            raise ConfigurationError("Payment gateway is not configured.")

        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": [{
                "price_data": {
                    "currency": CURRENCY,
                    "product_data": {"name": item.package_name},
                    "unit_amount": item.unit_price_cents,
                },
                "quantity": item.quantity,
            } for item in line_items],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": {CORRELATION_KEY: reservation_id},
            "client_reference_id": reservation_id,
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self.secret_key,
                **params,
            )
        except stripe.StripeError as e:
            logger.error("stripe_session_create_failed",
                         reservation_id=reservation_id, error=str(e))
            raise GatewayError("Could not start the payment.") from e
        return _to_checkout_session(session)

    async def retrieve_session(self, session_id: str) -> CheckoutSession:
        if not self.configured:
            raise ConfigurationError("Payment gateway is not configured.")
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve,
                session_id,
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            raise GatewayError(f"Could not retrieve session: {e}") from e
        return _to_checkout_session(session)

    def verify_webhook(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> Dict[str, Any]:
        if not self.webhook_configured:
            raise ConfigurationError("Stripe webhook not configured.")
        sig = headers.get(self.SIGNATURE_HEADER)
        if not sig:
            raise SignatureError("Webhook Error: missing signature header")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                sig,
                self.webhook_secret,
                tolerance=stripe.Webhook.DEFAULT_TOLERANCE,
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureError(f"Webhook Error: {e}") from e
        except UnicodeDecodeError as e:
            raise SignatureError("Webhook Error: payload is not UTF-8") from e
        try:
            event = orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise SignatureError("Webhook Error: invalid JSON") from e
        if not isinstance(event, dict):
            raise SignatureError("Webhook Error: invalid event")
        return event
