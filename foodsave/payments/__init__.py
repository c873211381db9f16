# payments/__init__.py
from ..config import Settings
from .base import (
    CORRELATION_KEY, CURRENCY, SESSION_COMPLETED, SESSION_EXPIRED,
    CheckoutSession, PaymentAdapter,
    event_kind, event_session, session_payment_id, session_reservation_id,
)
from ._mockpay import MockPay
from ._stripe import StripeGateway


def new_adapter(settings: Settings) -> PaymentAdapter:
    if settings.payment_provider == "stripe":
        return StripeGateway(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
        )
    if settings.payment_provider == "mock":
        return MockPay(secret=settings.mock_secret, base_url=settings.base_url)
    raise RuntimeError(
        f"unknown payment provider: {settings.payment_provider!r}"
    )


__all__ = [
    "CORRELATION_KEY", "CURRENCY", "SESSION_COMPLETED", "SESSION_EXPIRED",
    "CheckoutSession", "PaymentAdapter", "MockPay", "StripeGateway",
    "event_kind", "event_session", "session_payment_id",
    "session_reservation_id", "new_adapter",
]
