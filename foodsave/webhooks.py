from __future__ import annotations
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError, SignatureError
from .infra.timings import timeit
from .logs import get_logger
from .model.reservation import ReservationStore
from .model.types import Reservation, STATUS_EXPIRED, STATUS_PAID
from .notify import NotificationDispatcher
from .payments import (
    PaymentAdapter, SESSION_COMPLETED, SESSION_EXPIRED,
    event_kind, event_session, session_payment_id, session_reservation_id,
)

logger = get_logger("webhooks")

ACK = {"received": True}


class WebhookProcessor:
    """
    Applies provider events to reservations.

    The signature check is the only authentication; once it passes, every
    event is acknowledged, whatever happens to it. Status changes go through
    the store's compare-and-set, so duplicate or late events are no-ops and
    notifications fire only for the delivery that actually moved the
    reservation from `pending` to `paid`.
    """

    def __init__(
        self,
        *,
        gateway: PaymentAdapter,
        store: ReservationStore,
        notifier: NotificationDispatcher,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.notifier = notifier

    async def handle_event(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> Dict[str, Any]:
        if not self.gateway.webhook_configured:
            raise ConfigurationError("Payment webhook not configured.")

        # nothing touches the store until the signature checks out
        try:
            event = self.gateway.verify_webhook(payload, headers)
        except SignatureError as e:
            logger.warning("webhook_rejected", provider=self.gateway.name,
                           error=e.message)
            raise

        kind = event_kind(event)
        if kind == SESSION_COMPLETED:
            await self._on_completed(event)
        elif kind == SESSION_EXPIRED:
            await self._on_expired(event)
        else:
            logger.debug("webhook_ignored", event_type=event.get("type"),
                         event_id=event.get("id"))
        return dict(ACK)

    async def _on_completed(self, event: Dict[str, Any]) -> None:
        session = event_session(event)
        reservation_id = session_reservation_id(session)
        if not reservation_id:
            logger.warning("webhook_missing_correlation",
                           event_id=event.get("id"),
                           session_id=session.get("id"))
            return

        reservation = await self._transition(
            reservation_id, STATUS_PAID,
            session_id=session.get("id"),
            payment_id=session_payment_id(session),
            event_id=event.get("id"),
        )
        if reservation is None:
            return
        # the transition is committed; the event is acked whatever happens here
        try:
            self.notifier.reservation_paid(reservation)
        except Exception:
            logger.exception("notification_failed",
                             reservation_id=reservation.id,
                             event_id=event.get("id"))

    async def _on_expired(self, event: Dict[str, Any]) -> None:
        session = event_session(event)
        reservation_id = session_reservation_id(session)
        if not reservation_id:
            logger.warning("webhook_missing_correlation",
                           event_id=event.get("id"),
                           session_id=session.get("id"))
            return
        await self._transition(
            reservation_id, STATUS_EXPIRED,
            session_id=session.get("id"),
            event_id=event.get("id"),
        )

    async def _transition(
        self,
        reservation_id: str,
        to_status: str,
        *,
        session_id: Optional[str],
        payment_id: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> Optional[Reservation]:
        async with timeit("store.transition"):
            reservation = await self.store.transition(
                reservation_id, to_status,
                session_id=session_id, payment_id=payment_id,
            )
        if reservation is None:
            # unknown id, or already paid/expired
            logger.info("webhook_idempotent", reservation_id=reservation_id,
                        to_status=to_status, event_id=event_id)
            return None
        logger.info("reservation_transitioned", reservation_id=reservation_id,
                    status=to_status, session_id=session_id,
                    event_id=event_id)
        return reservation
