from __future__ import annotations
from typing import Any, Dict, Optional

from .errors import FoodSaveError, NotFoundError
from .infra.timings import timeit
from .logs import get_logger
from .model.reservation import ReservationStore
from .model.types import Reservation
from .payments import PaymentAdapter

logger = get_logger("reconcile")


class ReconciliationResolver:
    """
    Read path for the thank-you page, which may poll before the webhook has
    landed. Falls back to asking the provider which reservation a session
    belongs to, and relinks the session id when the checkout could not.
    Never changes a reservation's status.
    """

    def __init__(
        self, *, store: ReservationStore, gateway: PaymentAdapter
    ) -> None:
        self.store = store
        self.gateway = gateway

    async def resolve_session(self, session_id: str) -> Dict[str, Any]:
        reservation = await self.find(session_id)
        if reservation is None:
            raise NotFoundError("Reservation not found.")
        return reservation.summary()

    async def find(self, session_id: str) -> Optional[Reservation]:
        async with timeit("store.get_by_session_id"):
            reservation = await self.store.get_by_session_id(session_id)
        if reservation is not None:
            return reservation

        try:
            async with timeit("gateway.retrieve_session"):
                session = await self.gateway.retrieve_session(session_id)
        except FoodSaveError as e:
            logger.info("session_lookup_failed", session_id=session_id,
                        error=e.message)
            return None

        if not session.reservation_id:
            return None
        reservation = await self.store.get(session.reservation_id)
        if reservation is None:
            return None

        if not reservation.session_id:
            if await self.store.backfill_session(reservation.id, session.id):
                logger.info("session_backfilled",
                            reservation_id=reservation.id,
                            session_id=session.id)
                reservation = reservation.with_updates(session_id=session.id)
        return reservation
