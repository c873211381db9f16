from __future__ import annotations
from typing import Any, Dict, List, Optional

import orjson
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ...helpers import now_ts
from ...infra.sql import Gated
from ..db import ReservationRow
from ..types import LineItem, Reservation, STATUS_PENDING


_COLUMNS = """
    id, items, total_cents, address, pickup_date, pickup_time,
    customer_name, phone, email, special_requests, status,
    session_id, payment_id, created_at, updated_at
"""


def _dump_items(items: List[LineItem]) -> str:
    return orjson.dumps([i.to_dict() for i in items]).decode()


def _from_row(row: Dict[str, Any]) -> Reservation:
    return Reservation(
        id=row["id"],
        items=[LineItem.from_dict(d) for d in orjson.loads(row["items"])],
        total_cents=int(row["total_cents"]),
        address=row["address"],
        pickup_date=row["pickup_date"],
        pickup_time=row["pickup_time"],
        customer_name=row["customer_name"],
        phone=row["phone"],
        email=row["email"],
        special_requests=row["special_requests"] or "",
        status=row["status"],
        session_id=row["session_id"],
        payment_id=row["payment_id"],
        created_at=float(row["created_at"]),
        updated_at=float(row["updated_at"]),
    )


class ReservationStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def _fetch_one(self, where: str, params: Dict[str, Any]):
        row = (await self.db.execute(
            text(f"SELECT {_COLUMNS} FROM reservations WHERE {where}"),
            params,
        )).mappings().first()
        return _from_row(row) if row else None

    async def create(self, reservation: Reservation) -> Reservation:
        ts = now_ts()
        async with self.gated():
            async with self.db.begin():
                self.db.add(ReservationRow(
                    id=reservation.id,
                    items=_dump_items(reservation.items),
                    total_cents=reservation.total_cents,
                    currency="eur",
                    address=reservation.address,
                    pickup_date=reservation.pickup_date,
                    pickup_time=reservation.pickup_time,
                    customer_name=reservation.customer_name,
                    phone=reservation.phone,
                    email=reservation.email,
                    special_requests=reservation.special_requests,
                    status=reservation.status,
                    session_id=reservation.session_id,
                    payment_id=reservation.payment_id,
                    created_at=ts,
                    updated_at=ts,
                ))
        return reservation.with_updates(created_at=ts, updated_at=ts)

    async def get(self, reservation_id: str) -> Optional[Reservation]:
        async with self.gated():
            async with self.db.begin():
                return await self._fetch_one("id = :id", {"id": reservation_id})

    async def get_by_session_id(self, session_id: str) -> Optional[Reservation]:
        async with self.gated():
            async with self.db.begin():
                return await self._fetch_one(
                    "session_id = :sid ORDER BY created_at DESC LIMIT 1",
                    {"sid": session_id},
                )

    async def attach_session(self, reservation_id: str, session_id: str) -> None:
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(text("""
                  UPDATE reservations
                  SET session_id = :sid, updated_at = :now
                  WHERE id = :id
                """), {"id": reservation_id, "sid": session_id,
                       "now": now_ts()})

    async def backfill_session(
            self, reservation_id: str, session_id: str
    ) -> bool:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(text("""
                  UPDATE reservations
                  SET session_id = :sid, updated_at = :now
                  WHERE id = :id AND (session_id IS NULL OR session_id = '')
                """), {"id": reservation_id, "sid": session_id,
                       "now": now_ts()})
        return result.rowcount == 1

    async def transition(
        self,
        reservation_id: str,
        to_status: str,
        *,
        session_id: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> Optional[Reservation]:
        """
        Compare-and-set on status: only a reservation still in `pending` is
        moved. Returns the updated reservation when *this* call changed it,
        None when it was already terminal or does not exist.
        """
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(text("""
                  UPDATE reservations
                  SET status = :to_status,
                      session_id = COALESCE(:sid, session_id),
                      payment_id = COALESCE(:pid, payment_id),
                      updated_at = :now
                  WHERE id = :id AND status = :pending
                """), {
                    "id": reservation_id,
                    "to_status": to_status,
                    "sid": session_id,
                    "pid": payment_id,
                    "now": now_ts(),
                    "pending": STATUS_PENDING,
                })
                if result.rowcount != 1:
                    return None
                return await self._fetch_one("id = :id", {"id": reservation_id})

    async def list_recent(
        self, limit: int = 50, status: Optional[str] = None
    ) -> List[Reservation]:
        params: Dict[str, Any] = {"lim": int(limit)}
        where = ""
        if status:
            where = "WHERE status = :status"
            params["status"] = status
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(text(f"""
                  SELECT {_COLUMNS} FROM reservations
                  {where}
                  ORDER BY created_at DESC
                  LIMIT :lim
                """), params)).mappings().all()
        return [_from_row(r) for r in rows]


async def create_schema(conn) -> None:
    await conn.run_sync(ReservationRow.metadata.create_all)
