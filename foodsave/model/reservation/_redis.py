from __future__ import annotations
from typing import Any, Dict, List, Optional

import orjson
import redis.asyncio as redis
from redis.exceptions import WatchError

from ...helpers import now_ts
from ..types import LineItem, Reservation, STATUS_PENDING


# ---- keys
def k_resv(rid: str) -> str: return f"resv:{rid}"
def k_sid(sid: str) -> str: return f"resv:sid:{sid}"
def k_idx_status(s: str) -> str: return f"idx:resv:status:{s}"


CREATED_INDEX = "idx:resv:created"


def _to_hash(r: Reservation) -> Dict[str, str]:
    # decode_responses=True -> everything is a string on the way back
    return {
        "id": r.id,
        "items": orjson.dumps([i.to_dict() for i in r.items]).decode(),
        "total_cents": str(r.total_cents),
        "currency": "eur",
        "address": r.address,
        "pickup_date": r.pickup_date,
        "pickup_time": r.pickup_time,
        "customer_name": r.customer_name,
        "phone": r.phone,
        "email": r.email,
        "special_requests": r.special_requests or "",
        "status": r.status,
        "session_id": r.session_id or "",
        "payment_id": r.payment_id or "",
        "created_at": str(r.created_at),
        "updated_at": str(r.updated_at),
    }


def _from_hash(h: Dict[str, str]) -> Reservation:
    return Reservation(
        id=h["id"],
        items=[LineItem.from_dict(d) for d in orjson.loads(h["items"])],
        total_cents=int(h["total_cents"]),
        address=h.get("address", ""),
        pickup_date=h.get("pickup_date", ""),
        pickup_time=h.get("pickup_time", ""),
        customer_name=h.get("customer_name", ""),
        phone=h.get("phone", ""),
        email=h.get("email", ""),
        special_requests=h.get("special_requests", ""),
        status=h.get("status", STATUS_PENDING),
        session_id=h.get("session_id") or None,
        payment_id=h.get("payment_id") or None,
        created_at=float(h.get("created_at", "0")),
        updated_at=float(h.get("updated_at", "0")),
    )


class ReservationStore:
    def __init__(self, *, r: redis.Redis) -> None:
        self.r = r

    async def create(self, reservation: Reservation) -> Reservation:
        ts = now_ts()
        reservation = reservation.with_updates(created_at=ts, updated_at=ts)
        pipe = self.r.pipeline(transaction=True)
        pipe.hset(k_resv(reservation.id), mapping=_to_hash(reservation))
        pipe.zadd(CREATED_INDEX, {reservation.id: ts})
        pipe.zadd(k_idx_status(reservation.status), {reservation.id: ts})
        if reservation.session_id:
            pipe.set(k_sid(reservation.session_id), reservation.id)
        await pipe.execute()
        return reservation

    async def get(self, reservation_id: str) -> Optional[Reservation]:
        h = await self.r.hgetall(k_resv(reservation_id))
        return _from_hash(h) if h else None

    async def get_by_session_id(self, session_id: str) -> Optional[Reservation]:
        rid = await self.r.get(k_sid(session_id))
        if not rid:
            return None
        return await self.get(rid)

    async def attach_session(self, reservation_id: str, session_id: str) -> None:
        pipe = self.r.pipeline(transaction=True)
        pipe.hset(k_resv(reservation_id), mapping={
            "session_id": session_id,
            "updated_at": str(now_ts()),
        })
        pipe.set(k_sid(session_id), reservation_id)
        await pipe.execute()

    async def backfill_session(
            self, reservation_id: str, session_id: str
    ) -> bool:
        key = k_resv(reservation_id)
        async with self.r.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    current = await pipe.hmget(key, ["id", "session_id"])
                    if not current[0] or current[1]:
                        # missing, or already linked
                        return False
                    pipe.multi()
                    pipe.hset(key, mapping={
                        "session_id": session_id,
                        "updated_at": str(now_ts()),
                    })
                    pipe.set(k_sid(session_id), reservation_id)
                    await pipe.execute()
                    return True
                except WatchError:
                    continue

    async def transition(
        self,
        reservation_id: str,
        to_status: str,
        *,
        session_id: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> Optional[Reservation]:
        """
        Optimistic WATCH/MULTI compare-and-set: the write only commits if the
        hash was untouched since we saw `pending`. A concurrent writer makes
        EXEC fail and we re-read; by then the status is terminal and we bail.
        """
        key = k_resv(reservation_id)
        async with self.r.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    h = await pipe.hgetall(key)
                    if not h or h.get("status") != STATUS_PENDING:
                        return None

                    changes: Dict[str, Any] = {
                        "status": to_status,
                        "updated_at": str(now_ts()),
                    }
                    if session_id:
                        changes["session_id"] = session_id
                    if payment_id:
                        changes["payment_id"] = payment_id

                    pipe.multi()
                    pipe.hset(key, mapping=changes)
                    pipe.zrem(k_idx_status(STATUS_PENDING), reservation_id)
                    pipe.zadd(k_idx_status(to_status), {
                        reservation_id: float(h.get("created_at", "0"))
                    })
                    if session_id:
                        pipe.set(k_sid(session_id), reservation_id)
                    await pipe.execute()
                except WatchError:
                    continue
                h.update(changes)
                return _from_hash(h)

    async def list_recent(
        self, limit: int = 50, status: Optional[str] = None
    ) -> List[Reservation]:
        index = k_idx_status(status) if status else CREATED_INDEX
        rids = await self.r.zrevrange(index, 0, max(0, limit - 1))
        pipe = self.r.pipeline()
        for rid in rids:
            pipe.hgetall(k_resv(rid))
        rows = await pipe.execute()
        return [_from_hash(h) for h in rows if h]
