# model/reservation/__init__.py
from typing import Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from ...infra.sql import Gated
from ._postgres import ReservationStore as SqlReservationStore, create_schema
from ._redis import ReservationStore as RedisReservationStore

ReservationStore = Union[SqlReservationStore, RedisReservationStore]


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, backend: str = "sql",  # "sql" | "redis"
              db: Optional[AsyncSession] = None,
              gated: Optional[Gated] = None,
              r: Optional[redis.Redis] = None) -> ReservationStore:
    backend = backend.lower()
    if backend == "redis":
        if r is None:
            raise RuntimeError(
                "ReservationStore(redis) requires r=redis.Redis"
            )
        return RedisReservationStore(r=r)
    if backend != "sql":
        raise RuntimeError(f"unknown reservation backend: {backend!r}")
    if db is None:
        raise RuntimeError("ReservationStore(sql) requires db=AsyncSession")
    if gated is None:
        raise RuntimeError("ReservationStore(sql) requires gated=Gated")
    return SqlReservationStore(db=db, gated=gated)


__all__ = [
    "ReservationStore", "SqlReservationStore", "RedisReservationStore",
    "new_store", "create_schema",
]
