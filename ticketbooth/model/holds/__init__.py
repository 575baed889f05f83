# model/holds/__init__.py
"""
Seat holds: seats a pending checkout keeps away from other buyers until it
completes, is cancelled, or its hold expires.

HOLD_BACKEND picks where they live. 'sql' keeps them in the seat_holds
table next to the purchases; 'redis' keeps one expiring hash per checkout.
Both expose place() / release() / held_counts().
"""
from typing import Optional
import redis.asyncio as redis

from ... import config
from .. import Gated
from sqlalchemy.ext.asyncio import AsyncSession

BACKEND = config.HOLD_BACKEND  # 'sql' | 'redis'

if BACKEND == "redis":
    from ._redis import HoldStore
else:
    from ._sql import HoldStore


def new_store(*, db: Optional[AsyncSession] = None,
              r: Optional[redis.Redis] = None,
              ttl_seconds: int = config.HOLD_TTL_SECONDS,
              gated: Gated = None) -> HoldStore:
    if BACKEND == "redis":
        if r is None:
            raise ValueError("redis seat holds need a client (r=...)")
        return HoldStore(r=r, ttl_seconds=ttl_seconds)
    if db is None or gated is None:
        raise ValueError("sql seat holds need a session and the DB gate")
    return HoldStore(db=db, ttl_seconds=ttl_seconds, gated=gated)


__all__ = ["HoldStore", "new_store", "BACKEND"]
