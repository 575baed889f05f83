from __future__ import annotations
from typing import Dict, Mapping, Optional
import redis.asyncio as redis

from ...helpers import now_ts


# ---- keys
def k_hold(reference: str) -> str: return f"hold:{reference}"


HOLD_INDEX = "holds"  # zset: reference -> expires_at


class HoldStore:
    """Seat holds as one expiring hash per reference ({type_id: qty})."""

    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def place(self, reference: str, quantities: Mapping[str, int]) -> None:
        mapping = {k: str(int(v)) for k, v in quantities.items() if int(v) > 0}
        pipe = self.r.pipeline(transaction=True)
        pipe.delete(k_hold(reference))
        if mapping:
            pipe.hset(k_hold(reference), mapping=mapping)
            pipe.expire(k_hold(reference), self.ttl)
            pipe.zadd(HOLD_INDEX, {reference: now_ts() + self.ttl})
        else:
            pipe.zrem(HOLD_INDEX, reference)
        await pipe.execute()

    async def release(self, reference: str) -> None:
        pipe = self.r.pipeline(transaction=True)
        pipe.zrem(HOLD_INDEX, reference)
        pipe.delete(k_hold(reference))
        await pipe.execute()

    async def held_counts(
        self, exclude: Optional[str] = None
    ) -> Dict[str, int]:
        now = now_ts()
        # housekeeping: drop index entries whose hash already expired
        await self.r.zremrangebyscore(HOLD_INDEX, "-inf", now)
        refs = await self.r.zrangebyscore(HOLD_INDEX, now, "+inf")
        refs = [ref for ref in refs if ref != exclude]
        if not refs:
            return {}
        pipe = self.r.pipeline(transaction=False)
        for ref in refs:
            pipe.hgetall(k_hold(ref))
        hashes = await pipe.execute()
        out: Dict[str, int] = {}
        for h in hashes:
            for type_id, qty in (h or {}).items():
                out[type_id] = out.get(type_id, 0) + int(qty)
        return out
