from __future__ import annotations
from typing import Dict, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .. import Gated
from ...helpers import now_ts


class HoldStore:
    """Seat holds as rows in seat_holds, one per (reference, ticket type)."""

    def __init__(
        self, *, db: AsyncSession, ttl_seconds: int, gated: Gated
    ) -> None:
        self.db = db
        self.ttl = ttl_seconds
        self.gated = gated

    async def place(self, reference: str, quantities: Mapping[str, int]) -> None:
        expires_at = now_ts() + self.ttl
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(
                    text("DELETE FROM seat_holds WHERE reference=:ref"),
                    {"ref": reference},
                )
                for type_id, qty in quantities.items():
                    if int(qty) <= 0:
                        continue
                    await self.db.execute(text("""
                        INSERT INTO seat_holds(
                            reference, ticket_type_id, qty, expires_at)
                        VALUES(:ref, :tid, :qty, :exp)
                    """), {
                        "ref": reference, "tid": type_id,
                        "qty": int(qty), "exp": expires_at,
                    })

    async def release(self, reference: str) -> None:
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(
                    text("DELETE FROM seat_holds WHERE reference=:ref"),
                    {"ref": reference},
                )

    async def held_counts(
        self, exclude: Optional[str] = None
    ) -> Dict[str, int]:
        now = now_ts()
        async with self.gated():
            async with self.db.begin():
                # housekeeping: expired holds no longer count
                await self.db.execute(
                    text("DELETE FROM seat_holds WHERE expires_at <= :now"),
                    {"now": now},
                )
                sql = (
                    "SELECT ticket_type_id, COALESCE(SUM(qty), 0) "
                    "FROM seat_holds WHERE expires_at > :now"
                )
                params = {"now": now}
                if exclude is not None:
                    sql += " AND reference <> :exclude"
                    params["exclude"] = exclude
                sql += " GROUP BY ticket_type_id"
                rows = (await self.db.execute(text(sql), params)).all()
        return {r[0]: int(r[1]) for r in rows}
