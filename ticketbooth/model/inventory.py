# model/inventory.py
"""
Ticket types and their derived availability.

Nothing about availability is stored: every read loads the types, the sold
quantities of completed purchases and the live seat holds, and hands them
to ledger.compute_availability().
"""
from __future__ import annotations
import uuid
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select, text

from . import GatedAsyncSession
from .orm import P_COMPLETED, TicketType
from ..errors import Conflict, NotFound
from ..helpers import now_ts
from ..ledger import (
    SoldLine, TypeAvailability, TypeSnapshot, compute_availability,
)

TYPE_FIELDS = (
    "name", "price", "description", "total",
    "event_date", "event_time", "location",
)
# optional tags: a None here clears the tag
TAG_FIELDS = ("event_date", "event_time", "location")


def snapshot(t: TicketType) -> TypeSnapshot:
    return TypeSnapshot(
        id=t.id,
        name=t.name,
        price=int(t.price),
        total=int(t.total),
        description=t.description or "",
        event_date=t.event_date,
        event_time=t.event_time,
        location=t.location,
    )


# UN-GATED internal functions
async def _sold_lines(db, type_ids: Optional[List[str]] = None) -> List[SoldLine]:
    rows = (await db.execute(text("""
        SELECT pi.ticket_type_id, COALESCE(SUM(pi.quantity), 0)
        FROM purchase_items AS pi
        JOIN purchases AS p ON p.id = pi.purchase_id
        WHERE p.status = :completed
        GROUP BY pi.ticket_type_id
    """), {"completed": P_COMPLETED})).all()
    lines = [SoldLine(ticket_type_id=r[0], quantity=int(r[1])) for r in rows]
    if type_ids is not None:
        wanted = set(type_ids)
        lines = [ln for ln in lines if ln.ticket_type_id in wanted]
    return lines


async def _load_types(db) -> List[TicketType]:
    result = await db.execute(
        select(TicketType).order_by(TicketType.created_at, TicketType.id)
    )
    return list(result.scalars().all())


async def sold_by_type(db) -> Dict[str, int]:
    return {ln.ticket_type_id: ln.quantity for ln in await _sold_lines(db)}


# ------------------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------------------

async def list_types(
    ac: GatedAsyncSession, held: Optional[Mapping[str, int]] = None
) -> List[TypeAvailability]:
    async with ac.gated():
        async with ac.session.begin():
            types = await _load_types(ac.session)
            sold = await _sold_lines(ac.session)
    return compute_availability([snapshot(t) for t in types], sold, held)


async def get_type(
    ac: GatedAsyncSession, type_id: str,
    held: Optional[Mapping[str, int]] = None,
) -> TypeAvailability:
    async with ac.gated():
        async with ac.session.begin():
            t = await ac.session.get(TicketType, type_id)
            if t is None:
                raise NotFound(f"ticket type {type_id} not found")
            sold = await _sold_lines(ac.session, [type_id])
    return compute_availability([snapshot(t)], sold, held)[0]


async def create_type(
    ac: GatedAsyncSession, fields: Mapping[str, Any]
) -> TypeAvailability:
    t = TicketType(
        id=uuid.uuid4().hex,
        created_at=now_ts(),
        **{k: fields.get(k) for k in TYPE_FIELDS},
    )
    if t.description is None:
        t.description = ""
    async with ac.gated():
        async with ac.session.begin():
            ac.session.add(t)
    return compute_availability([snapshot(t)], [])[0]


async def update_type(
    ac: GatedAsyncSession, type_id: str, fields: Mapping[str, Any],
    held: Optional[Mapping[str, int]] = None,
) -> TypeAvailability:
    """
    Sold seats are never rewritten: they are re-derived from completed
    purchases, so a new total simply yields max(0, total - sold - held).
    """
    async with ac.gated():
        async with ac.session.begin():
            t = await ac.session.get(TicketType, type_id)
            if t is None:
                raise NotFound(f"ticket type {type_id} not found")
            for k in TYPE_FIELDS:
                if k not in fields:
                    continue
                if fields[k] is not None or k in TAG_FIELDS:
                    setattr(t, k, fields[k])
            sold = await _sold_lines(ac.session, [type_id])
    return compute_availability([snapshot(t)], sold, held)[0]


async def delete_type(ac: GatedAsyncSession, type_id: str) -> None:
    async with ac.gated():
        async with ac.session.begin():
            t = await ac.session.get(TicketType, type_id)
            if t is None:
                raise NotFound(f"ticket type {type_id} not found")
            in_use = (await ac.session.execute(text("""
                SELECT COUNT(*) FROM purchase_items AS pi
                JOIN purchases AS p ON p.id = pi.purchase_id
                WHERE pi.ticket_type_id = :tid AND p.status = :completed
            """), {"tid": type_id, "completed": P_COMPLETED})).scalar_one()
            if int(in_use) > 0:
                raise Conflict(
                    f"ticket type '{t.name}' has sales and cannot be deleted",
                    details={"ticket_type_id": type_id},
                )
            await ac.session.delete(t)
