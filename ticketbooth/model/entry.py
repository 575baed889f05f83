# model/entry.py
"""
Door validation.

A ticket is consumed by one conditional UPDATE (... WHERE status='valid');
whoever's update hits the row gets the entry, every other scanner sees zero
affected rows and reports AlreadyUsed. Reading the ticket first is only for
resolving the code, never for deciding.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update

from . import GatedAsyncSession
from .orm import (
    P_COMPLETED, T_USED, T_VALID, Entry, Purchase, Ticket,
)
from .purchases import _by_reference
from ..errors import AlreadyUsed, InvalidCode, NotFound
from ..helpers import now_ts, to_iso
from ..qr import payload_ticket_number

log = logging.getLogger("ticketbooth.entry")

LEGACY_PREFIX = "TICKET_"


# UN-GATED internal functions
async def _ticket_by_number(db, number: str) -> Optional[Ticket]:
    return (await db.execute(
        select(Ticket).where(Ticket.ticket_number == number)
    )).scalars().first()


async def _resolve(db, code: str) -> Tuple[List[Ticket], Optional[Purchase]]:
    """
    Candidate tickets for a scanned code, in the order they should be tried.

    Per-ticket codes (plain ticket number or the JSON payload) resolve to
    exactly one ticket. A legacy whole-purchase code resolves to the
    purchase's still-valid tickets; each scan consumes the next one.
    """
    t = await _ticket_by_number(db, code)
    if t is None:
        number = payload_ticket_number(code)
        if number:
            t = await _ticket_by_number(db, number)
    if t is not None:
        return [t], None

    reference = code[len(LEGACY_PREFIX):] if code.startswith(
        LEGACY_PREFIX) else code
    p = await _by_reference(db, reference)
    if p is None or p.status != P_COMPLETED:
        return [], None
    valid = (await db.execute(
        select(Ticket)
        .where(Ticket.purchase_id == p.id, Ticket.status == T_VALID)
        .order_by(Ticket.seq)
    )).scalars().all()
    return list(valid), p


def _ticket_dict(t: Ticket) -> Dict[str, Any]:
    return {
        "ticket_number": t.ticket_number,
        "ticket_type": t.type_name,
        "price": t.unit_price,
        "status": t.status,
        "used_at": to_iso(t.used_at),
    }


async def _purchase_context(db, purchase_id: str) -> Dict[str, Any]:
    p = (await db.execute(
        select(Purchase)
        .where(Purchase.id == purchase_id)
        .execution_options(populate_existing=True)
    )).scalars().one()
    total = (await db.execute(
        select(func.count()).select_from(Ticket)
        .where(Ticket.purchase_id == purchase_id)
    )).scalar_one()
    return {
        "reference": p.reference,
        "customer_info": p.customer_info,
        "total_amount": p.total_amount,
        "currency": p.currency,
        "used_entries": p.used_entries,
        "ticket_count": int(total),
        "remaining": max(0, int(total) - int(p.used_entries)),
    }


# ------------------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------------------

async def validate_entry(ac: GatedAsyncSession, code: str) -> Dict[str, Any]:
    code = (code or "").strip()
    if not code:
        raise InvalidCode("no code given")

    async with ac.gated():
        async with ac.session.begin():
            db = ac.session
            candidates, legacy = await _resolve(db, code)
            if not candidates:
                if legacy is not None:
                    raise AlreadyUsed(
                        "all tickets for this purchase have been used",
                        details=await _purchase_context(db, legacy.id),
                    )
                log.info("scan rejected: unknown code %r", code[:64])
                raise InvalidCode("code not found")

            now = now_ts()
            admitted: Optional[Ticket] = None
            for t in candidates:
                res = await db.execute(
                    update(Ticket)
                    .where(Ticket.id == t.id, Ticket.status == T_VALID)
                    .values(status=T_USED, used_at=now)
                )
                if res.rowcount == 1:
                    admitted = t
                    break

            if admitted is None:
                t = candidates[0]
                fresh = (await db.execute(
                    select(Ticket).where(Ticket.id == t.id)
                    .execution_options(populate_existing=True)
                )).scalars().one()
                log.info("scan rejected: %s already used", t.ticket_number)
                raise AlreadyUsed(
                    f"ticket {t.ticket_number} has already been used",
                    details={
                        "ticket": _ticket_dict(fresh),
                        "purchase": await _purchase_context(
                            db, t.purchase_id),
                    },
                )

            db.add(Entry(
                ticket_id=admitted.id,
                purchase_id=admitted.purchase_id,
                scanned_at=now,
            ))
            await db.execute(
                update(Purchase)
                .where(Purchase.id == admitted.purchase_id)
                .values(used_entries=Purchase.used_entries + 1)
            )
            await db.flush()
            context = await _purchase_context(db, admitted.purchase_id)

    log.info("entry granted: %s (%s)", admitted.ticket_number,
             context["reference"])
    return {
        "status": "success",
        "message": "Entry granted",
        "ticket": _ticket_dict(admitted),
        "purchase": context,
        "scanned_at": to_iso(now),
    }


async def lookup_ticket(ac: GatedAsyncSession, number: str) -> Dict[str, Any]:
    """Public metadata for a ticket number (what the QR's verify_url shows)."""
    async with ac.gated():
        async with ac.session.begin():
            t = await _ticket_by_number(ac.session, number)
            if t is None:
                raise NotFound(f"ticket {number} not found")
            p = await ac.session.get(Purchase, t.purchase_id)
    return {
        "ticketNumber": t.ticket_number,
        "status": t.status,
        "purchaseDate": to_iso(p.created_at),
        "customerInfo": p.customer_info,
        "ticketType": t.type_name,
        "price": t.unit_price,
        "reference": p.reference,
        "usedAt": to_iso(t.used_at),
    }


async def ticket_qr_code(ac: GatedAsyncSession, number: str) -> str:
    async with ac.gated():
        async with ac.session.begin():
            t = await _ticket_by_number(ac.session, number)
    if t is None:
        raise NotFound(f"ticket {number} not found")
    return t.qr_code


async def list_entries(
    ac: GatedAsyncSession, limit: int = 200
) -> List[Dict[str, Any]]:
    async with ac.gated():
        async with ac.session.begin():
            rows = (await ac.session.execute(
                select(Entry, Ticket, Purchase)
                .join(Ticket, Ticket.id == Entry.ticket_id)
                .join(Purchase, Purchase.id == Entry.purchase_id)
                .order_by(Entry.scanned_at.desc(), Entry.id.desc())
                .limit(max(1, min(limit, 500)))
            )).all()
    return [
        {
            "id": e.id,
            "scanned_at": to_iso(e.scanned_at),
            "ticket_number": t.ticket_number,
            "ticket_type": t.type_name,
            "reference": p.reference,
            "customer_name": (p.customer_info or {}).get("name", ""),
        }
        for e, t, p in rows
    ]
