# model/purchases.py
from __future__ import annotations
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError

from . import GatedAsyncSession
from .orm import (
    P_COMPLETED, P_FAILED, P_PENDING, Purchase, PurchaseItem, Ticket,
)
from ..cart import Cart
from ..errors import Conflict, NotFound
from ..helpers import now_ts, to_iso

log = logging.getLogger("ticketbooth.purchases")


def purchase_to_dict(
    p: Purchase, items: List[PurchaseItem],
    tickets: Optional[List[Ticket]] = None,
) -> Dict[str, Any]:
    out = {
        "id": p.id,
        "reference": p.reference,
        "status": p.status,
        "customer_info": p.customer_info,
        "items": [
            {
                "ticket_type_id": i.ticket_type_id,
                "name": i.name,
                "unit_price": i.unit_price,
                "quantity": i.quantity,
            }
            for i in items
        ],
        "ticket_count": sum(i.quantity for i in items),
        "total_amount": p.total_amount,
        "currency": p.currency,
        "created_at": to_iso(p.created_at),
        "completed_at": to_iso(p.completed_at),
        "used_entries": p.used_entries,
    }
    if tickets is not None:
        out["tickets"] = [
            {
                "ticket_number": t.ticket_number,
                "qr_code": t.qr_code,
                "ticket_type": t.type_name,
                "status": t.status,
            }
            for t in tickets
        ]
    return out


# UN-GATED internal functions
async def _items(db, purchase_id: str) -> List[PurchaseItem]:
    result = await db.execute(
        select(PurchaseItem)
        .where(PurchaseItem.purchase_id == purchase_id)
        .order_by(PurchaseItem.position)
    )
    return list(result.scalars().all())


async def _tickets(db, purchase_id: str) -> List[Ticket]:
    result = await db.execute(
        select(Ticket)
        .where(Ticket.purchase_id == purchase_id)
        .order_by(Ticket.seq)
    )
    return list(result.scalars().all())


async def _by_reference(db, reference: str) -> Optional[Purchase]:
    result = await db.execute(
        select(Purchase).where(Purchase.reference == reference)
    )
    return result.scalars().first()


# ------------------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------------------

async def create_pending(
    ac: GatedAsyncSession,
    *,
    reference: str,
    customer: Dict[str, str],
    cart: Cart,
    currency: str,
) -> Purchase:
    """
    Persist the purchase before the gateway widget opens, so an abandoned
    checkout still leaves a trail.
    """
    p = Purchase(
        id=uuid.uuid4().hex,
        reference=reference,
        customer_info=dict(customer),
        total_amount=cart.total(),
        currency=currency,
        status=P_PENDING,
        created_at=now_ts(),
        used_entries=0,
    )
    try:
        async with ac.gated():
            async with ac.session.begin():
                ac.session.add(p)
                await ac.session.flush()
                for pos, item in enumerate(cart.items()):
                    ac.session.add(PurchaseItem(
                        purchase_id=p.id,
                        position=pos,
                        ticket_type_id=item.ticket_type_id,
                        name=item.name,
                        unit_price=item.unit_price,
                        quantity=item.quantity,
                    ))
    except IntegrityError:
        raise Conflict(
            f"reference {reference} is already in use",
            details={"reference": reference},
        )
    return p


async def get_by_reference(
    ac: GatedAsyncSession, reference: str, with_tickets: bool = True
) -> Dict[str, Any]:
    async with ac.gated():
        async with ac.session.begin():
            p = await _by_reference(ac.session, reference)
            if p is None:
                raise NotFound(f"purchase {reference} not found")
            items = await _items(ac.session, p.id)
            tickets = (
                await _tickets(ac.session, p.id) if with_tickets else None
            )
    return purchase_to_dict(p, items, tickets)


async def mark_failed(ac: GatedAsyncSession, reference: str) -> Purchase:
    """pending -> failed. Failing twice is a no-op; completed stays put."""
    async with ac.gated():
        async with ac.session.begin():
            p = await _by_reference(ac.session, reference)
            if p is None:
                raise NotFound(f"purchase {reference} not found")
            if p.status == P_COMPLETED:
                raise Conflict(
                    f"purchase {reference} is already completed",
                    details={"reference": reference},
                )
            await ac.session.execute(
                update(Purchase)
                .where(Purchase.id == p.id, Purchase.status == P_PENDING)
                .values(status=P_FAILED)
            )
    p.status = P_FAILED
    return p


async def search(
    ac: GatedAsyncSession,
    *,
    status: Optional[str] = None,
    q: Optional[str] = None,
    limit: int = 200,
) -> List[Dict[str, Any]]:
    limit = max(1, min(limit, 500))
    stmt = select(Purchase).order_by(Purchase.created_at.desc())
    if status:
        stmt = stmt.where(Purchase.status == status)
    if not q:
        stmt = stmt.limit(limit)
    async with ac.gated():
        async with ac.session.begin():
            rows = list((await ac.session.execute(stmt)).scalars().all())
            if q:
                # customer_info is JSON; match name/email in python
                needle = q.strip().lower()
                rows = [p for p in rows if _matches(p, needle)][:limit]
            out = []
            for p in rows:
                out.append(purchase_to_dict(p, await _items(ac.session, p.id)))
    return out


def _matches(p: Purchase, needle: str) -> bool:
    info = p.customer_info or {}
    return (
        needle in p.reference.lower()
        or needle in str(info.get("name", "")).lower()
        or needle in str(info.get("email", "")).lower()
    )


async def expire_stale(
    ac: GatedAsyncSession, older_than_seconds: int
) -> List[str]:
    """Mark pending purchases older than the cutoff failed; return refs."""
    cutoff = now_ts() - older_than_seconds
    async with ac.gated():
        async with ac.session.begin():
            rows = (await ac.session.execute(
                select(Purchase.id, Purchase.reference).where(
                    Purchase.status == P_PENDING,
                    Purchase.created_at < cutoff,
                )
            )).all()
            if not rows:
                return []
            # a gate row means issuance is running for that purchase
            gated_ids = {
                r[0] for r in (await ac.session.execute(
                    text("SELECT purchase_id FROM fulfillment_gates")
                )).all()
            }
            stale: List[Tuple[str, str]] = [
                (r[0], r[1]) for r in rows if r[0] not in gated_ids
            ]
            if stale:
                await ac.session.execute(
                    update(Purchase)
                    .where(
                        Purchase.id.in_([pid for pid, _ in stale]),
                        Purchase.status == P_PENDING,
                    )
                    .values(status=P_FAILED)
                )
    refs = [ref for _, ref in stale]
    if refs:
        log.info("expired %d stale pending purchase(s)", len(refs))
    return refs

