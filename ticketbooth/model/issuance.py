# model/issuance.py
"""
Turning a verified payment into tickets.

issue_tickets() is safe to call any number of times for the same reference
(client callback, retries, duplicate webhooks): the first caller that gets
past verification claims the purchase's fulfillment gate and mints; every
later caller gets the already minted tickets back.
"""
from __future__ import annotations
import asyncio
import logging
import time
import uuid
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError

from . import GatedAsyncSession
from .inventory import sold_by_type
from .orm import (
    P_COMPLETED, P_PENDING, T_VALID, Purchase, PurchaseItem, Ticket,
    TicketType,
)
from .purchases import _by_reference, _items, _tickets
from ..errors import (
    Conflict, InsufficientAvailability, IssuanceFailed, NotFound,
    PaymentVerificationFailed,
)
from ..gateway import PaymentGateway
from ..helpers import legacy_purchase_code, new_ticket_number, now_ts
from ..ledger import would_oversell
from ..qr import ticket_payload

log = logging.getLogger("ticketbooth.issuance")

# fresh ticket numbers tried per seat before that seat is given up
MINT_ATTEMPTS = 3

# how long a duplicate delivery waits on the caller that is minting
GATE_WAIT_SECONDS = 15.0
GATE_POLL_START = 0.02
GATE_POLL_MAX = 0.5

Issued = Tuple[str, List[Tuple[str, str]]]


def _issued(reference: str, tickets: List[Ticket]) -> Issued:
    return reference, [(t.ticket_number, t.qr_code) for t in tickets]


async def _claim_gate(ac: GatedAsyncSession, purchase_id: str) -> bool:
    async with ac.gated():
        async with ac.session.begin():
            row = (await ac.session.execute(text("""
                INSERT INTO fulfillment_gates(purchase_id, created_at)
                VALUES(:pid, :now)
                ON CONFLICT (purchase_id) DO NOTHING
                RETURNING purchase_id
            """), {"pid": purchase_id, "now": now_ts()})).first()
    return row is not None


async def _release_gate(ac: GatedAsyncSession, purchase_id: str) -> None:
    async with ac.gated():
        async with ac.session.begin():
            await ac.session.execute(
                text("DELETE FROM fulfillment_gates WHERE purchase_id=:pid"),
                {"pid": purchase_id},
            )


async def _gate_state(
    ac: GatedAsyncSession, purchase_id: str
) -> Tuple[List[Ticket], bool]:
    """Stored tickets, and whether someone still holds the gate."""
    async with ac.gated():
        async with ac.session.begin():
            tickets = await _tickets(ac.session, purchase_id)
            held = (await ac.session.execute(
                text("SELECT 1 FROM fulfillment_gates WHERE purchase_id=:pid"),
                {"pid": purchase_id},
            )).first() is not None
    return tickets, held


async def _await_holder(
    ac: GatedAsyncSession, purchase_id: str, reference: str
) -> Optional[List[Ticket]]:
    """
    Wait for the caller that holds the gate. Returns its tickets, or None
    if it let go of the gate without minting (the purchase is up for grabs
    again).
    """
    delay = GATE_POLL_START
    deadline = time.monotonic() + GATE_WAIT_SECONDS
    while time.monotonic() < deadline:
        await asyncio.sleep(delay)
        delay = min(delay * 2, GATE_POLL_MAX)
        tickets, held = await _gate_state(ac, purchase_id)
        if tickets:
            return tickets
        if not held:
            return None
    raise Conflict(
        f"tickets for {reference} are being issued",
        details={"reference": reference},
    )


# UN-GATED internal function
async def _check_capacity(db, items: List[PurchaseItem]) -> None:
    """Compare-and-decrement: refuse to complete a purchase that oversells."""
    wanted: Dict[str, int] = {}
    for i in items:
        wanted[i.ticket_type_id] = wanted.get(i.ticket_type_id, 0) + i.quantity

    types = (await db.execute(
        select(TicketType)
        .where(TicketType.id.in_(sorted(wanted)))
        .with_for_update()
    )).scalars().all()
    by_id = {t.id: t for t in types}
    sold = await sold_by_type(db)

    for tid, qty in wanted.items():
        t = by_id.get(tid)
        if t is None:
            raise Conflict(
                "ticket type is no longer on sale",
                details={"ticket_type_id": tid},
            )
        if would_oversell(int(t.total), sold.get(tid, 0), qty):
            raise InsufficientAvailability(
                f"'{t.name}' would be oversold",
                details={
                    "ticket_type_id": tid,
                    "total": int(t.total),
                    "sold": sold.get(tid, 0),
                    "requested": qty,
                },
            )


# UN-GATED internal function
async def _insert_ticket(
    db, p: Purchase, item: PurchaseItem, seq: int, base_url: str
) -> Optional[Ticket]:
    for attempt in range(1, MINT_ATTEMPTS + 1):
        number = new_ticket_number(p.id)
        t = Ticket(
            id=uuid.uuid4().hex,
            ticket_number=number,
            qr_code=ticket_payload(number, p.reference, base_url),
            purchase_id=p.id,
            ticket_type_id=item.ticket_type_id,
            type_name=item.name,
            unit_price=item.unit_price,
            seq=seq,
            status=T_VALID,
            created_at=now_ts(),
        )
        try:
            async with db.begin_nested():
                db.add(t)
            return t
        except IntegrityError as e:
            log.warning(
                "purchase %s seat %d: ticket insert failed (attempt %d/%d): %s",
                p.reference, seq, attempt, MINT_ATTEMPTS, e.orig,
            )
    log.error("purchase %s seat %d: giving up", p.reference, seq)
    return None


async def _mint(
    ac: GatedAsyncSession, purchase_id: str, base_url: str
) -> List[Ticket]:
    async with ac.gated():
        async with ac.session.begin():
            db = ac.session
            p = await db.get(Purchase, purchase_id)
            items = await _items(db, purchase_id)
            await _check_capacity(db, items)

            minted: List[Ticket] = []
            seq = 0
            for item in items:
                for _ in range(item.quantity):
                    t = await _insert_ticket(db, p, item, seq, base_url)
                    seq += 1
                    if t is not None:
                        minted.append(t)

            if not minted:
                raise IssuanceFailed(
                    "no ticket could be stored",
                    details={"reference": p.reference, "requested": seq},
                )

            res = await db.execute(
                update(Purchase)
                .where(Purchase.id == purchase_id,
                       Purchase.status == P_PENDING)
                .values(
                    status=P_COMPLETED,
                    completed_at=now_ts(),
                    qr_code=legacy_purchase_code(p.reference),
                )
            )
            if res.rowcount != 1:
                raise Conflict(
                    f"purchase {p.reference} is no longer pending",
                    details={"reference": p.reference},
                )
    if len(minted) < seq:
        log.error("purchase %s: issued %d of %d tickets",
                  p.reference, len(minted), seq)
    else:
        log.info("purchase %s: issued %d tickets", p.reference, len(minted))
    return minted


async def issue_tickets(
    ac: GatedAsyncSession,
    gateway: PaymentGateway,
    reference: str,
    *,
    base_url: str,
) -> Issued:
    async with ac.gated():
        async with ac.session.begin():
            p = await _by_reference(ac.session, reference)
            if p is None:
                # never mint from a callback payload alone
                raise NotFound(f"purchase {reference} not found")
            existing = await _tickets(ac.session, p.id)

    if existing:
        return _issued(reference, existing)
    if p.status != P_PENDING:
        raise Conflict(
            f"purchase {reference} is {p.status}",
            details={"reference": reference, "status": p.status},
        )

    verdict = await gateway.verify_transaction(p.reference)
    if not verdict["ok"]:
        raise PaymentVerificationFailed(
            "payment was not confirmed by the gateway",
            details={"reference": reference, "status": verdict["status"]},
        )
    if verdict["amount"] is not None and verdict["amount"] < p.total_amount:
        raise PaymentVerificationFailed(
            "amount paid does not cover the purchase",
            details={
                "reference": reference,
                "paid": verdict["amount"],
                "expected": p.total_amount,
            },
        )

    while not await _claim_gate(ac, p.id):
        existing = await _await_holder(ac, p.id, reference)
        if existing:
            return _issued(reference, existing)

    try:
        minted = await _mint(ac, p.id, base_url)
    except Exception:
        await _release_gate(ac, p.id)
        raise
    return _issued(reference, minted)
