# model/admin.py
"""Event details, gateway credentials and the sales report."""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import func, select, text

from . import GatedAsyncSession
from .inventory import _load_types, sold_by_type
from .orm import P_COMPLETED, P_PENDING, Entry, EventDetails, Setting, Ticket
from .. import config
from ..helpers import mask_secret, now_ts, to_iso

K_PUBLIC_KEY = "paystack_public_key"
K_SECRET_KEY = "paystack_secret_key"


@dataclass(frozen=True)
class GatewayCredentials:
    public_key: str
    secret_key: str

    @property
    def configured(self) -> bool:
        return bool(self.public_key and self.secret_key)


# ------------------------------------------------------------------------------
# Event details
# ------------------------------------------------------------------------------

def _event_dict(e: Optional[EventDetails]) -> Optional[Dict[str, Any]]:
    if e is None:
        return None
    return {
        "event_name": e.event_name,
        "event_date": e.event_date,
        "venue": e.venue,
        "updated_at": to_iso(e.created_at),
    }


async def get_event(ac: GatedAsyncSession) -> Optional[Dict[str, Any]]:
    async with ac.gated():
        async with ac.session.begin():
            e = (await ac.session.execute(
                select(EventDetails)
                .order_by(EventDetails.created_at.desc(),
                          EventDetails.id.desc())
                .limit(1)
            )).scalars().first()
    return _event_dict(e)


async def save_event(
    ac: GatedAsyncSession, *, event_name: str, event_date: str, venue: str
) -> Dict[str, Any]:
    # every save is a new row; the newest one is current
    e = EventDetails(
        event_name=event_name,
        event_date=event_date,
        venue=venue,
        created_at=now_ts(),
    )
    async with ac.gated():
        async with ac.session.begin():
            ac.session.add(e)
    return _event_dict(e)


# ------------------------------------------------------------------------------
# Gateway credentials
# ------------------------------------------------------------------------------

async def gateway_credentials(ac: GatedAsyncSession) -> GatewayCredentials:
    async with ac.gated():
        async with ac.session.begin():
            rows = (await ac.session.execute(
                select(Setting.key, Setting.value)
                .where(Setting.key.in_([K_PUBLIC_KEY, K_SECRET_KEY]))
            )).all()
    saved = {k: v for k, v in rows}
    return GatewayCredentials(
        public_key=saved.get(K_PUBLIC_KEY) or config.PAYSTACK_PUBLIC_KEY,
        secret_key=saved.get(K_SECRET_KEY) or config.PAYSTACK_SECRET_KEY,
    )


async def save_gateway_credentials(
    ac: GatedAsyncSession, *, public_key: str, secret_key: str
) -> None:
    async with ac.gated():
        async with ac.session.begin():
            for key, value in ((K_PUBLIC_KEY, public_key.strip()),
                               (K_SECRET_KEY, secret_key.strip())):
                await ac.session.merge(Setting(key=key, value=value))


def masked(creds: GatewayCredentials) -> Dict[str, Any]:
    return {
        "public_key": creds.public_key,
        "secret_key": mask_secret(creds.secret_key),
        "configured": creds.configured,
    }


# ------------------------------------------------------------------------------
# Reporting
# ------------------------------------------------------------------------------

async def sales_stats(ac: GatedAsyncSession) -> Dict[str, Any]:
    async with ac.gated():
        async with ac.session.begin():
            db = ac.session
            revenue, completed = (await db.execute(text("""
                SELECT COALESCE(SUM(total_amount), 0), COUNT(*)
                FROM purchases WHERE status = :completed
            """), {"completed": P_COMPLETED})).one()
            by_status = dict((await db.execute(text("""
                SELECT status, COUNT(*) FROM purchases GROUP BY status
            """))).all())
            sold = await sold_by_type(db)
            types = await _load_types(db)
            issued = (await db.execute(
                select(func.count()).select_from(Ticket)
            )).scalar_one()
            entries = (await db.execute(
                select(func.count()).select_from(Entry)
            )).scalar_one()

    revenue = int(revenue)
    completed = int(completed)
    return {
        "total_revenue": revenue,
        "completed_purchases": completed,
        "pending_purchases": int(by_status.get(P_PENDING, 0)),
        "purchases_by_status": {k: int(v) for k, v in by_status.items()},
        "tickets_sold": sum(sold.values()),
        "tickets_issued": int(issued),
        "average_order_value": revenue // completed if completed else 0,
        "entries_processed": int(entries),
        "pending_entries": max(0, int(issued) - int(entries)),
        "sold_by_type": [
            {
                "ticket_type_id": t.id,
                "name": t.name,
                "total": t.total,
                "sold": sold.get(t.id, 0),
            }
            for t in types
        ],
        "currency": config.CURRENCY,
    }
