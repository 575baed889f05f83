from __future__ import annotations
import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import ORJSONResponse, RedirectResponse, Response
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

import redis.asyncio as redis

from . import config
from .cart import Cart
from .errors import Forbidden, PaymentUnavailable, TicketingError
from .gateway import InvalidWebhook, MockGateway, PaymentGateway, PaystackGateway
from .helpers import ct_equal, is_valid_email, new_reference
from .infra.logs import setup_logging
from .infra.sql import make_async_engine
from .model import GatedAsyncSession
from .model import admin, entry, inventory, issuance, purchases
from .model.holds import HoldStore, new_store, BACKEND as HOLD_BACKEND
from .model.orm import Base
from . import qr
from .schemas import (
    CancelRequest, CheckoutRequest, EventIn, GatewayIn, QrRequest,
    ScanRequest, TicketTypeIn, VerifyRequest,
)

log = setup_logging(config.LOG_LEVEL)

engine, SessionAsync, _, gated = make_async_engine(config.DATABASE_URL)


# ---
# startup / shutdown
# ---
def _say_hello():
    print('\n' * 3)
    print('=' * 50)
    print('ticketbooth is starting up...')
    print(f'   - Database:         {engine.url.get_backend_name()}')
    print(f'   - Seat holds:       {HOLD_BACKEND}')
    print(f'   - Payment gateway:  {config.GATEWAY}')
    print('=' * 50)
    print('\n' * 3)


async def _reaper_loop(app: FastAPI):
    while True:
        await asyncio.sleep(config.REAPER_INTERVAL_SECONDS)
        try:
            await expire_stale_checkouts(app)
        except Exception:
            log.exception("stale checkout reaper failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    _say_hello()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.http = httpx.AsyncClient(
        timeout=10.0,
        limits=httpx.Limits(max_connections=64, max_keepalive_connections=64),
    )
    app.state.mock_gateway = MockGateway(config.MOCK_SECRET)
    app.state.redis = None
    if HOLD_BACKEND == "redis":
        app.state.redis = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            max_connections=config.REDIS_MAX_CONN,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )

    reaper = None
    if config.REAPER_INTERVAL_SECONDS > 0:
        reaper = asyncio.create_task(_reaper_loop(app))
    try:
        yield
    finally:
        if reaper is not None:
            reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reaper
        await app.state.http.aclose()
        if app.state.redis is not None:
            await app.state.redis.aclose()
            app.state.redis = None


app = FastAPI(
    title="ticketbooth",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)
app.add_middleware(SessionMiddleware, secret_key=config.SESSION_SECRET)


@app.exception_handler(TicketingError)
async def _ticketing_error(request: Request, exc: TicketingError):
    if exc.status_code >= 500:
        log.error("%s %s: %s %s", request.method, request.url.path,
                  exc.code, exc.message)
    return ORJSONResponse(exc.to_dict(), status_code=exc.status_code)


# ----------------------------
# Dependencies
# ----------------------------
async def get_db() -> GatedAsyncSession:
    async with SessionAsync() as session:
        yield GatedAsyncSession(session=session, gated=gated)


def _hold_store(session=None) -> HoldStore:
    ttl = config.HOLD_TTL_SECONDS
    if HOLD_BACKEND == "redis":
        return new_store(r=app.state.redis, ttl_seconds=ttl)
    return new_store(db=session, gated=gated, ttl_seconds=ttl)


async def holds() -> HoldStore:
    if HOLD_BACKEND == "redis":
        yield _hold_store()
    else:
        async with SessionAsync() as session:
            yield _hold_store(session)


async def get_gateway(
    ac: GatedAsyncSession = Depends(get_db),
) -> PaymentGateway:
    if config.GATEWAY == "mock":
        return app.state.mock_gateway
    creds = await admin.gateway_credentials(ac)
    if not creds.configured:
        raise PaymentUnavailable("payment gateway is not configured")
    return PaystackGateway(
        app.state.http, creds.secret_key, api_base=config.PAYSTACK_API_BASE
    )


def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin_user"))


def require_admin(request: Request) -> None:
    if not is_admin(request):
        raise HTTPException(status_code=401, detail="admin login required")


async def expire_stale_checkouts(app: FastAPI) -> list[str]:
    async with SessionAsync() as session:
        refs = await purchases.expire_stale(
            GatedAsyncSession(session=session, gated=gated),
            config.PENDING_TTL_SECONDS,
        )
    if refs:
        async with SessionAsync() as session:
            store = _hold_store(session)
            for ref in refs:
                await store.release(ref)
    return refs


# ----------------------------
# Storefront
# ----------------------------
@app.get("/api/ticket-types")
async def list_ticket_types(
    ac: GatedAsyncSession = Depends(get_db),
    hs: HoldStore = Depends(holds),
):
    held = await hs.held_counts()
    types = await inventory.list_types(ac, held)
    return {"items": [t.as_dict() for t in types]}


@app.get("/api/event")
async def get_event(ac: GatedAsyncSession = Depends(get_db)):
    event = await admin.get_event(ac)
    if event is None:
        raise HTTPException(404, detail="event details not set")
    return event


@app.get("/api/payments/config")
async def payments_config(ac: GatedAsyncSession = Depends(get_db)):
    creds = await admin.gateway_credentials(ac)
    return {
        "configured": creds.configured,
        "public_key": creds.public_key if creds.configured else "",
        "currency": config.CURRENCY,
    }


@app.post("/api/checkout")
async def create_checkout(
    payload: CheckoutRequest,
    ac: GatedAsyncSession = Depends(get_db),
    hs: HoldStore = Depends(holds),
):
    creds = await admin.gateway_credentials(ac)
    if not creds.configured:
        raise PaymentUnavailable(
            "payment gateway is not configured, please contact the organizer"
        )

    customer = payload.customer
    if not is_valid_email(customer.email):
        raise HTTPException(
            400,
            detail="customer email must be a valid email address"
        )

    wanted: dict[str, int] = {}
    for line in payload.items:
        wanted[line.ticket_type_id] = (
            wanted.get(line.ticket_type_id, 0) + line.quantity
        )

    held = await hs.held_counts()
    types = await inventory.list_types(ac, held)
    cart = Cart.from_quantities(types, wanted)

    reference = payload.reference or new_reference()
    purchase = await purchases.create_pending(
        ac,
        reference=reference,
        customer={
            "name": customer.name.strip(),
            "email": customer.email.strip(),
            "phone": customer.phone.strip(),
        },
        cart=cart,
        currency=config.CURRENCY,
    )
    await hs.place(reference, cart.quantities())

    return {
        "reference": reference,
        "purchase_id": purchase.id,
        "amount": cart.total(),
        "currency": config.CURRENCY,
        "email": customer.email.strip(),
        "public_key": creds.public_key,
        "items": [i.as_dict() for i in cart.items()],
    }


@app.post("/api/payments/verify")
async def verify_payment(
    payload: VerifyRequest,
    ac: GatedAsyncSession = Depends(get_db),
    hs: HoldStore = Depends(holds),
    gateway: PaymentGateway = Depends(get_gateway),
):
    if not ct_equal(payload.verification_secret, config.VERIFICATION_SECRET):
        raise Forbidden("invalid verification secret")

    reference, tickets = await issuance.issue_tickets(
        ac, gateway, payload.reference, base_url=config.PUBLIC_BASE_URL
    )
    await hs.release(reference)
    return {
        "status": "success",
        "data": {
            "reference": reference,
            "tickets": [
                {"ticketNumber": number, "qrCode": code}
                for number, code in tickets
            ],
        },
    }


@app.post("/api/payments/cancel")
async def cancel_payment(
    payload: CancelRequest,
    ac: GatedAsyncSession = Depends(get_db),
    hs: HoldStore = Depends(holds),
):
    purchase = await purchases.mark_failed(ac, payload.reference)
    await hs.release(payload.reference)
    return {"reference": purchase.reference, "status": purchase.status}


# ----------------------------
# Webhook endpoint (Paystack / Mock)
# ----------------------------
@app.post("/payments/webhook")
async def payments_webhook(
    request: Request,
    ac: GatedAsyncSession = Depends(get_db),
    hs: HoldStore = Depends(holds),
    gateway: PaymentGateway = Depends(get_gateway),
):
    payload = await request.body()
    headers = dict(request.headers)

    try:
        event = gateway.verify_webhook(payload, headers)
    except InvalidWebhook as e:
        raise HTTPException(400, detail=str(e))
    kind = gateway.event_kind(event)
    reference = gateway.event_reference(event)
    if not reference:
        raise HTTPException(400, detail="missing reference")

    if kind != "succeeded":
        # cancellations arrive through /api/payments/cancel
        return {"ok": True, "ignored": kind}

    # the same idempotent path as the client callback; duplicates return
    # the tickets minted the first time
    _, tickets = await issuance.issue_tickets(
        ac, gateway, reference, base_url=config.PUBLIC_BASE_URL
    )
    await hs.release(reference)
    return {"ok": True, "reference": reference, "tickets": len(tickets)}


# ----------------------------
# Purchases & tickets (public)
# ----------------------------
@app.get("/api/purchases/{reference}")
async def get_purchase(
    reference: str, ac: GatedAsyncSession = Depends(get_db)
):
    return await purchases.get_by_reference(ac, reference)


@app.get("/api/tickets/{ticket_number}")
async def verify_ticket(
    ticket_number: str, ac: GatedAsyncSession = Depends(get_db)
):
    return {
        "status": "success",
        "data": await entry.lookup_ticket(ac, ticket_number),
    }


@app.get("/api/tickets/{ticket_number}/qr.png")
async def ticket_qr_png(
    ticket_number: str, ac: GatedAsyncSession = Depends(get_db)
):
    code = await entry.ticket_qr_code(ac, ticket_number)
    return Response(content=qr.render(code, "png"), media_type="image/png")


@app.post("/api/qr")
async def render_qr(payload: QrRequest):
    return qr.render_base64(payload.data, payload.format)


# ----------------------------
# Admin login
# ----------------------------
def _is_local_path(url: Optional[str]) -> bool:
    # "//host" and "/\host" are protocol-relative to browsers
    return bool(
        url
        and url.startswith("/")
        and not url.startswith(("//", "/\\"))
        and "\\" not in url
    )


@app.post("/admin/login")
async def admin_login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
    next: Optional[str] = Form(None),
):
    ok_user = ct_equal(username.strip(), config.ADMIN_USERNAME)
    ok_pass = ct_equal(password, config.ADMIN_PASSWORD)
    if ok_user and ok_pass:
        request.session["admin_user"] = username.strip()
        if _is_local_path(next):
            return RedirectResponse(url=next, status_code=HTTP_303_SEE_OTHER)
        return {"ok": True, "user": username.strip()}
    return ORJSONResponse(
        {"status": "error", "error": "Unauthorized",
         "message": "Invalid credentials."},
        status_code=401,
    )


@app.get("/admin/logout")
async def admin_logout(request: Request):
    request.session.clear()
    return {"ok": True}


# ----------------------------
# Admin API
# ----------------------------
@app.get("/api/admin/ticket-types", dependencies=[Depends(require_admin)])
async def admin_list_ticket_types(
    ac: GatedAsyncSession = Depends(get_db),
    hs: HoldStore = Depends(holds),
):
    held = await hs.held_counts()
    types = await inventory.list_types(ac, held)
    return {"items": [t.as_dict() for t in types]}


@app.post("/api/admin/ticket-types", status_code=201,
          dependencies=[Depends(require_admin)])
async def admin_create_ticket_type(
    payload: TicketTypeIn, ac: GatedAsyncSession = Depends(get_db)
):
    t = await inventory.create_type(ac, payload.model_dump())
    return t.as_dict()


@app.put("/api/admin/ticket-types/{type_id}",
         dependencies=[Depends(require_admin)])
async def admin_update_ticket_type(
    type_id: str,
    payload: TicketTypeIn,
    ac: GatedAsyncSession = Depends(get_db),
    hs: HoldStore = Depends(holds),
):
    held = await hs.held_counts()
    t = await inventory.update_type(ac, type_id, payload.model_dump(), held)
    return t.as_dict()


@app.delete("/api/admin/ticket-types/{type_id}",
            dependencies=[Depends(require_admin)])
async def admin_delete_ticket_type(
    type_id: str, ac: GatedAsyncSession = Depends(get_db)
):
    await inventory.delete_type(ac, type_id)
    return {"ok": True, "id": type_id}


@app.put("/api/admin/event", dependencies=[Depends(require_admin)])
async def admin_save_event(
    payload: EventIn, ac: GatedAsyncSession = Depends(get_db)
):
    return await admin.save_event(
        ac,
        event_name=payload.event_name.strip(),
        event_date=payload.event_date.strip(),
        venue=payload.venue.strip(),
    )


@app.get("/api/admin/settings/gateway", dependencies=[Depends(require_admin)])
async def admin_get_gateway(ac: GatedAsyncSession = Depends(get_db)):
    return admin.masked(await admin.gateway_credentials(ac))


@app.put("/api/admin/settings/gateway", dependencies=[Depends(require_admin)])
async def admin_save_gateway(
    payload: GatewayIn, ac: GatedAsyncSession = Depends(get_db)
):
    await admin.save_gateway_credentials(
        ac, public_key=payload.public_key, secret_key=payload.secret_key
    )
    return admin.masked(await admin.gateway_credentials(ac))


@app.get("/api/admin/purchases", dependencies=[Depends(require_admin)])
async def admin_purchases(
    status: Optional[str] = None,
    q: Optional[str] = None,
    limit: int = 200,
    ac: GatedAsyncSession = Depends(get_db),
):
    items = await purchases.search(ac, status=status, q=q, limit=limit)
    return {"items": items, "limit": limit}


@app.post("/api/admin/purchases/expire",
          dependencies=[Depends(require_admin)])
async def admin_expire_purchases(request: Request):
    refs = await expire_stale_checkouts(request.app)
    return {"expired": refs}


@app.get("/api/admin/stats", dependencies=[Depends(require_admin)])
async def admin_stats(ac: GatedAsyncSession = Depends(get_db)):
    return await admin.sales_stats(ac)


@app.get("/api/admin/entries", dependencies=[Depends(require_admin)])
async def admin_entries(
    limit: int = 200, ac: GatedAsyncSession = Depends(get_db)
):
    return {"items": await entry.list_entries(ac, limit=limit)}


@app.post("/api/admin/scan", dependencies=[Depends(require_admin)])
async def admin_scan(
    payload: ScanRequest, ac: GatedAsyncSession = Depends(get_db)
):
    return await entry.validate_entry(ac, payload.code)
