import json

import httpx
import pytest

from ticketbooth.bridge import PaymentBridge
from ticketbooth.cart import Cart
from ticketbooth.errors import (
    Conflict, NotFound, PaymentUnavailable, PaymentVerificationFailed,
)
from ticketbooth.ledger import TypeSnapshot, compute_availability
from tests.commons import CUSTOMER

(GA,) = compute_availability(
    [TypeSnapshot(id="ga", name="General", price=5000, total=10)], []
)


def cart_of(n: int) -> Cart:
    return Cart.from_quantities([GA], {"ga": n})


def bridge(handler) -> PaymentBridge:
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://shop.test"
    )
    return PaymentBridge(http, verification_secret="s3cret")


async def test_start_checkout_posts_cart():
    posted = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/payments/config":
            return httpx.Response(200, json={"configured": True})
        posted.update(json.loads(request.content))
        return httpx.Response(200, json={
            "reference": posted["reference"], "amount": 10000,
        })

    out = await bridge(handler).start_checkout(cart_of(2), CUSTOMER)
    assert posted["items"] == [{"ticket_type_id": "ga", "quantity": 2}]
    assert posted["customer"] == CUSTOMER
    assert posted["reference"].startswith("TXN_")
    assert out["amount"] == 10000


async def test_start_checkout_unconfigured():
    def handler(request):
        return httpx.Response(200, json={"configured": False})

    with pytest.raises(PaymentUnavailable):
        await bridge(handler).start_checkout(cart_of(1), CUSTOMER)


async def test_start_checkout_503():
    def handler(request):
        if request.url.path == "/api/payments/config":
            return httpx.Response(200, json={"configured": True})
        return httpx.Response(503, json={"error": "PaymentUnavailable"})

    with pytest.raises(PaymentUnavailable):
        await bridge(handler).start_checkout(cart_of(1), CUSTOMER, "TXN_FIX")


async def test_on_success_sends_secret():
    sent = {}

    def handler(request):
        sent.update(json.loads(request.content))
        return httpx.Response(200, json={
            "status": "success",
            "data": {"reference": "TXN_1", "tickets": [
                {"ticketNumber": "TKT-1", "qrCode": "{}"},
            ]},
        })

    data = await bridge(handler).on_success("TXN_1", transaction="T99")
    assert sent == {
        "reference": "TXN_1", "transaction": "T99",
        "verificationSecret": "s3cret",
    }
    assert data["tickets"][0]["ticketNumber"] == "TKT-1"


async def test_on_success_error_response():
    def handler(request):
        return httpx.Response(402, json={
            "status": "error", "error": "PaymentVerificationFailed",
            "message": "payment was not confirmed by the gateway",
        })

    with pytest.raises(PaymentVerificationFailed) as exc:
        await bridge(handler).on_success("TXN_2")
    assert exc.value.details["error"] == "PaymentVerificationFailed"


async def test_on_success_network_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(PaymentVerificationFailed):
        await bridge(handler).on_success("TXN_3")


async def test_on_cancel():
    def handler(request):
        assert request.url.path == "/api/payments/cancel"
        return httpx.Response(200, json={"reference": "TXN_4",
                                         "status": "failed"})

    out = await bridge(handler).on_cancel("TXN_4")
    assert out["status"] == "failed"


async def test_on_cancel_completed_purchase():
    def handler(request):
        return httpx.Response(409, json={
            "status": "error", "error": "Conflict",
            "message": "purchase TXN_5 is already completed",
            "details": {"reference": "TXN_5"},
        })

    with pytest.raises(Conflict) as exc:
        await bridge(handler).on_cancel("TXN_5")
    assert exc.value.message == "purchase TXN_5 is already completed"
    assert exc.value.details == {"reference": "TXN_5"}


async def test_on_cancel_unknown_reference():
    def handler(request):
        return httpx.Response(404, json={
            "status": "error", "error": "NotFound",
            "message": "purchase TXN_6 not found",
        })

    with pytest.raises(NotFound):
        await bridge(handler).on_cancel("TXN_6")


async def test_on_cancel_unreachable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(PaymentUnavailable):
        await bridge(handler).on_cancel("TXN_7")
