import asyncio
import itertools

import pytest
from fastapi.testclient import TestClient

from ticketbooth.cart import Cart
from ticketbooth.errors import Conflict
from ticketbooth.gateway import MockGateway
from ticketbooth.model import GatedAsyncSession, inventory, issuance, purchases
from ticketbooth.model.issuance import _claim_gate, issue_tickets
from ticketbooth.server import SessionAsync, gated
from tests.commons import CUSTOMER, buy, checkout, create_type, verify


def test_failed_inserts_are_skipped(
    admin_client: TestClient, monkeypatch: pytest.MonkeyPatch
):
    t = create_type(admin_client, "Regular", 5000, 100)
    monkeypatch.setattr(issuance, "new_ticket_number", lambda pid: "TKT-DUP")

    data = buy(admin_client, {t["id"]: 3})
    # the first seat takes the number, the other two exhaust their retries
    assert [x["ticketNumber"] for x in data["tickets"]] == ["TKT-DUP"]
    purchase = admin_client.get(f"/api/purchases/{data['reference']}").json()
    assert purchase["status"] == "completed"


def test_no_ticket_stored_fails_issuance(
    admin_client: TestClient, monkeypatch: pytest.MonkeyPatch
):
    t = create_type(admin_client, "Regular", 5000, 100)
    monkeypatch.setattr(issuance, "new_ticket_number", lambda pid: "TKT-DUP")
    buy(admin_client, {t["id"]: 1})

    ref = checkout(admin_client, {t["id"]: 2}).json()["reference"]
    r = verify(admin_client, ref)
    assert r.status_code == 500
    assert r.json()["error"] == "IssuanceFailed"
    assert admin_client.get(f"/api/purchases/{ref}").json()["status"] == "pending"

    # the gate was released, so a later attempt can still mint
    counter = itertools.count()
    monkeypatch.setattr(
        issuance, "new_ticket_number", lambda pid: f"TKT-OK-{next(counter)}"
    )
    r = verify(admin_client, ref)
    assert r.status_code == 200
    assert [x["ticketNumber"] for x in r.json()["data"]["tickets"]] == [
        "TKT-OK-0", "TKT-OK-1"
    ]


def test_retry_uses_fresh_number(
    admin_client: TestClient, monkeypatch: pytest.MonkeyPatch
):
    t = create_type(admin_client, "Regular", 5000, 100)
    numbers = iter(["TKT-A", "TKT-A", "TKT-B"])
    monkeypatch.setattr(issuance, "new_ticket_number", lambda pid: next(numbers))

    data = buy(admin_client, {t["id"]: 2})
    assert [x["ticketNumber"] for x in data["tickets"]] == ["TKT-A", "TKT-B"]


async def _pending_purchase(ac, reference="TXN_ASYNC_1", qty=2):
    t = await inventory.create_type(
        ac, {"name": "Regular", "price": 5000, "total": 10}
    )
    types = await inventory.list_types(ac)
    cart = Cart.from_quantities(types, {t.id: qty})
    return await purchases.create_pending(
        ac, reference=reference, customer=CUSTOMER, cart=cart, currency="NGN"
    )


async def test_stuck_gate_holder_times_out(ac, monkeypatch):
    p = await _pending_purchase(ac)
    assert await _claim_gate(ac, p.id)
    assert not await _claim_gate(ac, p.id)
    monkeypatch.setattr(issuance, "GATE_WAIT_SECONDS", 0.2)

    with pytest.raises(Conflict):
        await issue_tickets(
            ac, MockGateway("s"), p.reference, base_url="http://x"
        )


async def test_released_gate_is_claimed_again(ac):
    p = await _pending_purchase(ac, qty=1)
    # a previous issuer that gave up without minting
    assert await _claim_gate(ac, p.id)

    async def give_up():
        await asyncio.sleep(0.05)
        async with SessionAsync() as session:
            await issuance._release_gate(
                GatedAsyncSession(session=session, gated=gated), p.id
            )

    waiter = asyncio.create_task(give_up())
    _, tickets = await issue_tickets(
        ac, MockGateway("s"), p.reference, base_url="http://x"
    )
    await waiter
    assert len(tickets) == 1


async def test_issue_tickets_directly(ac):
    p = await _pending_purchase(ac, qty=3)
    gateway = MockGateway("s")

    ref, tickets = await issue_tickets(
        ac, gateway, p.reference, base_url="http://x"
    )
    assert ref == p.reference
    assert len(tickets) == 3
    again = await issue_tickets(ac, gateway, p.reference, base_url="http://x")
    assert again == (ref, tickets)
    assert gateway.calls == [p.reference]
