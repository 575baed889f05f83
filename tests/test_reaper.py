from fastapi.testclient import TestClient

from ticketbooth import config
from ticketbooth.model.holds import new_store
from ticketbooth.server import gated
from tests.commons import availability, buy, checkout, create_type, verify


def test_expire_marks_stale_pending_failed(
    admin_client: TestClient, monkeypatch
):
    t = create_type(admin_client, "Regular", 5000, 10)
    done = buy(admin_client, {t["id"]: 1})
    ref = checkout(admin_client, {t["id"]: 4}).json()["reference"]
    assert availability(admin_client)[t["id"]]["available"] == 5

    # nothing is old enough yet
    r = admin_client.post("/api/admin/purchases/expire")
    assert r.json() == {"expired": []}

    monkeypatch.setattr(config, "PENDING_TTL_SECONDS", -1)
    r = admin_client.post("/api/admin/purchases/expire")
    assert r.json() == {"expired": [ref]}

    assert admin_client.get(f"/api/purchases/{ref}").json()["status"] == "failed"
    assert admin_client.get(
        f"/api/purchases/{done['reference']}"
    ).json()["status"] == "completed"
    # the hold went with it
    assert availability(admin_client)[t["id"]]["available"] == 9
    assert verify(admin_client, ref).status_code == 409


async def test_sql_hold_store(ac):
    store = new_store(db=ac.session, gated=gated, ttl_seconds=60)
    await store.place("TXN_A", {"ga": 2, "vip": 1})
    await store.place("TXN_B", {"ga": 3, "vip": 0})
    assert await store.held_counts() == {"ga": 5, "vip": 1}
    assert await store.held_counts(exclude="TXN_A") == {"ga": 3}

    # placing again replaces the previous hold
    await store.place("TXN_A", {"ga": 1})
    assert await store.held_counts() == {"ga": 4}

    await store.release("TXN_B")
    assert await store.held_counts() == {"ga": 1}


async def test_expired_holds_do_not_count(ac):
    store = new_store(db=ac.session, gated=gated, ttl_seconds=0)
    await store.place("TXN_A", {"ga": 2})
    assert await store.held_counts() == {}
