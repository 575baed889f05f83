from fastapi.testclient import TestClient

from tests.commons import availability, buy, checkout, create_type


def test_admin_routes_require_login(client: TestClient):
    r = client.get("/api/admin/ticket-types")
    assert r.status_code == 401
    r = client.post(
        "/api/admin/ticket-types",
        json={"name": "GA", "price": 100, "total": 1},
    )
    assert r.status_code == 401


def test_create_and_list(admin_client: TestClient):
    t = create_type(admin_client, "Regular", 5000, 100,
                    description="Standing", location="Main hall")
    assert t["available"] == 100
    assert t["sold"] == 0

    listing = availability(admin_client)
    assert listing[t["id"]]["name"] == "Regular"
    assert listing[t["id"]]["location"] == "Main hall"


def test_price_and_total_must_be_positive(admin_client: TestClient):
    r = admin_client.post(
        "/api/admin/ticket-types",
        json={"name": "Free", "price": 0, "total": 10},
    )
    assert r.status_code == 422
    r = admin_client.post(
        "/api/admin/ticket-types",
        json={"name": "Empty", "price": 10, "total": 0},
    )
    assert r.status_code == 422


def test_completed_sale_reduces_availability(admin_client: TestClient):
    t = create_type(admin_client, "Regular", 5000, 100)
    buy(admin_client, {t["id"]: 30})
    assert availability(admin_client)[t["id"]]["available"] == 70
    assert availability(admin_client)[t["id"]]["sold"] == 30

    r = admin_client.delete(f"/api/admin/ticket-types/{t['id']}")
    assert r.status_code == 409
    assert r.json()["error"] == "Conflict"


def test_pending_checkout_holds_seats(admin_client: TestClient):
    t = create_type(admin_client, "VIP", 20000, 5)
    r = checkout(admin_client, {t["id"]: 3})
    assert r.status_code == 200
    entry = availability(admin_client)[t["id"]]
    assert entry["held"] == 3
    assert entry["available"] == 2

    admin_client.post(
        "/api/payments/cancel", json={"reference": r.json()["reference"]}
    )
    assert availability(admin_client)[t["id"]]["available"] == 5


def test_update_keeps_sold(admin_client: TestClient):
    t = create_type(admin_client, "Regular", 5000, 50)
    buy(admin_client, {t["id"]: 10})

    r = admin_client.put(
        f"/api/admin/ticket-types/{t['id']}",
        json={"name": "Regular", "price": 6000, "total": 60},
    )
    assert r.status_code == 200
    assert r.json()["price"] == 6000
    assert r.json()["sold"] == 10
    assert r.json()["available"] == 50

    # shrinking below sold clamps to zero
    r = admin_client.put(
        f"/api/admin/ticket-types/{t['id']}",
        json={"name": "Regular", "price": 6000, "total": 5},
    )
    assert r.json()["available"] == 0


def test_update_can_clear_tags(admin_client: TestClient):
    t = create_type(admin_client, "Regular", 5000, 50,
                    event_date="2026-12-20", event_time="19:00",
                    location="Main hall")
    r = admin_client.put(
        f"/api/admin/ticket-types/{t['id']}",
        json={"name": "Regular", "price": 5000, "total": 50,
              "event_time": "20:00"},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["event_time"] == "20:00"
    assert body["event_date"] is None
    assert body["location"] is None
    assert availability(admin_client)[t["id"]]["location"] is None


def test_unknown_type(admin_client: TestClient):
    r = admin_client.put(
        "/api/admin/ticket-types/nope",
        json={"name": "X", "price": 1, "total": 1},
    )
    assert r.status_code == 404
    assert admin_client.delete("/api/admin/ticket-types/nope").status_code == 404


def test_delete_unsold_type(admin_client: TestClient):
    t = create_type(admin_client, "Early bird", 3000, 20)
    r = admin_client.delete(f"/api/admin/ticket-types/{t['id']}")
    assert r.status_code == 200
    assert t["id"] not in availability(admin_client)
