import base64
import json

import pytest
from fastapi.testclient import TestClient

from ticketbooth import qr


def test_ticket_payload():
    code = qr.ticket_payload("TKT-1", "TXN_1", "https://x.test/")
    assert json.loads(code) == {
        "ticket_number": "TKT-1",
        "reference": "TXN_1",
        "verify_url": "https://x.test/api/tickets/TKT-1",
    }
    assert qr.payload_ticket_number(code) == "TKT-1"


@pytest.mark.parametrize("code", ["TKT-1", "{not json", "[1, 2]", '{"a": 1}'])
def test_payload_without_ticket_number(code):
    assert qr.payload_ticket_number(code) is None


def test_render_formats():
    assert qr.render("hello", "png").startswith(b"\x89PNG")
    assert b"<svg" in qr.render("hello", "svg")
    with pytest.raises(ValueError):
        qr.render("hello", "gif")


def test_qr_endpoint(client: TestClient):
    r = client.post("/api/qr", json={"data": {"b": 2, "a": 1}})
    assert r.status_code == 200
    body = r.json()
    assert body["qr_code"] == '{"a":1,"b":2}'
    assert body["content_type"] == "image/png"
    assert base64.b64decode(body["image"]).startswith(b"\x89PNG")

    r = client.post("/api/qr", json={"data": "TICKET_X", "format": "svg"})
    assert r.json()["content_type"] == "image/svg+xml"

    r = client.post("/api/qr", json={"data": "x", "format": "bmp"})
    assert r.status_code == 422
