"""QR payloads for tickets, and rendering arbitrary payloads to images."""
from __future__ import annotations
import base64
import io
import json
from typing import Any, Optional

import qrcode
import qrcode.image.svg

CONTENT_TYPES = {"png": "image/png", "svg": "image/svg+xml"}


def ticket_payload(ticket_number: str, reference: str, base_url: str) -> str:
    return json.dumps({
        "ticket_number": ticket_number,
        "reference": reference,
        "verify_url": f"{base_url.rstrip('/')}/api/tickets/{ticket_number}",
    }, separators=(",", ":"))


def payload_ticket_number(code: str) -> Optional[str]:
    """Ticket number embedded in a scanned JSON payload, if there is one."""
    code = code.strip()
    if not code.startswith("{"):
        return None
    try:
        data = json.loads(code)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    number = data.get("ticket_number")
    return number if isinstance(number, str) and number else None


def render(data: str, fmt: str = "png") -> bytes:
    if fmt not in CONTENT_TYPES:
        raise ValueError(f"unsupported QR format: {fmt}")
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)
    buf = io.BytesIO()
    if fmt == "svg":
        img = qr.make_image(image_factory=qrcode.image.svg.SvgPathImage)
    else:
        img = qr.make_image(fill_color="black", back_color="white")
    img.save(buf)
    return buf.getvalue()


def render_base64(payload: Any, fmt: str = "png") -> dict:
    data = payload if isinstance(payload, str) else json.dumps(
        payload, separators=(",", ":"), sort_keys=True
    )
    return {
        "qr_code": data,
        "content_type": CONTENT_TYPES.get(fmt, ""),
        "image": base64.b64encode(render(data, fmt)).decode(),
    }
