import hmac
import re
import secrets
import time
from datetime import datetime, timezone
from typing import Optional


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def now_ms() -> int:
    return int(time.time() * 1000)


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def new_reference(prefix: str = "TXN") -> str:
    """Checkout reference handed to the payment gateway.

    Millisecond timestamp first so references sort roughly by creation,
    random tail so two checkouts in the same millisecond don't collide.
    """
    return f"{prefix}_{now_ms()}_{secrets.token_hex(4).upper()}"


def new_ticket_number(purchase_id: str) -> str:
    return (
        f"TKT-{purchase_id[:8].upper()}-{now_ms()}-"
        f"{secrets.token_hex(3).upper()}"
    )


def legacy_purchase_code(reference: str) -> str:
    # whole-purchase QR string issued before per-ticket codes existed
    return f"TICKET_{reference}"


def mask_secret(value: str | None) -> str:
    if not value:
        return ""
    if len(value) <= 8:
        return "*" * len(value)
    return value[:4] + "*" * (len(value) - 8) + value[-4:]
