from abc import ABC, abstractmethod
from typing import Dict, Optional, TypedDict
import base64
import hashlib
import hmac
import json
import logging
from urllib.parse import quote

import httpx

from .errors import PaymentVerificationFailed

log = logging.getLogger("ticketbooth.gateway")


# ----------------------------
# Payment Gateway Interface
# ----------------------------
class VerifyResult(TypedDict):
    ok: bool
    status: str               # gateway-reported transaction status
    amount: Optional[int]     # minor units, when the gateway reports it
    reference: str


class PaymentGateway(ABC):
    # authoritative server-side "verify transaction by reference"
    @abstractmethod
    async def verify_transaction(self, reference: str) -> VerifyResult: ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    # "succeeded" | anything else
    @abstractmethod
    def event_kind(self, event: dict) -> str: ...

    @abstractmethod
    def event_reference(self, event: dict) -> str: ...


class InvalidWebhook(Exception):
    pass


# ----------------------------
# Paystack implementation
# ----------------------------
class PaystackGateway(PaymentGateway):

    def __init__(self, http: httpx.AsyncClient, secret_key: str,
                 api_base: str = "https://api.paystack.co") -> None:
        self.http = http
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")

    async def verify_transaction(self, reference: str) -> VerifyResult:
        ref = quote(reference, safe='')
        url = f"{self.api_base}/transaction/verify/{ref}"
        try:
            r = await self.http.get(url, headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            })
            body = r.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("verify %s: gateway unreachable: %s", reference, e)
            raise PaymentVerificationFailed(
                "payment gateway could not be reached",
                details={"reference": reference},
            )
        data = body.get("data") or {}
        status = str(data.get("status") or "unknown")
        # the answer must be about this exact reference
        same_ref = data.get("reference") == reference
        ok = (
            r.status_code == 200
            and bool(body.get("status"))
            and status == "success"
            and same_ref
        )
        if not ok:
            log.info("verify %s: gateway says %s for %r (%s)", reference,
                     status, data.get("reference"), body.get("message"))
        amount = data.get("amount")
        return {
            "ok": ok,
            "status": status,
            "amount": int(amount) if amount is not None else None,
            "reference": reference,
        }

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get("x-paystack-signature")
        expected = hmac.new(
            self.secret_key.encode(), payload, hashlib.sha512
        ).hexdigest()
        if not sig or not hmac.compare_digest(expected, sig):
            raise InvalidWebhook("Invalid signature")
        try:
            return json.loads(payload.decode())
        except json.JSONDecodeError:
            raise InvalidWebhook("Invalid JSON")

    def event_kind(self, event: dict) -> str:
        return "succeeded" if event.get("event") == "charge.success" else (
            event.get("event") or ""
        )

    def event_reference(self, event: dict) -> str:
        return (event.get("data") or {}).get("reference", "")


# ----------------------------
# MockGateway implementation
# ----------------------------
class MockGateway(PaymentGateway):
    """
    In-process stand-in for development: every reference verifies as
    `default_status` unless an outcome was set for it.
    """

    def __init__(self, secret: str, default_status: str = "success") -> None:
        self.secret = secret
        self.default_status = default_status
        self.outcomes: Dict[str, str] = {}
        self.amounts: Dict[str, int] = {}
        self.calls: list[str] = []

    def set_outcome(self, reference: str, status: str,
                    amount: Optional[int] = None) -> None:
        self.outcomes[reference] = status
        if amount is not None:
            self.amounts[reference] = amount

    async def verify_transaction(self, reference: str) -> VerifyResult:
        self.calls.append(reference)
        status = self.outcomes.get(reference, self.default_status)
        if status == "unreachable":
            raise PaymentVerificationFailed(
                "payment gateway could not be reached",
                details={"reference": reference},
            )
        return {
            "ok": status == "success",
            "status": status,
            "amount": self.amounts.get(reference),
            "reference": reference,
        }

    def sign(self, payload: bytes) -> str:
        mac = hmac.new(self.secret.encode(), payload, hashlib.sha256).digest()
        return base64.b64encode(mac).decode()

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get("x-mockpay-signature")
        if not sig or not hmac.compare_digest(self.sign(payload), sig):
            raise InvalidWebhook("Invalid signature")
        try:
            return json.loads(payload.decode())
        except json.JSONDecodeError:
            raise InvalidWebhook("Invalid JSON")

    def event_kind(self, event: dict) -> str:
        return event.get("type", "").split(".")[-1]

    def event_reference(self, event: dict) -> str:
        return event.get("reference", "")
