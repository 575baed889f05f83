"""
Client side of the payment flow (what the storefront page does around the
gateway widget):

  1) GET  /api/payments/config   -> is the gateway configured?
  2) POST /api/checkout          -> {reference, amount, public_key, ...}
  3) widget runs; on success POST /api/payments/verify with the shared
     verification secret, on close POST /api/payments/cancel

A failed verification leaves the purchase pending; nothing is retried here.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from .cart import Cart
from .errors import (
    Conflict, NotFound, PaymentUnavailable, PaymentVerificationFailed,
)
from .helpers import new_reference

log = logging.getLogger("ticketbooth.bridge")


class PaymentBridge:

    def __init__(self, http: httpx.AsyncClient, verification_secret: str,
                 base_url: str = "") -> None:
        self.http = http
        self.verification_secret = verification_secret
        self.base_url = base_url.rstrip("/")

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def gateway_configured(self) -> bool:
        try:
            r = await self.http.get(self._url("/api/payments/config"))
        except httpx.HTTPError as e:
            raise PaymentUnavailable(f"payment service unreachable: {e}")
        if r.status_code == 503:
            return False
        r.raise_for_status()
        return bool(r.json().get("configured"))

    async def start_checkout(
        self,
        cart: Cart,
        customer: Mapping[str, str],
        reference: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not await self.gateway_configured():
            raise PaymentUnavailable(
                "payment gateway is not configured, please contact the organizer"
            )
        body = {
            "customer": dict(customer),
            "items": [
                {"ticket_type_id": tid, "quantity": qty}
                for tid, qty in cart.quantities().items()
            ],
            "reference": reference or new_reference(),
        }
        try:
            r = await self.http.post(self._url("/api/checkout"), json=body)
        except httpx.HTTPError as e:
            raise PaymentUnavailable(f"payment service unreachable: {e}")
        if r.status_code == 503:
            raise PaymentUnavailable(
                "payment gateway is not configured, please contact the organizer"
            )
        r.raise_for_status()
        return r.json()

    async def on_success(
        self, reference: str, transaction: Optional[str] = None
    ) -> Dict[str, Any]:
        """Confirm a payment the widget reported; returns the ticket data."""
        payload = {
            "reference": reference,
            "transaction": transaction,
            "verificationSecret": self.verification_secret,
        }
        try:
            r = await self.http.post(
                self._url("/api/payments/verify"), json=payload
            )
            body = r.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("verify %s failed: %s", reference, e)
            raise PaymentVerificationFailed(
                "payment verification failed",
                details={"reference": reference},
            )
        if r.status_code != 200 or body.get("status") != "success":
            log.warning("verify %s rejected: %s %s", reference,
                        r.status_code, body.get("error"))
            raise PaymentVerificationFailed(
                body.get("message") or "payment verification failed",
                details={
                    "reference": reference,
                    "error": body.get("error"),
                    "details": body.get("details"),
                },
            )
        return body["data"]

    async def on_cancel(self, reference: str) -> Dict[str, Any]:
        try:
            r = await self.http.post(
                self._url("/api/payments/cancel"),
                json={"reference": reference},
            )
        except httpx.HTTPError as e:
            raise PaymentUnavailable(f"payment service unreachable: {e}")
        if r.status_code in (404, 409):
            try:
                body = r.json()
            except ValueError:
                body = {}
            err = NotFound if r.status_code == 404 else Conflict
            raise err(
                body.get("message") or f"cannot cancel {reference}",
                details={"reference": reference, **(body.get("details") or {})},
            )
        r.raise_for_status()
        return r.json()
