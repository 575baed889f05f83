"""Error taxonomy for the storefront, the payment flow and the door scanner.

Every error carries the HTTP status it maps to and a stable ``code`` that
clients can switch on. ``server.py`` renders them as
``{"status": "error", "error": code, "message": ..., "details": ...}``.
"""
from typing import Any, Optional


class TicketingError(Exception):
    status_code = 400
    code = "TicketingError"

    def __init__(self, message: str = "", details: Optional[Any] = None):
        self.message = message or self.code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        out = {"status": "error", "error": self.code, "message": self.message}
        if self.details is not None:
            out["details"] = self.details
        return out


class NotFound(TicketingError):
    status_code = 404
    code = "NotFound"


class Conflict(TicketingError):
    status_code = 409
    code = "Conflict"


class InsufficientAvailability(TicketingError):
    status_code = 409
    code = "InsufficientAvailability"


class PaymentUnavailable(TicketingError):
    status_code = 503
    code = "PaymentUnavailable"


class PaymentVerificationFailed(TicketingError):
    status_code = 402
    code = "PaymentVerificationFailed"


class InvalidCode(TicketingError):
    status_code = 404
    code = "InvalidCode"


class AlreadyUsed(TicketingError):
    status_code = 409
    code = "AlreadyUsed"


class IssuanceFailed(TicketingError):
    status_code = 500
    code = "IssuanceFailed"


class Forbidden(TicketingError):
    status_code = 403
    code = "Forbidden"
