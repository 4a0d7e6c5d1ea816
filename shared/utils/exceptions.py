"""
shared/utils/exceptions.py
Domain errors raised by the booking, wallet and payment services.
A single FastAPI handler (main.py) renders them as
{"detail", "code", "request_id", ...extra}.
"""

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for business-rule violations."""

    status_code: int = 400
    code: str = "DOMAIN_ERROR"

    def __init__(self, detail: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "code": self.code, **self.extra}


class InvalidTransition(DomainError):
    """A booking transition was attempted from a state (or by an actor) that forbids it."""

    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: Optional[str], attempted: str, reason: str):
        super().__init__(
            f"Cannot {attempted} booking in {from_status} state: {reason}",
            extra={"from_status": from_status, "attempted": attempted, "reason": reason},
        )
        self.from_status = from_status
        self.attempted = attempted
        self.reason = reason


class BookingNotPermitted(DomainError):
    status_code = 403
    code = "BOOKING_NOT_PERMITTED"


class SubscriptionRequired(DomainError):
    status_code = 402
    code = "SUBSCRIPTION_REQUIRED"

    def __init__(self, detail: str = "An active subscription is required for this action"):
        super().__init__(detail, extra={"redirect": "SUBSCRIPTION_PLANS"})


class InsufficientFunds(DomainError):
    status_code = 402
    code = "INSUFFICIENT_FUNDS"


class NoEngineerAvailable(DomainError):
    status_code = 409
    code = "NO_ENGINEER_AVAILABLE"

    def __init__(self, detail: str = "No engineer is available for this session"):
        super().__init__(detail)


class PaymentGatewayError(DomainError):
    status_code = 502
    code = "PAYMENT_GATEWAY_ERROR"
