# Overview: Error taxonomy shared by services and routes.

"""
Every domain failure carries enough structured detail for the caller to render
an actionable message without re-querying state.

All of these are raised before or during the single transaction of an
operation and cause a full rollback. None are retried automatically.
"""

from __future__ import annotations


class PosError(Exception):
    """Base for domain errors. Routes map these to JSON responses."""
    status_code = 400
    code = "POS_ERROR"

    def __init__(self, message: str, details: dict | None = None, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(PosError, ValueError):
    """Malformed basket, non-positive quantities or amounts, unknown products."""
    code = "VALIDATION_ERROR"


class ConfigurationError(PosError):
    """Branch setup problem (missing front/reserve location, bad timezone)."""
    code = "CONFIGURATION_ERROR"


class PricingError(PosError):
    code = "PRICING_ERROR"


class NoSellablePriceError(PricingError):
    code = "NO_SELLABLE_PRICE"


class InsufficientStockError(PosError):
    """Raised with the full per-product shortage list."""
    status_code = 409
    code = "INSUFFICIENT_STOCK"

    def __init__(self, message: str, shortages: list[dict], details: dict | None = None):
        merged = {"shortages": shortages}
        if details:
            merged.update(details)
        super().__init__(message, merged)
        self.shortages = shortages


# Cash gate reason codes
GATE_NO_SESSION = "NO_SESSION"
GATE_DAY_CHANGE = "DAY_CHANGE"
GATE_CUTOFF = "CUTOFF"


class CashGateError(PosError):
    """Sale rejected because the operator has no usable cash session."""
    status_code = 409
    code = "CASH_GATE"

    def __init__(self, message: str, reason: str, details: dict | None = None):
        merged = {"reason": reason}
        if details:
            merged.update(details)
        super().__init__(message, merged)
        self.reason = reason


class SessionAlreadyOpenError(PosError):
    status_code = 409
    code = "SESSION_ALREADY_OPEN"


class NoOpenSessionError(PosError):
    code = "NO_OPEN_SESSION"
