"""Error taxonomy shared by the store, matcher, monitor and host API."""

from __future__ import annotations


class AlertServiceError(Exception):
    """Base class for every error raised by the alert service."""


class ValidationError(AlertServiceError, ValueError):
    """Malformed alert input, rejected before anything is persisted."""


class QuoteUnavailable(AlertServiceError):
    """The price provider returned nothing or failed for a collection."""


class ConversionUnavailable(AlertServiceError):
    """No usable exchange rate between two currencies right now."""

    def __init__(self, from_currency: str, to_currency: str, reason: str = "") -> None:
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"cannot convert {from_currency} to {to_currency}{detail}")


class StorageError(AlertServiceError):
    """The persistence layer failed."""


class InsufficientBalance(AlertServiceError):
    """A simulated wallet cannot cover a purchase."""


class AutoBuyFailure(AlertServiceError):
    """An automatic purchase failed after its alert had already triggered."""

    def __init__(self, alert_id: int | None, reason: str) -> None:
        self.alert_id = alert_id
        self.reason = reason
        super().__init__(f"auto-buy for alert {alert_id} failed: {reason}")


__all__ = [
    "AlertServiceError",
    "ValidationError",
    "QuoteUnavailable",
    "ConversionUnavailable",
    "StorageError",
    "InsufficientBalance",
    "AutoBuyFailure",
]
