"""Records persisted by the alert store.

Timestamps are integer UNIX seconds, matching the ``INTEGER`` columns created
by :mod:`storage.migrate`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional


class ThresholdType(str, Enum):
    """Direction in which a quote has to cross the threshold."""

    BELOW = "below"
    ABOVE = "above"


class Currency(str, Enum):
    """Currencies an alert threshold can be expressed in."""

    ETH = "ETH"
    USD = "USD"
    AVAX = "AVAX"


SUPPORTED_CURRENCIES = frozenset(c.value for c in Currency)


@dataclass(slots=True)
class PriceAlert:
    """A one-shot request to be told when a collection crosses a price."""

    user_id: str
    collection_name: str
    threshold_price: float
    threshold_type: ThresholdType
    currency: Currency
    collection_address: Optional[str] = None
    auto_buy: bool = False
    auto_buy_price: Optional[float] = None
    auto_buy_currency: Optional[Currency] = None
    id: Optional[int] = None
    is_active: bool = True
    created_at: Optional[int] = None
    triggered_at: Optional[int] = None
    last_checked_at: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PriceAlert":
        auto_buy_currency = row.get("auto_buy_currency")
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            collection_name=row["collection_name"],
            collection_address=row.get("collection_address"),
            threshold_price=float(row["threshold_price"]),
            threshold_type=ThresholdType(row["threshold_type"]),
            currency=Currency(row["currency"]),
            is_active=bool(row["is_active"]),
            auto_buy=bool(row.get("auto_buy")),
            auto_buy_price=row.get("auto_buy_price"),
            auto_buy_currency=Currency(auto_buy_currency) if auto_buy_currency else None,
            created_at=row.get("created_at"),
            triggered_at=row.get("triggered_at"),
            last_checked_at=row.get("last_checked_at"),
        )

    def describe(self) -> str:
        return f"{self.collection_name} {self.threshold_type.value} {self.threshold_price} {self.currency.value}"


@dataclass(slots=True)
class PriceHistoryPoint:
    """One observed price for a collection."""

    collection_name: str
    price: float
    currency: str
    timestamp: int
    source: str
    collection_address: Optional[str] = None
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PriceHistoryPoint":
        return cls(
            id=row["id"],
            collection_name=row["collection_name"],
            collection_address=row.get("collection_address"),
            price=float(row["price"]),
            currency=row["currency"],
            timestamp=int(row["timestamp"]),
            source=row["source"],
        )


@dataclass(slots=True)
class Notification:
    """Record of a triggered alert. Never modified after creation."""

    alert_id: int
    user_id: str
    collection_name: str
    threshold_price: float
    threshold_type: str
    currency: str
    current_price: float
    current_currency: str
    message: str
    triggered_at: int
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Notification":
        return cls(
            id=row["id"],
            alert_id=row["alert_id"],
            user_id=row["user_id"],
            collection_name=row["collection_name"],
            threshold_price=float(row["threshold_price"]),
            threshold_type=row["threshold_type"],
            currency=row["currency"],
            current_price=float(row["current_price"]),
            current_currency=row["current_currency"],
            message=row["message"],
            triggered_at=int(row["triggered_at"]),
        )


__all__ = [
    "ThresholdType",
    "Currency",
    "SUPPORTED_CURRENCIES",
    "PriceAlert",
    "PriceHistoryPoint",
    "Notification",
]
