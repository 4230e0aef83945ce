"""Contracts for the external collaborators the monitor depends on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(slots=True)
class EndpointConfig:
    """A configurable upstream base URL, pooled for failover."""

    name: str
    base_url: str
    api_key: Optional[str] = None
    priority: int = 0


@dataclass(slots=True)
class Quote:
    """Best-effort current price of a collection."""

    collection_name: str
    price: float
    currency: str
    source: str
    ts: float = 0.0


@dataclass(slots=True)
class BuyResult:
    """Outcome of a wallet purchase."""

    success: bool
    transaction_id: Optional[int] = None
    error: Optional[str] = None


class PriceQuoteClient(Protocol):
    """Answers "what does this collection cost right now"."""

    name: str

    async def quote(self, collection_name: str) -> Optional[Quote]:
        """Return the current quote or ``None`` when no provider answered."""


class ExchangeRateClient(Protocol):
    """Multiplicative conversion rates between currency codes."""

    async def rate(self, from_currency: str, to_currency: str) -> Optional[float]:
        """Return how many ``to_currency`` one ``from_currency`` buys, or ``None``."""


class WalletLedger(Protocol):
    """Simulated wallet able to purchase an NFT on a user's behalf."""

    async def buy(
        self,
        user_id: str,
        collection_name: str,
        price: float,
        currency: str,
        quantity: int = 1,
        trigger_price: Optional[float] = None,
        purchase_price: Optional[float] = None,
        previous_price: Optional[float] = None,
    ) -> BuyResult:
        """Spend ``price * quantity`` of ``currency`` and record the holding."""


__all__ = [
    "EndpointConfig",
    "Quote",
    "BuyResult",
    "PriceQuoteClient",
    "ExchangeRateClient",
    "WalletLedger",
]
