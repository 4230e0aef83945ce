"""Connector utilities for price data and the demo wallet."""

from .dummy_wallet import DummyWalletLedger
from .exchange_rates import CoinGeckoRateClient
from .floor_price import FloorPriceClient

__all__ = [
    "DummyWalletLedger",
    "CoinGeckoRateClient",
    "FloorPriceClient",
]
