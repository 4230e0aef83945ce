"""Currency conversion rates from CoinGecko's ``/simple/price``."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Tuple

import httpx

LOGGER = logging.getLogger(__name__)

COINGECKO_IDS: Dict[str, str] = {
    "ETH": "ethereum",
    "AVAX": "avalanche-2",
}


class CoinGeckoRateClient:
    """Answers ``rate(from, to)`` by pricing both sides in USD.

    USD prices are cached per coin for ``cache_seconds``. Every failure,
    HTTP 429 included, yields ``None`` so the caller skips the conversion.
    """

    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: Optional[str] = None,
        cache_seconds: float = 60.0,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._cache_seconds = cache_seconds
        self._timeout = timeout
        self._transport = transport
        self._clock = clock
        self._usd_prices: Dict[str, Tuple[float, float]] = {}

    async def rate(self, from_currency: str, to_currency: str) -> Optional[float]:
        source = from_currency.upper()
        target = to_currency.upper()
        if source == target:
            return 1.0
        from_usd = await self._usd_price(source)
        to_usd = await self._usd_price(target)
        if from_usd is None or to_usd is None:
            return None
        return from_usd / to_usd

    async def _usd_price(self, currency: str) -> Optional[float]:
        if currency == "USD":
            return 1.0
        coin_id = COINGECKO_IDS.get(currency)
        if coin_id is None:
            LOGGER.warning("No CoinGecko id for currency %s", currency)
            return None
        cached = self._usd_prices.get(currency)
        if cached and self._clock() - cached[0] < self._cache_seconds:
            return cached[1]

        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["x-cg-pro-api-key"] = self._api_key
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(
                    f"{self._base_url}/simple/price",
                    params={"ids": coin_id, "vs_currencies": "usd"},
                    headers=headers,
                )
            if resp.status_code == 429:
                LOGGER.warning("CoinGecko rate limited the %s price request", currency)
                return None
            resp.raise_for_status()
            price = float(resp.json()[coin_id]["usd"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("Exchange rate lookup for %s failed: %s", currency, exc)
            return None
        if price <= 0:
            return None
        self._usd_prices[currency] = (self._clock(), price)
        return price


__all__ = ["CoinGeckoRateClient", "COINGECKO_IDS"]
