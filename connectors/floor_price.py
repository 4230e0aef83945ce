"""NFT floor price provider backed by the CoinGecko NFT API.

A collection name is first resolved to a CoinGecko id through ``/search``,
then ``/nfts/{id}`` supplies the floor. Both lookups are cached for a few
minutes because the public API is heavily rate limited. Endpoints are pooled
so a keyed mirror can take over when the public host fails, and every
endpoint fault is published on the EventBus.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Iterable, Optional, Tuple

import httpx

from core.errors import QuoteUnavailable
from core.event_bus import EventBus
from core.events import EventEnvelope, EventType, Severity, SystemFaultEvent
from core.health import Endpoint, EndpointPool
from core.models import Currency
from core.providers import EndpointConfig, Quote

LOGGER = logging.getLogger(__name__)

DEFAULT_CACHE_SECONDS = 300.0
API_KEY_HEADER = "x-cg-pro-api-key"


class FloorPriceClient:
    """Quotes collection floor prices in ETH, or USD for non-ETH chains."""

    name = "coingecko"

    def __init__(
        self,
        endpoints: Iterable[EndpointConfig] = (),
        event_bus: EventBus | None = None,
        cache_seconds: float = DEFAULT_CACHE_SECONDS,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._pool = EndpointPool.from_configs(endpoints)
        self._event_bus = event_bus
        self._cache_seconds = cache_seconds
        self._timeout = timeout
        self._transport = transport
        self._clock = clock
        self._ids: Dict[str, Tuple[float, Optional[str]]] = {}
        self._quotes: Dict[str, Tuple[float, Quote]] = {}

    @property
    def pool(self) -> EndpointPool:
        return self._pool

    async def quote(self, collection_name: str) -> Optional[Quote]:
        cached = self._quotes.get(collection_name)
        if cached and self._clock() - cached[0] < self._cache_seconds:
            return cached[1]
        try:
            collection_id = await self._resolve_id(collection_name)
            if collection_id is None:
                LOGGER.info("No CoinGecko collection matches %s", collection_name)
                return None
            data = await self._request(f"/nfts/{collection_id}")
        except QuoteUnavailable as exc:
            LOGGER.warning("Floor price lookup failed for %s: %s", collection_name, exc)
            return None

        quote = self._parse_floor(collection_name, data)
        if quote is None:
            LOGGER.info("No floor price data for %s", collection_name)
            return None
        self._quotes[collection_name] = (self._clock(), quote)
        return quote

    async def _resolve_id(self, collection_name: str) -> Optional[str]:
        cached = self._ids.get(collection_name)
        if cached and self._clock() - cached[0] < self._cache_seconds:
            return cached[1]
        data = await self._request("/search", params={"query": collection_name})
        nfts = data.get("nfts") if isinstance(data, dict) else None
        collection_id = self._best_match(collection_name, nfts or [])
        self._ids[collection_name] = (self._clock(), collection_id)
        return collection_id

    @staticmethod
    def _best_match(query: str, nfts: list) -> Optional[str]:
        if not nfts:
            return None
        wanted = query.strip().lower()
        candidates = [item for item in nfts if isinstance(item, dict) and item.get("id")]
        for item in candidates:
            if str(item.get("name", "")).lower() == wanted or str(item["id"]).lower() == wanted:
                return str(item["id"])
        for item in candidates:
            if wanted in str(item.get("name", "")).lower():
                return str(item["id"])
        return str(candidates[0]["id"]) if candidates else None

    def _parse_floor(self, collection_name: str, data: object) -> Optional[Quote]:
        if not isinstance(data, dict):
            return None
        floor = data.get("floor_price") or {}
        native_symbol = str(data.get("native_currency_symbol") or data.get("native_currency") or "").upper()
        native = floor.get("native_currency")
        usd = floor.get("usd")
        try:
            if native_symbol == Currency.ETH.value and native:
                price, currency = float(native), Currency.ETH.value
            elif usd:
                price, currency = float(usd), Currency.USD.value
            else:
                return None
        except (TypeError, ValueError):
            return None
        return Quote(collection_name=collection_name, price=price, currency=currency, source=self.name, ts=time.time())

    async def _request(self, path: str, params: Optional[dict] = None) -> dict:
        errors: list[str] = []
        for endpoint in self._pool.ordered():
            url = f"{endpoint.base_url.rstrip('/')}{path}"
            headers = {"Accept": "application/json"}
            if endpoint.api_key:
                headers[API_KEY_HEADER] = endpoint.api_key
            started = time.perf_counter()
            try:
                async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                    resp = await client.get(url, params=params, headers=headers)
            except httpx.RequestError as exc:
                self._pool.mark_failure(endpoint, str(exc))
                errors.append(f"{endpoint.name}:{exc}")
                self._emit_fault(endpoint, "network", str(exc), path)
                continue
            if resp.status_code == 200:
                self._pool.mark_success(endpoint, (time.perf_counter() - started) * 1000)
                try:
                    return resp.json()
                except ValueError as exc:
                    raise QuoteUnavailable(f"{endpoint.name}: invalid JSON") from exc
            reason = f"status {resp.status_code}"
            self._pool.mark_failure(endpoint, reason)
            errors.append(f"{endpoint.name}:{reason}")
            self._emit_fault(endpoint, "rate_limit" if resp.status_code == 429 else "api", reason, path)
        raise QuoteUnavailable(";".join(errors) or "no endpoints configured")

    def _emit_fault(self, endpoint: Endpoint, category: str, reason: str, path: str) -> None:
        if not self._event_bus:
            return
        event = SystemFaultEvent(
            event_type=EventType.SYSTEM_FAULT,
            severity=Severity.WARNING if category == "rate_limit" else Severity.CRITICAL,
            source=self.name,
            message=f"Endpoint failure on {endpoint.name}: {reason}",
            component="quote_provider",
            endpoint=endpoint.base_url,
            category=category,
            detail={"path": path, "consecutive_failures": endpoint.consecutive_failures},
        )
        self._event_bus.publish(EventEnvelope(event=event, ts=time.time()))


__all__ = ["FloorPriceClient", "DEFAULT_CACHE_SECONDS"]
