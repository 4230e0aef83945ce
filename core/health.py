"""Health bookkeeping for pooled upstream endpoints."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from core.providers import EndpointConfig


@dataclass(slots=True)
class Endpoint:
    """Runtime state of one upstream base URL."""

    name: str
    base_url: str
    api_key: Optional[str] = None
    priority: int = 0
    last_checked: float = 0.0
    consecutive_failures: int = 0
    latency_ms: float = 0.0
    healthy: bool = True
    failure_reason: str = ""


class EndpointPool:
    """Priority ordered endpoints with failure counting."""

    def __init__(self, endpoints: Iterable[Endpoint]) -> None:
        self._endpoints: List[Endpoint] = sorted(list(endpoints), key=lambda e: e.priority)

    @classmethod
    def from_configs(cls, configs: Iterable[EndpointConfig]) -> "EndpointPool":
        return cls(
            Endpoint(name=cfg.name, base_url=cfg.base_url, api_key=cfg.api_key, priority=cfg.priority)
            for cfg in configs
        )

    @property
    def endpoints(self) -> List[Endpoint]:
        return list(self._endpoints)

    def ordered(self) -> List[Endpoint]:
        """Healthy endpoints first, each half kept in priority order."""

        healthy = [ep for ep in self._endpoints if ep.healthy]
        unhealthy = [ep for ep in self._endpoints if not ep.healthy]
        return healthy + unhealthy

    def mark_success(self, endpoint: Endpoint, latency_ms: float) -> None:
        endpoint.latency_ms = latency_ms
        endpoint.last_checked = time.time()
        endpoint.consecutive_failures = 0
        endpoint.healthy = True
        endpoint.failure_reason = ""

    def mark_failure(self, endpoint: Endpoint, reason: str) -> None:
        endpoint.consecutive_failures += 1
        endpoint.last_checked = time.time()
        endpoint.healthy = False
        endpoint.latency_ms = 0.0
        endpoint.failure_reason = reason

    def snapshot(self) -> List[Dict[str, object]]:
        """Serializable view of the pool for logs and status endpoints."""

        return [
            {
                "name": ep.name,
                "base_url": ep.base_url,
                "healthy": ep.healthy,
                "latency_ms": ep.latency_ms,
                "failures": ep.consecutive_failures,
                "last_checked": ep.last_checked,
                "reason": ep.failure_reason,
            }
            for ep in self._endpoints
        ]


__all__ = ["Endpoint", "EndpointPool"]
