"""Timer-driven monitoring loop that evaluates every active price alert.

One cycle pulls the active alerts (least recently checked first), groups them
by exact collection name, fetches a single quote per group, records it, and
evaluates each alert of the group against it. Groups are processed one after
another with a fixed pause in between so the quote provider's rate limit is
respected. Nothing that goes wrong inside a cycle escapes it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from alerts.sink import NotificationSink
from core.errors import QuoteUnavailable, StorageError
from core.models import PriceAlert
from core.providers import ExchangeRateClient, PriceQuoteClient, Quote
from rules import price_alerts
from rules.config_loader import MonitorConfig
from storage.alert_store import AlertStore

LOGGER = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]

EMULATION_SOURCE = "emulation_demo"


@dataclass
class CycleReport:
    """Counters describing one pass over the active alerts."""

    started_at: float = 0.0
    finished_at: float = 0.0
    groups_total: int = 0
    groups_checked: int = 0
    groups_skipped: int = 0
    groups_failed: int = 0
    alerts_checked: int = 0
    alerts_triggered: int = 0
    triggered_ids: List[int] = field(default_factory=list)


def group_by_collection(alerts: List[PriceAlert]) -> Dict[str, List[PriceAlert]]:
    """Group alerts by exact collection name, keeping first-seen order."""

    groups: Dict[str, List[PriceAlert]] = {}
    for alert in alerts:
        groups.setdefault(alert.collection_name, []).append(alert)
    return groups


class PriceMonitor:
    """Stopped/Running scheduler around :meth:`check_all_alerts`."""

    def __init__(
        self,
        store: AlertStore,
        quote_client: PriceQuoteClient,
        rate_client: ExchangeRateClient,
        sink: NotificationSink,
        settings: Optional[MonitorConfig] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._store = store
        self._quotes = quote_client
        self._rates = rate_client
        self._sink = sink
        self._settings = settings or MonitorConfig()
        self._sleep = sleep
        self._timer_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self.last_report: Optional[CycleReport] = None

    # --- lifecycle --------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def cycle_in_flight(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    def start(self, interval_minutes: Optional[float] = None) -> None:
        """Run one cycle now and then one every ``interval_minutes``."""

        if self.is_running:
            LOGGER.info("Price monitoring is already running")
            return
        minutes = interval_minutes if interval_minutes is not None else self._settings.interval_minutes
        if minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        loop = asyncio.get_running_loop()
        LOGGER.info("Starting NFT price monitoring (checking every %s minutes)", minutes)
        self._timer_task = loop.create_task(self._tick(minutes * 60.0), name="price_monitor_timer")

    def stop(self) -> None:
        """Cancel future cycles. A cycle already running is left to finish."""

        task = self._timer_task
        self._timer_task = None
        if task is not None and not task.done():
            task.cancel()
            LOGGER.info("NFT price monitoring stopped")

    async def wait_idle(self) -> None:
        """Wait for the in-flight cycle, if any."""

        task = self._cycle_task
        if task is not None and not task.done():
            # asyncio.wait leaves the cycle running if the waiter is cancelled
            await asyncio.wait({task})

    async def aclose(self) -> None:
        self.stop()
        await self.wait_idle()

    async def _tick(self, interval_seconds: float) -> None:
        if self.cycle_in_flight:
            LOGGER.info("Previous alert check still running; next check starts when it finishes")
            await self.wait_idle()
        while True:
            self._launch_cycle()
            await asyncio.sleep(interval_seconds)

    def _launch_cycle(self) -> None:
        if self.cycle_in_flight:
            LOGGER.warning("Previous alert check still running; skipping this tick")
            return
        self._cycle_task = asyncio.get_running_loop().create_task(self._guarded_cycle(), name="price_monitor_cycle")

    async def _guarded_cycle(self) -> None:
        try:
            await self.check_all_alerts()
        except asyncio.CancelledError:  # pragma: no cover - runtime cancellation
            raise
        except Exception as exc:
            LOGGER.exception("Critical error while checking alerts: %s", exc)

    # --- one cycle --------------------------------------------------------

    async def check_all_alerts(self) -> CycleReport:
        report = CycleReport(started_at=time.time())
        self.last_report = report
        LOGGER.info("Checking all active price alerts...")
        try:
            alerts = await asyncio.to_thread(self._store.get_active_alerts)
        except StorageError as exc:
            LOGGER.error("Could not load active alerts: %s", exc)
            report.finished_at = time.time()
            return report

        if not alerts:
            LOGGER.info("No active alerts to check")
            report.finished_at = time.time()
            return report

        groups = group_by_collection(alerts)
        report.groups_total = len(groups)
        LOGGER.info("Found %d active alerts in %d collections", len(alerts), len(groups))

        for index, (collection_name, group) in enumerate(groups.items()):
            try:
                await self._check_collection(collection_name, group, report)
            except Exception as exc:
                report.groups_failed += 1
                LOGGER.exception("Error checking collection %s: %s", collection_name, exc)
            if index < len(groups) - 1 and self._settings.group_delay_seconds > 0:
                await self._sleep(self._settings.group_delay_seconds)

        report.finished_at = time.time()
        LOGGER.info(
            "Completed checking %d/%d collections (%d skipped, %d failed, %d triggered)",
            report.groups_checked,
            report.groups_total,
            report.groups_skipped,
            report.groups_failed,
            report.alerts_triggered,
        )
        return report

    async def _check_collection(self, collection_name: str, alerts: List[PriceAlert], report: CycleReport) -> None:
        LOGGER.info("Checking %s (%d alerts)", collection_name, len(alerts))
        quote = await self._fetch_quote(collection_name)
        if quote is None:
            report.groups_skipped += 1
            LOGGER.info("Could not get current price for %s", collection_name)
            return

        address = next((a.collection_address for a in alerts if a.collection_address), None)
        await asyncio.to_thread(
            self._store.record_price_history,
            collection_name,
            quote.price,
            quote.currency,
            quote.source,
            address,
        )
        triggered = await self._evaluate_group(alerts, quote)
        report.groups_checked += 1
        report.alerts_checked += len(alerts)
        report.alerts_triggered += len(triggered)
        report.triggered_ids.extend(a.id for a in triggered if a.id is not None)

    async def _evaluate_group(self, alerts: List[PriceAlert], quote: Quote) -> List[PriceAlert]:
        triggered: List[PriceAlert] = []
        for alert in alerts:
            should_trigger = await price_alerts.evaluate(alert, quote, self._rate_lookup)
            try:
                changed = await asyncio.to_thread(
                    self._store.update_alert_status, alert.id, should_trigger, quote.price if should_trigger else None
                )
            except StorageError as exc:
                LOGGER.error("Could not update alert %s: %s", alert.id, exc)
                continue
            if not should_trigger:
                continue
            if not changed:
                LOGGER.info("Alert %s was no longer active; not notifying", alert.id)
                continue
            LOGGER.info("ALERT TRIGGERED: %s", alert.describe())
            triggered.append(alert)
            await self._sink.emit(alert, quote)
        return triggered

    async def _fetch_quote(self, collection_name: str) -> Optional[Quote]:
        timeout = self._settings.request_timeout_seconds
        try:
            return await asyncio.wait_for(self._quotes.quote(collection_name), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Quote for %s timed out after %.0fs", collection_name, timeout)
        except QuoteUnavailable as exc:
            LOGGER.warning("Quote unavailable for %s: %s", collection_name, exc)
        return None

    async def _rate_lookup(self, from_currency: str, to_currency: str) -> Optional[float]:
        return await asyncio.wait_for(
            self._rates.rate(from_currency, to_currency),
            timeout=self._settings.request_timeout_seconds,
        )

    # --- demo -------------------------------------------------------------

    async def emulate_price(
        self,
        collection_name: str,
        price: float,
        currency: str,
        user_id: Optional[str] = None,
    ) -> List[PriceAlert]:
        """Evaluate one collection's alerts against a manually supplied price.

        Returns the alerts that triggered. The emulated price is recorded in
        the price history like a real quote.
        """

        alerts = await asyncio.to_thread(self._store.get_active_alerts)
        matching = [
            a for a in alerts if a.collection_name == collection_name and (user_id is None or a.user_id == user_id)
        ]
        if not matching:
            return []
        LOGGER.info("EMULATING: %s price change to %s %s", collection_name, price, currency)
        quote = Quote(
            collection_name=collection_name,
            price=float(price),
            currency=currency,
            source=EMULATION_SOURCE,
            ts=time.time(),
        )
        await asyncio.to_thread(
            self._store.record_price_history, collection_name, quote.price, quote.currency, quote.source
        )
        return await self._evaluate_group(matching, quote)


__all__ = ["PriceMonitor", "CycleReport", "group_by_collection", "EMULATION_SOURCE"]
