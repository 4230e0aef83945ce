from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from agent.price_monitor import EMULATION_SOURCE, PriceMonitor, group_by_collection
from alerts.recent import RecentNotifications
from alerts.sink import NotificationSink
from core.errors import QuoteUnavailable, StorageError
from core.models import Currency, PriceAlert, ThresholdType
from core.providers import Quote
from rules.config_loader import MonitorConfig
from storage.alert_store import AlertStore
from storage.migrate import initialize_database


class _Quotes:
    """Serves scripted prices; a list is consumed one value per call."""

    name = "fake"

    def __init__(self, prices: Dict[str, object], currency: str = "ETH") -> None:
        self.prices = prices
        self.currency = currency
        self.calls: List[str] = []

    async def quote(self, collection_name: str) -> Optional[Quote]:
        self.calls.append(collection_name)
        value = self.prices[collection_name]
        if isinstance(value, list):
            value = value.pop(0)
        if isinstance(value, Exception):
            raise value
        if value is None:
            return None
        return Quote(collection_name=collection_name, price=value, currency=self.currency, source=self.name)


class _Rates:
    def __init__(self, rates: Optional[dict] = None) -> None:
        self.rates = rates or {}

    async def rate(self, from_currency: str, to_currency: str) -> Optional[float]:
        return self.rates.get((from_currency, to_currency))


@pytest.fixture()
def store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AlertStore:
    db_path = tmp_path / "monitor.db"
    monkeypatch.setenv("NFT_ALERT_DB_PATH", str(db_path))
    initialize_database(str(db_path))
    return AlertStore(str(db_path))


def _alert(collection: str, threshold: float = 0.2, user: str = "user-1", **extra) -> PriceAlert:
    return PriceAlert(
        user_id=user,
        collection_name=collection,
        threshold_price=threshold,
        threshold_type=extra.pop("threshold_type", ThresholdType.BELOW),
        currency=extra.pop("currency", Currency.ETH),
        **extra,
    )


def _monitor(store: AlertStore, quotes, rates=None, settings: Optional[MonitorConfig] = None):
    sleeps: List[float] = []

    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    recent = RecentNotifications()
    sink = NotificationSink(store, recent)
    monitor = PriceMonitor(store, quotes, rates or _Rates(), sink, settings or MonitorConfig(), sleep=_sleep)
    return monitor, recent, sleeps


class _GatedQuotes:
    """Holds every quote until the gate opens."""

    name = "gated"

    def __init__(self, price: float = 1.0) -> None:
        self.price = price
        self.gate = asyncio.Event()
        self.calls: List[str] = []

    async def quote(self, collection_name: str) -> Optional[Quote]:
        self.calls.append(collection_name)
        await self.gate.wait()
        return Quote(collection_name, self.price, "ETH", self.name)


class _StatusFailingStore(AlertStore):
    def __init__(self, db_path: str, failing_id: int) -> None:
        super().__init__(db_path)
        self.failing_id = failing_id

    def update_alert_status(self, alert_id, triggered, current_price=None):
        if alert_id == self.failing_id:
            raise StorageError("database is locked")
        return super().update_alert_status(alert_id, triggered, current_price)


class _HistoryFailingStore(AlertStore):
    def __init__(self, db_path: str, failing_collection: str) -> None:
        super().__init__(db_path)
        self.failing_collection = failing_collection

    def record_price_history(self, collection_name, price, currency, source, collection_address=None):
        if collection_name == self.failing_collection:
            raise StorageError("disk I/O error")
        return super().record_price_history(collection_name, price, currency, source, collection_address)


async def _until_cycle_started(monitor: PriceMonitor) -> None:
    for _ in range(10):
        if monitor.cycle_in_flight:
            return
        await asyncio.sleep(0)

async def _until_calls(quotes: _GatedQuotes, count: int) -> None:
    for _ in range(500):
        if len(quotes.calls) >= count:
            return
        await asyncio.sleep(0.01)


def test_group_by_collection_is_exact_and_ordered() -> None:
    alerts = [_alert("B"), _alert("A"), _alert("B"), _alert("b")]
    groups = group_by_collection(alerts)
    assert list(groups) == ["B", "A", "b"]
    assert len(groups["B"]) == 2


def test_one_quote_per_collection_and_delay_between_groups(store: AlertStore) -> None:
    store.add_alert(_alert("A", 0.1))
    store.add_alert(_alert("A", 0.05))
    store.add_alert(_alert("B", 0.1))
    quotes = _Quotes({"A": 1.0, "B": 1.0})
    monitor, _, sleeps = _monitor(store, quotes)

    report = asyncio.run(monitor.check_all_alerts())

    assert quotes.calls == ["A", "B"]
    assert sleeps == [1.0]
    assert report.groups_total == 2
    assert report.groups_checked == 2
    assert report.alerts_checked == 3
    assert report.alerts_triggered == 0
    assert all(alert.last_checked_at is not None for alert in store.get_active_alerts())


def test_failing_group_does_not_stop_the_cycle(store: AlertStore) -> None:
    store.add_alert(_alert("A", 1.0))
    b_id = store.add_alert(_alert("B", 1.0))
    store.add_alert(_alert("C", 1.0))
    quotes = _Quotes({"A": 0.5, "B": RuntimeError("provider exploded"), "C": 0.5})
    monitor, recent, sleeps = _monitor(store, quotes)

    report = asyncio.run(monitor.check_all_alerts())

    assert quotes.calls == ["A", "B", "C"]
    assert sleeps == [1.0, 1.0]
    assert report.groups_failed == 1
    assert report.groups_checked == 2
    assert report.alerts_triggered == 2
    assert [a.id for a in store.get_active_alerts()] == [b_id]
    assert len(recent.for_user("user-1")) == 2


def test_missing_quote_skips_group_and_keeps_last_checked(store: AlertStore) -> None:
    alert_id = store.add_alert(_alert("Ghost Collection"))
    quotes = _Quotes({"Ghost Collection": [None, QuoteUnavailable("503")]})
    monitor, _, _ = _monitor(store, quotes)

    first = asyncio.run(monitor.check_all_alerts())
    second = asyncio.run(monitor.check_all_alerts())

    assert first.groups_skipped == 1
    assert second.groups_skipped == 1
    stored = store.get_alert(alert_id)
    assert stored is not None
    assert stored.is_active is True
    assert stored.last_checked_at is None
    assert store.get_latest_price("Ghost Collection") is None


def test_slow_quote_times_out_and_is_skipped(store: AlertStore) -> None:
    store.add_alert(_alert("Slow"))

    class _SlowQuotes:
        name = "slow"

        async def quote(self, collection_name: str) -> Optional[Quote]:
            await asyncio.sleep(5)
            return Quote(collection_name, 0.1, "ETH", self.name)

    monitor, _, _ = _monitor(store, _SlowQuotes(), settings=MonitorConfig(request_timeout_seconds=0.05))
    report = asyncio.run(monitor.check_all_alerts())
    assert report.groups_skipped == 1
    assert report.alerts_triggered == 0


def test_empty_alert_set_makes_no_calls(store: AlertStore) -> None:
    quotes = _Quotes({})
    monitor, _, sleeps = _monitor(store, quotes)

    report = asyncio.run(monitor.check_all_alerts())

    assert quotes.calls == []
    assert sleeps == []
    assert report.groups_total == 0


def test_falling_price_triggers_exactly_once(store: AlertStore) -> None:
    alert_id = store.add_alert(_alert("Cool Cats", 0.2))
    quotes = _Quotes({"Cool Cats": [0.9, 0.65, 0.25, 0.18]})
    monitor, recent, _ = _monitor(store, quotes)

    async def _run() -> List[int]:
        triggered = []
        for _ in range(4):
            report = await monitor.check_all_alerts()
            triggered.append(report.alerts_triggered)
        # the alert is gone, so a fifth cycle has nothing to quote
        await monitor.check_all_alerts()
        return triggered

    assert asyncio.run(_run()) == [0, 0, 0, 1]
    assert quotes.calls == ["Cool Cats"] * 4

    notes = store.list_notifications("user-1")
    assert len(notes) == 1
    assert notes[0].alert_id == alert_id
    assert notes[0].current_price == 0.18
    assert notes[0].message == "Cool Cats is now 0.18 ETH! Great time to buy!"
    assert len(recent.for_user("user-1")) == 1

    stored = store.get_alert(alert_id)
    assert stored is not None
    assert stored.is_active is False
    assert [p.price for p in store.get_price_history("Cool Cats")] == [0.18, 0.25, 0.65, 0.9]


def test_cross_currency_alert_uses_exchange_rate(store: AlertStore) -> None:
    store.add_alert(_alert("Pudgy", 1.0, currency=Currency.ETH))
    quotes = _Quotes({"Pudgy": [2600.0, 2400.0]}, currency="USD")
    monitor, _, _ = _monitor(store, quotes, rates=_Rates({("USD", "ETH"): 1 / 2500}))

    first = asyncio.run(monitor.check_all_alerts())
    second = asyncio.run(monitor.check_all_alerts())

    assert first.alerts_triggered == 0
    assert second.alerts_triggered == 1


def test_missing_rate_leaves_alert_active(store: AlertStore) -> None:
    alert_id = store.add_alert(_alert("Pudgy", 1_000_000.0))
    quotes = _Quotes({"Pudgy": 10.0}, currency="AVAX")
    monitor, _, _ = _monitor(store, quotes)

    report = asyncio.run(monitor.check_all_alerts())

    assert report.alerts_triggered == 0
    stored = store.get_alert(alert_id)
    assert stored is not None
    assert stored.is_active is True
    assert stored.last_checked_at is not None


def test_start_runs_a_cycle_and_stop_cancels_the_timer(store: AlertStore) -> None:
    store.add_alert(_alert("Cool Cats"))
    quotes = _Quotes({"Cool Cats": [1.0, 1.0]})
    monitor, _, _ = _monitor(store, quotes)

    async def _run() -> None:
        assert monitor.is_running is False
        monitor.start(interval_minutes=60)
        monitor.start()
        assert monitor.is_running is True
        await _until_cycle_started(monitor)
        await monitor.wait_idle()
        assert quotes.calls == ["Cool Cats"]
        assert monitor.last_report is not None
        assert monitor.last_report.groups_checked == 1

        monitor.stop()
        assert monitor.is_running is False
        monitor.stop()

    asyncio.run(_run())


def test_start_rejects_non_positive_interval(store: AlertStore) -> None:
    monitor, _, _ = _monitor(store, _Quotes({}))

    async def _run() -> None:
        with pytest.raises(ValueError):
            monitor.start(interval_minutes=0)

    asyncio.run(_run())
    assert monitor.is_running is False


def test_overlapping_tick_is_skipped(store: AlertStore) -> None:
    store.add_alert(_alert("Cool Cats"))

    async def _run() -> List[str]:
        gate = asyncio.Event()
        calls: List[str] = []

        class _BlockingQuotes:
            name = "blocking"

            async def quote(self, collection_name: str) -> Optional[Quote]:
                calls.append(collection_name)
                await gate.wait()
                return Quote(collection_name, 1.0, "ETH", self.name)

        monitor, _, _ = _monitor(store, _BlockingQuotes())
        monitor.start(interval_minutes=60)
        await _until_cycle_started(monitor)
        first = monitor._cycle_task
        monitor._launch_cycle()
        assert monitor._cycle_task is first
        gate.set()
        await monitor.aclose()
        return calls

    assert asyncio.run(_run()) == ["Cool Cats"]


def test_stop_lets_the_running_cycle_finish(store: AlertStore) -> None:
    first = store.add_alert(_alert("Cool Cats", 0.2))
    second = store.add_alert(_alert("Cool Cats", 2.0))

    async def _run():
        quotes = _GatedQuotes(price=1.0)
        monitor, recent, _ = _monitor(store, quotes)
        monitor.start(interval_minutes=60)
        await _until_calls(quotes, 1)
        monitor.stop()
        assert monitor.is_running is False
        assert monitor.cycle_in_flight is True
        quotes.gate.set()
        await monitor.wait_idle()
        return monitor, recent

    monitor, recent = asyncio.run(_run())

    assert monitor.last_report is not None
    assert monitor.last_report.groups_checked == 1
    assert monitor.last_report.triggered_ids == [second]
    untouched = store.get_alert(first)
    assert untouched is not None and untouched.is_active is True
    assert untouched.last_checked_at is not None
    fired = store.get_alert(second)
    assert fired is not None and fired.is_active is False
    assert [n.alert_id for n in recent.for_user("user-1")] == [second]


def test_restart_during_running_cycle_checks_again_once_it_ends(store: AlertStore) -> None:
    store.add_alert(_alert("Cool Cats", 0.2))

    async def _run():
        quotes = _GatedQuotes(price=1.0)
        monitor, _, _ = _monitor(store, quotes)
        monitor.start(interval_minutes=60)
        await _until_calls(quotes, 1)
        monitor.stop()
        monitor.start(interval_minutes=60)
        assert monitor.is_running is True
        quotes.gate.set()
        await _until_calls(quotes, 2)
        await monitor.aclose()
        return quotes.calls

    assert asyncio.run(_run()) == ["Cool Cats", "Cool Cats"]


def test_failed_status_update_skips_only_that_alert(store: AlertStore) -> None:
    a1 = store.add_alert(_alert("A", 0.2))
    a2 = store.add_alert(_alert("A", 0.2))
    a3 = store.add_alert(_alert("A", 0.2))
    b1 = store.add_alert(_alert("B", 0.2))
    flaky = _StatusFailingStore(store.db_path, failing_id=a2)
    monitor, recent, _ = _monitor(flaky, _Quotes({"A": 0.1, "B": 0.1}))

    report = asyncio.run(monitor.check_all_alerts())

    assert report.groups_checked == 2
    assert report.groups_failed == 0
    assert sorted(report.triggered_ids) == sorted([a1, a3, b1])
    assert [a.id for a in store.get_active_alerts()] == [a2]
    notified = {n.alert_id for n in recent.for_user("user-1")}
    assert notified == {a1, a3, b1}
    assert {n.alert_id for n in store.list_notifications("user-1")} == {a1, a3, b1}


def test_failed_history_write_fails_the_group_but_not_the_cycle(store: AlertStore) -> None:
    a = store.add_alert(_alert("A", 0.2))
    b = store.add_alert(_alert("B", 0.2))
    flaky = _HistoryFailingStore(store.db_path, failing_collection="A")
    quotes = _Quotes({"A": 0.1, "B": 0.1})
    monitor, recent, sleeps = _monitor(flaky, quotes)

    report = asyncio.run(monitor.check_all_alerts())

    assert quotes.calls == ["A", "B"]
    assert sleeps == [1.0]
    assert report.groups_failed == 1
    assert report.groups_checked == 1
    assert report.triggered_ids == [b]
    untouched = store.get_alert(a)
    assert untouched is not None
    assert untouched.is_active is True
    assert untouched.last_checked_at is None
    assert [n.alert_id for n in recent.for_user("user-1")] == [b]
    assert store.get_latest_price("A") is None


def test_emulate_price_only_touches_matching_user_alerts(store: AlertStore) -> None:
    mine = store.add_alert(_alert("Cool Cats", 0.2, user="user-1"))
    theirs = store.add_alert(_alert("Cool Cats", 0.2, user="user-2"))
    store.add_alert(_alert("cool cats", 0.2, user="user-1"))
    monitor, recent, _ = _monitor(store, _Quotes({}))

    triggered = asyncio.run(monitor.emulate_price("Cool Cats", 0.15, "ETH", user_id="user-1"))

    assert [a.id for a in triggered] == [mine]
    still_active = {a.id for a in store.get_active_alerts()}
    assert mine not in still_active
    assert theirs in still_active
    latest = store.get_latest_price("Cool Cats")
    assert latest is not None
    assert latest.source == EMULATION_SOURCE
    assert latest.price == 0.15
    assert len(recent.for_user("user-1")) == 1
    assert recent.for_user("user-2") == []


def test_emulate_price_without_alerts_returns_nothing(store: AlertStore) -> None:
    monitor, _, _ = _monitor(store, _Quotes({}))
    assert asyncio.run(monitor.emulate_price("Nobody", 1.0, "ETH")) == []
    assert store.get_latest_price("Nobody") is None
