import asyncio
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from alerts.notifiers.base import NotificationMessage, Notifier, NotifierTestResult
from alerts.router import NotificationService
from core.event_bus import EventBus
from core.events import AlertTriggeredEvent, AutoBuyEvent, EventEnvelope, EventType, Severity, SystemFaultEvent
from rules.config_loader import DingtalkNotifierConfig, NotificationsConfig


@dataclass
class _FakeNotifier(Notifier):
    name: str
    enabled_flag: bool = True
    messages: List[NotificationMessage] = field(default_factory=list)

    def enabled(self) -> bool:
        return self.enabled_flag

    async def send(self, message: NotificationMessage) -> bool:
        self.messages.append(message)
        return True

    async def self_test(self) -> NotifierTestResult:
        return NotifierTestResult(ok=True, detail="fake")


def _config(enabled: bool = True) -> NotificationsConfig:
    return NotificationsConfig(dingtalk=DingtalkNotifierConfig(enabled=enabled))


def _triggered() -> AlertTriggeredEvent:
    return AlertTriggeredEvent(
        event_type=EventType.ALERT_TRIGGERED,
        severity=Severity.INFO,
        source="coingecko",
        message="Cool Cats is now 0.18 ETH! Great time to buy!",
        alert_id=1,
        user_id="user-1",
        collection_name="Cool Cats",
        threshold_type="below",
        threshold_price=0.2,
        currency="ETH",
        current_price=0.18,
        current_currency="ETH",
    )


def test_alert_trigger_routed(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _run() -> None:
        bus = EventBus()
        fake = _FakeNotifier(name="dingtalk")

        monkeypatch.setattr(NotificationService, "_build_notifiers", lambda self, config: {"dingtalk": fake})
        service = NotificationService(event_bus=bus, config=_config())

        bus.publish(EventEnvelope(event=_triggered(), ts=time.time()))
        await service.drain()

        assert len(fake.messages) == 1
        assert fake.messages[0].category == "alert"
        assert "Cool Cats" in fake.messages[0].title
        assert "0.18 ETH" in fake.messages[0].body

    asyncio.run(_run())


def test_auto_buy_routed(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _run() -> None:
        bus = EventBus()
        fake = _FakeNotifier(name="dingtalk")
        monkeypatch.setattr(NotificationService, "_build_notifiers", lambda self, config: {"dingtalk": fake})
        service = NotificationService(event_bus=bus, config=_config())

        event = AutoBuyEvent(
            event_type=EventType.AUTO_BUY,
            severity=Severity.WARNING,
            source="wallet",
            message="AUTO-BUY FAILED: Cool Cats - Insufficient ETH balance",
            alert_id=1,
            user_id="user-1",
            collection_name="Cool Cats",
            success=False,
        )
        bus.publish(EventEnvelope(event=event, ts=time.time()))
        await service.drain()

        assert [m.category for m in fake.messages] == ["auto_buy"]
        assert "failed" in fake.messages[0].title

    asyncio.run(_run())


def test_system_fault_prefers_high_priority(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _run() -> None:
        bus = EventBus()
        high = _FakeNotifier(name="dingtalk")
        low = _FakeNotifier(name="webhook")

        def _build_notifiers(self, config):
            return {"dingtalk": high, "webhook": low}

        monkeypatch.setattr(NotificationService, "_build_notifiers", _build_notifiers)
        service = NotificationService(event_bus=bus, config=_config())

        event = SystemFaultEvent(
            event_type=EventType.SYSTEM_FAULT,
            severity=Severity.CRITICAL,
            source="coingecko",
            message="Endpoint failure",
            component="quote_provider",
            category="network",
            detail={"path": "/search", "consecutive_failures": 2},
        )
        bus.publish(EventEnvelope(event=event, ts=time.time()))
        await service.drain()

        assert len(high.messages) == 1
        assert len(low.messages) == 0
        assert "- Detail: path: /search, consecutive_failures: 2" in high.messages[0].body

    asyncio.run(_run())


def test_disabled_dingtalk_builds_no_channels() -> None:
    service = NotificationService(event_bus=EventBus(), config=_config(enabled=False))
    assert service.channels == []


def test_close_unsubscribes(monkeypatch: pytest.MonkeyPatch) -> None:
    bus = EventBus()
    monkeypatch.setattr(NotificationService, "_build_notifiers", lambda self, config: {})
    service = NotificationService(event_bus=bus, config=_config())
    assert len(tuple(bus.subscribers(EventType.ALERT_TRIGGERED))) == 1
    service.close()
    assert tuple(bus.subscribers(EventType.ALERT_TRIGGERED)) == ()


def test_failing_subscriber_does_not_break_publish() -> None:
    bus = EventBus()
    received: List[EventEnvelope] = []

    def _explode(_: EventEnvelope) -> None:
        raise RuntimeError("boom")

    bus.subscribe(EventType.ALERT_TRIGGERED, _explode)
    bus.subscribe("alert_triggered", received.append)
    bus.publish(EventEnvelope(event=_triggered(), ts=time.time()))

    assert len(received) == 1
