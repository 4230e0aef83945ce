"""Notification routing via EventBus subscriptions."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Coroutine, Dict, Iterable, Optional, Set

from alerts.dingtalk import DingTalkNotifier
from alerts.notifiers.base import Notifier, NotificationMessage
from core.event_bus import EventBus
from core.events import AlertTriggeredEvent, AutoBuyEvent, EventEnvelope, EventType, SystemFaultEvent
from rules.config_loader import NotificationsConfig

LOGGER = logging.getLogger(__name__)


def _timestamp(ts: float) -> str:
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _format_detail(detail: dict | None) -> str:
    if not detail:
        return ""
    return ", ".join(f"{k}: {v}" for k, v in detail.items())


class NotificationService:
    """Subscribe to alert events and fan them out to enabled notifiers."""

    HIGH_PRIORITY_CHANNELS: tuple[str, ...] = ("dingtalk",)

    def __init__(self, event_bus: EventBus, config: NotificationsConfig) -> None:
        self.event_bus = event_bus
        self.config = config
        self._notifiers: Dict[str, Notifier] = self._build_notifiers(config)
        self._pending: Set[asyncio.Task] = set()
        self.event_bus.subscribe(EventType.ALERT_TRIGGERED, self._on_alert_triggered)
        self.event_bus.subscribe(EventType.AUTO_BUY, self._on_auto_buy)
        self.event_bus.subscribe(EventType.SYSTEM_FAULT, self._on_system_fault)
        LOGGER.info("NotificationService initialized with channels: %s", list(self._notifiers))

    def _build_notifiers(self, config: NotificationsConfig) -> Dict[str, Notifier]:
        registry: Dict[str, Notifier] = {}
        dingtalk = config.dingtalk
        if dingtalk.enabled:
            registry["dingtalk"] = DingTalkNotifier(
                webhook=dingtalk.webhook,
                secret=dingtalk.secret,
                enabled_flag=dingtalk.enabled,
            )
        return registry

    @property
    def channels(self) -> list[str]:
        return list(self._notifiers)

    def close(self) -> None:
        self.event_bus.unsubscribe(EventType.ALERT_TRIGGERED, self._on_alert_triggered)
        self.event_bus.unsubscribe(EventType.AUTO_BUY, self._on_auto_buy)
        self.event_bus.unsubscribe(EventType.SYSTEM_FAULT, self._on_system_fault)

    async def drain(self) -> None:
        """Wait until every scheduled delivery has finished."""

        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_alert_triggered(self, envelope: EventEnvelope) -> None:
        if self._notifiers:
            self._schedule(self._dispatch_alert(envelope))

    def _on_auto_buy(self, envelope: EventEnvelope) -> None:
        if self._notifiers:
            self._schedule(self._dispatch_auto_buy(envelope))

    def _on_system_fault(self, envelope: EventEnvelope) -> None:
        if self._notifiers:
            self._schedule(self._dispatch_system_fault(envelope))

    async def _dispatch_alert(self, envelope: EventEnvelope) -> None:
        event = envelope.event
        if not isinstance(event, AlertTriggeredEvent):
            LOGGER.debug("Skip non-alert event: %s", event)
            return
        message = NotificationMessage(
            title=f"{event.collection_name} price alert",
            body=self._alert_body(event, envelope.ts),
            category="alert",
        )
        await self._send_to_enabled(message)

    async def _dispatch_auto_buy(self, envelope: EventEnvelope) -> None:
        event = envelope.event
        if not isinstance(event, AutoBuyEvent):
            LOGGER.debug("Skip non auto-buy event: %s", event)
            return
        status = "executed" if event.success else "failed"
        message = NotificationMessage(
            title=f"{event.collection_name} auto-buy {status}",
            body=(
                f"# Auto-buy {status}\n"
                f"- Time (UTC): {_timestamp(envelope.ts)}\n"
                f"- User: {event.user_id}\n"
                f"- Alert: {event.alert_id}\n"
                f"- {event.message}"
            ),
            category="auto_buy",
        )
        await self._send_to_enabled(message)

    async def _dispatch_system_fault(self, envelope: EventEnvelope) -> None:
        event = envelope.event
        if not isinstance(event, SystemFaultEvent):
            LOGGER.debug("Skip non-system fault event: %s", event)
            return
        message = NotificationMessage(
            title=f"[SYSTEM] {event.component} failure",
            body=self._system_body(event, envelope.ts),
            category="system",
        )
        await self._send_to_enabled(message, force_channels=self.HIGH_PRIORITY_CHANNELS)

    async def _send_to_enabled(
        self, message: NotificationMessage, force_channels: Optional[Iterable[str]] = None
    ) -> None:
        channels = list(force_channels) if force_channels else list(self._notifiers)
        for name in channels:
            notifier = self._notifiers.get(name)
            if not notifier or not notifier.enabled():
                LOGGER.debug("Notifier %s unavailable or disabled", name)
                continue
            success = await notifier.send(message)
            if success:
                LOGGER.info("Delivered %s via %s", message.category, name)
            else:
                LOGGER.warning("Failed to deliver %s via %s", message.category, name)

    def _alert_body(self, event: AlertTriggeredEvent, ts: float) -> str:
        return (
            f"# Price alert\n"
            f"- Collection: {event.collection_name}\n"
            f"- Time (UTC): {_timestamp(ts)}\n"
            f"- User: {event.user_id}\n"
            f"- Threshold: {event.threshold_type} {event.threshold_price} {event.currency}\n"
            f"- Current: {event.current_price} {event.current_currency}\n"
            f"- Source: {event.source}\n"
            f"- {event.message}"
        )

    def _system_body(self, event: SystemFaultEvent, ts: float) -> str:
        detail = _format_detail(dict(event.detail)) or "none"
        return (
            f"# System failure\n"
            f"- Time (UTC): {_timestamp(ts)}\n"
            f"- Component: {event.component}\n"
            f"- Endpoint: {event.endpoint or 'unknown'}\n"
            f"- Category: {event.category}\n"
            f"- Message: {event.message}\n"
            f"- Detail: {detail}"
        )


__all__ = ["NotificationService"]
