"""Records triggered alerts and performs the optional auto-buy."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from alerts.recent import RecentNotifications
from core.errors import AutoBuyFailure, StorageError
from core.event_bus import EventBus
from core.events import AlertTriggeredEvent, AutoBuyEvent, EventEnvelope, EventType, Severity
from core.models import Currency, Notification, PriceAlert, ThresholdType
from core.providers import BuyResult, Quote, WalletLedger
from storage.alert_store import AlertStore

LOGGER = logging.getLogger(__name__)


def build_message(alert: PriceAlert, quote: Quote) -> str:
    suffix = "Great time to buy!" if ThresholdType(alert.threshold_type) is ThresholdType.BELOW else "Price target reached!"
    return f"{alert.collection_name} is now {quote.price} {quote.currency}! {suffix}"


@dataclass(slots=True)
class EmitResult:
    """What happened when an alert fired."""

    notification: Notification
    persisted: bool
    auto_buy: Optional[BuyResult] = None
    auto_buy_error: Optional[AutoBuyFailure] = None


class NotificationSink:
    """Persists a notification per trigger, caches it, and runs auto-buy."""

    def __init__(
        self,
        store: AlertStore,
        recent: RecentNotifications,
        wallet: Optional[WalletLedger] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self._store = store
        self._recent = recent
        self._wallet = wallet
        self._event_bus = event_bus

    async def emit(self, alert: PriceAlert, quote: Quote) -> EmitResult:
        message = build_message(alert, quote)
        notification = Notification(
            alert_id=alert.id or 0,
            user_id=alert.user_id,
            collection_name=alert.collection_name,
            threshold_price=alert.threshold_price,
            threshold_type=ThresholdType(alert.threshold_type).value,
            currency=Currency(alert.currency).value,
            current_price=quote.price,
            current_currency=quote.currency,
            message=message,
            triggered_at=self._store.now(),
        )
        LOGGER.info("NOTIFICATION for user %s: %s", alert.user_id, message)

        persisted = True
        try:
            notification.id = await asyncio.to_thread(self._store.add_notification, notification)
        except StorageError as exc:
            persisted = False
            LOGGER.error("Could not persist notification for alert %s: %s", alert.id, exc)
        self._recent.push(notification)
        self._publish_trigger(alert, quote, message)

        result = EmitResult(notification=notification, persisted=persisted)
        if alert.auto_buy and alert.auto_buy_price and alert.auto_buy_currency:
            result.auto_buy, result.auto_buy_error = await self._auto_buy(alert, quote)
        return result

    async def _auto_buy(self, alert: PriceAlert, quote: Quote) -> tuple[Optional[BuyResult], Optional[AutoBuyFailure]]:
        currency = Currency(alert.auto_buy_currency).value
        if self._wallet is None:
            missing = AutoBuyFailure(alert.id, "no wallet ledger configured")
            LOGGER.warning("%s", missing)
            self._publish_auto_buy(alert, None, missing)
            return None, missing

        LOGGER.info("AUTO-BUY: %s at %s %s", alert.collection_name, alert.auto_buy_price, currency)
        failure: Optional[AutoBuyFailure] = None
        buy_result: Optional[BuyResult] = None
        try:
            buy_result = await self._wallet.buy(
                alert.user_id,
                alert.collection_name,
                alert.auto_buy_price,
                currency,
                1,
                trigger_price=alert.threshold_price,
                purchase_price=alert.auto_buy_price,
                previous_price=quote.price,
            )
        except Exception as exc:
            failure = AutoBuyFailure(alert.id, str(exc) or type(exc).__name__)
        else:
            if not buy_result.success:
                failure = AutoBuyFailure(alert.id, buy_result.error or "purchase rejected")

        if failure is not None:
            LOGGER.error("%s", failure)
        else:
            LOGGER.info("AUTO-BUY succeeded for alert %s (transaction %s)", alert.id, buy_result.transaction_id)
        self._publish_auto_buy(alert, buy_result, failure)
        return buy_result, failure

    def _publish_trigger(self, alert: PriceAlert, quote: Quote, message: str) -> None:
        if not self._event_bus:
            return
        event = AlertTriggeredEvent(
            event_type=EventType.ALERT_TRIGGERED,
            severity=Severity.INFO,
            source=quote.source,
            message=message,
            alert_id=alert.id,
            user_id=alert.user_id,
            collection_name=alert.collection_name,
            threshold_type=ThresholdType(alert.threshold_type).value,
            threshold_price=alert.threshold_price,
            currency=Currency(alert.currency).value,
            current_price=quote.price,
            current_currency=quote.currency,
        )
        self._event_bus.publish(EventEnvelope(event=event, ts=time.time(), id=f"ALERT-{alert.id}"))

    def _publish_auto_buy(
        self, alert: PriceAlert, result: Optional[BuyResult], failure: Optional[AutoBuyFailure]
    ) -> None:
        if not self._event_bus:
            return
        success = failure is None
        if success:
            message = f"AUTO-BUY EXECUTED: {alert.collection_name} purchased for {alert.auto_buy_price} {Currency(alert.auto_buy_currency).value}"
        else:
            message = f"AUTO-BUY FAILED: {alert.collection_name} - {failure.reason}"
        event = AutoBuyEvent(
            event_type=EventType.AUTO_BUY,
            severity=Severity.INFO if success else Severity.WARNING,
            source="wallet",
            message=message,
            alert_id=alert.id,
            user_id=alert.user_id,
            collection_name=alert.collection_name,
            success=success,
            price=alert.auto_buy_price,
            currency=Currency(alert.auto_buy_currency).value,
            transaction_id=result.transaction_id if result else None,
        )
        self._event_bus.publish(EventEnvelope(event=event, ts=time.time(), id=f"AUTOBUY-{alert.id}"))


__all__ = ["NotificationSink", "EmitResult", "build_message"]
