"""Host-facing operations over the alert service.

Every method returns an :class:`ApiResult` instead of raising, so an HTTP or
chat front end can pass the outcome straight through. Payloads and result
data use camelCase keys.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from agent.price_monitor import PriceMonitor
from alerts.recent import RecentNotifications
from core.errors import AlertServiceError, StorageError, ValidationError
from core.models import Currency, Notification, PriceAlert, PriceHistoryPoint
from storage.alert_store import AlertStore

LOGGER = logging.getLogger(__name__)

NOTIFICATION_LIMIT = 10
DB_NOTIFICATION_LOOKBACK = 20


@dataclass(slots=True)
class ApiResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "ApiResult":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str) -> "ApiResult":
        return cls(success=False, error=error)


def alert_to_dict(alert: PriceAlert) -> Dict[str, Any]:
    return {
        "id": alert.id,
        "collectionName": alert.collection_name,
        "collectionAddress": alert.collection_address,
        "thresholdPrice": alert.threshold_price,
        "thresholdType": alert.threshold_type.value,
        "currency": alert.currency.value,
        "autoBuy": alert.auto_buy,
        "autoBuyPrice": alert.auto_buy_price,
        "autoBuyCurrency": alert.auto_buy_currency.value if alert.auto_buy_currency else None,
        "createdAt": alert.created_at,
        "lastCheckedAt": alert.last_checked_at,
    }


def notification_to_dict(notification: Notification) -> Dict[str, Any]:
    # ``id`` is the alert id: a client dismisses notifications per alert.
    return {
        "id": notification.alert_id,
        "collectionName": notification.collection_name,
        "thresholdPrice": notification.threshold_price,
        "thresholdType": notification.threshold_type,
        "currency": notification.currency,
        "currentPrice": notification.current_price,
        "currentCurrency": notification.current_currency,
        "message": notification.message,
        "triggeredAt": notification.triggered_at,
    }


def price_point_to_dict(point: PriceHistoryPoint) -> Dict[str, Any]:
    return {
        "price": point.price,
        "currency": point.currency,
        "timestamp": point.timestamp,
        "source": point.source,
    }


def _missing(payload: Mapping[str, Any], fields: List[str]) -> bool:
    return any(payload.get(name) in (None, "") for name in fields)


class AlertAPI:
    """Create, list and delete alerts; read notifications and prices."""

    def __init__(self, store: AlertStore, monitor: PriceMonitor, recent: RecentNotifications) -> None:
        self.store = store
        self.monitor = monitor
        self.recent = recent

    async def create_alert(self, payload: Mapping[str, Any]) -> ApiResult:
        required = ["userId", "collectionName", "thresholdPrice", "thresholdType", "currency"]
        if _missing(payload, required):
            return ApiResult.fail(f"Missing required fields: {', '.join(required)}")
        alert = PriceAlert(
            user_id=payload["userId"],
            collection_name=payload["collectionName"],
            collection_address=payload.get("collectionAddress"),
            threshold_price=payload["thresholdPrice"],
            threshold_type=payload["thresholdType"],
            currency=payload["currency"],
            auto_buy=bool(payload.get("autoBuy")),
            auto_buy_price=payload.get("autoBuyPrice"),
            auto_buy_currency=payload.get("autoBuyCurrency"),
        )
        try:
            alert_id = await asyncio.to_thread(self.store.add_alert, alert)
        except ValidationError as exc:
            return ApiResult.fail(str(exc))
        except StorageError as exc:
            LOGGER.error("Error creating alert: %s", exc)
            return ApiResult.fail("Failed to create price alert")

        name, kind, price, currency = (
            payload["collectionName"],
            payload["thresholdType"],
            payload["thresholdPrice"],
            payload["currency"],
        )
        if alert.auto_buy:
            message = f"Auto-buy alert created: Buy {name} when {kind} {price} {currency}"
        else:
            message = f"Price alert created: Notify when {name} {kind} {price} {currency}"
        return ApiResult.ok({"alertId": alert_id, "autoBuy": alert.auto_buy}, message)

    async def list_alerts(self, user_id: str) -> ApiResult:
        try:
            alerts = await asyncio.to_thread(self.store.get_user_alerts, user_id)
        except StorageError as exc:
            LOGGER.error("Error getting alerts: %s", exc)
            return ApiResult.fail("Failed to get alerts")
        return ApiResult.ok([alert_to_dict(a) for a in alerts])

    async def list_notifications(self, user_id: str, limit: int = NOTIFICATION_LIMIT) -> ApiResult:
        """Recent notifications first, then stored ones for other alerts."""

        merged = list(self.recent.for_user(user_id))
        seen = {n.alert_id for n in merged}
        try:
            stored = await asyncio.to_thread(
                self.store.list_notifications, user_id, max(limit, DB_NOTIFICATION_LOOKBACK)
            )
        except StorageError as exc:
            LOGGER.error("Error getting notifications: %s", exc)
            if not merged:
                return ApiResult.fail("Failed to get notifications")
            stored = []
        for notification in stored:
            if notification.alert_id in seen:
                continue
            seen.add(notification.alert_id)
            merged.append(notification)
        merged.sort(key=lambda n: (n.triggered_at, n.id or 0), reverse=True)
        return ApiResult.ok([notification_to_dict(n) for n in merged[:limit]])

    async def delete_alert(self, alert_id: int) -> ApiResult:
        try:
            deleted = await asyncio.to_thread(self.store.delete_alert, int(alert_id))
        except (TypeError, ValueError):
            return ApiResult.fail("alertId must be an integer")
        except StorageError as exc:
            LOGGER.error("Error deleting alert: %s", exc)
            return ApiResult.fail("Failed to delete alert")
        if not deleted:
            LOGGER.info("Alert %s was already absent", alert_id)
        return ApiResult.ok({"deleted": bool(deleted)}, "Alert deleted successfully")

    def monitoring_status(self) -> ApiResult:
        report = self.monitor.last_report
        data: Dict[str, Any] = {"monitoring": self.monitor.is_running}
        if report is not None:
            data["lastCycle"] = {
                "startedAt": report.started_at,
                "finishedAt": report.finished_at,
                "groupsTotal": report.groups_total,
                "groupsChecked": report.groups_checked,
                "groupsSkipped": report.groups_skipped,
                "groupsFailed": report.groups_failed,
                "alertsTriggered": report.alerts_triggered,
            }
        return ApiResult.ok(data, "Price monitoring service status")

    async def latest_price(self, collection_name: str) -> ApiResult:
        try:
            point = await asyncio.to_thread(self.store.get_latest_price, collection_name)
        except StorageError as exc:
            LOGGER.error("Error getting latest price: %s", exc)
            return ApiResult.fail("Failed to get price history")
        return ApiResult.ok(
            {"collectionName": collection_name, "latestPrice": price_point_to_dict(point) if point else None}
        )

    async def price_history(self, collection_name: str, limit: int = 24) -> ApiResult:
        try:
            points = await asyncio.to_thread(self.store.get_price_history, collection_name, limit)
        except StorageError as exc:
            LOGGER.error("Error getting price history: %s", exc)
            return ApiResult.fail("Failed to get price history")
        return ApiResult.ok(
            {"collectionName": collection_name, "history": [price_point_to_dict(p) for p in points]}
        )

    async def emulate_price(self, payload: Mapping[str, Any]) -> ApiResult:
        """Push a manual price through the matcher for one user's collection."""

        required = ["userId", "collectionName", "newPrice", "currency"]
        if _missing(payload, required):
            return ApiResult.fail(f"Missing required fields: {', '.join(required)}")
        currency = payload["currency"]
        if currency not in {c.value for c in Currency}:
            return ApiResult.fail('currency must be "ETH", "USD", or "AVAX"')
        try:
            new_price = float(payload["newPrice"])
        except (TypeError, ValueError):
            return ApiResult.fail("newPrice must be a number")
        user_id = payload["userId"]
        collection_name = payload["collectionName"]

        try:
            user_alerts = await asyncio.to_thread(self.store.get_user_alerts, user_id)
            total = sum(1 for a in user_alerts if a.collection_name == collection_name)
            if total == 0:
                return ApiResult.fail(f'No active alerts found for collection "{collection_name}"')
            triggered = await self.monitor.emulate_price(collection_name, new_price, currency, user_id=user_id)
        except AlertServiceError as exc:
            LOGGER.error("Error emulating price: %s", exc)
            return ApiResult.fail(f"Failed to emulate price change: {exc}")

        message = (
            f"Price emulation completed. {len(triggered)} alert(s) triggered out of {total} total alerts."
        )
        return ApiResult.ok(
            {
                "collectionName": collection_name,
                "newPrice": new_price,
                "currency": currency,
                "totalAlerts": total,
                "triggeredCount": len(triggered),
                "triggeredAlerts": [alert_to_dict(a) for a in triggered],
            },
            message,
        )


__all__ = [
    "AlertAPI",
    "ApiResult",
    "alert_to_dict",
    "notification_to_dict",
    "price_point_to_dict",
]
