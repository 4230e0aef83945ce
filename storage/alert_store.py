"""Durable storage of price alerts, price history and notifications.

Every method is synchronous; the monitoring loop calls them through
``asyncio.to_thread`` so SQLite I/O never blocks the event loop. Any SQLite
failure surfaces as :class:`core.errors.StorageError`.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, List, Optional

from core.errors import ValidationError
from core.models import Currency, Notification, PriceAlert, PriceHistoryPoint, ThresholdType
from storage import sqlite_manager

LOGGER = logging.getLogger(__name__)


def _now_ts() -> int:
    return int(time.time())


def _positive(value: object, field_name: str) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number") from None
    if not math.isfinite(number) or number <= 0:
        raise ValidationError(f"{field_name} must be a positive number")
    return number


def _currency(value: object, field_name: str) -> Currency:
    try:
        return Currency(value)
    except ValueError:
        raise ValidationError(f'{field_name} must be "ETH", "USD", or "AVAX"') from None


def validate_alert(alert: PriceAlert) -> PriceAlert:
    """Return a normalised copy of ``alert`` or raise :class:`ValidationError`."""

    if not alert.user_id or not str(alert.user_id).strip():
        raise ValidationError("userId is required")
    if not alert.collection_name or not str(alert.collection_name).strip():
        raise ValidationError("collectionName is required")
    threshold_price = _positive(alert.threshold_price, "thresholdPrice")
    try:
        threshold_type = ThresholdType(alert.threshold_type)
    except ValueError:
        raise ValidationError('thresholdType must be "below" or "above"') from None
    currency = _currency(alert.currency, "currency")

    auto_buy_price: Optional[float] = None
    auto_buy_currency: Optional[Currency] = None
    if alert.auto_buy:
        if alert.auto_buy_price is None or not alert.auto_buy_currency:
            raise ValidationError("When autoBuy is enabled, autoBuyPrice and autoBuyCurrency are required")
        auto_buy_price = _positive(alert.auto_buy_price, "autoBuyPrice")
        auto_buy_currency = _currency(alert.auto_buy_currency, "autoBuyCurrency")
    elif alert.auto_buy_currency:
        auto_buy_currency = _currency(alert.auto_buy_currency, "autoBuyCurrency")

    return PriceAlert(
        user_id=str(alert.user_id),
        collection_name=str(alert.collection_name),
        collection_address=alert.collection_address or None,
        threshold_price=threshold_price,
        threshold_type=threshold_type,
        currency=currency,
        auto_buy=bool(alert.auto_buy),
        auto_buy_price=auto_buy_price,
        auto_buy_currency=auto_buy_currency if alert.auto_buy else None,
    )


class AlertStore:
    """CRUD and scheduling queries over the alert tables."""

    def __init__(self, db_path: Optional[str] = None, now_func: Callable[[], int] = _now_ts) -> None:
        self.db_path = sqlite_manager.get_db_path(db_path)
        self._now = now_func

    # --- alerts -----------------------------------------------------------

    def add_alert(self, alert: PriceAlert) -> int:
        clean = validate_alert(alert)
        alert_id = sqlite_manager.insert(
            """
            INSERT INTO price_alerts (
                user_id, collection_name, collection_address, threshold_price,
                threshold_type, currency, is_active, auto_buy, auto_buy_price,
                auto_buy_currency, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?, ?)
            """,
            (
                clean.user_id,
                clean.collection_name,
                clean.collection_address,
                clean.threshold_price,
                clean.threshold_type.value,
                clean.currency.value,
                1 if clean.auto_buy else 0,
                clean.auto_buy_price,
                clean.auto_buy_currency.value if clean.auto_buy_currency else None,
                self._now(),
            ),
            self.db_path,
        )
        LOGGER.info("Alert %s created for user %s: %s", alert_id, clean.user_id, clean.describe())
        return alert_id

    def get_alert(self, alert_id: int) -> Optional[PriceAlert]:
        row = sqlite_manager.query_one("SELECT * FROM price_alerts WHERE id = ?", (alert_id,), self.db_path)
        return PriceAlert.from_row(row) if row else None

    def get_user_alerts(self, user_id: str) -> List[PriceAlert]:
        rows = sqlite_manager.query(
            "SELECT * FROM price_alerts WHERE user_id = ? AND is_active = 1 "
            "ORDER BY created_at DESC, id DESC",
            (user_id,),
            self.db_path,
        )
        return [PriceAlert.from_row(row) for row in rows]

    def get_active_alerts(self) -> List[PriceAlert]:
        """All active alerts, least recently checked first."""

        rows = sqlite_manager.query(
            "SELECT * FROM price_alerts WHERE is_active = 1 "
            "ORDER BY last_checked_at IS NOT NULL, last_checked_at ASC, created_at ASC, id ASC",
            None,
            self.db_path,
        )
        return [PriceAlert.from_row(row) for row in rows]

    def update_alert_status(self, alert_id: int, triggered: bool, current_price: Optional[float] = None) -> bool:
        """Advance ``last_checked_at`` and, when triggered, deactivate the alert.

        Inactive or missing alerts are left alone; the return value tells
        whether a row changed.
        """

        now = self._now()
        if triggered:
            changed = sqlite_manager.execute(
                "UPDATE price_alerts SET is_active = 0, triggered_at = ?, last_checked_at = ? "
                "WHERE id = ? AND is_active = 1",
                (now, now, alert_id),
                self.db_path,
            )
            if changed:
                LOGGER.info("Alert %s marked as triggered at price %s", alert_id, current_price)
        else:
            changed = sqlite_manager.execute(
                "UPDATE price_alerts SET last_checked_at = ? WHERE id = ? AND is_active = 1",
                (now, alert_id),
                self.db_path,
            )
        return bool(changed)

    def delete_alert(self, alert_id: int) -> bool:
        changed = sqlite_manager.execute("DELETE FROM price_alerts WHERE id = ?", (alert_id,), self.db_path)
        if changed:
            LOGGER.info("Alert %s deleted", alert_id)
        return bool(changed)

    # --- price history ----------------------------------------------------

    def record_price_history(
        self,
        collection_name: str,
        price: float,
        currency: str,
        source: str,
        collection_address: Optional[str] = None,
    ) -> int:
        return sqlite_manager.insert(
            "INSERT INTO price_history (collection_name, collection_address, price, currency, timestamp, source) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (collection_name, collection_address, price, currency, self._now(), source),
            self.db_path,
        )

    def get_latest_price(self, collection_name: str) -> Optional[PriceHistoryPoint]:
        history = self.get_price_history(collection_name, limit=1)
        return history[0] if history else None

    def get_price_history(self, collection_name: str, limit: int = 24) -> List[PriceHistoryPoint]:
        """Most recent ``limit`` points for ``collection_name``, newest first."""

        if limit <= 0:
            return []
        rows = sqlite_manager.query(
            "SELECT * FROM price_history WHERE collection_name = ? "
            "ORDER BY timestamp DESC, id DESC LIMIT ?",
            (collection_name, limit),
            self.db_path,
        )
        return [PriceHistoryPoint.from_row(row) for row in rows]

    # --- notifications ----------------------------------------------------

    def add_notification(self, notification: Notification) -> int:
        return sqlite_manager.insert(
            """
            INSERT INTO notifications (
                alert_id, user_id, collection_name, threshold_price, threshold_type,
                currency, current_price, current_currency, message, triggered_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                notification.alert_id,
                notification.user_id,
                notification.collection_name,
                notification.threshold_price,
                notification.threshold_type,
                notification.currency,
                notification.current_price,
                notification.current_currency,
                notification.message,
                notification.triggered_at,
            ),
            self.db_path,
        )

    def list_notifications(self, user_id: str, limit: int = 20) -> List[Notification]:
        rows = sqlite_manager.query(
            "SELECT * FROM notifications WHERE user_id = ? ORDER BY triggered_at DESC, id DESC LIMIT ?",
            (user_id, limit),
            self.db_path,
        )
        return [Notification.from_row(row) for row in rows]

    def now(self) -> int:
        return self._now()


__all__ = ["AlertStore", "validate_alert"]
