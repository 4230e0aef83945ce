"""Event types published on the in-process event bus.

Events stay transport agnostic: the monitor, the notification sink and the
outbound notifiers share these types instead of passing loose dicts around.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


class EventType(str, Enum):
    """Top level event categories."""

    ALERT_TRIGGERED = "alert_triggered"
    AUTO_BUY = "auto_buy"
    SYSTEM_FAULT = "system_fault"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(slots=True)
class EventBase:
    """Fields common to every event."""

    event_type: EventType
    severity: Severity
    source: str
    message: str
    detail: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AlertTriggeredEvent(EventBase):
    """A price alert matched a quote and was deactivated."""

    alert_id: Optional[int] = None
    user_id: str = ""
    collection_name: str = ""
    threshold_type: str = ""
    threshold_price: Optional[float] = None
    currency: str = ""
    current_price: Optional[float] = None
    current_currency: str = ""


@dataclass(slots=True)
class AutoBuyEvent(EventBase):
    """Result of the purchase attempted after a trigger."""

    alert_id: Optional[int] = None
    user_id: str = ""
    collection_name: str = ""
    success: bool = False
    price: Optional[float] = None
    currency: str = ""
    transaction_id: Optional[int] = None


@dataclass(slots=True)
class SystemFaultEvent(EventBase):
    """Upstream or storage failure, categorised as network/api/rate_limit."""

    component: str = ""
    endpoint: Optional[str] = None
    category: str = ""


@dataclass(slots=True)
class EventEnvelope:
    """Wraps an event with its publication time and optional identifier."""

    event: EventBase
    ts: float
    id: Optional[str] = None
