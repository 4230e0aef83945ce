"""Notifier abstraction so outbound alert channels stay pluggable."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True)
class NotificationMessage:
    """Channel independent notification payload."""

    title: str
    body: str
    category: str = "alert"  # alert | auto_buy | system


@dataclass(slots=True)
class NotifierTestResult:
    ok: bool
    detail: str = ""


class Notifier(Protocol):
    """Common interface of every outbound channel."""

    name: str

    def enabled(self) -> bool:
        """Whether the channel is switched on and configured."""

    async def send(self, message: NotificationMessage) -> bool:
        """Deliver ``message``; return whether it went out."""

    async def self_test(self) -> NotifierTestResult:
        """Send a probe message to verify the channel."""
