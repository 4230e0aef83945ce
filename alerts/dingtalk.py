"""DingTalk robot webhook channel for trigger and fault notifications."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx

from alerts.notifiers.base import Notifier, NotifierTestResult, NotificationMessage

LOGGER = logging.getLogger(__name__)


class DingTalkError(RuntimeError):
    """DingTalk accepted the request but answered with a non-zero errcode."""


def _sign(secret: str, timestamp: int) -> str:
    string_to_sign = f"{timestamp}\n{secret}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), string_to_sign, digestmod=hashlib.sha256).digest()
    return base64.b64encode(signature).decode("utf-8")


def signed_url(webhook: str, secret: Optional[str], timestamp_ms: Optional[int] = None) -> str:
    """Append ``timestamp`` and ``sign`` when the robot uses a signing secret."""

    if not secret:
        return webhook
    timestamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    query = urlencode({"timestamp": timestamp, "sign": _sign(secret, timestamp)})
    separator = "&" if "?" in webhook else "?"
    return f"{webhook}{separator}{query}"


async def send_markdown(
    title: str,
    text: str,
    webhook: str,
    secret: Optional[str] = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    payload = {
        "msgtype": "markdown",
        "markdown": {"title": title, "text": text},
    }
    async with httpx.AsyncClient(timeout=10, transport=transport) as client:
        response = await client.post(signed_url(webhook, secret), json=payload)
        response.raise_for_status()
    body = response.json() if response.content else {}
    if isinstance(body, dict) and body.get("errcode", 0) != 0:
        raise DingTalkError(f"errcode {body.get('errcode')}: {body.get('errmsg', '')}")
    LOGGER.info("DingTalk message sent: %s", title)


@dataclass(slots=True)
class DingTalkNotifier(Notifier):
    """Markdown notifier posting to a DingTalk robot webhook."""

    webhook: Optional[str]
    secret: Optional[str]
    enabled_flag: bool
    name: str = "dingtalk"
    transport: httpx.AsyncBaseTransport | None = None

    def enabled(self) -> bool:
        return self.enabled_flag and bool(self.webhook)

    async def send(self, message: NotificationMessage) -> bool:
        if not self.enabled():
            LOGGER.info("DingTalk notifier disabled or missing webhook; skip send")
            return False
        try:
            await send_markdown(message.title, message.body, self.webhook or "", self.secret, self.transport)
            return True
        except (httpx.HTTPError, DingTalkError, ValueError) as exc:
            LOGGER.error("Failed to send DingTalk message: %s", exc)
            return False

    async def self_test(self) -> NotifierTestResult:
        if not self.webhook:
            return NotifierTestResult(ok=False, detail="Missing webhook for DingTalk")
        ok = await self.send(
            NotificationMessage(
                title="[TEST] NFT price alerts",
                body="# DingTalk channel reachable\n- Result: ok",
                category="system",
            )
        )
        detail = "DingTalk webhook reachable" if ok else "DingTalk webhook rejected the test message"
        return NotifierTestResult(ok=ok, detail=detail)


__all__ = ["send_markdown", "signed_url", "DingTalkNotifier", "DingTalkError"]
