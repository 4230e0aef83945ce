"""Configuration loader for the price alert service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from dotenv import load_dotenv

from core.providers import EndpointConfig

DB_PATH_ENV = "NFT_ALERT_DB_PATH"


@dataclass
class DatabaseConfig:
    """SQLite location; ``NFT_ALERT_DB_PATH`` wins over the file setting."""

    path: Optional[str] = None

    @property
    def resolved_path(self) -> Optional[str]:
        return os.getenv(DB_PATH_ENV) or self.path

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "DatabaseConfig":
        if not data:
            return cls()
        return cls(**data)


@dataclass
class MonitorConfig:
    """Polling cadence of the monitoring loop."""

    interval_minutes: float = 5.0
    group_delay_seconds: float = 1.0
    request_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.interval_minutes <= 0:
            raise ValueError("monitor.interval_minutes must be positive")
        if self.group_delay_seconds < 0:
            raise ValueError("monitor.group_delay_seconds cannot be negative")
        if self.request_timeout_seconds <= 0:
            raise ValueError("monitor.request_timeout_seconds must be positive")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "MonitorConfig":
        if not data:
            return cls()
        return cls(**data)


@dataclass
class EndpointEntry:
    """Upstream base URL whose API key, if any, is read from the environment."""

    name: str
    base_url: str
    api_key_env: Optional[str] = None
    priority: int = 0

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv(self.api_key_env) if self.api_key_env else None

    def to_endpoint(self) -> EndpointConfig:
        return EndpointConfig(name=self.name, base_url=self.base_url, api_key=self.api_key, priority=self.priority)


def _default_quote_endpoints() -> List[EndpointEntry]:
    return [
        EndpointEntry(name="coingecko", base_url="https://api.coingecko.com/api/v3", priority=0),
        EndpointEntry(
            name="coingecko-pro",
            base_url="https://pro-api.coingecko.com/api/v3",
            api_key_env="COINGECKO_API_KEY",
            priority=1,
        ),
    ]


@dataclass
class QuoteProviderConfig:
    """Floor price provider endpoints."""

    endpoints: List[EndpointEntry] = field(default_factory=_default_quote_endpoints)
    cache_seconds: float = 300.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "QuoteProviderConfig":
        if not data:
            return cls()
        endpoints = [EndpointEntry(**ep) for ep in data.get("endpoints", [])] or _default_quote_endpoints()
        return cls(endpoints=endpoints, cache_seconds=float(data.get("cache_seconds", 300.0)))


@dataclass
class ExchangeRateConfig:
    """Exchange rate provider settings."""

    base_url: str = "https://api.coingecko.com/api/v3"
    api_key_env: Optional[str] = None
    cache_seconds: float = 60.0

    @property
    def api_key(self) -> Optional[str]:
        return os.getenv(self.api_key_env) if self.api_key_env else None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "ExchangeRateConfig":
        if not data:
            return cls()
        return cls(**data)


@dataclass
class DingtalkNotifierConfig:
    """DingTalk notifier configuration with environment indirection."""

    enabled: bool = False
    webhook_env: Optional[str] = None
    secret_env: Optional[str] = None

    @property
    def webhook(self) -> Optional[str]:
        return os.getenv(self.webhook_env) if self.webhook_env else None

    @property
    def secret(self) -> Optional[str]:
        return os.getenv(self.secret_env) if self.secret_env else None


@dataclass
class NotificationsConfig:
    """Ring buffer size and outbound channels."""

    recent_limit: int = 10
    dingtalk: DingtalkNotifierConfig = field(default_factory=DingtalkNotifierConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "NotificationsConfig":
        if not data:
            return cls()
        dingtalk = DingtalkNotifierConfig(**(data.get("dingtalk") or {}))
        return cls(recent_limit=int(data.get("recent_limit", 10)), dingtalk=dingtalk)


def _default_balances() -> Dict[str, float]:
    return {"ETH": 10.0, "USD": 10000.0, "AVAX": 100.0}


@dataclass
class WalletConfig:
    """Starting balances of newly created demo wallets."""

    starting_balances: Dict[str, float] = field(default_factory=_default_balances)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "WalletConfig":
        if not data:
            return cls()
        balances = _default_balances()
        balances.update({str(k).upper(): float(v) for k, v in (data.get("starting_balances") or {}).items()})
        return cls(starting_balances=balances)


@dataclass
class AppConfig:
    """Top level configuration model."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    quotes: QuoteProviderConfig = field(default_factory=QuoteProviderConfig)
    exchange_rates: ExchangeRateConfig = field(default_factory=ExchangeRateConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, object]]) -> "AppConfig":
        data = data or {}
        return cls(
            database=DatabaseConfig.from_dict(data.get("database")),
            monitor=MonitorConfig.from_dict(data.get("monitor")),
            quotes=QuoteProviderConfig.from_dict(data.get("quotes")),
            exchange_rates=ExchangeRateConfig.from_dict(data.get("exchange_rates")),
            notifications=NotificationsConfig.from_dict(data.get("notifications")),
            wallet=WalletConfig.from_dict(data.get("wallet")),
        )


def load_config(
    config_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
) -> AppConfig:
    """Load configuration from YAML and environment variables.

    A missing ``config.yaml`` is not an error; every section has defaults.
    """

    base_path = Path(__file__).resolve().parents[1]
    if config_path is None:
        config_path = base_path / "config.yaml"
    if env_path is None:
        default_env = base_path / ".env"
        if default_env.exists():
            env_path = default_env

    load_dotenv(dotenv_path=env_path, override=False)

    if not Path(config_path).exists():
        return AppConfig()
    with open(config_path, "r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a mapping at the top level")
    return AppConfig.from_dict(data)


__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "MonitorConfig",
    "EndpointEntry",
    "QuoteProviderConfig",
    "ExchangeRateConfig",
    "DingtalkNotifierConfig",
    "NotificationsConfig",
    "WalletConfig",
    "load_config",
]
