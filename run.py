"""Main entry point wiring and running the NFT price alert service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from agent.price_monitor import PriceMonitor
from alerts.api import AlertAPI
from alerts.recent import RecentNotifications
from alerts.router import NotificationService
from alerts.sink import NotificationSink
from connectors.dummy_wallet import DummyWalletLedger
from connectors.exchange_rates import CoinGeckoRateClient
from connectors.floor_price import FloorPriceClient
from core.event_bus import EventBus
from rules.config_loader import AppConfig, load_config
from storage.alert_store import AlertStore
from storage.migrate import initialize_database

LOGGER = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="NFT price alert monitor")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--init-db", action="store_true", help="Create database tables and exit")
    parser.add_argument("--once", action="store_true", help="Run a single check of all alerts")
    parser.add_argument("--loop", action="store_true", help="Start the monitor and run until interrupted")
    return parser.parse_args(argv)


@dataclass
class Runtime:
    """Every long-lived component of the service."""

    config: AppConfig
    event_bus: EventBus
    store: AlertStore
    recent: RecentNotifications
    wallet: DummyWalletLedger
    quotes: FloorPriceClient
    rates: CoinGeckoRateClient
    sink: NotificationSink
    monitor: PriceMonitor
    notifications: NotificationService
    api: AlertAPI


def build_runtime(config: AppConfig) -> Runtime:
    db_path = config.database.resolved_path
    initialize_database(db_path)

    event_bus = EventBus()
    notifications = NotificationService(event_bus=event_bus, config=config.notifications)
    store = AlertStore(db_path)
    recent = RecentNotifications(config.notifications.recent_limit)
    wallet = DummyWalletLedger(store.db_path, starting_balances=config.wallet.starting_balances)
    quotes = FloorPriceClient(
        (ep.to_endpoint() for ep in config.quotes.endpoints),
        event_bus=event_bus,
        cache_seconds=config.quotes.cache_seconds,
    )
    rates = CoinGeckoRateClient(
        base_url=config.exchange_rates.base_url,
        api_key=config.exchange_rates.api_key,
        cache_seconds=config.exchange_rates.cache_seconds,
    )
    sink = NotificationSink(store, recent, wallet=wallet, event_bus=event_bus)
    monitor = PriceMonitor(store, quotes, rates, sink, settings=config.monitor)
    api = AlertAPI(store, monitor, recent)
    return Runtime(
        config=config,
        event_bus=event_bus,
        store=store,
        recent=recent,
        wallet=wallet,
        quotes=quotes,
        rates=rates,
        sink=sink,
        monitor=monitor,
        notifications=notifications,
        api=api,
    )


async def run_once(runtime: Runtime) -> None:
    report = await runtime.monitor.check_all_alerts()
    await runtime.notifications.drain()
    LOGGER.info(
        "Cycle finished: %d collections checked, %d alerts triggered",
        report.groups_checked,
        report.alerts_triggered,
    )


async def loop_forever(runtime: Runtime) -> None:
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal() -> None:
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):  # pragma: no branch - OS dependent
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:  # pragma: no cover - Windows fallback
            signal.signal(sig, lambda _s, _f: loop.call_soon_threadsafe(stop_event.set))

    runtime.monitor.start()
    try:
        await stop_event.wait()
    finally:
        await runtime.monitor.aclose()
        await runtime.notifications.drain()


def main(argv: Optional[Sequence[str]] = None) -> None:
    configure_logging()
    args = parse_args(argv)
    if args.once and args.loop:
        raise SystemExit("--once and --loop cannot be combined")
    config = load_config(args.config)
    if args.init_db:
        initialize_database(config.database.resolved_path)
        return
    if not (args.once or args.loop):
        raise SystemExit("Specify --init-db, --once or --loop")

    runtime = build_runtime(config)
    try:
        asyncio.run(run_once(runtime) if args.once else loop_forever(runtime))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")


if __name__ == "__main__":
    main()
