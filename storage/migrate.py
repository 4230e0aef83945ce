"""Database migration and initialization utilities."""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Iterable

from .sqlite_manager import execute_script, get_db_path

LOGGER = logging.getLogger(__name__)


CREATE_TABLE_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS price_alerts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        collection_name TEXT NOT NULL,
        collection_address TEXT,
        threshold_price REAL NOT NULL,
        threshold_type TEXT NOT NULL CHECK (threshold_type IN ('below', 'above')),
        currency TEXT NOT NULL CHECK (currency IN ('ETH', 'USD', 'AVAX')),
        is_active INTEGER NOT NULL DEFAULT 1,
        auto_buy INTEGER NOT NULL DEFAULT 0,
        auto_buy_price REAL,
        auto_buy_currency TEXT CHECK (auto_buy_currency IS NULL OR auto_buy_currency IN ('ETH', 'USD', 'AVAX')),
        created_at INTEGER NOT NULL,
        triggered_at INTEGER,
        last_checked_at INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS price_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        collection_name TEXT NOT NULL,
        collection_address TEXT,
        price REAL NOT NULL,
        currency TEXT NOT NULL,
        timestamp INTEGER NOT NULL,
        source TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        alert_id INTEGER NOT NULL,
        user_id TEXT NOT NULL,
        collection_name TEXT NOT NULL,
        threshold_price REAL NOT NULL,
        threshold_type TEXT NOT NULL,
        currency TEXT NOT NULL,
        current_price REAL NOT NULL,
        current_currency TEXT NOT NULL,
        message TEXT NOT NULL,
        triggered_at INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dummy_wallets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL UNIQUE,
        address TEXT NOT NULL,
        eth_balance REAL NOT NULL DEFAULT 0,
        usd_balance REAL NOT NULL DEFAULT 0,
        avax_balance REAL NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL,
        last_updated INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS nft_holdings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        wallet_id INTEGER NOT NULL REFERENCES dummy_wallets (id),
        token_id TEXT NOT NULL,
        name TEXT NOT NULL,
        collection TEXT NOT NULL,
        purchase_price REAL NOT NULL,
        purchase_currency TEXT NOT NULL,
        purchase_date INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS wallet_transactions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        wallet_id INTEGER NOT NULL REFERENCES dummy_wallets (id),
        type TEXT NOT NULL CHECK (type IN ('buy_nft', 'deposit')),
        amount REAL NOT NULL,
        currency TEXT NOT NULL,
        collection_name TEXT,
        status TEXT NOT NULL DEFAULT 'completed',
        trigger_price REAL,
        purchase_price REAL,
        previous_price REAL,
        timestamp INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_alerts_user_active ON price_alerts(user_id, is_active)",
    "CREATE INDEX IF NOT EXISTS idx_alerts_collection ON price_alerts(collection_name)",
    "CREATE INDEX IF NOT EXISTS idx_price_history_collection ON price_history(collection_name, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, triggered_at)",
    "CREATE INDEX IF NOT EXISTS idx_holdings_wallet ON nft_holdings(wallet_id)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_wallet ON wallet_transactions(wallet_id)",
)


def initialize_database(db_path: str | None = None) -> None:
    """Create all tables and indexes if they do not exist yet."""
    path = Path(get_db_path(db_path))
    execute_script(CREATE_TABLE_STATEMENTS, str(path))
    LOGGER.info("Database initialized at %s", path)


def _parse_args(args: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="SQLite migration helper")
    parser.add_argument("--init", action="store_true", help="initialize database tables")
    parser.add_argument("--db-path", help="override database path", default=None)
    return parser.parse_args(args)


def main(argv: Iterable[str] | None = None) -> None:
    args = _parse_args(argv)
    if args.init:
        initialize_database(args.db_path)
    else:
        LOGGER.info("No action specified. Use --init to create tables.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    main()
