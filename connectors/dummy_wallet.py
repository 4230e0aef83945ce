"""Simulated wallet used for auto-buy demos.

Balances, holdings and transactions live in the same SQLite database as the
alerts. Nothing here touches a chain; a purchase just moves numbers.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from core.errors import InsufficientBalance
from core.models import Currency
from core.providers import BuyResult
from storage import sqlite_manager

LOGGER = logging.getLogger(__name__)

DEFAULT_BALANCES: Dict[str, float] = {"ETH": 10.0, "USD": 10000.0, "AVAX": 100.0}

_BALANCE_COLUMNS = {
    Currency.ETH: "eth_balance",
    Currency.USD: "usd_balance",
    Currency.AVAX: "avax_balance",
}


def _balance_column(currency: str) -> str:
    return _BALANCE_COLUMNS[Currency(str(currency).upper())]


class DummyWalletLedger:
    """Per-user simulated balances that auto-buy purchases draw from.

    A purchase debits the wallet, records the holding and logs a tagged
    transaction in one SQLite transaction, or changes nothing at all.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        starting_balances: Optional[Mapping[str, float]] = None,
        now_func: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = db_path
        self._balances = dict(DEFAULT_BALANCES)
        if starting_balances:
            self._balances.update({k.upper(): float(v) for k, v in starting_balances.items()})
        self._now = now_func

    def _ts(self) -> int:
        return int(self._now())

    def get_or_create_wallet(self, user_id: str) -> Dict[str, Any]:
        """Return the user's wallet row, creating it with starting balances."""

        with sqlite_manager.transaction(self.db_path) as conn:
            row = conn.execute("SELECT * FROM dummy_wallets WHERE user_id = ?", (user_id,)).fetchone()
            if row is not None:
                return dict(row)
            now = self._ts()
            address = "0x" + secrets.token_hex(20)
            conn.execute(
                """
                INSERT INTO dummy_wallets (user_id, address, eth_balance, usd_balance, avax_balance, created_at, last_updated)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    address,
                    self._balances.get("ETH", 0.0),
                    self._balances.get("USD", 0.0),
                    self._balances.get("AVAX", 0.0),
                    now,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM dummy_wallets WHERE user_id = ?", (user_id,)).fetchone()
        LOGGER.info("Created demo wallet %s for user %s", address, user_id)
        return dict(row)

    def get_balances(self, user_id: str) -> Dict[str, float]:
        wallet = self.get_or_create_wallet(user_id)
        return {currency.value: float(wallet[column]) for currency, column in _BALANCE_COLUMNS.items()}

    def deposit(self, user_id: str, amount: float, currency: str) -> int:
        if amount <= 0:
            raise ValueError("amount must be positive")
        column = _balance_column(currency)
        wallet = self.get_or_create_wallet(user_id)
        now = self._ts()
        with sqlite_manager.transaction(self.db_path) as conn:
            conn.execute(
                f"UPDATE dummy_wallets SET {column} = {column} + ?, last_updated = ? WHERE id = ?",
                (amount, now, wallet["id"]),
            )
            cursor = conn.execute(
                """
                INSERT INTO wallet_transactions (wallet_id, type, amount, currency, status, timestamp)
                VALUES (?, 'deposit', ?, ?, 'completed', ?)
                """,
                (wallet["id"], amount, Currency(currency.upper()).value, now),
            )
            return int(cursor.lastrowid)

    def get_holdings(self, user_id: str) -> List[Dict[str, Any]]:
        wallet = self.get_or_create_wallet(user_id)
        return sqlite_manager.query(
            "SELECT * FROM nft_holdings WHERE wallet_id = ? ORDER BY purchase_date DESC, id DESC",
            (wallet["id"],),
            self.db_path,
        )

    def get_transactions(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        wallet = self.get_or_create_wallet(user_id)
        return sqlite_manager.query(
            "SELECT * FROM wallet_transactions WHERE wallet_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?",
            (wallet["id"], limit),
            self.db_path,
        )

    def buy_sync(
        self,
        user_id: str,
        collection_name: str,
        price: float,
        currency: str,
        quantity: int = 1,
        trigger_price: Optional[float] = None,
        purchase_price: Optional[float] = None,
        previous_price: Optional[float] = None,
    ) -> BuyResult:
        """Deduct ``price * quantity`` and record one holding per unit."""

        try:
            column = _balance_column(currency)
        except ValueError:
            return BuyResult(success=False, error=f"Unsupported currency {currency}")
        if price <= 0 or quantity <= 0:
            return BuyResult(success=False, error="price and quantity must be positive")
        code = Currency(currency.upper()).value
        total = price * quantity
        wallet = self.get_or_create_wallet(user_id)
        now = self._ts()
        try:
            with sqlite_manager.transaction(self.db_path) as conn:
                balance = conn.execute(
                    f"SELECT {column} FROM dummy_wallets WHERE id = ?", (wallet["id"],)
                ).fetchone()[0]
                if balance < total:
                    raise InsufficientBalance(
                        f"Insufficient {code} balance. Required: {total}, Available: {balance}"
                    )
                conn.execute(
                    f"UPDATE dummy_wallets SET {column} = {column} - ?, last_updated = ? WHERE id = ?",
                    (total, now, wallet["id"]),
                )
                for _ in range(quantity):
                    token_id = str(secrets.randbelow(10000))
                    conn.execute(
                        """
                        INSERT INTO nft_holdings (wallet_id, token_id, name, collection, purchase_price, purchase_currency, purchase_date)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (wallet["id"], token_id, f"{collection_name} #{token_id}", collection_name, price, code, now),
                    )
                cursor = conn.execute(
                    """
                    INSERT INTO wallet_transactions (
                        wallet_id, type, amount, currency, collection_name, status,
                        trigger_price, purchase_price, previous_price, timestamp
                    ) VALUES (?, 'buy_nft', ?, ?, ?, 'completed', ?, ?, ?, ?)
                    """,
                    (
                        wallet["id"],
                        total,
                        code,
                        collection_name,
                        trigger_price,
                        purchase_price if purchase_price is not None else price,
                        previous_price,
                        now,
                    ),
                )
                transaction_id = int(cursor.lastrowid)
        except InsufficientBalance as exc:
            LOGGER.warning("Purchase of %s for %s rejected: %s", collection_name, user_id, exc)
            return BuyResult(success=False, error=str(exc))
        LOGGER.info("User %s bought %d x %s for %s %s", user_id, quantity, collection_name, price, code)
        return BuyResult(success=True, transaction_id=transaction_id)

    async def buy(
        self,
        user_id: str,
        collection_name: str,
        price: float,
        currency: str,
        quantity: int = 1,
        trigger_price: Optional[float] = None,
        purchase_price: Optional[float] = None,
        previous_price: Optional[float] = None,
    ) -> BuyResult:
        return await asyncio.to_thread(
            self.buy_sync,
            user_id,
            collection_name,
            price,
            currency,
            quantity,
            trigger_price,
            purchase_price,
            previous_price,
        )


__all__ = ["DummyWalletLedger", "DEFAULT_BALANCES"]
