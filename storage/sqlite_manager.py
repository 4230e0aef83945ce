"""SQLite connection helpers shared by the alert store and the demo wallet."""
from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, Iterator, List, Optional

from core.errors import StorageError

_DB_PATH_ENV = "NFT_ALERT_DB_PATH"
_DEFAULT_DB_FILENAME = "nft-alerts.db"

_connection_lock = Lock()

Params = Iterable[Any] | Dict[str, Any] | None


def get_db_path(db_path: Optional[str] = None) -> str:
    """Return ``db_path`` or the configured SQLite database path."""
    if db_path:
        return db_path
    env_path = os.environ.get(_DB_PATH_ENV)
    if env_path:
        return env_path
    storage_dir = Path(__file__).resolve().parent
    return str(storage_dir / _DEFAULT_DB_FILENAME)


@contextmanager
def _connect(db_path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    path = Path(get_db_path(db_path))
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), check_same_thread=False)
    except (OSError, sqlite3.Error) as exc:
        raise StorageError(f"cannot open database {path}: {exc}") from exc
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise StorageError(str(exc)) from exc
    finally:
        conn.close()


def execute(query: str, params: Params = None, db_path: Optional[str] = None) -> int:
    """Run a single write statement and return the number of affected rows."""
    with _connection_lock:
        with _connect(db_path) as conn:
            cursor = conn.execute(query, params or [])
            return cursor.rowcount


def insert(query: str, params: Params = None, db_path: Optional[str] = None) -> int:
    """Run an ``INSERT`` and return the new row id."""
    with _connection_lock:
        with _connect(db_path) as conn:
            cursor = conn.execute(query, params or [])
            return int(cursor.lastrowid)


def execute_script(statements: Iterable[str], db_path: Optional[str] = None) -> None:
    with _connection_lock:
        with _connect(db_path) as conn:
            for statement in statements:
                conn.execute(statement)


def query(query: str, params: Params = None, db_path: Optional[str] = None) -> List[Dict[str, Any]]:
    with _connection_lock:
        with _connect(db_path) as conn:
            rows = conn.execute(query, params or []).fetchall()
    return [dict(row) for row in rows]


def query_one(query_sql: str, params: Params = None, db_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    rows = query(query_sql, params, db_path)
    return rows[0] if rows else None


@contextmanager
def transaction(db_path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Hold the connection lock across several statements committed together."""
    with _connection_lock:
        with _connect(db_path) as conn:
            yield conn


__all__ = [
    "get_db_path",
    "execute",
    "insert",
    "execute_script",
    "query",
    "query_one",
    "transaction",
]
