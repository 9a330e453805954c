"""Common plumbing for the SQLite-backed stores."""
from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Callable

from src.shared.db.connection import ConnectionPool
from src.shared.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


def open_pool(
    db_path: str | Path,
    initializer: Callable[[ConnectionPool], None],
    *,
    disabled: bool = False,
) -> ConnectionPool | None:
    """Open a pool and initialize its schema.

    Returns ``None`` instead of raising when the store is disabled or the
    database cannot be opened; stores built on a ``None`` pool report
    :class:`StoreUnavailableError` on first use.
    """
    if disabled:
        logger.warning("Store disabled by configuration: %s", db_path)
        return None
    try:
        pool = ConnectionPool(db_path)
        initializer(pool)
    except (sqlite3.Error, OSError) as exc:
        logger.warning("Store unavailable (%s): %s", db_path, exc)
        return None
    return pool


class BaseStore:
    """Holds an optional pool; every query goes through :meth:`_conn`."""

    store_name = "store"

    def __init__(self, pool: ConnectionPool | None) -> None:
        self._pool = pool

    @property
    def available(self) -> bool:
        return self._pool is not None

    def _conn(self) -> sqlite3.Connection:
        if self._pool is None:
            raise StoreUnavailableError(detail=f"{self.store_name} unavailable")
        return self._pool.get()

    def _transaction(self):
        if self._pool is None:
            raise StoreUnavailableError(detail=f"{self.store_name} unavailable")
        return self._pool.transaction()

    def ping(self) -> bool:
        """Return True when a trivial query succeeds."""
        try:
            self._conn().execute("SELECT 1")
        except (sqlite3.Error, OSError, StoreUnavailableError):
            return False
        return True
