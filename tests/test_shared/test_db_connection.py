"""Tests for the SQLite ConnectionPool."""
from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

import pytest

from src.shared.db.connection import ConnectionPool


@pytest.fixture
def pool(tmp_path: Path):
    pool = ConnectionPool(tmp_path / "cmdb.db")
    yield pool
    pool.close()


class TestConnectionPool:
    def test_pragmas(self, pool: ConnectionPool):
        conn = pool.get()
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        assert conn.execute("PRAGMA busy_timeout").fetchone()[0] == 30000
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        assert conn.row_factory == sqlite3.Row

    def test_connection_reuse_same_thread(self, pool: ConnectionPool):
        assert pool.get() is pool.get()

    def test_thread_local_isolation(self, pool: ConnectionPool):
        main_conn = pool.get()
        thread_conn = [None]

        def get_conn():
            thread_conn[0] = pool.get()

        t = threading.Thread(target=get_conn)
        t.start()
        t.join()

        assert thread_conn[0] is not None
        assert thread_conn[0] is not main_conn

    def test_close_clears_connections(self, tmp_path: Path):
        pool = ConnectionPool(tmp_path / "cmdb.db")
        pool.get()
        pool.close()
        assert len(pool._connections) == 0

    def test_parent_directory_created(self, tmp_path: Path):
        nested_path = tmp_path / "nested" / "dir" / "cmdb.db"
        pool = ConnectionPool(nested_path)
        assert nested_path.parent.exists()
        assert pool.db_path == nested_path
        pool.close()


class TestTransaction:
    def _table(self, pool: ConnectionPool) -> sqlite3.Connection:
        conn = pool.get()
        conn.execute("CREATE TABLE edges (id TEXT PRIMARY KEY)")
        conn.commit()
        return conn

    def test_commits_on_success(self, pool: ConnectionPool):
        conn = self._table(pool)
        with pool.transaction() as tx:
            tx.execute("INSERT INTO edges VALUES ('e1')")
        assert conn.execute("SELECT COUNT(*) FROM edges").fetchone()[0] == 1

    def test_rolls_back_on_error(self, pool: ConnectionPool):
        conn = self._table(pool)
        with pytest.raises(RuntimeError):
            with pool.transaction() as tx:
                tx.execute("INSERT INTO edges VALUES ('e1')")
                raise RuntimeError("abort")
        assert conn.execute("SELECT COUNT(*) FROM edges").fetchone()[0] == 0

    def test_integrity_error_propagates(self, pool: ConnectionPool):
        self._table(pool)
        with pool.transaction() as tx:
            tx.execute("INSERT INTO edges VALUES ('e1')")
        with pytest.raises(sqlite3.IntegrityError):
            with pool.transaction() as tx:
                tx.execute("INSERT INTO edges VALUES ('e1')")
