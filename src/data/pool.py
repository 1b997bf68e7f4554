"""
Chore Ledger — Bounded SQLite connection pool.

At most `size` connections exist at once. Callers borrow one for a single
ledger operation and hand it back immediately, so nothing holds a connection
while waiting on Telegram or any other network call.
"""

from __future__ import annotations

import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class PoolTimeout(Exception):
    """Raised when no connection frees up within the acquire timeout."""


class ConnectionPool:
    """Thread-safe LIFO pool of autocommit-mode SQLite connections."""

    def __init__(
        self,
        db_path: str,
        size: int = 10,
        busy_timeout: float = 5.0,
        acquire_timeout: float = 5.0,
    ) -> None:
        if size < 1:
            raise ValueError("pool size must be at least 1")
        self._db_path = db_path
        self._size = size
        self._busy_timeout = busy_timeout
        self._acquire_timeout = acquire_timeout
        self._idle: queue.LifoQueue[sqlite3.Connection] = queue.LifoQueue(maxsize=size)
        self._created = 0
        self._lock = threading.Lock()
        self._closed = False

    @property
    def size(self) -> int:
        return self._size

    def _open(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly with BEGIN.
        conn = sqlite3.connect(
            self._db_path,
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _acquire(self, timeout: float) -> sqlite3.Connection:
        if self._closed:
            raise PoolTimeout("connection pool is closed")
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass

        with self._lock:
            if self._created < self._size:
                self._created += 1
                try:
                    return self._open()
                except sqlite3.Error:
                    self._created -= 1
                    raise

        try:
            return self._idle.get(timeout=timeout)
        except queue.Empty as exc:
            raise PoolTimeout(
                f"no database connection available after {timeout:.1f}s"
            ) from exc

    def _release(self, conn: sqlite3.Connection) -> None:
        if self._closed:
            conn.close()
            return
        if conn.in_transaction:
            # A caller escaped without finishing its transaction.
            logger.warning("Connection returned mid-transaction; rolling back")
            conn.rollback()
        self._idle.put_nowait(conn)

    @contextmanager
    def connection(self, timeout: float | None = None) -> Iterator[sqlite3.Connection]:
        """Borrow a connection for the duration of the with-block."""
        conn = self._acquire(self._acquire_timeout if timeout is None else timeout)
        try:
            yield conn
        finally:
            self._release(conn)

    def close(self) -> None:
        """Close every idle connection; borrowed ones close on release."""
        self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                break
            conn.close()
        logger.debug("Connection pool for %s closed", self._db_path)
