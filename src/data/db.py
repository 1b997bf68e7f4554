"""
Chore Ledger — Event Ledger.

SQLite-backed storage for houses, users, memberships, category weights and
chore events. Every report lands here through insert_event(), which creates
whatever identity rows are missing and writes the event exactly once per
(house, source_msg_id), however many times the chat platform retries.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from src.core.normalizer import normalize
from src.data.models import (
    EVENT_KIND_CHORE,
    CategoryOutcome,
    DeletedEvent,
    Event,
    House,
    InsertOutcome,
    User,
    WeeklyRow,
    WeeklyTaskRow,
)
from src.data.pool import ConnectionPool, PoolTimeout

logger = logging.getLogger(__name__)

# Users without a stored display name show up under this many leading
# characters of their external id.
FALLBACK_NAME_LENGTH = 6

_IN_MEMORY = ":memory:"


class StorageError(Exception):
    """Raised when a ledger operation fails for any reason other than a duplicate report."""


def _to_db_time(value: datetime) -> str:
    """Store as UTC ISO-8601 so text order equals time order. Naive means UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _require(value: str | None, field_name: str) -> str:
    if value is None or not value.strip():
        raise ValueError(f"{field_name} is required")
    return value


def _trimmed_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


class LedgerDB:
    """Idempotent, transactional chore ledger on top of a bounded connection pool."""

    def __init__(
        self,
        db_path: str | None = None,
        pool_size: int | None = None,
        busy_timeout: float | None = None,
        acquire_timeout: float | None = None,
    ) -> None:
        from src.config import settings

        if db_path is None:
            db_path = settings.DATABASE_PATH
        if pool_size is None:
            pool_size = settings.DB_POOL_SIZE
        if busy_timeout is None:
            busy_timeout = settings.DB_BUSY_TIMEOUT_SECONDS
        if acquire_timeout is None:
            acquire_timeout = settings.DB_ACQUIRE_TIMEOUT_SECONDS

        if db_path == _IN_MEMORY:
            # Each SQLite connection to :memory: is its own database.
            pool_size = 1
        else:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db_path = db_path
        self._pool = ConnectionPool(
            db_path,
            size=pool_size,
            busy_timeout=busy_timeout,
            acquire_timeout=acquire_timeout,
        )
        self._init_db()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        """Create the ledger tables if they don't exist."""
        with self._pool.connection() as conn:
            if self._db_path != _IN_MEMORY:
                # Readers keep working while a report transaction holds the write lock.
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS houses (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    ext_group_id  TEXT NOT NULL UNIQUE,
                    name          TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    ext_user_id   TEXT NOT NULL UNIQUE,
                    display_name  TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS memberships (
                    house_id  INTEGER NOT NULL REFERENCES houses(id),
                    user_id   INTEGER NOT NULL REFERENCES users(id),
                    UNIQUE (house_id, user_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS categories (
                    id        INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id  INTEGER NOT NULL REFERENCES houses(id),
                    name      TEXT    NOT NULL,
                    weight    REAL    NOT NULL DEFAULT 1.0,
                    UNIQUE (house_id, name)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id       INTEGER NOT NULL REFERENCES houses(id),
                    user_id        INTEGER NOT NULL REFERENCES users(id),
                    kind           TEXT    NOT NULL,
                    task_key       TEXT    NOT NULL,
                    task_option    TEXT,
                    points         REAL    NOT NULL,
                    source_msg_id  TEXT    NOT NULL,
                    created_at     TEXT    NOT NULL,
                    note           TEXT,
                    UNIQUE (house_id, source_msg_id)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_events_house_user_created
                    ON events (house_id, user_id, created_at)
            """)
        logger.debug("Ledger tables initialized at %s", self._db_path)

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """One all-or-nothing write transaction.

        BEGIN IMMEDIATE takes the database write lock up front, so concurrent
        writers queue on the busy timeout instead of interleaving.
        """
        try:
            with self._pool.connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    conn.rollback()
                    raise
                conn.commit()
        except (sqlite3.Error, PoolTimeout) as exc:
            raise StorageError(str(exc)) from exc

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        try:
            with self._pool.connection() as conn:
                yield conn
        except (sqlite3.Error, PoolTimeout) as exc:
            raise StorageError(str(exc)) from exc

    @staticmethod
    def _ensure_house(conn: sqlite3.Connection, ext_group_id: str) -> int:
        conn.execute(
            "INSERT INTO houses (ext_group_id) VALUES (?) "
            "ON CONFLICT (ext_group_id) DO NOTHING",
            (ext_group_id,),
        )
        row = conn.execute(
            "SELECT id FROM houses WHERE ext_group_id = ?", (ext_group_id,),
        ).fetchone()
        return row["id"]

    @staticmethod
    def _ensure_user(
        conn: sqlite3.Connection, ext_user_id: str, display_name: str | None,
    ) -> int:
        # A stored display name is never overwritten; a missing one is filled.
        conn.execute(
            """
            INSERT INTO users (ext_user_id, display_name) VALUES (?, ?)
            ON CONFLICT (ext_user_id) DO UPDATE
                SET display_name = COALESCE(users.display_name, excluded.display_name)
            """,
            (ext_user_id, _trimmed_or_none(display_name)),
        )
        row = conn.execute(
            "SELECT id FROM users WHERE ext_user_id = ?", (ext_user_id,),
        ).fetchone()
        return row["id"]

    @staticmethod
    def _ensure_membership(conn: sqlite3.Connection, house_id: int, user_id: int) -> None:
        conn.execute(
            "INSERT INTO memberships (house_id, user_id) VALUES (?, ?) "
            "ON CONFLICT (house_id, user_id) DO NOTHING",
            (house_id, user_id),
        )

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        return Event(
            id=row["id"],
            house_id=row["house_id"],
            user_id=row["user_id"],
            kind=row["kind"],
            task_key=row["task_key"],
            points=row["points"],
            source_msg_id=row["source_msg_id"],
            created_at=_from_db_time(row["created_at"]),
            task_option=row["task_option"],
            note=row["note"],
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_event(
        self,
        ext_group_id: str,
        ext_user_id: str,
        task_key: str,
        points: float,
        source_msg_id: str | None,
        created_at: datetime | None = None,
        display_name: str | None = None,
        task_option: str | None = None,
        note: str | None = None,
    ) -> InsertOutcome:
        """Record one chore event, creating house/user/membership as needed.

        Returns InsertOutcome.DUPLICATE (and still commits the identity rows)
        when this house already has an event with the same source_msg_id.
        Any other failure rolls the whole transaction back and raises
        StorageError.
        """
        _require(ext_group_id, "ext_group_id")
        _require(ext_user_id, "ext_user_id")
        _require(task_key, "task_key")
        _require(source_msg_id, "source_msg_id")
        if created_at is None:
            created_at = datetime.now(timezone.utc)

        with self._write() as conn:
            house_id = self._ensure_house(conn, ext_group_id)
            user_id = self._ensure_user(conn, ext_user_id, display_name)
            self._ensure_membership(conn, house_id, user_id)
            cursor = conn.execute(
                """
                INSERT INTO events
                    (house_id, user_id, kind, task_key, task_option,
                     points, source_msg_id, created_at, note)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (house_id, source_msg_id) DO NOTHING
                """,
                (
                    house_id, user_id, EVENT_KIND_CHORE, task_key,
                    _trimmed_or_none(task_option), points, source_msg_id,
                    _to_db_time(created_at), _trimmed_or_none(note),
                ),
            )
            inserted = cursor.rowcount > 0

        if not inserted:
            logger.info(
                "Duplicate event ignored: house=%s msg_id=%s", ext_group_id, source_msg_id,
            )
            return InsertOutcome.DUPLICATE

        logger.info(
            "Event recorded: house=%s user=%s task='%s' points=%.1f msg_id=%s",
            ext_group_id, ext_user_id, task_key, points, source_msg_id,
        )
        return InsertOutcome.INSERTED

    def upsert_house_user(
        self, ext_group_id: str, ext_user_id: str, display_name: str | None = None,
    ) -> None:
        """Create-or-reuse house, user and membership without writing an event."""
        _require(ext_group_id, "ext_group_id")
        _require(ext_user_id, "ext_user_id")
        with self._write() as conn:
            house_id = self._ensure_house(conn, ext_group_id)
            user_id = self._ensure_user(conn, ext_user_id, display_name)
            self._ensure_membership(conn, house_id, user_id)
        logger.debug("Membership ensured: house=%s user=%s", ext_group_id, ext_user_id)

    def delete_latest_event(
        self, ext_group_id: str, ext_user_id: str,
    ) -> DeletedEvent | None:
        """Delete the most recent event of a user in a house.

        The select and the delete share one write transaction, so a report
        arriving concurrently cannot change which row counts as latest.
        Returns None when the user has no events in that house.
        """
        with self._write() as conn:
            row = conn.execute(
                """
                SELECT e.id, e.task_key, e.points, e.created_at
                FROM events e
                JOIN houses h ON h.id = e.house_id
                JOIN users u  ON u.id = e.user_id
                WHERE h.ext_group_id = ? AND u.ext_user_id = ?
                ORDER BY e.created_at DESC, e.id DESC
                LIMIT 1
                """,
                (ext_group_id, ext_user_id),
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM events WHERE id = ?", (row["id"],))

        deleted = DeletedEvent(
            task_key=row["task_key"],
            points=row["points"],
            created_at=_from_db_time(row["created_at"]),
        )
        logger.info(
            "Latest event #%d deleted: house=%s user=%s task='%s'",
            row["id"], ext_group_id, ext_user_id, deleted.task_key,
        )
        return deleted

    def upsert_category(
        self, ext_group_id: str, name: str, weight: float,
    ) -> CategoryOutcome:
        """Set the weight multiplier of a category in an existing house."""
        if not math.isfinite(weight) or weight <= 0:
            raise ValueError("weight must be a finite positive number")
        normalized = normalize(name)
        if not normalized:
            raise ValueError("category name is required")

        with self._write() as conn:
            row = conn.execute(
                "SELECT id FROM houses WHERE ext_group_id = ?", (ext_group_id,),
            ).fetchone()
            if row is None:
                return CategoryOutcome.HOUSE_NOT_FOUND
            conn.execute(
                """
                INSERT INTO categories (house_id, name, weight) VALUES (?, ?, ?)
                ON CONFLICT (house_id, name) DO UPDATE SET weight = excluded.weight
                """,
                (row["id"], normalized, weight),
            )

        logger.info("Category '%s' in house %s weighted %.2f", normalized, ext_group_id, weight)
        return CategoryOutcome.SAVED

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def category_weight(self, ext_group_id: str, name: str) -> float | None:
        """Stored weight for a category, or None if the house never set one."""
        with self._read() as conn:
            row = conn.execute(
                """
                SELECT c.weight
                FROM categories c
                JOIN houses h ON h.id = c.house_id
                WHERE h.ext_group_id = ? AND c.name = ?
                """,
                (ext_group_id, normalize(name)),
            ).fetchone()
        if row is None:
            return None
        return row["weight"]

    def weekly_points(
        self, ext_group_id: str, start: datetime, end: datetime,
    ) -> list[WeeklyRow]:
        """Points per user in [start, end), highest first."""
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT COALESCE(u.display_name, substr(u.ext_user_id, 1, ?)) AS name,
                       COALESCE(SUM(e.points), 0) AS pt
                FROM events e
                JOIN users u  ON u.id = e.user_id
                JOIN houses h ON h.id = e.house_id
                WHERE h.ext_group_id = ? AND e.created_at >= ? AND e.created_at < ?
                GROUP BY u.id, u.display_name, u.ext_user_id
                ORDER BY pt DESC, name ASC
                """,
                (FALLBACK_NAME_LENGTH, ext_group_id, _to_db_time(start), _to_db_time(end)),
            ).fetchall()
        return [WeeklyRow(name=r["name"], points=r["pt"]) for r in rows]

    def weekly_user_task_points(
        self, ext_group_id: str, ext_user_id: str, start: datetime, end: datetime,
    ) -> list[WeeklyTaskRow]:
        """One user's points per task in [start, end); ties broken by task key."""
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT e.task_key, COALESCE(SUM(e.points), 0) AS pt
                FROM events e
                JOIN houses h ON h.id = e.house_id
                JOIN users u  ON u.id = e.user_id
                WHERE h.ext_group_id = ?
                  AND u.ext_user_id = ?
                  AND e.created_at >= ?
                  AND e.created_at < ?
                GROUP BY e.task_key
                ORDER BY pt DESC, e.task_key ASC
                """,
                (ext_group_id, ext_user_id, _to_db_time(start), _to_db_time(end)),
            ).fetchall()
        return [WeeklyTaskRow(task_key=r["task_key"], points=r["pt"]) for r in rows]

    # ------------------------------------------------------------------
    # Inspection helpers (tests and manual debugging; not part of LedgerPort)
    # ------------------------------------------------------------------

    def get_house(self, ext_group_id: str) -> House | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM houses WHERE ext_group_id = ?", (ext_group_id,),
            ).fetchone()
        if row is None:
            return None
        return House(id=row["id"], ext_group_id=row["ext_group_id"], name=row["name"])

    def get_user(self, ext_user_id: str) -> User | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE ext_user_id = ?", (ext_user_id,),
            ).fetchone()
        if row is None:
            return None
        return User(
            id=row["id"], ext_user_id=row["ext_user_id"], display_name=row["display_name"],
        )

    def is_member(self, ext_group_id: str, ext_user_id: str) -> bool:
        with self._read() as conn:
            row = conn.execute(
                """
                SELECT 1
                FROM memberships m
                JOIN houses h ON h.id = m.house_id
                JOIN users u  ON u.id = m.user_id
                WHERE h.ext_group_id = ? AND u.ext_user_id = ?
                """,
                (ext_group_id, ext_user_id),
            ).fetchone()
        return row is not None

    def list_events(
        self, ext_group_id: str, ext_user_id: str | None = None,
    ) -> list[Event]:
        """All events of a house (optionally one user), oldest first."""
        query = """
            SELECT e.*
            FROM events e
            JOIN houses h ON h.id = e.house_id
            JOIN users u  ON u.id = e.user_id
            WHERE h.ext_group_id = ?
        """
        params: list = [ext_group_id]
        if ext_user_id is not None:
            query += " AND u.ext_user_id = ?"
            params.append(ext_user_id)
        query += " ORDER BY e.created_at, e.id"

        with self._read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_event(r) for r in rows]

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self, timeout: float = 0.5) -> bool:
        """Return True if the database answers a trivial query. Never raises."""
        try:
            with self._pool.connection(timeout=timeout) as conn:
                conn.execute("SELECT 1").fetchone()
        except (sqlite3.Error, PoolTimeout) as exc:
            logger.warning("Ledger ping failed: %s", exc)
            return False
        return True

    def close(self) -> None:
        self._pool.close()
