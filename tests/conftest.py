"""Shared test fixtures and configuration.

Sets up environment variables before any src import so src.config builds
predictable settings, and provides temp-file ledger fixtures.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "Asia/Tokyo")
os.environ.setdefault("DB_POOL_SIZE", "4")

import pytest
from datetime import datetime
from zoneinfo import ZoneInfo

JST = ZoneInfo("Asia/Tokyo")


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_ledger.db")


@pytest.fixture
def ledger_db(tmp_db_path):
    """Return a LedgerDB instance backed by a temp file."""
    from src.data.db import LedgerDB
    db = LedgerDB(db_path=tmp_db_path, pool_size=4, busy_timeout=10.0)
    yield db
    db.close()


@pytest.fixture
def fixed_now():
    """Wednesday 2025-11-12 10:00 JST."""
    return datetime(2025, 11, 12, 10, 0, tzinfo=JST)


@pytest.fixture
def chore_service(ledger_db, fixed_now):
    """ChoreService over a real temp-file ledger with a frozen clock."""
    from src.core.chore_service import ChoreService
    return ChoreService(ledger_db, timezone="Asia/Tokyo", clock=lambda: fixed_now)
