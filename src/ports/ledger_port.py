"""Ledger port — abstract interface for the chore event store.

The service layer depends on this protocol, never on SQLite directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from src.data.models import (
    CategoryOutcome,
    DeletedEvent,
    InsertOutcome,
    WeeklyRow,
    WeeklyTaskRow,
)


class LedgerPort(Protocol):
    """Abstract ledger interface used by core modules."""

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
    ) -> InsertOutcome: ...

    def upsert_house_user(
        self, ext_group_id: str, ext_user_id: str, display_name: str | None = None,
    ) -> None: ...

    def delete_latest_event(
        self, ext_group_id: str, ext_user_id: str,
    ) -> DeletedEvent | None: ...

    def upsert_category(
        self, ext_group_id: str, name: str, weight: float,
    ) -> CategoryOutcome: ...

    def category_weight(self, ext_group_id: str, name: str) -> float | None: ...

    def weekly_points(
        self, ext_group_id: str, start: datetime, end: datetime,
    ) -> list[WeeklyRow]: ...

    def weekly_user_task_points(
        self, ext_group_id: str, ext_user_id: str, start: datetime, end: datetime,
    ) -> list[WeeklyTaskRow]: ...

    def ping(self, timeout: float = 0.5) -> bool: ...
