"""
Chore Ledger — Data Models.

Rows and read models of the SQLite ledger. Houses, users and memberships are
created lazily by the first report; events are written once and only ever
removed by the "cancel my last report" operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

EVENT_KIND_CHORE = "chore"


class InsertOutcome(Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"      # same (house, source_msg_id) already stored


class CategoryOutcome(Enum):
    SAVED = "saved"
    HOUSE_NOT_FOUND = "house_not_found"


@dataclass
class House:
    """A chat group; every user, category and event is scoped to one."""

    id: int
    ext_group_id: str
    name: str | None = None


@dataclass
class User:
    id: int
    ext_user_id: str
    display_name: str | None = None


@dataclass
class Event:
    """A single scored chore report."""

    id: int
    house_id: int
    user_id: int
    kind: str
    task_key: str
    points: float
    source_msg_id: str
    created_at: datetime
    task_option: str | None = None
    note: str | None = None


@dataclass
class WeeklyRow:
    name: str                 # display name, or a prefix of the external id
    points: float


@dataclass
class WeeklyTaskRow:
    task_key: str
    points: float


@dataclass
class DeletedEvent:
    task_key: str
    points: float
    created_at: datetime
