"""
Chore Ledger — UI-Agnostic Chore Service.

Stateless service layer between the transports (Telegram, HTTP) and the
ledger: validate the report -> resolve the task -> apply the house's category
weight -> write the event -> return a structured response object.

Each transport calls this service and renders the responses its own way.
StorageError from the ledger is not caught here; transports log it and
answer with a generic failure.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable
from zoneinfo import ZoneInfo

from src.core.resolver import AliasIndex, TaskAmbiguous, TaskNotFound, default_index
from src.data.models import EVENT_KIND_CHORE, CategoryOutcome, InsertOutcome

if TYPE_CHECKING:
    from src.core.tasks import TaskDefinition
    from src.data.models import DeletedEvent, WeeklyRow, WeeklyTaskRow
    from src.ports.ledger_port import LedgerPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / response types
# ---------------------------------------------------------------------------


class ResponseKind(Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    UNKNOWN_TASK = "unknown_task"
    AMBIGUOUS_TASK = "ambiguous_task"
    VALIDATION_ERROR = "validation_error"
    HOUSE_NOT_FOUND = "house_not_found"
    CANCELLED = "cancelled"
    NO_EVENT = "no_event"


@dataclass
class ReportRequest:
    """One chore report as handed over by a transport."""

    group_id: str
    user_id: str
    task: str
    source_msg_id: str | None = None
    display_name: str | None = None
    option: str | None = None
    kind: str | None = None       # only "chore" is accepted when given
    note: str | None = None


@dataclass
class ServiceResponse:
    kind: ResponseKind
    message: str


@dataclass
class ReportResponse(ServiceResponse):
    task_key: str = ""
    points: float = 0.0
    source_msg_id: str = ""
    candidates: list[str] = field(default_factory=list)


@dataclass
class CancelResponse(ServiceResponse):
    deleted: DeletedEvent | None = None


@dataclass
class WeeklySummary:
    start: datetime
    end: datetime
    rows: list[WeeklyRow] = field(default_factory=list)


@dataclass
class UserWeeklySummary:
    start: datetime
    end: datetime
    total: float = 0.0
    tasks: list[WeeklyTaskRow] = field(default_factory=list)


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ChoreService:
    """Orchestrates resolution, weighting and ledger writes for chore reports."""

    def __init__(
        self,
        ledger: LedgerPort,
        index: AliasIndex | None = None,
        timezone: str | None = None,
        readiness_timeout: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        from src.config import settings

        self._ledger = ledger
        self._index = index if index is not None else default_index()
        self._tz = ZoneInfo(timezone or settings.TIMEZONE)
        self._readiness_timeout = (
            settings.READINESS_TIMEOUT_SECONDS if readiness_timeout is None else readiness_timeout
        )
        self._clock = clock

    @property
    def index(self) -> AliasIndex:
        return self._index

    def reload_catalog(self, definitions: Iterable[TaskDefinition]) -> None:
        """Build a fresh alias index and publish it in one reference swap."""
        new_index = AliasIndex.build(definitions)
        self._index = new_index
        logger.info("Task catalog reloaded: %d tasks", len(new_index.definitions))

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(self._tz)

    def local_midnight(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self._tz)

    @staticmethod
    def week_bounds(reference: datetime) -> tuple[datetime, datetime]:
        """Monday 00:00 of the week containing `reference`, and seven days later."""
        day_start = reference.replace(hour=0, minute=0, second=0, microsecond=0)
        start = day_start - timedelta(days=reference.weekday())
        return start, start + timedelta(days=7)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def report(self, request: ReportRequest) -> ReportResponse:
        """Validate, resolve and record a chore report."""
        error = self._validate(request)
        if error:
            return ReportResponse(kind=ResponseKind.VALIDATION_ERROR, message=error)

        resolved = self._index.resolve(request.task.strip())
        if isinstance(resolved, TaskNotFound):
            return ReportResponse(
                kind=ResponseKind.UNKNOWN_TASK,
                message=f'Unknown task: "{request.task}"',
            )
        if isinstance(resolved, TaskAmbiguous):
            candidates = list(resolved.candidates)
            return ReportResponse(
                kind=ResponseKind.AMBIGUOUS_TASK,
                message=f'Unknown task: "{request.task}". Candidates: {"/".join(candidates)}',
                candidates=candidates,
            )

        definition = resolved.definition
        task_key = definition.key
        weight = self._ledger.category_weight(request.group_id, task_key)
        if weight is None or not math.isfinite(weight) or weight <= 0:
            weight = 1.0
        points = definition.points * weight

        outcome = self._ledger.insert_event(
            ext_group_id=request.group_id,
            ext_user_id=request.user_id,
            task_key=task_key,
            points=points,
            source_msg_id=request.source_msg_id,
            created_at=self.now(),
            display_name=request.display_name,
            task_option=request.option,
            note=request.note,
        )

        if outcome is InsertOutcome.DUPLICATE:
            return ReportResponse(
                kind=ResponseKind.DUPLICATE,
                message="This report was already recorded.",
                task_key=task_key,
                source_msg_id=request.source_msg_id or "",
            )

        return ReportResponse(
            kind=ResponseKind.ACCEPTED,
            message=f"Recorded {task_key}",
            task_key=task_key,
            points=points,
            source_msg_id=request.source_msg_id or "",
        )

    @staticmethod
    def _validate(request: ReportRequest) -> str:
        """Return an error message, or "" if the request may reach the ledger."""
        if _is_blank(request.group_id) or _is_blank(request.user_id):
            return "group_id and user_id are required"
        if _is_blank(request.source_msg_id):
            return "source_msg_id is required for idempotency"
        if request.kind and request.kind != EVENT_KIND_CHORE:
            return f"type must be '{EVENT_KIND_CHORE}' when provided"
        if _is_blank(request.task):
            return "task is required"
        return ""

    def register_member(
        self, group_id: str, user_id: str, display_name: str | None = None,
    ) -> None:
        """Make sure the house, the user and their membership exist."""
        self._ledger.upsert_house_user(group_id, user_id, display_name)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def weekly_summary(
        self, group_id: str, reference: datetime | None = None,
    ) -> WeeklySummary:
        start, end = self.week_bounds(reference or self.now())
        rows = self._ledger.weekly_points(group_id, start, end)
        return WeeklySummary(start=start, end=end, rows=rows)

    def weekly_user_summary(
        self, group_id: str, user_id: str, reference: datetime | None = None,
    ) -> UserWeeklySummary:
        start, end = self.week_bounds(reference or self.now())
        tasks = self._ledger.weekly_user_task_points(group_id, user_id, start, end)
        total = sum(t.points for t in tasks)
        return UserWeeklySummary(start=start, end=end, total=total, tasks=tasks)

    def cancel_latest(self, group_id: str, user_id: str) -> CancelResponse:
        """Undo the user's most recent report in this house."""
        deleted = self._ledger.delete_latest_event(group_id, user_id)
        if deleted is None:
            return CancelResponse(kind=ResponseKind.NO_EVENT, message="Nothing to cancel.")
        return CancelResponse(
            kind=ResponseKind.CANCELLED,
            message=f"Cancelled your last report: {deleted.task_key}",
            deleted=deleted,
        )

    # ------------------------------------------------------------------
    # Administration / health
    # ------------------------------------------------------------------

    def update_category_weight(
        self, group_id: str, name: str, weight: float,
    ) -> ServiceResponse:
        if _is_blank(group_id) or _is_blank(name):
            return ServiceResponse(
                kind=ResponseKind.VALIDATION_ERROR, message="group and category name are required",
            )
        if not math.isfinite(weight) or weight <= 0:
            return ServiceResponse(
                kind=ResponseKind.VALIDATION_ERROR,
                message="weight must be a finite number greater than 0",
            )

        outcome = self._ledger.upsert_category(group_id, name, weight)
        if outcome is CategoryOutcome.HOUSE_NOT_FOUND:
            return ServiceResponse(
                kind=ResponseKind.HOUSE_NOT_FOUND,
                message="This house has no reports yet.",
            )
        return ServiceResponse(
            kind=ResponseKind.ACCEPTED, message=f"Weight of {name.strip()} set to {weight:g}",
        )

    def is_ready(self) -> bool:
        return self._ledger.ping(timeout=self._readiness_timeout)
