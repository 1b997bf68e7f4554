"""Tests for src.core.chore_service — UI-agnostic service layer.

Validation and resolution paths run against a mocked LedgerPort; the
end-to-end paths use a real temp-file ledger.
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest

from src.core.chore_service import (
    ChoreService,
    ReportRequest,
    ResponseKind,
)
from src.core.resolver import AliasIndex
from src.core.tasks import TaskDefinition
from src.data.db import StorageError
from src.data.models import CategoryOutcome, DeletedEvent, InsertOutcome, WeeklyTaskRow

JST = ZoneInfo("Asia/Tokyo")


def _make_service(ledger=None, index=None, now=None):
    """Create a ChoreService with a mock ledger and a frozen clock."""
    ledger = ledger or MagicMock()
    now = now or datetime(2025, 11, 12, 10, 0, tzinfo=JST)
    return ChoreService(ledger, index=index, timezone="Asia/Tokyo", clock=lambda: now), ledger


def _request(**overrides):
    fields = dict(group_id="g1", user_id="u1", task="皿洗い", source_msg_id="m1")
    fields.update(overrides)
    return ReportRequest(**fields)


# ---------------------------------------------------------------------------
# report — validation
# ---------------------------------------------------------------------------


class TestReportValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"group_id": ""},
            {"user_id": "  "},
            {"source_msg_id": None},
            {"source_msg_id": ""},
            {"task": "   "},
            {"kind": "purchase"},
        ],
    )
    def test_rejected_before_ledger(self, overrides):
        service, ledger = _make_service()
        response = service.report(_request(**overrides))
        assert response.kind is ResponseKind.VALIDATION_ERROR
        assert response.message
        ledger.insert_event.assert_not_called()
        ledger.category_weight.assert_not_called()

    def test_kind_chore_is_accepted(self):
        service, ledger = _make_service()
        ledger.category_weight.return_value = None
        ledger.insert_event.return_value = InsertOutcome.INSERTED
        assert service.report(_request(kind="chore")).kind is ResponseKind.ACCEPTED


# ---------------------------------------------------------------------------
# report — resolution and scoring
# ---------------------------------------------------------------------------


class TestReportResolution:
    def test_unknown_task(self):
        service, ledger = _make_service()
        response = service.report(_request(task="宇宙旅行"))
        assert response.kind is ResponseKind.UNKNOWN_TASK
        assert "宇宙旅行" in response.message
        ledger.insert_event.assert_not_called()

    def test_ambiguous_task_lists_candidates(self):
        index = AliasIndex.build([
            TaskDefinition(key="aaaa", points=10),
            TaskDefinition(key="aaab", points=8),
        ])
        service, ledger = _make_service(index=index)
        response = service.report(_request(task="aaaf"))
        assert response.kind is ResponseKind.AMBIGUOUS_TASK
        assert response.candidates == ["aaaa", "aaab"]
        assert "aaaa/aaab" in response.message
        ledger.insert_event.assert_not_called()

    def test_accepted_uses_canonical_key_and_base_points(self):
        service, ledger = _make_service()
        ledger.category_weight.return_value = None
        ledger.insert_event.return_value = InsertOutcome.INSERTED

        response = service.report(_request(task="洗い物", option="大量", note="n", display_name="Aki"))

        assert response.kind is ResponseKind.ACCEPTED
        assert response.task_key == "皿洗い"
        assert response.points == 300
        ledger.category_weight.assert_called_once_with("g1", "皿洗い")
        kwargs = ledger.insert_event.call_args.kwargs
        assert kwargs["ext_group_id"] == "g1"
        assert kwargs["ext_user_id"] == "u1"
        assert kwargs["task_key"] == "皿洗い"
        assert kwargs["points"] == 300
        assert kwargs["source_msg_id"] == "m1"
        assert kwargs["display_name"] == "Aki"
        assert kwargs["task_option"] == "大量"
        assert kwargs["note"] == "n"
        assert kwargs["created_at"] == datetime(2025, 11, 12, 10, 0, tzinfo=JST)

    def test_category_weight_multiplies_points(self):
        service, ledger = _make_service()
        ledger.category_weight.return_value = 1.5
        ledger.insert_event.return_value = InsertOutcome.INSERTED
        response = service.report(_request(task="洗濯"))
        assert response.points == 150
        assert ledger.insert_event.call_args.kwargs["points"] == 150

    def test_non_positive_weight_falls_back_to_one(self):
        service, ledger = _make_service()
        ledger.category_weight.return_value = 0.0
        ledger.insert_event.return_value = InsertOutcome.INSERTED
        assert service.report(_request(task="洗濯")).points == 100

    def test_duplicate(self):
        service, ledger = _make_service()
        ledger.category_weight.return_value = None
        ledger.insert_event.return_value = InsertOutcome.DUPLICATE
        response = service.report(_request())
        assert response.kind is ResponseKind.DUPLICATE
        assert response.source_msg_id == "m1"

    def test_storage_error_propagates(self):
        service, ledger = _make_service()
        ledger.category_weight.return_value = None
        ledger.insert_event.side_effect = StorageError("disk I/O error")
        with pytest.raises(StorageError):
            service.report(_request())


# ---------------------------------------------------------------------------
# Catalog reload
# ---------------------------------------------------------------------------


class TestReloadCatalog:
    def test_swaps_index_without_touching_old_one(self):
        service, ledger = _make_service()
        old_index = service.index
        service.reload_catalog([TaskDefinition(key="窓拭き", aliases=("まどふき",), points=50)])

        assert service.index is not old_index
        assert "皿洗い" in old_index.definitions
        assert "皿洗い" not in service.index.definitions

        ledger.category_weight.return_value = None
        ledger.insert_event.return_value = InsertOutcome.INSERTED
        response = service.report(_request(task="まどふき"))
        assert response.task_key == "窓拭き"
        assert response.points == 50


# ---------------------------------------------------------------------------
# Weekly windows and summaries
# ---------------------------------------------------------------------------


class TestWeekBounds:
    def test_wednesday_maps_to_monday(self):
        start, end = ChoreService.week_bounds(datetime(2025, 11, 12, 10, 0, tzinfo=JST))
        assert start == datetime(2025, 11, 10, 0, 0, tzinfo=JST)
        assert end == datetime(2025, 11, 17, 0, 0, tzinfo=JST)

    def test_sunday_belongs_to_previous_monday(self):
        start, _ = ChoreService.week_bounds(datetime(2025, 11, 16, 23, 59, tzinfo=JST))
        assert start == datetime(2025, 11, 10, tzinfo=JST)

    def test_monday_midnight_starts_week(self):
        start, _ = ChoreService.week_bounds(datetime(2025, 11, 17, tzinfo=JST))
        assert start == datetime(2025, 11, 17, tzinfo=JST)


class TestSummaries:
    def test_weekly_user_summary_totals(self):
        service, ledger = _make_service()
        ledger.weekly_user_task_points.return_value = [
            WeeklyTaskRow(task_key="皿洗い", points=300.0),
            WeeklyTaskRow(task_key="洗濯", points=100.0),
        ]
        summary = service.weekly_user_summary("g1", "u1")
        assert summary.total == 400.0
        ledger.weekly_user_task_points.assert_called_once_with(
            "g1", "u1",
            datetime(2025, 11, 10, tzinfo=JST),
            datetime(2025, 11, 17, tzinfo=JST),
        )

    def test_weekly_summary_uses_reference(self):
        service, ledger = _make_service()
        ledger.weekly_points.return_value = []
        summary = service.weekly_summary("g1", service.local_midnight(datetime(2025, 11, 5).date()))
        assert summary.start == datetime(2025, 11, 3, tzinfo=JST)
        assert summary.rows == []


# ---------------------------------------------------------------------------
# Cancel / categories / readiness
# ---------------------------------------------------------------------------


class TestCancelLatest:
    def test_no_event(self):
        service, ledger = _make_service()
        ledger.delete_latest_event.return_value = None
        assert service.cancel_latest("g1", "u1").kind is ResponseKind.NO_EVENT

    def test_cancelled(self):
        service, ledger = _make_service()
        deleted = DeletedEvent(task_key="皿洗い", points=300.0, created_at=datetime(2025, 11, 12))
        ledger.delete_latest_event.return_value = deleted
        response = service.cancel_latest("g1", "u1")
        assert response.kind is ResponseKind.CANCELLED
        assert response.deleted is deleted


class TestUpdateCategoryWeight:
    def test_saved(self):
        service, ledger = _make_service()
        ledger.upsert_category.return_value = CategoryOutcome.SAVED
        assert service.update_category_weight("g1", "皿洗い", 2).kind is ResponseKind.ACCEPTED

    def test_house_not_found(self):
        service, ledger = _make_service()
        ledger.upsert_category.return_value = CategoryOutcome.HOUSE_NOT_FOUND
        response = service.update_category_weight("g1", "皿洗い", 2)
        assert response.kind is ResponseKind.HOUSE_NOT_FOUND

    @pytest.mark.parametrize("name, weight", [("皿洗い", 0), ("皿洗い", -2), ("  ", 1)])
    def test_validation(self, name, weight):
        service, ledger = _make_service()
        response = service.update_category_weight("g1", name, weight)
        assert response.kind is ResponseKind.VALIDATION_ERROR
        ledger.upsert_category.assert_not_called()


class TestReadiness:
    def test_is_ready_uses_short_timeout(self):
        ledger = MagicMock()
        ledger.ping.return_value = True
        service = ChoreService(ledger, timezone="Asia/Tokyo", readiness_timeout=0.25)
        assert service.is_ready() is True
        ledger.ping.assert_called_once_with(timeout=0.25)


# ---------------------------------------------------------------------------
# End to end over a real ledger
# ---------------------------------------------------------------------------


class TestEndToEnd:
    def test_report_duplicate_and_weekly(self, chore_service, ledger_db):
        first = chore_service.report(_request(user_id="userA", display_name="A", source_msg_id="1"))
        assert first.kind is ResponseKind.ACCEPTED
        chore_service.report(_request(user_id="userA", task="ゴミ出し", source_msg_id="2"))
        chore_service.report(_request(user_id="userB", display_name="B", task="床掃除", source_msg_id="3"))

        replay = chore_service.report(_request(user_id="userA", task="トイレ", source_msg_id="1"))
        assert replay.kind is ResponseKind.DUPLICATE

        summary = chore_service.weekly_summary("g1")
        assert [(r.name, r.points) for r in summary.rows] == [("A", 450.0), ("B", 300.0)]

    def test_weight_then_report_then_cancel(self, chore_service, ledger_db):
        assert chore_service.update_category_weight("g1", "皿洗い", 2).kind is ResponseKind.HOUSE_NOT_FOUND
        chore_service.report(_request(source_msg_id="1", task="洗濯"))
        assert chore_service.update_category_weight("g1", "皿洗い", 2).kind is ResponseKind.ACCEPTED

        response = chore_service.report(_request(source_msg_id="2", task="さらあらい"))
        assert response.points == 600

        cancel = chore_service.cancel_latest("g1", "u1")
        assert cancel.kind is ResponseKind.CANCELLED
        assert cancel.deleted.task_key in {"皿洗い", "洗濯"}
        assert len(ledger_db.list_events("g1", "u1")) == 1

    def test_events_outside_week_not_counted(self, ledger_db, fixed_now):
        ledger_db.insert_event("g1", "u1", "洗濯", 100.0, "old", created_at=fixed_now - timedelta(days=7))
        service = ChoreService(ledger_db, timezone="Asia/Tokyo", clock=lambda: fixed_now)
        assert service.weekly_user_summary("g1", "u1").tasks == []

    def test_register_member(self, chore_service, ledger_db):
        chore_service.register_member("g1", "u9", "Nao")
        assert ledger_db.is_member("g1", "u9")


class TestCanonicalKeys:
    def test_reloaded_key_is_stored_normalized(self, chore_service, ledger_db):
        chore_service.reload_catalog([
            TaskDefinition(key="ｻﾗｱﾗｲ ", aliases=("皿洗い",), points=300),
        ])
        response = chore_service.report(_request(task="皿洗い"))

        assert response.kind is ResponseKind.ACCEPTED
        assert response.task_key == "サラアライ"
        assert [e.task_key for e in ledger_db.list_events("g1")] == ["サラアライ"]

    def test_weight_lookup_uses_normalized_key(self):
        service, ledger = _make_service()
        service.reload_catalog([TaskDefinition(key=" ｾﾝﾀｸ", points=100)])
        ledger.category_weight.return_value = None
        ledger.insert_event.return_value = InsertOutcome.INSERTED
        service.report(_request(task="センタク"))
        ledger.category_weight.assert_called_once_with("g1", "センタク")
        assert ledger.insert_event.call_args.kwargs["task_key"] == "センタク"


class TestNonFiniteWeights:
    @pytest.mark.parametrize("weight", [float("inf"), float("-inf"), float("nan")])
    def test_update_rejects_non_finite(self, weight):
        service, ledger = _make_service()
        response = service.update_category_weight("g1", "皿洗い", weight)
        assert response.kind is ResponseKind.VALIDATION_ERROR
        ledger.upsert_category.assert_not_called()

    @pytest.mark.parametrize("stored", [float("inf"), float("nan")])
    def test_report_ignores_non_finite_stored_weight(self, stored):
        service, ledger = _make_service()
        ledger.category_weight.return_value = stored
        ledger.insert_event.return_value = InsertOutcome.INSERTED
        response = service.report(_request(task="洗濯"))
        assert response.points == 100
