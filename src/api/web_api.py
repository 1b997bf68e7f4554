"""FastAPI application for direct chore reports, weekly JSON and probes."""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from src.core.chore_service import ReportRequest, ResponseKind
from src.data.db import StorageError

if TYPE_CHECKING:
    from src.core.chore_service import ChoreService

logger = logging.getLogger(__name__)


class ReportPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    group_id: str = ""
    user_id: str = ""
    display_name: Optional[str] = None
    task: str = ""
    option: Optional[str] = None
    type: Optional[str] = None
    source_msg_id: Optional[str] = None
    note: Optional[str] = None


class CategoryPayload(BaseModel):
    weight: float = Field(gt=0, allow_inf_nan=False)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _parse_date(value: Optional[str]) -> Optional[date]:
    """YYYY-MM-DD, or None when absent or malformed."""
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def create_app(service: ChoreService | None = None) -> FastAPI:
    """Build the HTTP app. Defaults to a service over the configured ledger."""
    if service is None:
        from src.core.chore_service import ChoreService
        from src.data.db import LedgerDB

        service = ChoreService(LedgerDB())

    app = FastAPI(title="Chore Ledger API")
    app.state.service = service

    @app.exception_handler(StorageError)
    async def _storage_error(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc)
        return _error(500, "storage error")

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, f"invalid request: {exc.errors()[0].get('msg', 'bad input')}")

    def _reference(date_str: Optional[str]):
        day = _parse_date(date_str)
        return service.local_midnight(day) if day else service.now()

    @app.get("/", response_class=PlainTextResponse)
    def root() -> str:
        return "chore-ledger API is running"

    @app.get("/favicon.ico")
    def favicon() -> Response:
        return Response(status_code=204)

    @app.get("/healthz")
    def healthz() -> Response:
        return Response(status_code=200)

    @app.get("/readyz")
    def readyz() -> Response:
        if not service.is_ready():
            logger.warning("readyz: ledger not reachable")
            return PlainTextResponse("db not ready", status_code=503)
        return Response(status_code=200)

    @app.post("/events/report")
    def report(payload: ReportPayload) -> Response:
        response = service.report(
            ReportRequest(
                group_id=payload.group_id,
                user_id=payload.user_id,
                task=payload.task,
                source_msg_id=payload.source_msg_id,
                display_name=payload.display_name,
                option=payload.option,
                kind=payload.type,
                note=payload.note,
            )
        )
        if response.kind is ResponseKind.ACCEPTED:
            return Response(status_code=204)
        if response.kind is ResponseKind.DUPLICATE:
            return JSONResponse(
                status_code=200,
                content={"status": "duplicate", "source_msg_id": response.source_msg_id},
            )
        if response.kind is ResponseKind.UNKNOWN_TASK:
            return _error(400, "unknown task")
        if response.kind is ResponseKind.AMBIGUOUS_TASK:
            return _error(400, "ambiguous task: " + ", ".join(response.candidates))
        return _error(400, response.message)

    @app.get("/houses/{group}/weekly")
    def weekly(group: str, date: Optional[str] = None) -> Dict[str, Any]:
        summary = service.weekly_summary(group, _reference(date))
        return {
            "start": summary.start.date().isoformat(),
            "end": summary.end.date().isoformat(),
            "rows": [
                {"rank": i + 1, "name": row.name, "points": row.points}
                for i, row in enumerate(summary.rows)
            ],
        }

    @app.get("/houses/{group}/users/{user}/weekly")
    def weekly_user(group: str, user: str, date: Optional[str] = None) -> Dict[str, Any]:
        summary = service.weekly_user_summary(group, user, _reference(date))
        return {
            "start": summary.start.date().isoformat(),
            "end": summary.end.date().isoformat(),
            "total": summary.total,
            "tasks": [{"task_key": t.task_key, "points": t.points} for t in summary.tasks],
        }

    @app.delete("/houses/{group}/users/{user}/events/latest")
    def cancel_latest(group: str, user: str) -> Response:
        response = service.cancel_latest(group, user)
        if response.kind is ResponseKind.NO_EVENT:
            return _error(404, "no event found")
        deleted = response.deleted
        return JSONResponse(
            status_code=200,
            content={
                "task_key": deleted.task_key,
                "points": deleted.points,
                "created_at": deleted.created_at.isoformat(),
            },
        )

    @app.put("/houses/{group}/categories/{name}")
    def upsert_category(group: str, name: str, payload: CategoryPayload) -> Response:
        response = service.update_category_weight(group, name, payload.weight)
        if response.kind is ResponseKind.HOUSE_NOT_FOUND:
            return _error(404, "house not found")
        if response.kind is ResponseKind.VALIDATION_ERROR:
            return _error(400, response.message)
        return Response(status_code=204)

    return app
