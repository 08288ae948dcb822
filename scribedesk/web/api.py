from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from scribedesk.core.cleanup import CleanupService
from scribedesk.core.dedup import export as exporter
from scribedesk.core.dedup.grouper import find_duplicate_groups
from scribedesk.core.dedup.models import ClassifiedGroup, DuplicateGroup, Record
from scribedesk.core.dedup.reporter import (
    build_report,
    format_bytes,
    top_duplicates,
    version_distribution,
)
from scribedesk.core.dedup.schedule import SCHEDULE_PRESETS
from scribedesk.core.error_reporter import ErrorReporter
from scribedesk.core.errors import NotFoundError, ScribeError, ValidationError
from scribedesk.web.models import (
    ActivityResponse,
    BatchResponse,
    DeleteRequest,
    DuplicatesResponse,
    GroupDeleteRequest,
    HistoryResponse,
    PolicyBody,
    PolicyResponse,
    PreviewResponse,
    ProtectRequest,
)

STATUS_BY_CODE: Dict[str, int] = {
    "validation_error": 400,
    "policy_invalid": 400,
    "not_found": 404,
    "export_failed": 500,
    "store_unavailable": 503,
}


def _record_view(r: Record) -> Dict[str, Any]:
    return {
        "id": r.id,
        "title": r.title,
        "created_at": r.created_at.isoformat(),
        "status": r.status.value,
        "protected": r.protected,
        "size_chars": r.size_chars,
        "tags": [t.model_dump() for t in r.tags],
    }


def _group_view(g: DuplicateGroup) -> Dict[str, Any]:
    return {
        "checksum": g.checksum,
        "title": g.title,
        "count": g.count,
        "oldest": g.oldest_timestamp.isoformat(),
        "newest": g.newest_timestamp.isoformat(),
        "wasted_size": g.wasted_size,
        "wasted_space": format_bytes(g.wasted_size),
        "members": [_record_view(m) for m in g.members],
    }


def _classified_view(cg: ClassifiedGroup) -> Dict[str, Any]:
    return {
        "checksum": cg.checksum,
        "title": cg.group.title,
        "count": cg.count,
        "deletable_ids": cg.deletable_ids,
        "reclaimable_size": cg.reclaimable_size,
        "reclaimable_space": format_bytes(cg.reclaimable_size),
        "members": [
            {**_record_view(m.record), "reason": m.reason.value, "will_be_deleted": m.will_be_deleted}
            for m in cg.members
        ],
    }


def create_app(
    service: CleanupService,
    *,
    logger=None,
    event_logger=None,
    export_dir: str = "exports",
    enable_cors_origins: Optional[List[str]] = None,
    error_reporter: Optional[ErrorReporter] = None,
) -> FastAPI:
    app = FastAPI(title="ScribeDesk", version="0.1.0")
    reporter = error_reporter or ErrorReporter()

    if enable_cors_origins:
        if any(o == "*" for o in enable_cors_origins):
            raise ValueError("Wildcard CORS origins are not allowed.")
        app.add_middleware(
            CORSMiddleware,
            allow_origins=enable_cors_origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def trace_ids(request: Request, call_next):
        request.state.trace_id = request.headers.get("X-Trace-Id") or uuid.uuid4().hex
        response = await call_next(request)
        response.headers["X-Trace-Id"] = request.state.trace_id
        return response

    @app.exception_handler(ScribeError)
    async def scribe_error_handler(request: Request, exc: ScribeError):
        trace_id = getattr(getattr(request, "state", None), "trace_id", "web")
        reporter.write_error(exc, trace_id=trace_id, subsystem="web", internal_exc=None)
        code = STATUS_BY_CODE.get(exc.code, 500)
        if logger is not None and code >= 500:
            logger.error(f"[{trace_id}] {request.method} {request.url.path} -> {exc.code}: {exc.user_message}")
        return JSONResponse(status_code=code, content={"detail": exc.user_message, "code": exc.code})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        trace_id = getattr(getattr(request, "state", None), "trace_id", "web")
        err = ValidationError("Invalid request.", errors=[e.get("msg") for e in exc.errors()])
        reporter.write_error(err, trace_id=trace_id, subsystem="web", internal_exc=None)
        return JSONResponse(status_code=400, content={"detail": err.user_message, "code": err.code})

    def _journal(request: Request, event: str, details: Dict[str, Any]) -> None:
        if event_logger is not None:
            event_logger.log(getattr(request.state, "trace_id", "web"), event, details)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/v1/users/{user_id}/duplicates", response_model=DuplicatesResponse)
    def get_duplicates(user_id: str, completed_only: bool = False):
        records = service.records(user_id)
        groups = find_duplicate_groups(records, completed_only=completed_only)
        dup_files = sum(g.count for g in groups)
        wasted = sum(g.wasted_size for g in groups)
        stats = {
            "total_duplicates": sum(g.count - 1 for g in groups),
            "unique_duplicates": len(groups),
            "duplicate_file_count": dup_files,
            "largest_group": max((g.count for g in groups), default=0),
            "total_wasted_size": wasted,
            "total_wasted_space": format_bytes(wasted),
            "percentage_duplicates": round(dup_files / len(records) * 100, 1) if records else 0.0,
        }
        return DuplicatesResponse(
            user_id=user_id,
            stats=stats,
            distribution=version_distribution(groups),
            top=top_duplicates(groups),
            groups=[_group_view(g) for g in groups],
        )

    @app.get("/v1/users/{user_id}/cleanup/preview", response_model=PreviewResponse)
    def get_preview(
        user_id: str,
        keep_latest: Optional[bool] = None,
        age_threshold_days: Optional[int] = None,
    ):
        pol = service.effective_policy(user_id).model_dump()
        if keep_latest is not None:
            pol["keep_latest"] = keep_latest
        if age_threshold_days is not None:
            pol["age_threshold_days"] = age_threshold_days
        classified = service.preview(user_id, pol)
        report = build_report(classified)
        return PreviewResponse(
            user_id=user_id,
            policy=pol,
            summary=report.summary.model_dump(),
            groups=[_classified_view(cg) for cg in classified],
        )

    @app.post("/v1/users/{user_id}/cleanup/run")
    def post_cleanup_run(user_id: str, request: Request):
        res = service.run_cleanup(user_id, trigger="manual")
        _journal(request, "cleanup.run", {"user_id": user_id, "status": res.status, "files_deleted": res.files_deleted})
        return res.model_dump(mode="json")

    def _policy_response(user_id: str) -> PolicyResponse:
        saved = service.get_policy(user_id)
        pol = saved or service.default_policy
        return PolicyResponse(
            user_id=user_id,
            saved=saved is not None,
            policy=pol.model_dump(),
            schedule_label=SCHEDULE_PRESETS.get(pol.schedule, pol.schedule),
            next_run=service.next_scheduled_run(user_id),
        )

    @app.get("/v1/users/{user_id}/retention-policy", response_model=PolicyResponse)
    def get_policy(user_id: str):
        return _policy_response(user_id)

    @app.put("/v1/users/{user_id}/retention-policy", response_model=PolicyResponse)
    def put_policy(user_id: str, body: PolicyBody, request: Request):
        service.save_policy(user_id, body.model_dump())
        _journal(request, "policy.saved", {"user_id": user_id})
        return _policy_response(user_id)

    @app.get("/v1/users/{user_id}/cleanup/history", response_model=HistoryResponse)
    def get_history(user_id: str, limit: int = Query(default=50, ge=1, le=500)):
        runs = service.cleanup_history(user_id, limit=limit)
        return HistoryResponse(
            user_id=user_id,
            summary=service.history_summary(user_id, limit=limit),
            runs=[r.model_dump(mode="json") for r in runs],
        )

    @app.post("/v1/users/{user_id}/records/protect", response_model=BatchResponse)
    def post_protect(user_id: str, body: ProtectRequest):
        return BatchResponse(**service.bulk_protect(user_id, body.ids, body.protected).to_dict())

    @app.post("/v1/users/{user_id}/records/delete", response_model=BatchResponse)
    def post_delete(user_id: str, body: DeleteRequest, request: Request):
        res = service.bulk_delete(user_id, body.ids)
        _journal(request, "records.deleted", {"user_id": user_id, "requested": res.requested, "affected": res.affected})
        return BatchResponse(**res.to_dict())

    @app.post("/v1/users/{user_id}/duplicates/{checksum}/delete", response_model=BatchResponse)
    def post_group_delete(user_id: str, checksum: str, body: GroupDeleteRequest, request: Request):
        res = service.delete_group(user_id, checksum, keep_latest=body.keep_latest)
        _journal(request, "group.deleted", {"user_id": user_id, "checksum": checksum, "affected": res.affected})
        return BatchResponse(**res.to_dict())

    @app.post("/v1/users/{user_id}/duplicates/{checksum}/merge-tags")
    def post_merge_tags(user_id: str, checksum: str):
        return service.merge_tags(user_id, checksum)

    @app.get("/v1/users/{user_id}/reports/{fmt}")
    def get_report(user_id: str, fmt: str, request: Request, save: bool = False):
        fmt = fmt.lower()
        if fmt not in exporter.FORMATS:
            raise ValidationError(f"Unsupported report format: {fmt}", fmt=fmt)
        if save:
            path = service.export(user_id, fmt, export_dir)
            _journal(request, "report.saved", {"user_id": user_id, "format": fmt, "path": path})
            return {"path": path}
        filename, data = service.render_report(user_id, fmt)
        return Response(
            content=data,
            media_type=exporter.MEDIA_TYPES[fmt],
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.get("/v1/users/{user_id}/activity", response_model=ActivityResponse)
    def get_activity(user_id: str, since: Optional[datetime] = None, limit: int = Query(default=200, ge=1, le=2000)):
        entries = service.activity_log(user_id, since=since, limit=limit)
        return ActivityResponse(entries=[e.model_dump(mode="json") for e in entries])

    @app.get("/v1/users/{user_id}/activity/export.csv")
    def get_activity_csv(user_id: str, since: Optional[datetime] = None):
        rows = exporter.activity_rows(service.activity_log(user_id, since=since, limit=10_000))
        if not rows:
            raise NotFoundError("No activity to export.", user_id=user_id)
        return Response(
            content=exporter.rows_to_csv(rows).encode("utf-8"),
            media_type=exporter.MEDIA_TYPES["csv"],
            headers={"Content-Disposition": 'attachment; filename="activity_logs.csv"'},
        )

    return app
