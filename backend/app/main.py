from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from backend.app.auth import ADMIN_ROLE, BDR_ROLE, AuthContext, acting_user_from, require_roles
from backend.app.models import (
    CompanyConflictsResponse,
    DecisionRequest,
    DecisionResponse,
    DuplicateAuditLogEntry,
    DuplicateCheckRequest,
    DuplicateCheckResponse,
    ExistingRecord,
    RecordCreateRequest,
    SearchResultItem,
    StatisticsSummary,
    WarningDetail,
    naive_utc,
)
from backend.app.observability import MetricsRegistry, configure_logging, observe_request
from backend.app.persistence import SqlitePersistence
from backend.app.repository import (
    InMemoryRecordRepository,
    RecordNotFoundError,
    RepositoryUnavailableError,
)
from backend.app.services.duplicates import (
    CandidateValidationError,
    DuplicateDetectionService,
    ReasonRequiredError,
)
from backend.app.services.search import SearchQueryError, SearchType, search_records
from backend.app.settings import Settings, load_settings
from backend.app.store import AlreadyDecidedError, StoreNotFoundError, WarningStore

RETRY_AFTER_SECONDS = "5"


def create_app() -> FastAPI:
    app = FastAPI(title="Lead Duplicate Guard API", version="0.1.0")
    configure_logging()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    settings = load_settings()
    persistence = SqlitePersistence(settings.database_url) if settings.persistence_enabled else None
    app.state.settings = settings
    app.state.metrics = MetricsRegistry()
    app.state.persistence = persistence
    app.state.repository = InMemoryRecordRepository(persistence=persistence)
    app.state.warnings = WarningStore(persistence=persistence)
    app.state.duplicates = DuplicateDetectionService(
        repository=app.state.repository,
        warnings=app.state.warnings,
        settings=settings,
        metrics=app.state.metrics,
    )

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    app.include_router(build_router())
    return app


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


def get_repository(request: Request) -> InMemoryRecordRepository:
    return request.app.state.repository


def get_duplicates(request: Request) -> DuplicateDetectionService:
    return request.app.state.duplicates


def repository_unavailable(exc: RepositoryUnavailableError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(exc) or "record repository unavailable",
        headers={"Retry-After": RETRY_AFTER_SECONDS},
    )


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/health/ready")
    def readiness(request: Request) -> dict[str, str]:
        settings = get_settings(request)
        persistence = request.app.state.persistence
        if settings.persistence_enabled and persistence and not persistence.ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="database unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        registry = get_metrics(request)
        return PlainTextResponse(registry.to_prometheus())

    @router.post("/records", response_model=ExistingRecord, status_code=status.HTTP_201_CREATED)
    def create_record(
        payload: RecordCreateRequest,
        request: Request,
        _: AuthContext = Depends(require_roles(BDR_ROLE, ADMIN_ROLE)),
    ) -> ExistingRecord:
        return get_repository(request).add_record(payload)

    @router.get("/records/{record_id}", response_model=ExistingRecord)
    def get_record(
        record_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(BDR_ROLE, ADMIN_ROLE)),
    ) -> ExistingRecord:
        record = get_repository(request).get(record_id)
        if not record:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"record not found: {record_id}",
            )
        return record

    @router.delete("/records/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_record(
        record_id: str,
        request: Request,
        _: AuthContext = Depends(require_roles(ADMIN_ROLE)),
    ) -> Response:
        try:
            get_repository(request).delete(record_id)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.post("/duplicates/check", response_model=DuplicateCheckResponse)
    def check_duplicates(
        payload: DuplicateCheckRequest,
        request: Request,
        context: AuthContext = Depends(require_roles(BDR_ROLE, ADMIN_ROLE)),
    ) -> DuplicateCheckResponse:
        service = get_duplicates(request)
        try:
            result = service.check(payload.to_candidate(), acting_user_from(context))
        except CandidateValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=str(exc),
            ) from exc
        except RepositoryUnavailableError as exc:
            raise repository_unavailable(exc) from exc
        return DuplicateCheckResponse(
            has_warning=result.has_warning,
            severity=result.severity,
            warning_id=result.warning_id,
            message=result.message,
            matches=[
                service.render_match(match, include_owner_details=context.is_admin)
                for match in result.matches
            ],
        )

    @router.post("/duplicates/decision", response_model=DecisionResponse)
    def record_decision(
        payload: DecisionRequest,
        request: Request,
        context: AuthContext = Depends(require_roles(BDR_ROLE, ADMIN_ROLE)),
    ) -> DecisionResponse:
        service = get_duplicates(request)
        try:
            decided = service.decide(
                payload.warning_id,
                payload.decision,
                payload.reason,
                acting_user_from(context),
            )
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except AlreadyDecidedError as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"message": str(exc), "code": "already_decided"},
            ) from exc
        except ReasonRequiredError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=str(exc),
            ) from exc
        return DecisionResponse(
            success=True,
            warning_id=decided.id,
            decision=decided.user_decision,
            decision_at_utc=decided.decision_at_utc,
        )

    @router.get("/duplicates/warnings/{warning_id}", response_model=WarningDetail)
    def warning_detail(
        warning_id: str,
        request: Request,
        context: AuthContext = Depends(require_roles(BDR_ROLE, ADMIN_ROLE)),
    ) -> WarningDetail:
        service = get_duplicates(request)
        try:
            warning = service.get_warning(warning_id)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        if not context.is_admin and warning.triggered_by.id != context.user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="warning belongs to another user",
            )
        return service.warning_detail(warning, include_owner_details=context.is_admin)

    @router.get("/duplicates/search", response_model=list[SearchResultItem])
    def search(
        request: Request,
        q: str = Query(min_length=2, max_length=100),
        record_type: SearchType = Query(default="all", alias="type"),
        limit: int = Query(default=20, ge=1, le=100),
        include_inactive: bool = False,
        _: AuthContext = Depends(require_roles(BDR_ROLE, ADMIN_ROLE)),
    ) -> list[SearchResultItem]:
        try:
            return search_records(
                get_repository(request),
                q,
                record_type=record_type,
                limit=limit,
                include_inactive=include_inactive,
            )
        except SearchQueryError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(exc),
            ) from exc

    @router.get("/duplicates/company-conflicts", response_model=CompanyConflictsResponse)
    def company_conflicts(
        request: Request,
        companies: list[str] = Query(default=[]),
        days: int = Query(default=14, ge=1, le=365),
        _: AuthContext = Depends(require_roles(BDR_ROLE, ADMIN_ROLE)),
    ) -> CompanyConflictsResponse:
        names = [name.strip() for item in companies for name in item.split(",") if name.strip()]
        if not names:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="at least one company is required",
            )
        conflicts, since = get_duplicates(request).company_conflicts(names, days)
        return CompanyConflictsResponse(conflicts=conflicts, since=since)

    @router.get("/admin/duplicates/statistics", response_model=StatisticsSummary)
    def duplicate_statistics(
        request: Request,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        _: AuthContext = Depends(require_roles(ADMIN_ROLE)),
    ) -> StatisticsSummary:
        start = naive_utc(date_from)
        end = naive_utc(date_to)
        if start and end and start > end:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="date_from cannot be greater than date_to",
            )
        return get_duplicates(request).statistics(start, end)

    @router.get("/admin/duplicates/warnings", response_model=list[WarningDetail])
    def recent_warnings(
        request: Request,
        limit: int = Query(default=50, ge=1),
        include_resolved: bool = False,
        _: AuthContext = Depends(require_roles(ADMIN_ROLE)),
    ) -> list[WarningDetail]:
        service = get_duplicates(request)
        return [
            service.warning_detail(warning)
            for warning in service.list_recent_warnings(
                limit=limit, include_resolved=include_resolved
            )
        ]

    @router.get("/admin/duplicates/audit", response_model=list[DuplicateAuditLogEntry])
    def audit_log(
        request: Request,
        warning_id: Optional[str] = None,
        limit: int = Query(default=100, ge=1, le=1000),
        _: AuthContext = Depends(require_roles(ADMIN_ROLE)),
    ) -> list[DuplicateAuditLogEntry]:
        return get_duplicates(request).audit_log(warning_id=warning_id, limit=limit)

    return router


app = create_app()
