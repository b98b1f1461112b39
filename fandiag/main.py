from contextlib import asynccontextmanager
from typing import Literal

import aiosqlite
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fandiag import dashboard
from fandiag.config import Settings, load_settings
from fandiag.diagnosis import DiagnosisService, InvalidSelectionError
from fandiag.logging_config import configure_logging, get_logger
from fandiag.middleware import CorrelationIdMiddleware
from fandiag.models import (
    BulkDeleteRequest,
    DashboardStats,
    Damage,
    DiagnoseRequest,
    DiagnosisResponse,
    DiagnosisRule,
    HistoryRecord,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    Symptom,
    UserProfile,
)
from fandiag.results import CurrentUser
from fandiag.security import get_admin_user, get_current_user, hash_password, issue_token, verify_password
from fandiag.store import Store, StoreUnavailableError

logger = get_logger(__name__)

router = APIRouter()


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_diagnosis_service(request: Request) -> DiagnosisService:
    return request.app.state.diagnosis


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


# -------------------------------------------------------------------
# Auth
# -------------------------------------------------------------------
@router.post("/api/auth/register", response_model=MessageResponse)
async def register(
    request: Request,
    payload: RegisterRequest,
    store: Store = Depends(get_store),
) -> MessageResponse:
    if await store.find_user_conflict(payload.username, payload.email):
        raise HTTPException(status_code=400, detail="user_already_exists")
    try:
        user_id = await store.create_user(
            username=payload.username,
            email=payload.email,
            full_name=payload.full_name,
            password_hash=hash_password(payload.password),
        )
    except aiosqlite.IntegrityError as exc:
        raise HTTPException(status_code=400, detail="user_already_exists") from exc
    logger.info(
        "user_registered",
        extra={"correlation_id": _correlation_id(request), "user_id": user_id, "username": payload.username},
    )
    return MessageResponse(message="registration_successful")


@router.post("/api/auth/login", response_model=LoginResponse)
async def login(request: Request, payload: LoginRequest, store: Store = Depends(get_store)) -> LoginResponse:
    user = await store.get_user_by_username(payload.username)
    if user is None or not verify_password(payload.password, user["password_hash"]):
        logger.info(
            "login_failed",
            extra={"correlation_id": _correlation_id(request), "username": payload.username},
        )
        raise HTTPException(status_code=401, detail="invalid_credentials")

    token = issue_token(user, request.app.state.settings)
    return LoginResponse(
        token=token,
        user=UserProfile(
            id=user["id"],
            username=user["username"],
            email=user["email"],
            full_name=user["full_name"],
            role=user["role"],
        ),
    )


@router.get("/api/auth/profile", response_model=UserProfile)
async def profile(
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> UserProfile:
    record = await store.get_user_by_id(user.id)
    if record is None:
        raise HTTPException(status_code=404, detail="user_not_found")
    return UserProfile(**record)


# -------------------------------------------------------------------
# Catalogue
# -------------------------------------------------------------------
@router.get("/api/symptoms", response_model=list[Symptom])
async def list_symptoms(store: Store = Depends(get_store)) -> list[Symptom]:
    return await store.list_symptoms()


@router.get("/api/damages", response_model=list[Damage])
async def list_damages(store: Store = Depends(get_store)) -> list[Damage]:
    return await store.list_damages()


@router.get("/api/diagnosis-rules", response_model=list[DiagnosisRule])
async def list_rules(store: Store = Depends(get_store)) -> list[DiagnosisRule]:
    return await store.list_rules()


# -------------------------------------------------------------------
# Diagnosis
# -------------------------------------------------------------------
@router.post("/api/diagnose", response_model=DiagnosisResponse)
async def diagnose(
    request: Request,
    payload: DiagnoseRequest,
    user: CurrentUser = Depends(get_current_user),
    service: DiagnosisService = Depends(get_diagnosis_service),
) -> DiagnosisResponse:
    try:
        return await service.diagnose(user, payload.symptoms, correlation_id=_correlation_id(request))
    except InvalidSelectionError as exc:
        raise HTTPException(status_code=400, detail=exc.code) from exc


# -------------------------------------------------------------------
# History
# -------------------------------------------------------------------
@router.get("/api/history", response_model=list[HistoryRecord])
async def list_history(
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> list[HistoryRecord]:
    return await store.list_history(user_id=None if user.is_admin else user.id)


@router.delete("/api/history/{history_id}", response_model=MessageResponse)
async def delete_history(
    request: Request,
    history_id: int,
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> MessageResponse:
    owner_id = await store.get_history_owner(history_id)
    if owner_id is None:
        raise HTTPException(status_code=404, detail="not_found")
    if not user.is_admin and owner_id != user.id:
        raise HTTPException(status_code=403, detail="forbidden")

    await store.delete_history([history_id])
    logger.info(
        "history_deleted",
        extra={"correlation_id": _correlation_id(request), "history_id": history_id, "user_id": user.id},
    )
    return MessageResponse(message="report_deleted")


@router.post("/api/history/bulk-delete", response_model=MessageResponse)
async def bulk_delete_history(
    request: Request,
    payload: BulkDeleteRequest,
    user: CurrentUser = Depends(get_current_user),
    store: Store = Depends(get_store),
) -> MessageResponse:
    ids = list(dict.fromkeys(payload.ids))
    if not ids:
        raise HTTPException(status_code=400, detail="no_ids_provided")
    if not user.is_admin and await store.count_owned(ids, user.id) != len(ids):
        raise HTTPException(status_code=403, detail="forbidden")

    deleted = await store.delete_history(ids)
    logger.info(
        "history_bulk_deleted",
        extra={"correlation_id": _correlation_id(request), "requested": len(ids), "deleted": deleted},
    )
    return MessageResponse(message="reports_deleted")


# -------------------------------------------------------------------
# Admin
# -------------------------------------------------------------------
@router.get("/api/admin/dashboard", response_model=DashboardStats)
async def admin_dashboard(
    search: str = "",
    date: Literal["all", "today", "yesterday", "week"] = Query(default="all"),
    admin: CurrentUser = Depends(get_admin_user),
    store: Store = Depends(get_store),
) -> DashboardStats:
    records = await store.list_history()
    return dashboard.summarize(records, search=search, date_filter=date)


# -------------------------------------------------------------------
# Application
# -------------------------------------------------------------------
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error(
        "store_unavailable",
        extra={"correlation_id": _correlation_id(request), "path": request.url.path, "error": str(exc)},
    )
    return JSONResponse(status_code=503, content={"detail": "store_unavailable"})


def create_app(settings: Settings | None = None) -> FastAPI:
    # One Settings instance serves both the CORS middleware and startup.
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        store = Store(
            redis_url=settings.redis_url,
            sqlite_path=settings.sqlite_path,
            ttl_seconds=settings.cache_ttl_seconds,
            catalog_seed_path=settings.catalog_seed_path,
        )
        await store.connect()
        if settings.admin_username and settings.admin_password:
            await store.ensure_admin(
                settings.admin_username,
                hash_password(settings.admin_password),
                settings.admin_email,
            )
            logger.info(
                "admin_ensured",
                extra={"correlation_id": "startup", "username": settings.admin_username},
            )
        app.state.store = store
        app.state.diagnosis = DiagnosisService(store=store, max_selected_symptoms=settings.max_selected_symptoms)
        logger.info("startup_complete", extra={"correlation_id": "startup"})
        try:
            yield
        finally:
            await store.close()
            logger.info("shutdown_complete", extra={"correlation_id": "shutdown"})

    app = FastAPI(title="fandiag", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.include_router(router)
    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    return app


app = create_app()
