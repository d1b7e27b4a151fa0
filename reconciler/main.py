"""
FastAPI Application Entry Point

Venue Reconciliation Service - operational API.
Runs are executed by Celery workers; the API queues them and reads the
run log and the establishment store.

Endpoints:
    - POST /api/runs: Queue a reconciliation run
    - GET /api/runs: List recent runs
    - GET /api/runs/{run_id}: Run header with every outcome
    - GET /api/duplicates: Read-only duplicate scan of the store
    - GET /health: System health check

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime

import redis
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reconciler.core.config import get_settings, setup_logging
from reconciler.database import dispose_engine, get_db, get_session_maker, init_db
from reconciler.pipeline.duplicates import DuplicateDetector
from reconciler.schemas import (
    DuplicateGroupResponse,
    DuplicateScanResponse,
    ErrorResponse,
    HealthResponse,
    RunAcceptedResponse,
    RunCreate,
    RunListResponse,
    RunResponse,
)
from reconciler.services.menus import get_menu_source
from reconciler.services.persistence import PersistenceGateway
from reconciler.services.places import get_place_search_provider
from reconciler.services.run_log import RunLogStore
from reconciler.tasks import reconcile_names

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_run_log() -> RunLogStore:
    return RunLogStore(get_session_maker())


def get_gateway() -> PersistenceGateway:
    return PersistenceGateway(get_session_maker())


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("✅ Application ready!")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await dispose_engine()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Reconciles operator venue lists against place and menu providers, "
        "detects duplicate establishments and stores menus and photos."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍷 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(select(1))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except redis.RedisError as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    place_status = "healthy" if await get_place_search_provider().health_check() else "unhealthy"
    menu_status = "healthy" if await get_menu_source().health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, place_status, menu_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        place_provider=place_status,
        menu_source=menu_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# RUN ENDPOINTS
# =============================================================================

@app.post(
    "/api/runs",
    response_model=RunAcceptedResponse,
    status_code=202,
    responses={500: {"model": ErrorResponse}},
    tags=["Runs"],
    summary="Queue Reconciliation Run",
)
async def create_run(run: RunCreate) -> RunAcceptedResponse:
    """Queue a reconciliation run on the Celery workers."""
    run_id = str(uuid.uuid4())
    logger.info(f"Queueing run {run_id}: {len(run.names)} names ({run.mode.value})")

    task = reconcile_names.delay(
        run.names,
        mode=run.mode.value,
        overrides=run.overrides(),
        run_id=run_id,
        export_report=run.export_report,
    )

    return RunAcceptedResponse(
        success=True,
        message=f"Run queued with {len(run.names)} names",
        run_id=run_id,
        task_id=task.id,
    )


@app.get(
    "/api/runs",
    response_model=RunListResponse,
    tags=["Runs"],
    summary="List Runs",
)
async def list_runs(
    limit: int = Query(20, ge=1, le=200),
    run_log: RunLogStore = Depends(get_run_log),
) -> RunListResponse:
    """Most recent runs first."""
    runs = await run_log.list_runs(limit=limit)
    return RunListResponse(total=len(runs), runs=[RunResponse(**run) for run in runs])


@app.get(
    "/api/runs/{run_id}",
    response_model=RunResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Runs"],
)
async def get_run(
    run_id: str,
    run_log: RunLogStore = Depends(get_run_log),
) -> RunResponse:
    """Get a run with every per-input outcome."""
    run = await run_log.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return RunResponse(**run)


# =============================================================================
# DUPLICATE ENDPOINTS
# =============================================================================

@app.get(
    "/api/duplicates",
    response_model=DuplicateScanResponse,
    tags=["Duplicates"],
    summary="Scan For Duplicate Establishments",
)
async def scan_duplicates(
    gateway: PersistenceGateway = Depends(get_gateway),
) -> DuplicateScanResponse:
    """Group stored establishments into duplicate clusters without merging."""
    establishments = await gateway.load_establishments()
    groups = DuplicateDetector.from_settings(settings).find_duplicates(establishments)

    return DuplicateScanResponse(
        establishments=len(establishments),
        groups=[DuplicateGroupResponse(**group.to_dict()) for group in groups],
        duplicates=sum(len(group.member_ids) for group in groups),
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
