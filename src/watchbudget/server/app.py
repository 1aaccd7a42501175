"""FastAPI HTTP server for the watch session engine.

Endpoints (prefix configurable, default ``/api/sessions``):

    POST /start                    <- {"profile_id"?, "video_id", "nfc_chip_id"?}
    POST /start/public             <- {"profile_id", "video_id", "nfc_chip_id"}  (kiosk)
    POST /{session_id}/heartbeat   <- {"current_position_seconds"?}
    POST /heartbeat                <- {"session_id", "current_position_seconds"?}
    POST /{session_id}/end         <- {"stopped_reason"?, "final_position_seconds"?}
    POST /end                      <- {"session_id", "stopped_reason"?, ...}

    GET  /api/profiles/{profile_id}/watch-stats
    GET  /health

Authentication, ownership middleware and rate limiting wrap these routes
upstream; the authenticated start trusts the profile it is given, while
the kiosk start re-checks the chip against the profile.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from watchbudget import __version__
from watchbudget.config.settings import Settings
from watchbudget.domain.errors import ServerError, ValidationError, WatchBudgetError
from watchbudget.domain.models import HeartbeatResult, StoppedReason, WatchStats
from watchbudget.engine.monitor import HeartbeatMonitor
from watchbudget.storage import (
    SqlCatalogLookup,
    SqlDailyBudgetAggregator,
    SqlSessionLedger,
    create_db_engine,
    init_db,
    make_session_factory,
)
from watchbudget.storage.db import ping

logger = logging.getLogger(__name__)

LIMIT_REACHED_MESSAGE = "Time's up! You've watched enough for today."


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class StartSessionRequest(BaseModel):
    profile_id: UUID | None = Field(default=None, description="Omitted for anonymous viewing")
    video_id: UUID
    nfc_chip_id: UUID | None = None


class PublicStartSessionRequest(BaseModel):
    profile_id: UUID
    video_id: UUID
    nfc_chip_id: UUID


class HeartbeatRequest(BaseModel):
    current_position_seconds: int | None = Field(default=None, ge=0)


class SessionHeartbeatRequest(HeartbeatRequest):
    session_id: UUID


class EndSessionRequest(BaseModel):
    stopped_reason: StoppedReason = StoppedReason.MANUAL
    final_position_seconds: int | None = Field(default=None, ge=0)


class SessionEndRequest(EndSessionRequest):
    session_id: UUID


class StartSessionResponse(BaseModel):
    session_id: str
    started_at: str
    remaining_minutes: int | None = None
    daily_limit_minutes: int | None = None


class EndSessionResponse(BaseModel):
    session_id: str
    duration_seconds: int
    stopped_reason: StoppedReason


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = __version__
    database: bool = False


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def build_monitor(settings: Settings, engine) -> HeartbeatMonitor:
    session_factory = make_session_factory(engine)
    return HeartbeatMonitor(
        ledger=SqlSessionLedger(session_factory, default_timezone=settings.budget.default_timezone),
        budget=SqlDailyBudgetAggregator(session_factory),
        catalog=SqlCatalogLookup(session_factory),
        position_tolerance_seconds=settings.budget.position_tolerance_seconds,
        default_timezone=settings.budget.default_timezone,
    )


def create_app(
    settings: Settings | None = None,
    monitor: HeartbeatMonitor | None = None,
    engine=None,
    create_tables: bool = True,
) -> FastAPI:
    """Create the session API application.

    Args:
        settings: Loaded configuration. Defaults are used if None.
        monitor: Optional pre-built HeartbeatMonitor (for testing).
        engine: Optional SQLAlchemy engine; built from settings if None.
        create_tables: Create missing tables on startup.
    """
    if settings is None:
        settings = Settings()
    if engine is None:
        engine = create_db_engine(settings.database)
    if monitor is None:
        monitor = build_monitor(settings, engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if create_tables:
            init_db(app.state.engine)
        logger.info("Session API started (prefix=%s)", settings.server.api_prefix)
        yield
        app.state.engine.dispose()
        logger.info("Session API stopped")

    app = FastAPI(
        title="watchbudget",
        description="Watch session lifecycle and daily time-budget enforcement",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.monitor = monitor
    app.state.engine = engine

    _register_error_handlers(app)

    @app.get("/health")
    def health_check() -> HealthResponse:
        return HealthResponse(database=ping(app.state.engine))

    app.include_router(_session_router(), prefix=settings.server.api_prefix)
    app.include_router(_profile_router(), prefix="/api/profiles")
    return app


def _monitor(request: Request) -> HeartbeatMonitor:
    return request.app.state.monitor


def _session_router() -> APIRouter:
    router = APIRouter(tags=["sessions"])

    # Route handlers are plain functions: storage calls are blocking, and
    # FastAPI runs sync handlers on its worker threadpool.

    @router.post("/start", status_code=201)
    def start_session(body: StartSessionRequest, request: Request) -> StartSessionResponse:
        result = _monitor(request).start(
            _opt(body.profile_id), str(body.video_id), _opt(body.nfc_chip_id)
        )
        return _start_response(result)

    @router.post("/start/public", status_code=201)
    def start_public_session(body: PublicStartSessionRequest, request: Request) -> StartSessionResponse:
        result = _monitor(request).start(
            str(body.profile_id), str(body.video_id), str(body.nfc_chip_id), verify_chip=True
        )
        return _start_response(result)

    @router.post("/heartbeat")
    def heartbeat_by_body(body: SessionHeartbeatRequest, request: Request) -> JSONResponse:
        result = _monitor(request).heartbeat(str(body.session_id), body.current_position_seconds)
        return _heartbeat_response(result)

    @router.post("/{session_id}/heartbeat")
    def heartbeat(session_id: UUID, request: Request, body: HeartbeatRequest | None = None) -> JSONResponse:
        position = body.current_position_seconds if body else None
        result = _monitor(request).heartbeat(str(session_id), position)
        return _heartbeat_response(result)

    @router.post("/end")
    def end_by_body(body: SessionEndRequest, request: Request) -> EndSessionResponse:
        result = _monitor(request).end(str(body.session_id), body.stopped_reason, body.final_position_seconds)
        return EndSessionResponse(
            session_id=result.session_id,
            duration_seconds=result.duration_seconds,
            stopped_reason=result.stopped_reason,
        )

    @router.post("/{session_id}/end")
    def end_session(session_id: UUID, request: Request, body: EndSessionRequest | None = None) -> EndSessionResponse:
        body = body or EndSessionRequest()
        result = _monitor(request).end(str(session_id), body.stopped_reason, body.final_position_seconds)
        return EndSessionResponse(
            session_id=result.session_id,
            duration_seconds=result.duration_seconds,
            stopped_reason=result.stopped_reason,
        )

    return router


def _profile_router() -> APIRouter:
    router = APIRouter(tags=["profiles"])

    @router.get("/{profile_id}/watch-stats")
    def watch_stats(profile_id: UUID, request: Request) -> WatchStats:
        return _monitor(request).stats(str(profile_id))

    return router


def _opt(value: UUID | None) -> str | None:
    return str(value) if value is not None else None


def _start_response(result) -> StartSessionResponse:
    return StartSessionResponse(
        session_id=result.session_id,
        started_at=result.started_at.isoformat(),
        remaining_minutes=result.remaining_minutes,
        daily_limit_minutes=result.daily_limit_minutes,
    )


def _heartbeat_response(result: HeartbeatResult) -> JSONResponse:
    payload = {
        "session_id": result.session_id,
        "elapsed_seconds": result.elapsed_seconds,
        "remaining_minutes": result.remaining_minutes,
        "limit_reached": result.limit_reached,
    }
    if result.limit_reached:
        payload["message"] = LIMIT_REACHED_MESSAGE
        return JSONResponse(status_code=403, content=payload)
    return JSONResponse(status_code=200, content=payload)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(WatchBudgetError)
    async def handle_domain_error(request: Request, exc: WatchBudgetError) -> JSONResponse:
        if isinstance(exc, ServerError):
            logger.error(
                "%s %s failed (session=%s): %s",
                request.method, request.url.path, exc.session_id, exc,
            )
        else:
            logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", ""), "type": err.get("type", "")}
            for err in exc.errors()
        ]
        logger.info("%s %s -> 400: %d validation error(s)", request.method, request.url.path, len(details))
        payload = ValidationError().to_payload()
        payload["details"] = details
        return JSONResponse(status_code=400, content=payload)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content=ServerError().to_payload())


def main() -> None:
    """Entry point for running the API server standalone."""
    from watchbudget.config.settings import load_settings

    settings = load_settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
