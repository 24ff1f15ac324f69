"""fastinghero FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from fastinghero.api import health, sos
from fastinghero.core.background import BackgroundRunner
from fastinghero.core.clock import system_clock
from fastinghero.core.config import settings
from fastinghero.core.errors import RescueError
from fastinghero.db.session import SessionLocal
from fastinghero.services.ai_service import CravingCoach
from fastinghero.services.directory_service import SqlFastDirectory, SqlTribeDirectory
from fastinghero.services.escalation import EscalationSweeper, SweeperScheduler
from fastinghero.services.push_service import HttpPushGateway, LogOnlyPushGateway, PushGateway
from fastinghero.services.rescue_engine import RescueEngine
from fastinghero.services.sql_sos_store import SqlAlchemySosStore

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def build_push_gateway() -> PushGateway:
    if not settings.push_gateway_url:
        logger.info("No push gateway configured; notifications are logged only")
        return LogOnlyPushGateway()
    return HttpPushGateway(settings.push_gateway_url, settings.push_api_key, settings.push_timeout_seconds)


def build_rescue_engine(session_factory: sessionmaker, runner: BackgroundRunner) -> RescueEngine:
    """Wire the engine against the database and the configured providers."""
    return RescueEngine(
        store=SqlAlchemySosStore(session_factory),
        fasts=SqlFastDirectory(session_factory),
        tribes=SqlTribeDirectory(session_factory),
        push=build_push_gateway(),
        coach=CravingCoach(settings.ai_provider),
        runner=runner,
        clock=system_clock,
        llm_reply_wait_seconds=settings.llm_reply_wait_seconds,
    )


def build_sweeper(engine: RescueEngine) -> SweeperScheduler:
    expire_after = timedelta(hours=settings.flare_expiry_hours) if settings.flare_expiry_hours > 0 else None
    sweeper = EscalationSweeper(engine.store, engine.push, engine.clock, expire_after=expire_after)
    return SweeperScheduler(
        sweeper,
        interval_seconds=settings.sweeper_interval_seconds,
        tick_timeout_seconds=settings.background_timeout_seconds,
    )


async def rescue_error_handler(request: Request, exc: RescueError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(rescue_engine: RescueEngine | None = None, start_sweeper: bool | None = None) -> FastAPI:
    """Build the app. Tests inject their own engine and usually keep the sweeper off."""
    run_sweeper = settings.sweeper_enabled if start_sweeper is None else start_sweeper

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_runner = None
        engine = rescue_engine
        if engine is None:
            owned_runner = BackgroundRunner(settings.background_workers, settings.background_timeout_seconds)
            engine = build_rescue_engine(SessionLocal, owned_runner)
        app.state.rescue_engine = engine

        sweeper = build_sweeper(engine) if run_sweeper else None
        if sweeper is not None:
            sweeper.start()
        app.state.sweeper = sweeper
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.stop()
            if owned_runner is not None:
                owned_runner.shutdown(settings.shutdown_grace_seconds)
            elif not engine.runner.drain(settings.shutdown_grace_seconds):
                logger.warning("Background tasks still running at shutdown")

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.add_exception_handler(RescueError, rescue_error_handler)

    app.include_router(health.router)
    app.include_router(sos.router, prefix=settings.api_prefix)
    app.include_router(sos.preferences_router, prefix=settings.api_prefix)
    return app


app = create_app()
