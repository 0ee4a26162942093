"""FastAPI application factory."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from racesync.api.routes import auto_sync, sync as sync_routes
from racesync.errors import NotFoundError, SyncInProgressError, ValidationError

logger = logging.getLogger(__name__)


def create_app(scheduler=None, initialize_scheduler: bool = True) -> FastAPI:
    """
    Build and return the FastAPI app.

    Args:
        scheduler: Prebuilt SyncScheduler (tests). When omitted, one is built
                   from settings at startup and its scraper client closed with the app.
        initialize_scheduler: Load the active configurations at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = scheduler is None
        if owned:
            from racesync.db.engine import get_engine
            from racesync.scheduler.jobs import build_scheduler

            app.state.scheduler = build_scheduler(get_engine())
        else:
            app.state.scheduler = scheduler

        if initialize_scheduler:
            try:
                await app.state.scheduler.initialize()
            except Exception:
                # Keep serving so /auto-sync/initialize can retry; status shows initialized=false
                logger.exception("Sync scheduler failed to initialize")

        yield

        await app.state.scheduler.shutdown()
        if owned:
            await app.state.scheduler.manager.client.aclose()

    app = FastAPI(
        title="Race Sync API",
        description="Scheduled USABMX/UCI event and news synchronization",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(SyncInProgressError)
    async def in_progress_handler(request: Request, exc: SyncInProgressError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])
    app.include_router(auto_sync.router, prefix="/auto-sync", tags=["auto-sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
