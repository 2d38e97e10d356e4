# receiving_hub/main.py
# Receiving Hub - arrivals of supplier shipments, scanning and reconciliation
from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from receiving_hub.auth import CallerResolver, HeaderCallerResolver
from receiving_hub.database import Database
from receiving_hub.errors import register_error_handlers
from receiving_hub.logging_setup import setup_logging
from receiving_hub.routers.arrivals import router as arrivals_router
from receiving_hub.routers.statistics import router as statistics_router
from receiving_hub.settings import Settings, get_settings

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    caller_resolver: Optional[CallerResolver] = None,
) -> FastAPI:
    settings = settings or get_settings()
    log_path = setup_logging(settings)
    database = database or Database.from_settings(settings)

    # ---------------------------------------------------------
    # Lifespan: Database init/cleanup
    # ---------------------------------------------------------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        if not settings.is_production:
            # production schema is managed by migrations
            await database.create_all()
        logger.info("Receiving Hub %s started (%s), logging to %s", VERSION, settings.ENV, log_path)
        yield
        await database.dispose()
        logger.info("Receiving Hub stopped")

    app = FastAPI(
        title="Receiving Hub API",
        version=VERSION,
        description="Warehouse receiving - arrivals, scanning and discrepancy reconciliation",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db = database
    app.state.caller_resolver = caller_resolver or HeaderCallerResolver()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    @app.get("/health")
    async def health():
        """Health check endpoint with database status."""
        result = {"status": "ok", "version": VERSION}
        db_health = await app.state.db.check_health()
        result["database"] = db_health
        if db_health.get("status") != "healthy":
            result["status"] = "degraded"
        return result

    app.include_router(arrivals_router)
    app.include_router(statistics_router)
    return app


app = create_app()
