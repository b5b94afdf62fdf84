"""FastAPI application bootstrap with router wiring."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from idea_importer.api.routers import health, imports
from idea_importer.core.config import Settings, get_settings
from idea_importer.db.base import Base
from idea_importer.db.session import engine as default_engine
from idea_importer.db.session import get_fresh_session
from idea_importer.services.import_coordinator import ImportCoordinator
from idea_importer.services.progress_tracker import create_progress_tracker
from idea_importer.services.record_sink import build_record_sink

logger = logging.getLogger(__name__)


def build_coordinator(settings: Settings) -> ImportCoordinator:
    """Wire the durable sink and optional Redis mirror from settings."""
    return ImportCoordinator(
        build_record_sink(settings, get_fresh_session),
        settings=settings,
        progress=create_progress_tracker(settings),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.create_tables:
        Base.metadata.create_all(bind=app.state.engine)
        logger.info("Ensured idea tables exist")
    yield


def create_app(
    coordinator: ImportCoordinator | None = None,
    *,
    db_engine: Engine | None = None,
) -> FastAPI:
    """Instantiate the FastAPI app and include top-level routers.

    Passing a ``coordinator`` skips table creation; the caller owns the
    record store in that case.
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.create_tables = coordinator is None
    app.state.coordinator = coordinator or build_coordinator(settings)
    app.state.engine = db_engine or default_engine

    logger.info(f"[CORS] Allowed origins: {settings.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(imports.router, prefix="/api", tags=["imports"])

    return app


app = create_app()
