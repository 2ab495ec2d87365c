import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from consent_engine.config import settings
from consent_engine.database import Base, engine
from consent_engine.exception_handlers import register_exception_handlers
from consent_engine.middleware.logging import StructuredLoggingMiddleware, setup_structured_logging
from consent_engine.routes import admin, consents, cron
from consent_engine.scheduler import install_consent_jobs, scheduler

setup_structured_logging(settings.log_level, json_format=settings.log_json or settings.is_production)
logger = logging.getLogger("consent_engine")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.environment})")

    if settings.debug:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created (if not existing).")

    if settings.scheduler_enabled:
        install_consent_jobs(scheduler)
        scheduler.start()

    yield

    logger.info("Shutting down the application...")
    if scheduler.running:
        scheduler.shutdown(wait=False)
    await engine.dispose()


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Consent lifecycle engine: status, renewal, expiry warnings and auto-renewal",
        debug=settings.debug,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_middleware(StructuredLoggingMiddleware)
    register_exception_handlers(app)

    app.include_router(cron.router)
    app.include_router(consents.router)
    app.include_router(admin.router)

    @app.get("/health", tags=["Health"])
    async def health() -> dict:
        return {"status": "ok", "version": settings.app_version}

    if settings.debug:
        logger.info(f"Running in {settings.environment} mode")
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
