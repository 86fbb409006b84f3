from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import settings
from .routers import comments, moderation, notifications, posts, reports, reputation, system
from .verification.errors import VerificationError

load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

_STARTUP_COMPLETE = False


def run_migrations() -> None:
    logger.info("run_migrations: Starting...")
    try:
        alembic_cfg = _alembic_config()

        from alembic.runtime.migration import MigrationContext
        from alembic.script import ScriptDirectory

        from .db import engine

        try:
            with engine.connect() as connection:
                context = MigrationContext.configure(connection)
                current_rev = context.get_current_revision()
                head = ScriptDirectory.from_config(alembic_cfg).get_current_head()

                if current_rev == head:
                    logger.info(f"Database is up to date (revision: {current_rev}), skipping migrations.")
                    return

                logger.info(f"Current revision: {current_rev}, Target revision: {head}. Running migrations...")
        finally:
            # Ensure connection is closed before calling command.upgrade
            engine.dispose()

        command.upgrade(alembic_cfg, "head")
        logger.info("run_migrations: Completed successfully.")
    except Exception as e:
        logger.error(f"run_migrations: Error occurred: {e}", exc_info=True)
        raise


def _alembic_config() -> Config:
    base_dir = Path(__file__).resolve().parent.parent
    cfg = Config(str(base_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(base_dir / "alembic"))
    return cfg


def run_startup_tasks() -> None:
    global _STARTUP_COMPLETE
    if _STARTUP_COMPLETE:
        logger.info("run_startup_tasks: Already completed, skipping.")
        return
    try:
        if settings.RUN_MIGRATIONS:
            run_migrations()
        else:
            logger.info("run_startup_tasks: RUN_MIGRATIONS disabled, skipping migrations.")
        _STARTUP_COMPLETE = True
        logger.info("Startup tasks completed.")
    except Exception as e:
        logger.error(f"Startup tasks failed: {e}", exc_info=True)
        raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    # Run startup tasks synchronously - server won't start until these complete
    run_startup_tasks()
    logger.info("Track ID API server ready")
    yield
    logger.info("Shutting down application...")


app = FastAPI(
    title="Track ID API",
    version="1.0.0",
    description="Community track identification with moderator verification",
    lifespan=lifespan,
)

# CORS Configuration - restrict to specific origins
# In production, set CORS_ORIGINS environment variable to comma-separated list of allowed origins
cors_origins_str = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost")
if cors_origins_str == "*":
    logger.warning(
        "CORS is configured to allow all origins. "
        "This is insecure for production. Set CORS_ORIGINS to specific domains."
    )
cors_origins = [origin.strip() for origin in cors_origins_str.split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
    max_age=600,  # Cache preflight requests for 10 minutes
)


@app.exception_handler(VerificationError)
async def verification_error_handler(request: Request, exc: VerificationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Include all routers
app.include_router(system.router)
app.include_router(posts.router)
app.include_router(comments.router)
app.include_router(moderation.router)
app.include_router(reports.router)
app.include_router(reputation.router)
app.include_router(notifications.router)
