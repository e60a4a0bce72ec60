"""FastAPI application entrypoint.

Serve from ``backend/`` with ``uvicorn app.main:app``; the lifespan starts the
scheduled deletion sweeps.
"""

import asyncio
from contextlib import asynccontextmanager, suppress
import logging

from fastapi import FastAPI
from sqlalchemy import text

from app.config import get_settings
from app.db.session import SessionLocal
from app.services.deletion_jobs import run_auto_delete_sweep, run_periodically, run_server_cleanup_job

logger = logging.getLogger(__name__)


def _check_database() -> None:
    """Prime the DB connection at process start."""

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database warm-up failed; continuing without startup check.")


@asynccontextmanager
async def lifespan(_: FastAPI):
    settings = get_settings()
    _check_database()
    tasks: list[asyncio.Task] = []
    if settings.enable_deletion_sweeps:
        tasks.append(
            asyncio.create_task(
                run_periodically(
                    run_auto_delete_sweep,
                    settings.auto_delete_sweep_interval_seconds,
                    name="auto_delete",
                )
            )
        )
        tasks.append(
            asyncio.create_task(
                run_periodically(
                    run_server_cleanup_job,
                    settings.server_cleanup_interval_seconds,
                    name="server_cleanup",
                )
            )
        )
    yield
    for task in tasks:
        task.cancel()
    for task in tasks:
        with suppress(asyncio.CancelledError):
            await task


app = FastAPI(title=get_settings().app_name, version="0.1.0", lifespan=lifespan)


@app.get("/health")
def health() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}
