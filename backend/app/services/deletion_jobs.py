"""Scheduled sweeps for disappearing messages and server cleanup."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from time import perf_counter
from typing import Any

from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.schemas.deletion import CleanupResult, DeletionResult
from app.services.message_deletion import MessageDeletionService

logger = logging.getLogger(__name__)


def run_auto_delete_sweep(session_factory: Callable[[], Session] = SessionLocal, **service_kwargs: Any) -> DeletionResult:
    """Remove expired disappearing messages in a job-scoped DB session."""

    total_started = perf_counter()
    db = session_factory()
    try:
        result = MessageDeletionService(db, **service_kwargs).process_auto_delete()
        logger.info(
            "message_deletion.auto_delete_sweep deleted=%d warnings=%d total_ms=%.2f",
            result.deleted_count,
            len(result.warnings),
            (perf_counter() - total_started) * 1000.0,
        )
        return result
    except Exception:
        db.rollback()
        logger.exception(
            "message_deletion.auto_delete_sweep_failed elapsed_ms=%.2f",
            (perf_counter() - total_started) * 1000.0,
        )
        raise
    finally:
        db.close()


def run_server_cleanup_job(
    session_factory: Callable[[], Session] = SessionLocal,
    *,
    delete_orphaned: bool = True,
    delete_expired_auto_delete: bool = True,
    delete_old_soft_deleted: bool = True,
    soft_delete_retention_days: int | None = None,
    **service_kwargs: Any,
) -> CleanupResult:
    """Run the combined cleanup sweep in a job-scoped DB session."""

    total_started = perf_counter()
    db = session_factory()
    try:
        result = MessageDeletionService(db, **service_kwargs).server_cleanup(
            delete_orphaned=delete_orphaned,
            delete_expired_auto_delete=delete_expired_auto_delete,
            delete_old_soft_deleted=delete_old_soft_deleted,
            soft_delete_retention_days=soft_delete_retention_days,
        )
        logger.info(
            (
                "message_deletion.server_cleanup_timing orphaned=%d expired_auto_delete=%d "
                "old_soft_deleted=%d total=%d total_ms=%.2f"
            ),
            result.results.orphaned,
            result.results.expired_auto_delete,
            result.results.old_soft_deleted,
            result.deleted_count,
            (perf_counter() - total_started) * 1000.0,
        )
        return result
    except Exception:
        db.rollback()
        logger.exception(
            "message_deletion.server_cleanup_failed elapsed_ms=%.2f",
            (perf_counter() - total_started) * 1000.0,
        )
        raise
    finally:
        db.close()


async def run_periodically(job: Callable[[], Any], interval_seconds: float, *, name: str) -> None:
    """Run ``job`` in a worker thread every ``interval_seconds`` until cancelled.

    A failed run is logged and the loop keeps going; sweeps are idempotent so
    the next run picks up whatever the failed one left behind.
    """

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(job)
        except Exception:
            logger.exception("message_deletion.periodic_job_failed job=%s", name)
