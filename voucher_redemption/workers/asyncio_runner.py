from __future__ import annotations

import asyncio
import time
from collections.abc import Coroutine
from typing import Any, TypeVar

import structlog

from voucher_redemption.db.session import dispose_engine

T = TypeVar("T")
logger = structlog.get_logger(__name__)


async def _run_job(job: Coroutine[Any, Any, T], *, job_name: str) -> T:
    # asyncio.run creates a new loop per task; pooled asyncpg connections are bound to the old one.
    await dispose_engine()
    started_at = time.monotonic()
    try:
        return await job
    except Exception:
        logger.exception("worker_job_failed", job_name=job_name)
        raise
    finally:
        await dispose_engine()
        logger.debug(
            "worker_job_finished",
            job_name=job_name,
            duration_ms=int((time.monotonic() - started_at) * 1000),
        )


def run_async_job(job: Coroutine[Any, Any, T]) -> T:
    job_name = getattr(job, "__qualname__", type(job).__name__)
    return asyncio.run(_run_job(job, job_name=job_name))
