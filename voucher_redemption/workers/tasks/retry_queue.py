from __future__ import annotations

from datetime import datetime, timezone

import structlog

from voucher_redemption.core.config import get_settings
from voucher_redemption.redemption.factory import get_retry_handlers, get_retry_queue
from voucher_redemption.services.alerts import send_ops_alert
from voucher_redemption.workers.asyncio_runner import run_async_job
from voucher_redemption.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


def _clamp_batch_size(value: int) -> int:
    return max(1, min(1000, int(value)))


async def run_retry_queue_drain_async(*, batch_size: int | None = None) -> dict[str, object]:
    settings = get_settings()
    resolved_batch_size = _clamp_batch_size(
        batch_size if batch_size is not None else settings.retry_queue_batch_size
    )
    summary, dead_lettered = await get_retry_queue().drain(
        get_retry_handlers(),
        now_utc=datetime.now(timezone.utc),
        batch_size=resolved_batch_size,
    )
    result: dict[str, object] = summary.as_dict()

    if dead_lettered:
        await send_ops_alert(
            event="redemption_retry_dead_lettered",
            payload={
                "dead_lettered": len(dead_lettered),
                "items": [
                    {
                        "key": item.key,
                        "operation": item.operation,
                        "attempt": item.attempt,
                        "last_error": item.last_error,
                    }
                    for item in dead_lettered
                ],
            },
        )
        logger.warning("retry_queue_drain_dead_lettered", **result)
    else:
        logger.info("retry_queue_drain_finished", **result)
    return result


@celery_app.task(name="voucher_redemption.workers.tasks.retry_queue.run_retry_queue_drain")
def run_retry_queue_drain() -> dict[str, object]:
    return run_async_job(run_retry_queue_drain_async())


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
celery_app.conf.beat_schedule.update(
    {
        "redemption-retry-queue-drain-every-30-seconds": {
            "task": "voucher_redemption.workers.tasks.retry_queue.run_retry_queue_drain",
            "schedule": 30.0,
            "options": {"queue": "q_normal"},
        },
    }
)
