from celery import Celery

from voucher_redemption.core.config import get_settings
from voucher_redemption.core.logging import configure_logging

settings = get_settings()
configure_logging(settings.log_level, component="worker")

celery_app = Celery(
    "voucher_redemption",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "voucher_redemption.workers.tasks.retry_queue",
        "voucher_redemption.workers.tasks.fraud_observability",
    ],
)

celery_app.conf.update(
    task_default_queue="q_normal",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
)


@celery_app.task(name="voucher_redemption.workers.celery_app.ping")
def ping() -> str:
    return "pong"
