from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog

from voucher_redemption.core.config import get_settings
from voucher_redemption.db.repo.fraud_cases_repo import FraudCasesRepo
from voucher_redemption.db.session import SessionLocal
from voucher_redemption.fraud.constants import HIGH_RISK_LOG_SCORE
from voucher_redemption.services.alerts import send_ops_alert
from voucher_redemption.workers.asyncio_runner import run_async_job
from voucher_redemption.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


def _clamp_window_hours(value: int) -> int:
    return max(1, min(168, int(value)))


async def run_fraud_high_risk_alerts_async() -> dict[str, object]:
    settings = get_settings()
    now_utc = datetime.now(timezone.utc)
    window_hours = _clamp_window_hours(settings.fraud_alert_window_hours)
    since_utc = now_utc - timedelta(hours=window_hours)
    min_cases = max(1, int(settings.fraud_alert_min_high_risk_cases))

    async with SessionLocal.begin() as session:
        high_risk_cases = await FraudCasesRepo.count_high_risk_since(
            session,
            since_utc=since_utc,
            min_risk_score=HIGH_RISK_LOG_SCORE,
        )
        cases_by_status = await FraudCasesRepo.count_by_status_since(
            session,
            since_utc=since_utc,
        )

    spike_detected = high_risk_cases >= min_cases
    result: dict[str, object] = {
        "generated_at": now_utc.isoformat(),
        "window_hours": window_hours,
        "high_risk_cases": high_risk_cases,
        "cases_by_status": cases_by_status,
        "thresholds": {
            "min_high_risk_cases": min_cases,
            "min_risk_score": HIGH_RISK_LOG_SCORE,
        },
        "spike_detected": spike_detected,
    }

    if spike_detected:
        await send_ops_alert(event="fraud_high_risk_spike_detected", payload=result)
        logger.warning("fraud_high_risk_spike_detected", **result)
    else:
        logger.info("fraud_high_risk_alerts_ok", **result)
    return result


@celery_app.task(name="voucher_redemption.workers.tasks.fraud_observability.run_fraud_high_risk_alerts")
def run_fraud_high_risk_alerts() -> dict[str, object]:
    return run_async_job(run_fraud_high_risk_alerts_async())


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
celery_app.conf.beat_schedule.update(
    {
        "fraud-high-risk-alerts-every-15-minutes": {
            "task": "voucher_redemption.workers.tasks.fraud_observability.run_fraud_high_risk_alerts",
            "schedule": 900.0,
            "options": {"queue": "q_normal"},
        },
    }
)
