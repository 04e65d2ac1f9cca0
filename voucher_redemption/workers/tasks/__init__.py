from voucher_redemption.workers.tasks.fraud_observability import run_fraud_high_risk_alerts
from voucher_redemption.workers.tasks.retry_queue import run_retry_queue_drain

__all__ = [
    "run_fraud_high_risk_alerts",
    "run_retry_queue_drain",
]
