from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    internal_api_token: str = Field(
        default="dev_internal_token_change_me",
        alias="INTERNAL_API_TOKEN",
    )
    internal_api_allowlist: str = Field(
        default="127.0.0.1/32,::1/128",
        alias="INTERNAL_API_ALLOWLIST",
    )
    internal_api_trusted_proxies: str = Field(default="", alias="INTERNAL_API_TRUSTED_PROXIES")

    database_url: str = Field(alias="DATABASE_URL")
    redis_url: str = Field(alias="REDIS_URL")

    celery_broker_url: str = Field(alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(alias="CELERY_RESULT_BACKEND")

    voucher_service_url: str = Field(default="http://voucher-service:8000", alias="VOUCHER_SERVICE_URL")
    provider_service_url: str = Field(
        default="http://provider-service:8000",
        alias="PROVIDER_SERVICE_URL",
    )
    service_api_token: str = Field(default="", alias="SERVICE_API_TOKEN")
    service_request_timeout_seconds: float = Field(
        default=3.0,
        alias="SERVICE_REQUEST_TIMEOUT_SECONDS",
    )

    redemption_jwt_public_key: str = Field(default="", alias="REDEMPTION_JWT_PUBLIC_KEY")
    redemption_jwt_private_key: str = Field(default="", alias="REDEMPTION_JWT_PRIVATE_KEY")
    redemption_jwt_algorithm: str = Field(default="ES256", alias="REDEMPTION_JWT_ALGORITHM")
    redemption_jwt_issuer: str = Field(default="voucher-redemption", alias="REDEMPTION_JWT_ISSUER")
    redemption_jwt_audience: str = Field(default="voucher-providers", alias="REDEMPTION_JWT_AUDIENCE")
    redemption_token_ttl_seconds: int = Field(default=86400, alias="REDEMPTION_TOKEN_TTL_SECONDS")
    dynamic_short_code_ttl_seconds: int = Field(default=300, alias="DYNAMIC_SHORT_CODE_TTL_SECONDS")
    redemption_stats_cache_ttl_seconds: int = Field(
        default=300,
        alias="REDEMPTION_STATS_CACHE_TTL_SECONDS",
    )
    default_language: str = Field(default="en", alias="DEFAULT_LANGUAGE")

    redemption_rate_limit_max_attempts: int = Field(
        default=30,
        alias="REDEMPTION_RATE_LIMIT_MAX_ATTEMPTS",
    )
    redemption_rate_limit_window_seconds: int = Field(
        default=60,
        alias="REDEMPTION_RATE_LIMIT_WINDOW_SECONDS",
    )

    fraud_check_timeout_seconds: float = Field(default=2.0, alias="FRAUD_CHECK_TIMEOUT_SECONDS")
    fraud_review_threshold: int = Field(default=70, alias="FRAUD_REVIEW_THRESHOLD")
    fraud_blocked_device_ids: str = Field(default="", alias="FRAUD_BLOCKED_DEVICE_IDS")
    fraud_alert_window_hours: int = Field(default=1, alias="FRAUD_ALERT_WINDOW_HOURS")
    fraud_alert_min_high_risk_cases: int = Field(
        default=10,
        alias="FRAUD_ALERT_MIN_HIGH_RISK_CASES",
    )

    retry_queue_ttl_seconds: int = Field(default=86400, alias="RETRY_QUEUE_TTL_SECONDS")
    retry_queue_max_attempts: int = Field(default=5, alias="RETRY_QUEUE_MAX_ATTEMPTS")
    retry_queue_backoff_max_seconds: int = Field(default=300, alias="RETRY_QUEUE_BACKOFF_MAX_SECONDS")
    retry_queue_batch_size: int = Field(default=100, alias="RETRY_QUEUE_BATCH_SIZE")

    ops_alert_webhook_url: str = Field(default="", alias="OPS_ALERT_WEBHOOK_URL")
    ops_alert_slack_webhook_url: str = Field(default="", alias="OPS_ALERT_SLACK_WEBHOOK_URL")
    ops_alert_pagerduty_events_url: str = Field(default="", alias="OPS_ALERT_PAGERDUTY_EVENTS_URL")
    ops_alert_pagerduty_routing_key: str = Field(
        default="",
        alias="OPS_ALERT_PAGERDUTY_ROUTING_KEY",
    )
    ops_alert_escalation_policy_json: str = Field(
        default="",
        alias="OPS_ALERT_ESCALATION_POLICY_JSON",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
