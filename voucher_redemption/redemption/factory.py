from __future__ import annotations

from functools import lru_cache

from voucher_redemption.clients.providers import ProviderServiceClient
from voucher_redemption.clients.vouchers import VoucherServiceClient
from voucher_redemption.core.config import get_settings
from voucher_redemption.db.session import SessionLocal
from voucher_redemption.fraud.detection import FraudDetectionEngine, FraudSignalStore, parse_blocked_device_ids
from voucher_redemption.redemption.issuance import RedemptionCodeIssuer
from voucher_redemption.redemption.offline import OfflineValidator
from voucher_redemption.redemption.offline_sync import OfflineSyncService
from voucher_redemption.redemption.queries import RedemptionQueryService
from voucher_redemption.redemption.rate_limit import RedemptionRateLimiter
from voucher_redemption.redemption.service import RedemptionService
from voucher_redemption.redemption.short_codes import ShortCodeResolver
from voucher_redemption.redemption.tokens import TokenIssuer, TokenVerifier
from voucher_redemption.retry.handlers import build_retry_handlers
from voucher_redemption.retry.queue import RetryHandler, RetryQueue
from voucher_redemption.services.cache import CacheStore


@lru_cache(maxsize=1)
def get_cache_store() -> CacheStore:
    return CacheStore()


@lru_cache(maxsize=1)
def get_token_verifier() -> TokenVerifier:
    settings = get_settings()
    return TokenVerifier(
        public_key=settings.redemption_jwt_public_key,
        algorithm=settings.redemption_jwt_algorithm,
        issuer=settings.redemption_jwt_issuer,
        audience=settings.redemption_jwt_audience,
    )


@lru_cache(maxsize=1)
def get_token_issuer() -> TokenIssuer:
    settings = get_settings()
    return TokenIssuer(
        private_key=settings.redemption_jwt_private_key,
        algorithm=settings.redemption_jwt_algorithm,
        issuer=settings.redemption_jwt_issuer,
        audience=settings.redemption_jwt_audience,
    )


@lru_cache(maxsize=1)
def get_offline_validator() -> OfflineValidator:
    return OfflineValidator(get_token_verifier())


@lru_cache(maxsize=1)
def get_short_code_resolver() -> ShortCodeResolver:
    return ShortCodeResolver(
        get_cache_store(),
        session_factory=SessionLocal,
        dynamic_ttl_seconds=get_settings().dynamic_short_code_ttl_seconds,
    )


@lru_cache(maxsize=1)
def get_voucher_client() -> VoucherServiceClient:
    settings = get_settings()
    return VoucherServiceClient(
        base_url=settings.voucher_service_url,
        service_token=settings.service_api_token,
        timeout_seconds=settings.service_request_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_provider_client() -> ProviderServiceClient:
    settings = get_settings()
    return ProviderServiceClient(
        base_url=settings.provider_service_url,
        service_token=settings.service_api_token,
        timeout_seconds=settings.service_request_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_fraud_engine() -> FraudDetectionEngine:
    settings = get_settings()
    store = FraudSignalStore(
        get_cache_store(),
        blocked_device_ids=parse_blocked_device_ids(settings.fraud_blocked_device_ids),
    )
    return FraudDetectionEngine(store, review_threshold=settings.fraud_review_threshold)


@lru_cache(maxsize=1)
def get_retry_queue() -> RetryQueue:
    settings = get_settings()
    return RetryQueue(
        get_cache_store(),
        ttl_seconds=settings.retry_queue_ttl_seconds,
        max_attempts=settings.retry_queue_max_attempts,
        backoff_max_seconds=settings.retry_queue_backoff_max_seconds,
    )


def get_retry_handlers() -> dict[str, RetryHandler]:
    return build_retry_handlers(session_factory=SessionLocal, voucher_client=get_voucher_client())


@lru_cache(maxsize=1)
def get_redemption_service() -> RedemptionService:
    settings = get_settings()
    return RedemptionService(
        session_factory=SessionLocal,
        cache=get_cache_store(),
        verifier=get_token_verifier(),
        short_codes=get_short_code_resolver(),
        rate_limiter=RedemptionRateLimiter(
            get_cache_store(),
            max_attempts=settings.redemption_rate_limit_max_attempts,
            window_seconds=settings.redemption_rate_limit_window_seconds,
        ),
        fraud_engine=get_fraud_engine(),
        retry_queue=get_retry_queue(),
        voucher_client=get_voucher_client(),
        provider_client=get_provider_client(),
        default_language=settings.default_language,
        fraud_check_timeout_seconds=settings.fraud_check_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_offline_sync_service() -> OfflineSyncService:
    return OfflineSyncService(
        session_factory=SessionLocal,
        verifier=get_token_verifier(),
        short_codes=get_short_code_resolver(),
        voucher_client=get_voucher_client(),
    )


@lru_cache(maxsize=1)
def get_code_issuer() -> RedemptionCodeIssuer:
    return RedemptionCodeIssuer(
        session_factory=SessionLocal,
        token_issuer=get_token_issuer(),
        short_codes=get_short_code_resolver(),
        voucher_client=get_voucher_client(),
        provider_client=get_provider_client(),
        token_ttl_seconds=get_settings().redemption_token_ttl_seconds,
    )


@lru_cache(maxsize=1)
def get_redemption_queries() -> RedemptionQueryService:
    return RedemptionQueryService(
        session_factory=SessionLocal,
        cache=get_cache_store(),
        stats_ttl_seconds=get_settings().redemption_stats_cache_ttl_seconds,
    )
