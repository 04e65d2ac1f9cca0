from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voucher_redemption.clients.errors import ServiceUnavailableError
from voucher_redemption.clients.providers import ProviderServiceClient
from voucher_redemption.clients.vouchers import VoucherServiceClient
from voucher_redemption.db.models.redemptions import Redemption
from voucher_redemption.db.repo.redemptions_repo import RedemptionsRepo
from voucher_redemption.fraud.cases import FraudCaseService
from voucher_redemption.fraud.detection import FraudDetectionEngine
from voucher_redemption.fraud.types import FraudCheckResult, RedemptionAttempt
from voucher_redemption.redemption.codes import classify_code, resolve_code
from voucher_redemption.redemption.constants import (
    FRAUD_RETRY_KEY_PREFIX,
    VOUCHER_STATE_REDEEMED,
    VOUCHER_STATE_RETRY_KEY_PREFIX,
    provider_redemptions_cache_key,
    voucher_stats_cache_key,
)
from voucher_redemption.redemption.display import build_voucher_display, localize
from voucher_redemption.redemption.errors import (
    AlreadyRedeemedError,
    InvalidCodeError,
    InvalidProviderError,
    RedemptionError,
    RedemptionFailedError,
    VoucherNotFoundError,
)
from voucher_redemption.redemption.rate_limit import RedemptionRateLimiter
from voucher_redemption.redemption.short_codes import ShortCodeResolver, normalize_short_code
from voucher_redemption.redemption.tokens import TokenVerifier
from voucher_redemption.redemption.types import (
    CodeKind,
    ProviderSnapshot,
    RedemptionRequest,
    RedemptionResult,
    ResolvedCode,
    ShortCodeInfo,
    VoucherSnapshot,
)
from voucher_redemption.redemption.validation import (
    LimitCheckContext,
    VoucherCheckContext,
    ledger_write_attempts,
    run_limit_checks,
    run_voucher_checks,
)
from voucher_redemption.retry.handlers import FRAUD_CASE_CREATE_OPERATION, VOUCHER_STATE_UPDATE_OPERATION
from voucher_redemption.retry.payloads import fraud_case_payload, voucher_state_payload
from voucher_redemption.retry.queue import RetryQueue
from voucher_redemption.services.cache import CacheStore

logger = structlog.get_logger(__name__)


class RedemptionService:
    """Runs a single online redemption from code resolution to best-effort side effects.

    Everything up to the ledger insert either succeeds or rejects the attempt with a
    ``RedemptionError``. Once the row is committed the redemption stands: fraud case
    creation and voucher state propagation fall back to the retry queue, and cache
    invalidation failures are only logged.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheStore,
        verifier: TokenVerifier,
        short_codes: ShortCodeResolver,
        rate_limiter: RedemptionRateLimiter,
        fraud_engine: FraudDetectionEngine,
        retry_queue: RetryQueue,
        voucher_client: VoucherServiceClient,
        provider_client: ProviderServiceClient,
        default_language: str = "en",
        fraud_check_timeout_seconds: float = 2.0,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._verifier = verifier
        self._short_codes = short_codes
        self._rate_limiter = rate_limiter
        self._fraud_engine = fraud_engine
        self._retry_queue = retry_queue
        self._voucher_client = voucher_client
        self._provider_client = provider_client
        self._default_language = default_language
        self._fraud_check_timeout_seconds = fraud_check_timeout_seconds

    async def redeem(
        self,
        request: RedemptionRequest,
        *,
        now_utc: datetime | None = None,
    ) -> RedemptionResult:
        now = now_utc or datetime.now(timezone.utc)
        log = logger.bind(
            acting_user_id=str(request.acting_user_id),
            code_kind=classify_code(request.code).value,
            code_length=len(request.code),
        )
        log.info("redemption_transition", state="RECEIVED")

        stage = "rate_limit"
        try:
            await self._rate_limiter.enforce(user_id=request.acting_user_id, now_utc=now)

            stage = "provider_lookup"
            provider = await self._resolve_provider(request.acting_user_id)
            log = log.bind(provider_id=str(provider.id))

            stage = "code_resolution"
            resolved = await resolve_code(
                request.code,
                requested_customer_id=request.customer_id,
                verifier=self._verifier,
                short_codes=self._short_codes,
            )
            log = log.bind(voucher_id=str(resolved.voucher_id), customer_id=str(resolved.customer_id))
            log.info("redemption_transition", state="CODE_RESOLVED")

            stage = "voucher_lookup"
            voucher = await self._voucher_client.get_voucher(resolved.voucher_id)
            if voucher is None:
                raise VoucherNotFoundError

            stage = "voucher_validation"
            run_voucher_checks(
                VoucherCheckContext(voucher=voucher, provider_id=provider.id, checked_at=now)
            )
            log.info("redemption_transition", state="VOUCHER_VALIDATED")

            claimed_code: ShortCodeInfo | None = None
            if resolved.is_dynamic_short_code and resolved.short_code is not None:
                stage = "code_claim"
                claimed_code = await self._short_codes.claim(resolved.short_code.code)
                if claimed_code is None:
                    raise InvalidCodeError("Short code not found or expired")

            stage = "ledger_write"
            try:
                redemption = await self._record(
                    resolved=resolved,
                    voucher=voucher,
                    provider=provider,
                    request=request,
                    now_utc=now,
                )
            except Exception:
                if claimed_code is not None:
                    await self._release_short_code(claimed_code, now_utc=now)
                raise
        except RedemptionError as exc:
            log.info(
                "redemption_transition",
                state="REJECTED",
                stage=stage,
                error_code=exc.error_code,
            )
            raise
        except Exception as exc:
            log.exception("redemption_unexpected_failure", stage=stage)
            raise RedemptionFailedError from exc

        log = log.bind(redemption_id=str(redemption.id))
        log.info("redemption_transition", state="RECORDED")

        attempt = RedemptionAttempt(
            redemption_id=redemption.id,
            voucher_id=voucher.id,
            customer_id=resolved.customer_id,
            provider_id=provider.id,
            timestamp=now,
            location=request.location,
            device_id=request.device_id,
        )
        fraud_result = await self._score_fraud(attempt)
        if fraud_result is not None and fraud_result.flagged:
            await self._open_fraud_case(attempt, fraud_result, now_utc=now)
        log.info(
            "redemption_transition",
            state="FRAUD_SCORED",
            risk_score=fraud_result.risk_score if fraud_result is not None else None,
        )

        await self._propagate_state(attempt, request=request, now_utc=now)
        log.info("redemption_transition", state="STATE_PROPAGATED")

        await self._invalidate_caches(voucher_id=voucher.id, provider_id=provider.id)

        provider_name = await self._provider_display_name(voucher, language=request.language)
        log.info("redemption_transition", state="COMPLETED")
        return RedemptionResult(
            success=True,
            redemption_id=redemption.id,
            voucher_details=build_voucher_display(
                voucher,
                provider_name=provider_name,
                language=request.language,
                default_language=self._default_language,
            ),
        )

    async def _resolve_provider(self, acting_user_id: UUID) -> ProviderSnapshot:
        provider = await self._provider_client.get_provider_by_user(acting_user_id)
        if provider is None or not provider.active:
            raise InvalidProviderError("User is not an active provider")
        return provider

    async def _record(
        self,
        *,
        resolved: ResolvedCode,
        voucher: VoucherSnapshot,
        provider: ProviderSnapshot,
        request: RedemptionRequest,
        now_utc: datetime,
    ) -> Redemption:
        stored_code = (
            request.code.strip() if resolved.kind is CodeKind.JWT else normalize_short_code(request.code)
        )
        last_conflict: IntegrityError | None = None
        for write_attempt in range(1, ledger_write_attempts(voucher) + 1):
            try:
                async with self._session_factory.begin() as session:
                    customer_redemptions = await RedemptionsRepo.count_for_customer(
                        session,
                        voucher_id=voucher.id,
                        customer_id=resolved.customer_id,
                    )
                    voucher_redemptions = 0
                    if voucher.max_redemptions is not None:
                        voucher_redemptions = await RedemptionsRepo.count_for_voucher(
                            session,
                            voucher_id=voucher.id,
                        )
                    run_limit_checks(
                        LimitCheckContext(
                            voucher=voucher,
                            customer_id=resolved.customer_id,
                            customer_redemptions=customer_redemptions,
                            voucher_redemptions=voucher_redemptions,
                        )
                    )
                    logger.info(
                        "redemption_transition",
                        state="LIMITS_CHECKED",
                        voucher_id=str(voucher.id),
                        customer_id=str(resolved.customer_id),
                        customer_redemptions=customer_redemptions,
                    )
                    return await RedemptionsRepo.create(
                        session,
                        redemption=Redemption(
                            id=uuid4(),
                            voucher_id=voucher.id,
                            customer_id=resolved.customer_id,
                            provider_id=provider.id,
                            code=stored_code,
                            customer_sequence=customer_redemptions + 1,
                            redeemed_at=now_utc,
                            latitude=request.location.latitude if request.location else None,
                            longitude=request.location.longitude if request.location else None,
                            offline=request.offline,
                            device_id=request.device_id,
                            metadata_={"code_kind": resolved.kind.value},
                            created_at=now_utc,
                        ),
                    )
            except IntegrityError as exc:
                # A concurrent redemption took this sequence slot; recount and try the next one.
                last_conflict = exc
                logger.info(
                    "redemption_sequence_conflict",
                    voucher_id=str(voucher.id),
                    customer_id=str(resolved.customer_id),
                    write_attempt=write_attempt,
                )
        raise AlreadyRedeemedError from last_conflict

    async def _provider_display_name(self, voucher: VoucherSnapshot, *, language: str | None) -> str:
        try:
            provider = await self._provider_client.get_provider(voucher.provider_id)
        except ServiceUnavailableError as exc:
            logger.warning(
                "provider_name_lookup_failed",
                provider_id=str(voucher.provider_id),
                reason=exc.reason,
            )
            return ""
        if provider is None:
            return ""
        return localize(
            provider.business_name,
            language=language,
            default_language=self._default_language,
        )

    async def _score_fraud(self, attempt: RedemptionAttempt) -> FraudCheckResult | None:
        try:
            return await asyncio.wait_for(
                self._fraud_engine.check(attempt),
                timeout=self._fraud_check_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "fraud_check_timed_out",
                redemption_id=str(attempt.redemption_id),
                timeout_seconds=self._fraud_check_timeout_seconds,
            )
        except Exception:
            logger.exception("fraud_check_failed", redemption_id=str(attempt.redemption_id))
        return None

    async def _open_fraud_case(
        self,
        attempt: RedemptionAttempt,
        result: FraudCheckResult,
        *,
        now_utc: datetime,
    ) -> None:
        try:
            async with self._session_factory.begin() as session:
                await FraudCaseService.create_case(
                    session,
                    attempt=attempt,
                    result=result,
                    now_utc=now_utc,
                )
        except Exception as exc:
            logger.exception(
                "fraud_case_create_failed",
                redemption_id=str(attempt.redemption_id),
                risk_score=result.risk_score,
            )
            await self._enqueue_retry(
                f"{FRAUD_RETRY_KEY_PREFIX}{attempt.redemption_id}",
                operation=FRAUD_CASE_CREATE_OPERATION,
                payload=fraud_case_payload(attempt, result),
                error=exc,
                now_utc=now_utc,
            )

    async def _propagate_state(
        self,
        attempt: RedemptionAttempt,
        *,
        request: RedemptionRequest,
        now_utc: datetime,
    ) -> None:
        try:
            await self._voucher_client.update_voucher_state(
                attempt.voucher_id,
                state=VOUCHER_STATE_REDEEMED,
                redeemed_at=now_utc,
                redeemed_by=attempt.customer_id,
                location=request.location,
            )
        except Exception as exc:
            logger.exception(
                "voucher_state_update_failed",
                redemption_id=str(attempt.redemption_id),
                voucher_id=str(attempt.voucher_id),
            )
            await self._enqueue_retry(
                f"{VOUCHER_STATE_RETRY_KEY_PREFIX}{attempt.redemption_id}",
                operation=VOUCHER_STATE_UPDATE_OPERATION,
                payload=voucher_state_payload(
                    voucher_id=attempt.voucher_id,
                    state=VOUCHER_STATE_REDEEMED,
                    redeemed_at=now_utc,
                    redeemed_by=attempt.customer_id,
                    location=request.location,
                ),
                error=exc,
                now_utc=now_utc,
            )

    async def _enqueue_retry(
        self,
        key: str,
        *,
        operation: str,
        payload: dict[str, object],
        error: Exception,
        now_utc: datetime,
    ) -> None:
        try:
            await self._retry_queue.enqueue(
                key,
                operation=operation,
                payload=payload,
                last_error=f"{type(error).__name__}: {error}",
                now_utc=now_utc,
            )
        except Exception:
            logger.exception("retry_enqueue_failed", retry_key=key, operation=operation)

    async def _release_short_code(self, info: ShortCodeInfo, *, now_utc: datetime) -> None:
        try:
            restored = await self._short_codes.release(info, now_utc=now_utc)
        except Exception:
            logger.exception("short_code_release_failed", voucher_id=str(info.voucher_id))
            return
        logger.info("short_code_released", voucher_id=str(info.voucher_id), restored=restored)

    async def _invalidate_caches(self, *, voucher_id: UUID, provider_id: UUID) -> None:
        try:
            await self._cache.delete(
                voucher_stats_cache_key(voucher_id),
                provider_redemptions_cache_key(provider_id),
            )
        except Exception:
            logger.exception(
                "redemption_cache_invalidation_failed",
                voucher_id=str(voucher_id),
                provider_id=str(provider_id),
            )
