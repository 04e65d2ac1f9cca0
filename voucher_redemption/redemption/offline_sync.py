from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voucher_redemption.clients.vouchers import VoucherServiceClient
from voucher_redemption.db.models.redemptions import Redemption
from voucher_redemption.db.repo.redemptions_repo import RedemptionsRepo
from voucher_redemption.redemption.codes import classify_code
from voucher_redemption.redemption.constants import OFFLINE_SYNC_MAX_CLOCK_SKEW
from voucher_redemption.redemption.errors import (
    AlreadyRedeemedError,
    InvalidCodeError,
    MissingCustomerError,
    RedemptionError,
    VoucherExpiredError,
    VoucherNotFoundError,
)
from voucher_redemption.redemption.short_codes import ShortCodeResolver, normalize_short_code
from voucher_redemption.redemption.tokens import TokenError, TokenVerifier
from voucher_redemption.redemption.types import (
    CodeKind,
    OfflineSyncItem,
    ShortCodeInfo,
    ShortCodeType,
    SyncError,
    SyncResult,
    VoucherSnapshot,
)
from voucher_redemption.redemption.validation import (
    OFFLINE_VOUCHER_VALIDATION_PIPELINE,
    LimitCheckContext,
    VoucherCheckContext,
    check_customer_limit,
    ledger_write_attempts,
    run_limit_checks,
    run_voucher_checks,
)

logger = structlog.get_logger(__name__)

SYNC_LIMIT_EXCEEDED_MESSAGE = "Redemption limit exceeded"
SYNC_GENERIC_FAILURE_MESSAGE = "Sync failed"


class OfflineSyncService:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        verifier: TokenVerifier,
        short_codes: ShortCodeResolver,
        voucher_client: VoucherServiceClient,
    ) -> None:
        self._session_factory = session_factory
        self._verifier = verifier
        self._short_codes = short_codes
        self._voucher_client = voucher_client

    async def sync(
        self,
        items: Sequence[OfflineSyncItem],
        *,
        provider_id: UUID,
        now_utc: datetime | None = None,
    ) -> SyncResult:
        now = now_utc or datetime.now(timezone.utc)
        batch_id = uuid4()
        result = SyncResult()

        for index, item in enumerate(items):
            try:
                redemption_id = await self._sync_item(
                    item,
                    provider_id=provider_id,
                    now_utc=now,
                    batch_id=batch_id,
                )
            except RedemptionError as exc:
                logger.info(
                    "offline_sync_item_rejected",
                    sync_batch=str(batch_id),
                    item_index=index,
                    error_code=exc.error_code,
                )
                result.errors.append(SyncError(code=item.code, error=exc.message))
                continue
            except Exception:
                logger.exception(
                    "offline_sync_item_failed",
                    sync_batch=str(batch_id),
                    item_index=index,
                )
                result.errors.append(SyncError(code=item.code, error=SYNC_GENERIC_FAILURE_MESSAGE))
                continue
            result.synced_ids.append(redemption_id)

        logger.info(
            "offline_sync_completed",
            sync_batch=str(batch_id),
            provider_id=str(provider_id),
            items_total=len(items),
            synced_total=len(result.synced_ids),
            failed_total=len(result.errors),
        )
        return result

    async def _sync_item(
        self,
        item: OfflineSyncItem,
        *,
        provider_id: UUID,
        now_utc: datetime,
        batch_id: UUID,
    ) -> UUID:
        redeemed_at = item.redeemed_at
        if redeemed_at.tzinfo is None:
            redeemed_at = redeemed_at.replace(tzinfo=timezone.utc)
        if redeemed_at > now_utc + OFFLINE_SYNC_MAX_CLOCK_SKEW:
            raise InvalidCodeError("Redemption time is in the future")

        kind = classify_code(item.code)
        stored_code = item.code.strip() if kind is CodeKind.JWT else normalize_short_code(item.code)

        # A batch replayed after its dynamic codes were consumed must still resolve to the stored rows.
        async with self._session_factory() as session:
            existing = await self._find_synced(
                session,
                kind=kind,
                code=stored_code,
                customer_id=item.customer_id,
                redeemed_at=redeemed_at,
            )
        if existing is not None:
            logger.info(
                "offline_sync_item_already_synced",
                sync_batch=str(batch_id),
                redemption_id=str(existing.id),
            )
            return existing.id

        dynamic_code: ShortCodeInfo | None = None
        if kind is CodeKind.JWT:
            try:
                claims = self._verifier.verify(stored_code, verify_expiry=False)
            except TokenError as exc:
                raise InvalidCodeError from exc
            if redeemed_at > claims.expires_at:
                raise VoucherExpiredError("Redemption code had expired")
            voucher_id = claims.voucher_id
            customer_id = claims.customer_id
        else:
            info = await self._short_codes.lookup(stored_code, now_utc=now_utc)
            if info is None:
                raise InvalidCodeError("Short code not found")
            customer_id = info.customer_id or item.customer_id
            if customer_id is None:
                raise MissingCustomerError
            voucher_id = info.voucher_id
            if info.code_type is ShortCodeType.DYNAMIC:
                dynamic_code = info

        voucher = await self._voucher_client.get_voucher(voucher_id)
        if voucher is None:
            raise VoucherNotFoundError
        run_voucher_checks(
            VoucherCheckContext(voucher=voucher, provider_id=provider_id, checked_at=redeemed_at),
            pipeline=OFFLINE_VOUCHER_VALIDATION_PIPELINE,
        )

        if dynamic_code is not None:
            claimed = await self._short_codes.claim(dynamic_code.code)
            if claimed is None:
                raise InvalidCodeError("Short code not found")
            dynamic_code = claimed

        try:
            return await self._insert(
                item,
                kind=kind,
                stored_code=stored_code,
                voucher=voucher,
                customer_id=customer_id,
                provider_id=provider_id,
                redeemed_at=redeemed_at,
                now_utc=now_utc,
                batch_id=batch_id,
            )
        except Exception:
            if dynamic_code is not None:
                await self._release_short_code(dynamic_code, now_utc=now_utc)
            raise

    async def _insert(
        self,
        item: OfflineSyncItem,
        *,
        kind: CodeKind,
        stored_code: str,
        voucher: VoucherSnapshot,
        customer_id: UUID,
        provider_id: UUID,
        redeemed_at: datetime,
        now_utc: datetime,
        batch_id: UUID,
    ) -> UUID:
        last_conflict: IntegrityError | None = None
        for write_attempt in range(1, ledger_write_attempts(voucher) + 1):
            try:
                async with self._session_factory.begin() as session:
                    existing = await self._find_synced(
                        session,
                        kind=kind,
                        code=stored_code,
                        customer_id=customer_id,
                        redeemed_at=redeemed_at,
                    )
                    if existing is not None:
                        logger.info(
                            "offline_sync_item_already_synced",
                            sync_batch=str(batch_id),
                            redemption_id=str(existing.id),
                        )
                        return existing.id

                    customer_redemptions = await RedemptionsRepo.count_for_customer(
                        session,
                        voucher_id=voucher.id,
                        customer_id=customer_id,
                    )
                    run_limit_checks(
                        LimitCheckContext(
                            voucher=voucher,
                            customer_id=customer_id,
                            customer_redemptions=customer_redemptions,
                            voucher_redemptions=0,
                        ),
                        pipeline=(check_customer_limit,),
                    )
                    redemption = await RedemptionsRepo.create(
                        session,
                        redemption=Redemption(
                            id=uuid4(),
                            voucher_id=voucher.id,
                            customer_id=customer_id,
                            provider_id=provider_id,
                            code=stored_code,
                            customer_sequence=customer_redemptions + 1,
                            redeemed_at=redeemed_at,
                            latitude=item.location.latitude if item.location else None,
                            longitude=item.location.longitude if item.location else None,
                            offline=True,
                            synced_at=now_utc,
                            device_id=item.device_id,
                            metadata_={"code_kind": kind.value, "sync_batch": str(batch_id)},
                            created_at=now_utc,
                        ),
                    )
                    return redemption.id
            except AlreadyRedeemedError as exc:
                raise AlreadyRedeemedError(SYNC_LIMIT_EXCEEDED_MESSAGE) from exc
            except IntegrityError as exc:
                last_conflict = exc
                logger.info(
                    "offline_sync_sequence_conflict",
                    sync_batch=str(batch_id),
                    voucher_id=str(voucher.id),
                    write_attempt=write_attempt,
                )
        raise AlreadyRedeemedError(SYNC_LIMIT_EXCEEDED_MESSAGE) from last_conflict

    @staticmethod
    async def _find_synced(
        session: AsyncSession,
        *,
        kind: CodeKind,
        code: str,
        customer_id: UUID | None,
        redeemed_at: datetime,
    ) -> Redemption | None:
        if kind is CodeKind.JWT:
            return await RedemptionsRepo.get_by_code(session, code=code)
        return await RedemptionsRepo.get_offline_duplicate(
            session,
            code=code,
            customer_id=customer_id,
            redeemed_at=redeemed_at,
        )

    async def _release_short_code(self, info: ShortCodeInfo, *, now_utc: datetime) -> None:
        try:
            await self._short_codes.release(info, now_utc=now_utc)
        except Exception:
            logger.exception("short_code_release_failed", voucher_id=str(info.voucher_id))
