from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voucher_redemption.clients.providers import ProviderServiceClient
from voucher_redemption.clients.vouchers import VoucherServiceClient
from voucher_redemption.redemption.errors import (
    InvalidProviderError,
    TokenSigningUnavailableError,
    VoucherNotFoundError,
)
from voucher_redemption.redemption.short_codes import ShortCodeResolver
from voucher_redemption.redemption.tokens import TokenIssuer
from voucher_redemption.redemption.types import IssuedRedemptionToken, ShortCodeInfo
from voucher_redemption.redemption.validation import (
    VoucherCheckContext,
    check_not_expired,
    check_provider_owns_voucher,
    check_published,
    run_voucher_checks,
)

logger = structlog.get_logger(__name__)


class RedemptionCodeIssuer:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        token_issuer: TokenIssuer,
        short_codes: ShortCodeResolver,
        voucher_client: VoucherServiceClient,
        provider_client: ProviderServiceClient,
        token_ttl_seconds: int,
    ) -> None:
        self._session_factory = session_factory
        self._token_issuer = token_issuer
        self._short_codes = short_codes
        self._voucher_client = voucher_client
        self._provider_client = provider_client
        self._token_ttl_seconds = token_ttl_seconds

    async def issue_for_customer(
        self,
        *,
        voucher_id: UUID,
        customer_id: UUID,
        now_utc: datetime | None = None,
    ) -> IssuedRedemptionToken:
        if not self._token_issuer.enabled:
            raise TokenSigningUnavailableError

        now = now_utc or datetime.now(timezone.utc)
        voucher = await self._voucher_client.get_voucher(voucher_id)
        if voucher is None:
            raise VoucherNotFoundError
        context = VoucherCheckContext(voucher=voucher, provider_id=voucher.provider_id, checked_at=now)
        run_voucher_checks(context, pipeline=(check_not_expired, check_published))

        ttl_seconds = self._token_ttl_seconds
        if voucher.expires_at is not None:
            ttl_seconds = max(1, min(ttl_seconds, int((voucher.expires_at - now).total_seconds())))
        token, expires_at = self._token_issuer.issue(
            voucher_id=voucher.id,
            customer_id=customer_id,
            ttl_seconds=ttl_seconds,
            now_utc=now,
        )
        short_code = await self._short_codes.issue_dynamic(
            voucher_id=voucher.id,
            customer_id=customer_id,
            now_utc=now,
        )
        logger.info(
            "redemption_code_issued",
            voucher_id=str(voucher.id),
            customer_id=str(customer_id),
            token_expires_at=expires_at.isoformat(),
        )
        return IssuedRedemptionToken(
            token=token,
            expires_at=expires_at,
            short_code=short_code.code,
            short_code_expires_at=short_code.expires_at or expires_at,
        )

    async def create_static_code(
        self,
        *,
        acting_user_id: UUID,
        voucher_id: UUID,
        custom_code: str | None = None,
        now_utc: datetime | None = None,
    ) -> ShortCodeInfo:
        now = now_utc or datetime.now(timezone.utc)
        provider = await self._provider_client.get_provider_by_user(acting_user_id)
        if provider is None or not provider.active:
            raise InvalidProviderError("User is not an active provider")

        voucher = await self._voucher_client.get_voucher(voucher_id)
        if voucher is None:
            raise VoucherNotFoundError
        run_voucher_checks(
            VoucherCheckContext(voucher=voucher, provider_id=provider.id, checked_at=now),
            pipeline=(check_not_expired, check_provider_owns_voucher),
        )

        async with self._session_factory.begin() as session:
            info = await self._short_codes.issue_static(
                session,
                voucher_id=voucher.id,
                created_by=acting_user_id,
                custom_code=custom_code,
            )
        logger.info(
            "static_short_code_created",
            voucher_id=str(voucher.id),
            provider_id=str(provider.id),
            custom=custom_code is not None,
        )
        return info
