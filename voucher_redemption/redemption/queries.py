"""Read side of the redemption ledger: lookups, listings and cached aggregates."""

from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voucher_redemption.db.models.redemptions import Redemption
from voucher_redemption.db.repo.redemptions_repo import RedemptionsRepo
from voucher_redemption.redemption.constants import (
    PROVIDER_TOP_VOUCHERS_LIMIT,
    REDEMPTION_LIST_MAX_LIMIT,
    provider_redemptions_cache_key,
    voucher_stats_cache_key,
)
from voucher_redemption.services.cache import CacheStore

logger = structlog.get_logger(__name__)


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, REDEMPTION_LIST_MAX_LIMIT))


class RedemptionQueryService:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        cache: CacheStore,
        stats_ttl_seconds: int = 300,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._stats_ttl_seconds = stats_ttl_seconds

    async def get_redemption(self, redemption_id: UUID) -> Redemption | None:
        async with self._session_factory() as session:
            return await RedemptionsRepo.get_by_id(session, redemption_id)

    async def list_redemptions(
        self,
        *,
        provider_id: UUID | None = None,
        customer_id: UUID | None = None,
        voucher_id: UUID | None = None,
        limit: int = 50,
    ) -> list[Redemption]:
        async with self._session_factory() as session:
            return await RedemptionsRepo.list_redemptions(
                session,
                provider_id=provider_id,
                customer_id=customer_id,
                voucher_id=voucher_id,
                limit=_clamp_limit(limit),
            )

    async def provider_stats(self, provider_id: UUID) -> dict[str, Any]:
        key = provider_redemptions_cache_key(provider_id)
        cached = await self._read_cached(key)
        if cached is not None:
            return cached

        async with self._session_factory() as session:
            total, unique_customers = await RedemptionsRepo.provider_totals(
                session,
                provider_id=provider_id,
            )
            top_vouchers = await RedemptionsRepo.top_vouchers_for_provider(
                session,
                provider_id=provider_id,
                limit=PROVIDER_TOP_VOUCHERS_LIMIT,
            )
        stats = {
            "provider_id": str(provider_id),
            "total_redemptions": total,
            "unique_customers": unique_customers,
            "top_vouchers": [
                {"voucher_id": str(voucher_id), "redemptions": count}
                for voucher_id, count in top_vouchers
            ],
        }
        await self._write_cached(key, stats)
        return stats

    async def voucher_stats(self, voucher_id: UUID) -> dict[str, Any]:
        key = voucher_stats_cache_key(voucher_id)
        cached = await self._read_cached(key)
        if cached is not None:
            return cached

        async with self._session_factory() as session:
            total, unique_customers = await RedemptionsRepo.voucher_totals(
                session,
                voucher_id=voucher_id,
            )
            by_hour = await RedemptionsRepo.voucher_counts_by(session, voucher_id=voucher_id, field="hour")
            by_day = await RedemptionsRepo.voucher_counts_by(session, voucher_id=voucher_id, field="dow")
        # JSON object keys are strings; keep them that way on both the fresh and cached paths.
        stats = {
            "voucher_id": str(voucher_id),
            "total_redemptions": total,
            "unique_customers": unique_customers,
            "redemptions_by_hour": {str(hour): count for hour, count in sorted(by_hour.items())},
            "redemptions_by_day_of_week": {str(day): count for day, count in sorted(by_day.items())},
        }
        await self._write_cached(key, stats)
        return stats

    async def _read_cached(self, key: str) -> dict[str, Any] | None:
        try:
            cached = await self._cache.get_json(key)
        except Exception:
            logger.exception("redemption_stats_cache_read_failed", cache_key=key)
            return None
        return cached if isinstance(cached, dict) else None

    async def _write_cached(self, key: str, stats: dict[str, Any]) -> None:
        try:
            await self._cache.set_json(key, stats, ttl_seconds=self._stats_ttl_seconds)
        except Exception:
            logger.exception("redemption_stats_cache_write_failed", cache_key=key)
