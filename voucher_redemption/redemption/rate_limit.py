from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog

from voucher_redemption.redemption.constants import RATE_LIMIT_KEY_PREFIX
from voucher_redemption.redemption.errors import RateLimitedError
from voucher_redemption.services.cache import CacheStore

logger = structlog.get_logger(__name__)


class RedemptionRateLimiter:
    def __init__(self, cache: CacheStore, *, max_attempts: int, window_seconds: int) -> None:
        self._cache = cache
        self._max_attempts = max(1, max_attempts)
        self._window_seconds = max(1, window_seconds)

    def _key(self, user_id: UUID, now_utc: datetime) -> str:
        window_start = int(now_utc.timestamp()) // self._window_seconds * self._window_seconds
        return f"{RATE_LIMIT_KEY_PREFIX}{user_id}:{window_start}"

    async def enforce(self, *, user_id: UUID, now_utc: datetime) -> None:
        count, ttl = await self._cache.incr_window(
            self._key(user_id, now_utc),
            window_seconds=self._window_seconds,
        )
        if count <= self._max_attempts:
            return
        logger.warning(
            "redemption_rate_limited",
            user_id=str(user_id),
            attempts=count,
            retry_after_seconds=ttl,
        )
        raise RateLimitedError(retry_after_seconds=ttl)
