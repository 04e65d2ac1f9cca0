from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from tests.fakes import InMemoryCache
from voucher_redemption.redemption.errors import RateLimitedError
from voucher_redemption.redemption.rate_limit import RedemptionRateLimiter

UTC = timezone.utc


@pytest.mark.asyncio
async def test_rate_limiter_blocks_after_max_attempts_in_window() -> None:
    limiter = RedemptionRateLimiter(InMemoryCache(), max_attempts=2, window_seconds=60)
    user_id = uuid4()
    now_utc = datetime(2026, 4, 1, 12, 0, 10, tzinfo=UTC)

    await limiter.enforce(user_id=user_id, now_utc=now_utc)
    await limiter.enforce(user_id=user_id, now_utc=now_utc)
    with pytest.raises(RateLimitedError) as exc_info:
        await limiter.enforce(user_id=user_id, now_utc=now_utc)

    assert exc_info.value.error_code == "RATE_LIMITED"
    assert exc_info.value.retry_after_seconds == 60


@pytest.mark.asyncio
async def test_rate_limiter_uses_fixed_windows_per_user() -> None:
    limiter = RedemptionRateLimiter(InMemoryCache(), max_attempts=1, window_seconds=60)
    user_id = uuid4()

    await limiter.enforce(user_id=user_id, now_utc=datetime(2026, 4, 1, 12, 0, 10, tzinfo=UTC))
    await limiter.enforce(user_id=uuid4(), now_utc=datetime(2026, 4, 1, 12, 0, 20, tzinfo=UTC))
    await limiter.enforce(user_id=user_id, now_utc=datetime(2026, 4, 1, 12, 1, 5, tzinfo=UTC))
