from __future__ import annotations

from uuid import uuid4

import pytest

from tests.fakes import FakeSessionFactory, InMemoryCache
from voucher_redemption.redemption import queries as queries_module
from voucher_redemption.redemption.constants import provider_redemptions_cache_key, voucher_stats_cache_key
from voucher_redemption.redemption.queries import RedemptionQueryService


def _service(cache: InMemoryCache) -> RedemptionQueryService:
    return RedemptionQueryService(session_factory=FakeSessionFactory(), cache=cache, stats_ttl_seconds=120)


@pytest.mark.asyncio
async def test_provider_stats_are_cached_under_provider_key(monkeypatch) -> None:
    cache = InMemoryCache()
    provider_id = uuid4()
    voucher_id = uuid4()
    calls: list[str] = []

    async def _totals(session, *, provider_id):
        calls.append("totals")
        return 5, 3

    async def _top(session, *, provider_id, limit):
        calls.append("top")
        assert limit == 10
        return [(voucher_id, 5)]

    repo = queries_module.RedemptionsRepo
    monkeypatch.setattr(repo, "provider_totals", _totals)
    monkeypatch.setattr(repo, "top_vouchers_for_provider", _top)
    service = _service(cache)

    first = await service.provider_stats(provider_id)
    second = await service.provider_stats(provider_id)

    assert first == second
    assert first["total_redemptions"] == 5
    assert first["unique_customers"] == 3
    assert first["top_vouchers"] == [{"voucher_id": str(voucher_id), "redemptions": 5}]
    assert calls == ["totals", "top"]
    assert cache.ttls[provider_redemptions_cache_key(provider_id)] == 120


@pytest.mark.asyncio
async def test_voucher_stats_recomputed_after_invalidation(monkeypatch) -> None:
    cache = InMemoryCache()
    voucher_id = uuid4()
    totals = iter([(1, 1), (2, 2)])

    async def _totals(session, *, voucher_id):
        return next(totals)

    async def _counts_by(session, *, voucher_id, field):
        return {14: 1} if field == "hour" else {3: 1}

    repo = queries_module.RedemptionsRepo
    monkeypatch.setattr(repo, "voucher_totals", _totals)
    monkeypatch.setattr(repo, "voucher_counts_by", _counts_by)
    service = _service(cache)

    first = await service.voucher_stats(voucher_id)
    await cache.delete(voucher_stats_cache_key(voucher_id))
    second = await service.voucher_stats(voucher_id)

    assert first["total_redemptions"] == 1
    assert first["redemptions_by_hour"] == {"14": 1}
    assert first["redemptions_by_day_of_week"] == {"3": 1}
    assert second["total_redemptions"] == 2


@pytest.mark.asyncio
async def test_stats_fall_back_to_database_when_cache_is_down(monkeypatch) -> None:
    cache = InMemoryCache()
    cache.fail_on = {"get_json", "set_json"}

    async def _totals(session, *, provider_id):
        return 0, 0

    async def _top(session, *, provider_id, limit):
        return []

    repo = queries_module.RedemptionsRepo
    monkeypatch.setattr(repo, "provider_totals", _totals)
    monkeypatch.setattr(repo, "top_vouchers_for_provider", _top)

    stats = await _service(cache).provider_stats(uuid4())

    assert stats["total_redemptions"] == 0
    assert stats["top_vouchers"] == []


@pytest.mark.asyncio
async def test_list_redemptions_clamps_limit(monkeypatch) -> None:
    seen = {}

    async def _list(session, **filters):
        seen.update(filters)
        return []

    monkeypatch.setattr(queries_module.RedemptionsRepo, "list_redemptions", _list)
    customer_id = uuid4()

    await _service(InMemoryCache()).list_redemptions(customer_id=customer_id, limit=5000)

    assert seen == {"provider_id": None, "customer_id": customer_id, "voucher_id": None, "limit": 100}
