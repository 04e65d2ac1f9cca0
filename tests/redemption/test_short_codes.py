from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from tests.fakes import FakeSessionFactory, InMemoryCache
from voucher_redemption.db.models.short_codes import StaticShortCode
from voucher_redemption.redemption import short_codes
from voucher_redemption.redemption.constants import SHORT_CODE_ALPHABET, SHORT_CODE_LENGTH
from voucher_redemption.redemption.errors import ShortCodeConflictError
from voucher_redemption.redemption.types import ShortCodeType

UTC = timezone.utc


def _resolver(cache: InMemoryCache) -> short_codes.ShortCodeResolver:
    return short_codes.ShortCodeResolver(
        cache,
        session_factory=FakeSessionFactory(),
        dynamic_ttl_seconds=300,
    )


def test_normalize_and_validate_short_codes() -> None:
    assert short_codes.normalize_short_code(" abcd-2345 ") == "ABCD2345"
    assert short_codes.is_valid_short_code("ABCD2345") is True
    assert short_codes.is_valid_short_code("ABC") is False
    assert short_codes.is_valid_short_code("ABCD0O11") is False


def test_generate_short_code_uses_unambiguous_alphabet() -> None:
    code = short_codes.generate_short_code()
    assert len(code) == SHORT_CODE_LENGTH
    assert set(code) <= set(SHORT_CODE_ALPHABET)


@pytest.mark.asyncio
async def test_dynamic_code_is_bound_to_customer_until_invalidated() -> None:
    cache = InMemoryCache()
    resolver = _resolver(cache)
    voucher_id = uuid4()
    customer_id = uuid4()
    now_utc = datetime.now(UTC)

    issued = await resolver.issue_dynamic(voucher_id=voucher_id, customer_id=customer_id, now_utc=now_utc)
    found = await resolver.lookup(issued.code.lower(), now_utc=now_utc)

    assert found is not None
    assert found.code_type is ShortCodeType.DYNAMIC
    assert found.voucher_id == voucher_id
    assert found.customer_id == customer_id
    assert cache.ttls[short_codes.short_code_key(issued.code)] == 300

    assert await resolver.invalidate(issued.code) is True
    assert await resolver.lookup(issued.code, now_utc=now_utc) is None


@pytest.mark.asyncio
async def test_lookup_ignores_expired_dynamic_entry() -> None:
    cache = InMemoryCache()
    resolver = _resolver(cache)
    now_utc = datetime.now(UTC)
    issued = await resolver.issue_dynamic(voucher_id=uuid4(), customer_id=uuid4(), now_utc=now_utc)

    assert await resolver.lookup(issued.code, now_utc=now_utc + timedelta(minutes=6)) is None


@pytest.mark.asyncio
async def test_lookup_falls_back_to_static_table_and_caches_it(monkeypatch) -> None:
    cache = InMemoryCache()
    voucher_id = uuid4()
    calls: list[str] = []

    async def _fake_get_by_code(session, code: str):
        del session
        calls.append(code)
        return StaticShortCode(code=code, voucher_id=voucher_id)

    monkeypatch.setattr(short_codes.ShortCodesRepo, "get_by_code", _fake_get_by_code)
    resolver = _resolver(cache)

    first = await resolver.lookup("SUMMER24")
    second = await resolver.lookup("SUMMER24")

    assert first is not None and second is not None
    assert first.code_type is ShortCodeType.STATIC
    assert first.customer_id is None
    assert second.voucher_id == voucher_id
    assert calls == ["SUMMER24"]
    assert cache.ttls[short_codes.short_code_key("SUMMER24")] == 3600


@pytest.mark.asyncio
async def test_invalidate_keeps_static_codes(monkeypatch) -> None:
    cache = InMemoryCache()

    async def _fake_get_by_code(session, code: str):
        del session
        return StaticShortCode(code=code, voucher_id=uuid4())

    monkeypatch.setattr(short_codes.ShortCodesRepo, "get_by_code", _fake_get_by_code)
    resolver = _resolver(cache)
    await resolver.lookup("SUMMER24")

    assert await resolver.invalidate("SUMMER24") is False
    assert short_codes.short_code_key("SUMMER24") in cache.values


@pytest.mark.asyncio
async def test_lookup_rejects_invalid_format_without_hitting_storage(monkeypatch) -> None:
    async def _unexpected(session, code: str):
        raise AssertionError("repository must not be queried")

    monkeypatch.setattr(short_codes.ShortCodesRepo, "get_by_code", _unexpected)

    assert await _resolver(InMemoryCache()).lookup("no") is None


@pytest.mark.asyncio
async def test_issue_static_custom_code_conflict(monkeypatch) -> None:
    async def _existing(session, code: str):
        del session
        return StaticShortCode(code=code, voucher_id=uuid4())

    monkeypatch.setattr(short_codes.ShortCodesRepo, "get_by_code", _existing)
    factory = FakeSessionFactory()

    with pytest.raises(ShortCodeConflictError):
        await _resolver(InMemoryCache()).issue_static(
            factory.session,
            voucher_id=uuid4(),
            created_by=uuid4(),
            custom_code="SUMMER24",
        )


@pytest.mark.asyncio
async def test_issue_static_rejects_invalid_custom_code() -> None:
    factory = FakeSessionFactory()
    with pytest.raises(ValueError):
        await _resolver(InMemoryCache()).issue_static(
            factory.session,
            voucher_id=uuid4(),
            created_by=None,
            custom_code="O0-I1",
        )


@pytest.mark.asyncio
async def test_issue_static_retries_after_insert_collision(monkeypatch) -> None:
    created: list[str] = []

    async def _missing(session, code: str):
        del session, code
        return None

    async def _create(session, *, short_code: StaticShortCode) -> StaticShortCode:
        del session
        if not created:
            created.append("collision")
            raise IntegrityError("INSERT INTO static_short_codes", {}, Exception("duplicate"))
        created.append(short_code.code)
        return short_code

    monkeypatch.setattr(short_codes.ShortCodesRepo, "get_by_code", _missing)
    monkeypatch.setattr(short_codes.ShortCodesRepo, "create", _create)
    factory = FakeSessionFactory()
    voucher_id = uuid4()

    info = await _resolver(InMemoryCache()).issue_static(
        factory.session,
        voucher_id=voucher_id,
        created_by=uuid4(),
    )

    assert info.code_type is ShortCodeType.STATIC
    assert info.voucher_id == voucher_id
    assert created == ["collision", info.code]


@pytest.mark.asyncio
async def test_dynamic_code_can_be_claimed_once_and_released() -> None:
    cache = InMemoryCache()
    resolver = _resolver(cache)
    now_utc = datetime.now(UTC)
    issued = await resolver.issue_dynamic(voucher_id=uuid4(), customer_id=uuid4(), now_utc=now_utc)

    claimed = await resolver.claim(issued.code)
    second_claim = await resolver.claim(issued.code)

    assert claimed is not None
    assert claimed.customer_id == issued.customer_id
    assert second_claim is None

    assert await resolver.release(claimed, now_utc=now_utc + timedelta(seconds=100)) is True
    assert cache.ttls[short_codes.short_code_key(issued.code)] == 200
    assert await resolver.claim(issued.code) is not None
    assert await resolver.release(claimed, now_utc=now_utc + timedelta(minutes=6)) is False
    assert short_codes.short_code_key(issued.code) not in cache.values
