from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest

from tests.fakes import (
    PRIVATE_KEY_PEM,
    PUBLIC_KEY_PEM,
    FakeSessionFactory,
    FakeVoucherClient,
    InMemoryCache,
    InMemoryLedger,
    make_voucher,
)
from voucher_redemption.redemption import offline_sync
from voucher_redemption.redemption import short_codes as short_codes_module
from voucher_redemption.redemption.offline_sync import OfflineSyncService
from voucher_redemption.redemption.short_codes import ShortCodeResolver, short_code_key
from voucher_redemption.redemption.tokens import TokenIssuer, TokenVerifier
from voucher_redemption.redemption.types import Location, OfflineSyncItem

UTC = timezone.utc
NOW = datetime.now(UTC).replace(microsecond=0)


def _build(monkeypatch, **voucher_kwargs: object) -> SimpleNamespace:
    cache = InMemoryCache()
    ledger = InMemoryLedger()
    ledger.install(monkeypatch, offline_sync.RedemptionsRepo)

    async def _missing_static_code(session, code: str):
        del session, code
        return None

    monkeypatch.setattr(short_codes_module.ShortCodesRepo, "get_by_code", _missing_static_code)

    provider_id = uuid4()
    voucher = make_voucher(provider_id=provider_id, expires_at=NOW + timedelta(days=30), **voucher_kwargs)
    voucher_client = FakeVoucherClient([voucher])
    session_factory = FakeSessionFactory()
    short_codes = ShortCodeResolver(cache, session_factory=session_factory)
    service = OfflineSyncService(
        session_factory=session_factory,
        verifier=TokenVerifier(public_key=PUBLIC_KEY_PEM),
        short_codes=short_codes,
        voucher_client=voucher_client,
    )
    return SimpleNamespace(
        service=service,
        cache=cache,
        ledger=ledger,
        provider_id=provider_id,
        voucher=voucher,
        voucher_client=voucher_client,
        short_codes=short_codes,
    )


def _token(voucher_id: UUID, customer_id: UUID, *, issued_at: datetime = NOW, ttl_seconds: int = 3600) -> str:
    token, _ = TokenIssuer(private_key=PRIVATE_KEY_PEM).issue(
        voucher_id=voucher_id,
        customer_id=customer_id,
        ttl_seconds=ttl_seconds,
        now_utc=issued_at,
    )
    return token


@pytest.mark.asyncio
async def test_sync_records_offline_redemption_and_is_idempotent(monkeypatch) -> None:
    ctx = _build(monkeypatch)
    customer_id = uuid4()
    token = _token(ctx.voucher.id, customer_id)
    item = OfflineSyncItem(
        code=token,
        redeemed_at=NOW - timedelta(minutes=10),
        location=Location(latitude=40.4168, longitude=-3.7038),
        device_id="scanner-7",
    )

    first = await ctx.service.sync([item], provider_id=ctx.provider_id, now_utc=NOW)
    second = await ctx.service.sync([item], provider_id=ctx.provider_id, now_utc=NOW)

    assert first.errors == []
    assert len(first.synced_ids) == 1
    assert second.synced_ids == first.synced_ids
    assert len(ctx.ledger.rows) == 1
    row = ctx.ledger.rows[0]
    assert row.offline is True
    assert row.synced_at == NOW
    assert row.redeemed_at == NOW - timedelta(minutes=10)
    assert row.customer_id == customer_id
    assert row.latitude == 40.4168
    assert "sync_batch" in row.metadata_
    assert ctx.voucher_client.state_updates == []


@pytest.mark.asyncio
async def test_sync_accepts_token_redeemed_before_it_expired(monkeypatch) -> None:
    ctx = _build(monkeypatch)
    token = _token(ctx.voucher.id, uuid4(), issued_at=NOW - timedelta(hours=2), ttl_seconds=3600)

    result = await ctx.service.sync(
        [OfflineSyncItem(code=token, redeemed_at=NOW - timedelta(minutes=90))],
        provider_id=ctx.provider_id,
        now_utc=NOW,
    )

    assert result.errors == []
    assert len(result.synced_ids) == 1


@pytest.mark.asyncio
async def test_sync_rejects_token_redeemed_after_expiry(monkeypatch) -> None:
    ctx = _build(monkeypatch)
    token = _token(ctx.voucher.id, uuid4(), issued_at=NOW - timedelta(hours=2), ttl_seconds=3600)

    result = await ctx.service.sync(
        [OfflineSyncItem(code=token, redeemed_at=NOW - timedelta(minutes=30))],
        provider_id=ctx.provider_id,
        now_utc=NOW,
    )

    assert result.synced_ids == []
    assert result.errors[0].code == token
    assert result.errors[0].error == "Redemption code had expired"


@pytest.mark.asyncio
async def test_sync_continues_past_failing_items(monkeypatch) -> None:
    ctx = _build(monkeypatch)
    good = _token(ctx.voucher.id, uuid4())
    foreign = make_voucher(provider_id=uuid4(), expires_at=NOW + timedelta(days=1))
    ctx.voucher_client.vouchers[foreign.id] = foreign

    result = await ctx.service.sync(
        [
            OfflineSyncItem(code=_token(ctx.voucher.id, uuid4()), redeemed_at=NOW + timedelta(minutes=30)),
            OfflineSyncItem(code="ZZZZ9999", redeemed_at=NOW, customer_id=uuid4()),
            OfflineSyncItem(code=_token(foreign.id, uuid4()), redeemed_at=NOW),
            OfflineSyncItem(code=good, redeemed_at=NOW),
        ],
        provider_id=ctx.provider_id,
        now_utc=NOW,
    )

    assert len(result.synced_ids) == 1
    assert [error.error for error in result.errors] == [
        "Redemption time is in the future",
        "Short code not found",
        "Provider is not allowed to redeem this voucher",
    ]


@pytest.mark.asyncio
async def test_sync_static_short_code_needs_customer(monkeypatch) -> None:
    ctx = _build(monkeypatch)
    await ctx.cache.set_json(
        short_code_key("SUMMER24"),
        {"voucher_id": str(ctx.voucher.id), "type": "static", "customer_id": None, "expires_at": None},
    )
    customer_id = uuid4()

    result = await ctx.service.sync(
        [
            OfflineSyncItem(code="SUMMER24", redeemed_at=NOW),
            OfflineSyncItem(code="summer-24", redeemed_at=NOW, customer_id=customer_id),
        ],
        provider_id=ctx.provider_id,
        now_utc=NOW,
    )

    assert result.errors[0].error == "Customer identifier is required for this code"
    assert len(result.synced_ids) == 1
    assert ctx.ledger.rows[0].code == "SUMMER24"
    assert ctx.ledger.rows[0].customer_id == customer_id


@pytest.mark.asyncio
async def test_sync_invalidates_dynamic_short_code(monkeypatch) -> None:
    ctx = _build(monkeypatch)
    issued = await ctx.short_codes.issue_dynamic(
        voucher_id=ctx.voucher.id,
        customer_id=uuid4(),
        now_utc=NOW,
    )

    result = await ctx.service.sync(
        [OfflineSyncItem(code=issued.code, redeemed_at=NOW - timedelta(minutes=1))],
        provider_id=ctx.provider_id,
        now_utc=NOW,
    )

    assert len(result.synced_ids) == 1
    assert short_code_key(issued.code) not in ctx.cache.values


@pytest.mark.asyncio
async def test_sync_enforces_per_customer_limit(monkeypatch) -> None:
    ctx = _build(monkeypatch)
    customer_id = uuid4()

    result = await ctx.service.sync(
        [
            OfflineSyncItem(code=_token(ctx.voucher.id, customer_id), redeemed_at=NOW - timedelta(minutes=5)),
            OfflineSyncItem(code=_token(ctx.voucher.id, customer_id), redeemed_at=NOW - timedelta(minutes=4)),
        ],
        provider_id=ctx.provider_id,
        now_utc=NOW,
    )

    assert len(result.synced_ids) == 1
    assert result.errors[0].error == "Redemption limit exceeded"


@pytest.mark.asyncio
async def test_sync_reports_generic_failure_for_unexpected_errors(monkeypatch) -> None:
    ctx = _build(monkeypatch)

    async def _broken_get_voucher(voucher_id):
        raise ConnectionError("voucher service down")

    monkeypatch.setattr(ctx.voucher_client, "get_voucher", _broken_get_voucher)

    result = await ctx.service.sync(
        [OfflineSyncItem(code=_token(ctx.voucher.id, uuid4()), redeemed_at=NOW)],
        provider_id=ctx.provider_id,
        now_utc=NOW,
    )

    assert result.synced_ids == []
    assert result.errors[0].error == "Sync failed"


@pytest.mark.asyncio
async def test_resyncing_dynamic_code_batch_returns_stored_ids(monkeypatch) -> None:
    ctx = _build(monkeypatch)
    customer_id = uuid4()
    issued = await ctx.short_codes.issue_dynamic(
        voucher_id=ctx.voucher.id,
        customer_id=customer_id,
        now_utc=NOW,
    )
    batch = [OfflineSyncItem(code=issued.code, redeemed_at=NOW - timedelta(minutes=1))]

    first = await ctx.service.sync(batch, provider_id=ctx.provider_id, now_utc=NOW)
    second = await ctx.service.sync(batch, provider_id=ctx.provider_id, now_utc=NOW + timedelta(minutes=2))

    assert first.errors == []
    assert second.errors == []
    assert second.synced_ids == first.synced_ids
    assert len(ctx.ledger.rows) == 1
    assert ctx.ledger.rows[0].customer_id == customer_id


@pytest.mark.asyncio
async def test_sync_restores_dynamic_code_when_limit_rejects_it(monkeypatch) -> None:
    ctx = _build(monkeypatch)
    customer_id = uuid4()
    await ctx.service.sync(
        [OfflineSyncItem(code=_token(ctx.voucher.id, customer_id), redeemed_at=NOW - timedelta(minutes=5))],
        provider_id=ctx.provider_id,
        now_utc=NOW,
    )
    issued = await ctx.short_codes.issue_dynamic(
        voucher_id=ctx.voucher.id,
        customer_id=customer_id,
        now_utc=NOW,
    )

    result = await ctx.service.sync(
        [OfflineSyncItem(code=issued.code, redeemed_at=NOW - timedelta(minutes=1))],
        provider_id=ctx.provider_id,
        now_utc=NOW,
    )

    assert result.errors[0].error == "Redemption limit exceeded"
    assert short_code_key(issued.code) in ctx.cache.values
    assert len(ctx.ledger.rows) == 1
