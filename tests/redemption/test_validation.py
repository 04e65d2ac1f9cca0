from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from tests.fakes import make_voucher
from voucher_redemption.redemption.errors import (
    AlreadyRedeemedError,
    InvalidCodeError,
    InvalidProviderError,
    VoucherExpiredError,
)
from voucher_redemption.redemption.validation import (
    OFFLINE_VOUCHER_VALIDATION_PIPELINE,
    LimitCheckContext,
    VoucherCheckContext,
    run_limit_checks,
    run_voucher_checks,
)

UTC = timezone.utc
NOW = datetime(2026, 4, 1, 12, 0, tzinfo=UTC)


def test_expiry_is_reported_before_state_and_ownership() -> None:
    voucher = make_voucher(
        provider_id=uuid4(),
        state="DRAFT",
        expires_at=NOW - timedelta(minutes=1),
    )

    with pytest.raises(VoucherExpiredError):
        run_voucher_checks(VoucherCheckContext(voucher=voucher, provider_id=uuid4(), checked_at=NOW))


def test_unpublished_voucher_is_invalid_code() -> None:
    provider_id = uuid4()
    voucher = make_voucher(provider_id=provider_id, state="REDEEMED", expires_at=NOW + timedelta(days=1))

    with pytest.raises(InvalidCodeError):
        run_voucher_checks(VoucherCheckContext(voucher=voucher, provider_id=provider_id, checked_at=NOW))


def test_foreign_provider_is_rejected() -> None:
    voucher = make_voucher(provider_id=uuid4(), expires_at=NOW + timedelta(days=1))

    with pytest.raises(InvalidProviderError):
        run_voucher_checks(VoucherCheckContext(voucher=voucher, provider_id=uuid4(), checked_at=NOW))


def test_offline_pipeline_skips_published_state() -> None:
    provider_id = uuid4()
    voucher = make_voucher(provider_id=provider_id, state="REDEEMED")

    run_voucher_checks(
        VoucherCheckContext(voucher=voucher, provider_id=provider_id, checked_at=NOW),
        pipeline=OFFLINE_VOUCHER_VALIDATION_PIPELINE,
    )


def test_customer_limit_is_checked_before_aggregate_limit() -> None:
    voucher = make_voucher(provider_id=uuid4(), max_redemptions=5, max_redemptions_per_user=1)

    with pytest.raises(AlreadyRedeemedError) as exc_info:
        run_limit_checks(
            LimitCheckContext(
                voucher=voucher,
                customer_id=uuid4(),
                customer_redemptions=1,
                voucher_redemptions=5,
            )
        )
    assert exc_info.value.message == "Voucher redemption limit reached"


def test_aggregate_limit_reached() -> None:
    voucher = make_voucher(provider_id=uuid4(), max_redemptions=5, max_redemptions_per_user=2)

    with pytest.raises(AlreadyRedeemedError) as exc_info:
        run_limit_checks(
            LimitCheckContext(
                voucher=voucher,
                customer_id=uuid4(),
                customer_redemptions=1,
                voucher_redemptions=5,
            )
        )
    assert exc_info.value.message == "Voucher has no redemptions left"


def test_limits_pass_below_thresholds() -> None:
    voucher = make_voucher(provider_id=uuid4(), max_redemptions=None, max_redemptions_per_user=3)

    run_limit_checks(
        LimitCheckContext(
            voucher=voucher,
            customer_id=uuid4(),
            customer_redemptions=2,
            voucher_redemptions=1000,
        )
    )
