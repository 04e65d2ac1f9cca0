from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import structlog

from voucher_redemption.redemption.constants import VOUCHER_STATE_PUBLISHED
from voucher_redemption.redemption.errors import (
    AlreadyRedeemedError,
    InvalidCodeError,
    InvalidProviderError,
    VoucherExpiredError,
)
from voucher_redemption.redemption.types import VoucherSnapshot

logger = structlog.get_logger(__name__)


@dataclass(slots=True, frozen=True)
class VoucherCheckContext:
    voucher: VoucherSnapshot
    provider_id: UUID
    checked_at: datetime


@dataclass(slots=True, frozen=True)
class LimitCheckContext:
    voucher: VoucherSnapshot
    customer_id: UUID
    customer_redemptions: int
    voucher_redemptions: int


VoucherCheck = Callable[[VoucherCheckContext], None]
LimitCheck = Callable[[LimitCheckContext], None]


def check_not_expired(context: VoucherCheckContext) -> None:
    expires_at = context.voucher.expires_at
    if expires_at is not None and expires_at <= context.checked_at:
        raise VoucherExpiredError


def check_published(context: VoucherCheckContext) -> None:
    if context.voucher.state != VOUCHER_STATE_PUBLISHED:
        raise InvalidCodeError("Voucher is not available for redemption")


def check_provider_owns_voucher(context: VoucherCheckContext) -> None:
    if context.voucher.provider_id == context.provider_id:
        return
    logger.warning(
        "redemption_provider_mismatch",
        voucher_id=str(context.voucher.id),
        voucher_provider_id=str(context.voucher.provider_id),
        provider_id=str(context.provider_id),
    )
    raise InvalidProviderError


def check_customer_limit(context: LimitCheckContext) -> None:
    if context.customer_redemptions >= context.voucher.max_redemptions_per_user:
        raise AlreadyRedeemedError


def check_voucher_limit(context: LimitCheckContext) -> None:
    max_redemptions = context.voucher.max_redemptions
    if max_redemptions is not None and context.voucher_redemptions >= max_redemptions:
        raise AlreadyRedeemedError("Voucher has no redemptions left")


# Order matters: expiry is reported before state or ownership problems.
VOUCHER_VALIDATION_PIPELINE: tuple[VoucherCheck, ...] = (
    check_not_expired,
    check_published,
    check_provider_owns_voucher,
)
OFFLINE_VOUCHER_VALIDATION_PIPELINE: tuple[VoucherCheck, ...] = (
    check_not_expired,
    check_provider_owns_voucher,
)
LIMIT_VALIDATION_PIPELINE: tuple[LimitCheck, ...] = (
    check_customer_limit,
    check_voucher_limit,
)


def run_voucher_checks(
    context: VoucherCheckContext,
    *,
    pipeline: Sequence[VoucherCheck] = VOUCHER_VALIDATION_PIPELINE,
) -> None:
    for check in pipeline:
        check(context)


def run_limit_checks(
    context: LimitCheckContext,
    *,
    pipeline: Sequence[LimitCheck] = LIMIT_VALIDATION_PIPELINE,
) -> None:
    for check in pipeline:
        check(context)


def ledger_write_attempts(voucher: VoucherSnapshot) -> int:
    # Every sequence conflict means another row for the pair committed, so the
    # per-customer check rejects at the latest once this many writes were tried.
    return max(1, voucher.max_redemptions_per_user) + 1
