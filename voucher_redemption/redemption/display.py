from __future__ import annotations

from decimal import Decimal

from voucher_redemption.redemption.constants import DISCOUNT_TYPE_PERCENTAGE, REDEMPTION_INSTRUCTIONS
from voucher_redemption.redemption.types import VoucherDisplay, VoucherSnapshot


def localize(texts: dict[str, str] | None, *, language: str | None, default_language: str) -> str:
    if not texts:
        return ""
    for candidate in (language, default_language):
        if candidate and texts.get(candidate):
            return texts[candidate]
    return next(iter(texts.values()), "")


def _format_amount(value: Decimal, *, places: int | None = None) -> str:
    if value == value.to_integral_value():
        return str(int(value))
    if places is not None:
        return f"{value:.{places}f}"
    return format(value.normalize(), "f")


def format_discount(voucher: VoucherSnapshot) -> str:
    if voucher.discount_type.lower() == DISCOUNT_TYPE_PERCENTAGE:
        return f"{_format_amount(voucher.discount_value)}%"
    amount = _format_amount(voucher.discount_value, places=2)
    if voucher.currency:
        return f"{voucher.currency} {amount}"
    return amount


def build_voucher_display(
    voucher: VoucherSnapshot,
    *,
    provider_name: str,
    language: str | None,
    default_language: str,
) -> VoucherDisplay:
    return VoucherDisplay(
        title=localize(voucher.title, language=language, default_language=default_language),
        discount=format_discount(voucher),
        provider_name=provider_name,
        instructions=REDEMPTION_INSTRUCTIONS,
    )
