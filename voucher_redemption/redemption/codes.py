from __future__ import annotations

from uuid import UUID

from voucher_redemption.redemption.errors import InvalidCodeError, MissingCustomerError, VoucherExpiredError
from voucher_redemption.redemption.short_codes import ShortCodeResolver
from voucher_redemption.redemption.tokens import TokenError, TokenExpiredError, TokenVerifier, looks_like_token
from voucher_redemption.redemption.types import CodeKind, ResolvedCode


def classify_code(raw_code: str) -> CodeKind:
    return CodeKind.JWT if looks_like_token(raw_code) else CodeKind.SHORT


async def resolve_code(
    raw_code: str,
    *,
    requested_customer_id: UUID | None,
    verifier: TokenVerifier,
    short_codes: ShortCodeResolver,
) -> ResolvedCode:
    kind = classify_code(raw_code)
    if kind is CodeKind.JWT:
        try:
            claims = verifier.verify(raw_code)
        except TokenExpiredError as exc:
            raise VoucherExpiredError("Redemption code has expired") from exc
        except TokenError as exc:
            raise InvalidCodeError from exc
        return ResolvedCode(
            kind=kind,
            voucher_id=claims.voucher_id,
            customer_id=claims.customer_id,
            expires_at=claims.expires_at,
        )

    info = await short_codes.lookup(raw_code)
    if info is None:
        raise InvalidCodeError("Short code not found or expired")

    customer_id = info.customer_id or requested_customer_id
    if customer_id is None:
        raise MissingCustomerError
    return ResolvedCode(
        kind=kind,
        voucher_id=info.voucher_id,
        customer_id=customer_id,
        short_code=info,
        expires_at=info.expires_at,
    )
