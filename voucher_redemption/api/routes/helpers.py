from __future__ import annotations

from dataclasses import dataclass
from typing import NoReturn
from uuid import UUID

import structlog
from fastapi import HTTPException, Request

from voucher_redemption.core.config import get_settings
from voucher_redemption.redemption.errors import (
    AlreadyRedeemedError,
    InvalidCodeError,
    InvalidProviderError,
    MissingCustomerError,
    RateLimitedError,
    RedemptionError,
    ShortCodeConflictError,
    TokenSigningUnavailableError,
    VoucherExpiredError,
    VoucherNotFoundError,
)
from voucher_redemption.services.internal_auth import (
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
)

logger = structlog.get_logger(__name__)

ADMIN_ROLE = "ADMIN"
REDEMPTION_ERROR_STATUS: dict[type[RedemptionError], int] = {
    RateLimitedError: 429,
    InvalidCodeError: 400,
    MissingCustomerError: 422,
    InvalidProviderError: 403,
    VoucherNotFoundError: 404,
    VoucherExpiredError: 410,
    AlreadyRedeemedError: 409,
    ShortCodeConflictError: 409,
    TokenSigningUnavailableError: 503,
}


@dataclass(slots=True, frozen=True)
class Caller:
    user_id: UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def assert_internal_access(request: Request) -> None:
    settings = get_settings()
    client_ip = extract_client_ip(
        request,
        trusted_proxies=getattr(settings, "internal_api_trusted_proxies", ""),
    )

    if not is_client_ip_allowed(client_ip=client_ip, allowlist=settings.internal_api_allowlist):
        logger.warning("internal_api_auth_failed", reason="ip_not_allowed", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})

    if not is_internal_request_authenticated(request, expected_token=settings.internal_api_token):
        logger.warning("internal_api_auth_failed", reason="invalid_credentials", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


def require_caller(request: Request) -> Caller:
    raw_user_id = (request.headers.get("X-User-Id") or "").strip()
    try:
        user_id = UUID(raw_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail={"code": "E_UNAUTHENTICATED"}) from exc
    role = (request.headers.get("X-User-Role") or "").strip().upper()
    return Caller(user_id=user_id, role=role)


def raise_redemption_http_error(exc: RedemptionError) -> NoReturn:
    status_code = 503
    for error_type in type(exc).__mro__:
        if error_type in REDEMPTION_ERROR_STATUS:
            status_code = REDEMPTION_ERROR_STATUS[error_type]
            break

    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    raise HTTPException(
        status_code=status_code,
        detail={"code": exc.error_code, "message": exc.message},
        headers=headers,
    ) from exc
