from __future__ import annotations


class RedemptionError(Exception):
    error_code = "REDEMPTION_FAILED"
    default_message = "Redemption failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class RateLimitedError(RedemptionError):
    error_code = "RATE_LIMITED"
    default_message = "Too many redemption attempts"

    def __init__(self, message: str | None = None, *, retry_after_seconds: int = 60) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class InvalidCodeError(RedemptionError):
    error_code = "INVALID_CODE"
    default_message = "Invalid redemption code"


class MissingCustomerError(RedemptionError):
    error_code = "MISSING_CUSTOMER"
    default_message = "Customer identifier is required for this code"


class InvalidProviderError(RedemptionError):
    error_code = "INVALID_PROVIDER"
    default_message = "Provider is not allowed to redeem this voucher"


class VoucherNotFoundError(RedemptionError):
    error_code = "VOUCHER_NOT_FOUND"
    default_message = "Voucher not found"


class VoucherExpiredError(RedemptionError):
    error_code = "EXPIRED"
    default_message = "Voucher has expired"


class AlreadyRedeemedError(RedemptionError):
    error_code = "ALREADY_REDEEMED"
    default_message = "Voucher redemption limit reached"


class RedemptionFailedError(RedemptionError):
    pass


class ShortCodeConflictError(RedemptionError):
    error_code = "SHORT_CODE_CONFLICT"
    default_message = "Short code already exists"


class TokenSigningUnavailableError(RedemptionError):
    error_code = "TOKEN_SIGNING_UNAVAILABLE"
    default_message = "Redemption token signing is not configured"
