from __future__ import annotations

import structlog

from voucher_redemption.redemption.tokens import (
    TokenExpiredError,
    TokenMalformedError,
    TokenSignatureError,
    TokenVerifier,
)
from voucher_redemption.redemption.types import OfflineValidationResult

logger = structlog.get_logger(__name__)

OFFLINE_ERROR_INVALID_SIGNATURE = "Invalid token signature"
OFFLINE_ERROR_EXPIRED = "Token has expired"
OFFLINE_ERROR_MALFORMED = "Malformed token"
OFFLINE_ERROR_GENERIC = "Invalid token"


class OfflineValidator:
    def __init__(self, verifier: TokenVerifier) -> None:
        self._verifier = verifier

    def validate(self, token: str) -> OfflineValidationResult:
        try:
            claims = self._verifier.verify(token)
        except TokenSignatureError:
            return OfflineValidationResult(valid=False, error=OFFLINE_ERROR_INVALID_SIGNATURE)
        except TokenExpiredError:
            return OfflineValidationResult(valid=False, error=OFFLINE_ERROR_EXPIRED)
        except TokenMalformedError:
            return OfflineValidationResult(valid=False, error=OFFLINE_ERROR_MALFORMED)
        except Exception:
            logger.exception("offline_token_validation_failed", token_length=len(token))
            return OfflineValidationResult(valid=False, error=OFFLINE_ERROR_GENERIC)

        return OfflineValidationResult(
            valid=True,
            voucher_id=claims.voucher_id,
            customer_id=claims.customer_id,
            expiry=claims.expires_at,
        )
