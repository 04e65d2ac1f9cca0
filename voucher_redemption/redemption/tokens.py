from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import jwt

from voucher_redemption.redemption.types import RedemptionClaims

REQUIRED_CLAIMS = ("voucherId", "customerId", "iat", "exp")


class TokenError(Exception):
    pass


class TokenSignatureError(TokenError):
    pass


class TokenExpiredError(TokenError):
    pass


class TokenMalformedError(TokenError):
    pass


def normalize_pem(value: str) -> str:
    return value.replace("\\n", "\n").strip()


def looks_like_token(code: str) -> bool:
    parts = code.strip().split(".")
    return len(parts) == 3 and all(parts)


def _as_utc(timestamp: object) -> datetime:
    if not isinstance(timestamp, (int, float)):
        raise TokenMalformedError("timestamp claim is not numeric")
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _as_uuid(value: object, *, claim: str) -> UUID:
    try:
        return UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise TokenMalformedError(f"{claim} claim is not a valid identifier") from exc


class TokenVerifier:
    """Checks redemption tokens against the public key only, so it is safe to ship to devices."""

    def __init__(
        self,
        *,
        public_key: str,
        algorithm: str = "ES256",
        issuer: str | None = None,
        audience: str | None = None,
    ) -> None:
        self._public_key = normalize_pem(public_key)
        self._algorithm = algorithm
        self._issuer = issuer or None
        self._audience = audience or None

    def verify(self, token: str, *, verify_expiry: bool = True) -> RedemptionClaims:
        if not self._public_key:
            raise TokenSignatureError("public key is not configured")

        options: dict[str, object] = {
            "require": list(REQUIRED_CLAIMS),
            "verify_exp": verify_expiry,
            "verify_aud": self._audience is not None,
        }
        try:
            payload = jwt.decode(
                token.strip(),
                self._public_key,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options=options,
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpiredError("token has expired") from exc
        except jwt.InvalidSignatureError as exc:
            raise TokenSignatureError("token signature mismatch") from exc
        except jwt.InvalidTokenError as exc:
            raise TokenMalformedError(str(exc)) from exc

        token_id = payload.get("jti")
        return RedemptionClaims(
            voucher_id=_as_uuid(payload["voucherId"], claim="voucherId"),
            customer_id=_as_uuid(payload["customerId"], claim="customerId"),
            issued_at=_as_utc(payload["iat"]),
            expires_at=_as_utc(payload["exp"]),
            token_id=str(token_id) if token_id is not None else None,
        )


class TokenIssuer:
    def __init__(
        self,
        *,
        private_key: str,
        algorithm: str = "ES256",
        issuer: str | None = None,
        audience: str | None = None,
    ) -> None:
        self._private_key = normalize_pem(private_key)
        self._algorithm = algorithm
        self._issuer = issuer or None
        self._audience = audience or None

    @property
    def enabled(self) -> bool:
        return bool(self._private_key)

    def issue(
        self,
        *,
        voucher_id: UUID,
        customer_id: UUID,
        ttl_seconds: int,
        now_utc: datetime,
    ) -> tuple[str, datetime]:
        issued_at = now_utc.replace(microsecond=0)
        expires_at = issued_at + timedelta(seconds=ttl_seconds)
        claims: dict[str, object] = {
            "voucherId": str(voucher_id),
            "customerId": str(customer_id),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": uuid4().hex,
        }
        if self._issuer is not None:
            claims["iss"] = self._issuer
        if self._audience is not None:
            claims["aud"] = self._audience

        token = jwt.encode(claims, self._private_key, algorithm=self._algorithm)
        return token, expires_at
