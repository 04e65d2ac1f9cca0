from __future__ import annotations

import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voucher_redemption.db.models.short_codes import StaticShortCode
from voucher_redemption.db.repo.short_codes_repo import ShortCodesRepo
from voucher_redemption.redemption.constants import (
    SHORT_CODE_ALPHABET,
    SHORT_CODE_GENERATION_ATTEMPTS,
    SHORT_CODE_KEY_PREFIX,
    SHORT_CODE_LENGTH,
    SHORT_CODE_MAX_LENGTH,
    SHORT_CODE_MIN_LENGTH,
    STATIC_SHORT_CODE_CACHE_TTL_SECONDS,
)
from voucher_redemption.redemption.errors import ShortCodeConflictError
from voucher_redemption.redemption.types import ShortCodeInfo, ShortCodeType
from voucher_redemption.services.cache import CacheStore

logger = structlog.get_logger(__name__)

_SHORT_CODE_NORMALIZE_PATTERN = re.compile(r"[\s-]+")
_SHORT_CODE_VALID_PATTERN = re.compile(rf"^[{SHORT_CODE_ALPHABET}]+$")


def normalize_short_code(raw_code: str) -> str:
    normalized = raw_code.strip().upper()
    return _SHORT_CODE_NORMALIZE_PATTERN.sub("", normalized)


def is_valid_short_code(code: str) -> bool:
    if not SHORT_CODE_MIN_LENGTH <= len(code) <= SHORT_CODE_MAX_LENGTH:
        return False
    return _SHORT_CODE_VALID_PATTERN.match(code) is not None


def generate_short_code(length: int = SHORT_CODE_LENGTH) -> str:
    return "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(length))


def short_code_key(code: str) -> str:
    return f"{SHORT_CODE_KEY_PREFIX}{code}"


def _entry_payload(info: ShortCodeInfo) -> dict[str, object]:
    return {
        "voucher_id": str(info.voucher_id),
        "type": info.code_type.value,
        "customer_id": str(info.customer_id) if info.customer_id is not None else None,
        "expires_at": info.expires_at.isoformat() if info.expires_at is not None else None,
    }


def _entry_from_payload(code: str, payload: dict[str, Any]) -> ShortCodeInfo:
    customer_id = payload.get("customer_id")
    expires_at = payload.get("expires_at")
    return ShortCodeInfo(
        code=code,
        voucher_id=UUID(str(payload["voucher_id"])),
        code_type=ShortCodeType(payload["type"]),
        customer_id=UUID(str(customer_id)) if customer_id else None,
        expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
    )


class ShortCodeResolver:
    def __init__(
        self,
        cache: CacheStore,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        dynamic_ttl_seconds: int = 300,
    ) -> None:
        self._cache = cache
        self._session_factory = session_factory
        self._dynamic_ttl_seconds = dynamic_ttl_seconds

    async def lookup(self, raw_code: str, *, now_utc: datetime | None = None) -> ShortCodeInfo | None:
        code = normalize_short_code(raw_code)
        if not is_valid_short_code(code):
            return None

        now = now_utc or datetime.now(timezone.utc)
        cached = await self._cache.get_json(short_code_key(code))
        if isinstance(cached, dict):
            info = _entry_from_payload(code, cached)
            if info.expires_at is not None and info.expires_at <= now:
                return None
            return info

        async with self._session_factory() as session:
            row = await ShortCodesRepo.get_by_code(session, code)
        if row is None:
            return None

        info = ShortCodeInfo(code=code, voucher_id=row.voucher_id, code_type=ShortCodeType.STATIC)
        await self._cache.set_json(
            short_code_key(code),
            _entry_payload(info),
            ttl_seconds=STATIC_SHORT_CODE_CACHE_TTL_SECONDS,
        )
        return info

    async def claim(self, raw_code: str) -> ShortCodeInfo | None:
        """Atomically consume a dynamic code; static codes are never claimed."""
        code = normalize_short_code(raw_code)
        entry = await self._cache.pop_json_if(
            short_code_key(code),
            field="type",
            expected=ShortCodeType.DYNAMIC.value,
        )
        if not isinstance(entry, dict):
            return None
        return _entry_from_payload(code, entry)

    async def release(self, info: ShortCodeInfo, *, now_utc: datetime) -> bool:
        if info.code_type is not ShortCodeType.DYNAMIC or info.expires_at is None:
            return False
        remaining_seconds = int((info.expires_at - now_utc).total_seconds())
        if remaining_seconds <= 0:
            return False
        return await self._cache.set_json_if_absent(
            short_code_key(info.code),
            _entry_payload(info),
            ttl_seconds=remaining_seconds,
        )

    async def invalidate(self, raw_code: str) -> bool:
        return await self.claim(raw_code) is not None

    async def issue_dynamic(
        self,
        *,
        voucher_id: UUID,
        customer_id: UUID,
        now_utc: datetime,
    ) -> ShortCodeInfo:
        expires_at = now_utc + timedelta(seconds=self._dynamic_ttl_seconds)
        for _ in range(SHORT_CODE_GENERATION_ATTEMPTS):
            info = ShortCodeInfo(
                code=generate_short_code(),
                voucher_id=voucher_id,
                code_type=ShortCodeType.DYNAMIC,
                customer_id=customer_id,
                expires_at=expires_at,
            )
            created = await self._cache.set_json_if_absent(
                short_code_key(info.code),
                _entry_payload(info),
                ttl_seconds=self._dynamic_ttl_seconds,
            )
            if created:
                return info
        raise RuntimeError("unable to generate unique dynamic short code")

    async def issue_static(
        self,
        session: AsyncSession,
        *,
        voucher_id: UUID,
        created_by: UUID | None,
        custom_code: str | None = None,
    ) -> ShortCodeInfo:
        if custom_code is not None:
            code = normalize_short_code(custom_code)
            if not is_valid_short_code(code):
                raise ValueError("custom short code has invalid format")
            candidates = [code]
        else:
            candidates = [generate_short_code() for _ in range(SHORT_CODE_GENERATION_ATTEMPTS)]

        for code in candidates:
            if await ShortCodesRepo.get_by_code(session, code) is not None:
                continue
            if await self._cache.get_json(short_code_key(code)) is not None:
                continue
            try:
                async with session.begin_nested():
                    await ShortCodesRepo.create(
                        session,
                        short_code=StaticShortCode(
                            code=code,
                            voucher_id=voucher_id,
                            created_by=created_by,
                        ),
                    )
            except IntegrityError:
                logger.info("static_short_code_collision", voucher_id=str(voucher_id))
                continue
            return ShortCodeInfo(code=code, voucher_id=voucher_id, code_type=ShortCodeType.STATIC)

        raise ShortCodeConflictError
