from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voucher_redemption.db.models.short_codes import StaticShortCode


class ShortCodesRepo:
    @staticmethod
    async def get_by_code(session: AsyncSession, code: str) -> StaticShortCode | None:
        stmt = select(StaticShortCode).where(StaticShortCode.code == code)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(session: AsyncSession, *, short_code: StaticShortCode) -> StaticShortCode:
        session.add(short_code)
        await session.flush()
        return short_code
