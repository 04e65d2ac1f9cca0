from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import extract, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from voucher_redemption.db.models.redemptions import Redemption


class RedemptionsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, redemption_id: UUID) -> Redemption | None:
        return await session.get(Redemption, redemption_id)

    @staticmethod
    async def count_for_customer(
        session: AsyncSession,
        *,
        voucher_id: UUID,
        customer_id: UUID,
    ) -> int:
        stmt = select(func.count(Redemption.id)).where(
            Redemption.voucher_id == voucher_id,
            Redemption.customer_id == customer_id,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def count_for_voucher(session: AsyncSession, *, voucher_id: UUID) -> int:
        stmt = select(func.count(Redemption.id)).where(Redemption.voucher_id == voucher_id)
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def get_by_code(session: AsyncSession, *, code: str) -> Redemption | None:
        stmt = (
            select(Redemption)
            .where(Redemption.code == code)
            .order_by(Redemption.created_at.asc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_offline_duplicate(
        session: AsyncSession,
        *,
        code: str,
        customer_id: UUID | None,
        redeemed_at: datetime,
    ) -> Redemption | None:
        stmt = select(Redemption).where(
            Redemption.code == code,
            Redemption.redeemed_at == redeemed_at,
        )
        if customer_id is not None:
            stmt = stmt.where(Redemption.customer_id == customer_id)
        result = await session.execute(stmt.order_by(Redemption.created_at.asc()).limit(1))
        return result.scalar_one_or_none()

    @staticmethod
    async def list_redemptions(
        session: AsyncSession,
        *,
        provider_id: UUID | None = None,
        customer_id: UUID | None = None,
        voucher_id: UUID | None = None,
        limit: int = 50,
    ) -> list[Redemption]:
        stmt = select(Redemption)
        if provider_id is not None:
            stmt = stmt.where(Redemption.provider_id == provider_id)
        if customer_id is not None:
            stmt = stmt.where(Redemption.customer_id == customer_id)
        if voucher_id is not None:
            stmt = stmt.where(Redemption.voucher_id == voucher_id)
        stmt = stmt.order_by(Redemption.redeemed_at.desc(), Redemption.id.desc()).limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def provider_totals(session: AsyncSession, *, provider_id: UUID) -> tuple[int, int]:
        stmt = select(
            func.count(Redemption.id),
            func.count(func.distinct(Redemption.customer_id)),
        ).where(Redemption.provider_id == provider_id)
        result = await session.execute(stmt)
        total, unique_customers = result.one()
        return int(total or 0), int(unique_customers or 0)

    @staticmethod
    async def top_vouchers_for_provider(
        session: AsyncSession,
        *,
        provider_id: UUID,
        limit: int = 10,
    ) -> list[tuple[UUID, int]]:
        redemption_count = func.count(Redemption.id).label("redemption_count")
        stmt = (
            select(Redemption.voucher_id, redemption_count)
            .where(Redemption.provider_id == provider_id)
            .group_by(Redemption.voucher_id)
            .order_by(redemption_count.desc(), Redemption.voucher_id.asc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return [(voucher_id, int(count)) for voucher_id, count in result.all()]

    @staticmethod
    async def voucher_totals(session: AsyncSession, *, voucher_id: UUID) -> tuple[int, int]:
        stmt = select(
            func.count(Redemption.id),
            func.count(func.distinct(Redemption.customer_id)),
        ).where(Redemption.voucher_id == voucher_id)
        result = await session.execute(stmt)
        total, unique_customers = result.one()
        return int(total or 0), int(unique_customers or 0)

    @staticmethod
    async def voucher_counts_by(
        session: AsyncSession,
        *,
        voucher_id: UUID,
        field: str,
    ) -> dict[int, int]:
        """Counts a voucher's redemptions grouped by ``hour`` or ``dow`` of redeemed_at (UTC)."""
        bucket = extract(field, Redemption.redeemed_at).label("bucket")
        stmt = (
            select(bucket, func.count(Redemption.id))
            .where(Redemption.voucher_id == voucher_id)
            .group_by(bucket)
        )
        result = await session.execute(stmt)
        return {int(value): int(count) for value, count in result.all()}

    @staticmethod
    async def create(session: AsyncSession, *, redemption: Redemption) -> Redemption:
        session.add(redemption)
        await session.flush()
        return redemption
