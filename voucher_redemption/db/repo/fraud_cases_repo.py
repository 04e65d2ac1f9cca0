from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from voucher_redemption.db.models.fraud_case_history import FraudCaseHistory
from voucher_redemption.db.models.fraud_cases import FraudCase


class FraudCasesRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, case_id: UUID) -> FraudCase | None:
        return await session.get(FraudCase, case_id)

    @staticmethod
    async def get_by_id_for_update(session: AsyncSession, case_id: UUID) -> FraudCase | None:
        stmt = select(FraudCase).where(FraudCase.id == case_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_redemption_id(
        session: AsyncSession,
        *,
        redemption_id: UUID,
    ) -> FraudCase | None:
        stmt = select(FraudCase).where(FraudCase.redemption_id == redemption_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def count_cases_for_year(session: AsyncSession, *, year: int) -> int:
        stmt = select(func.count(FraudCase.id)).where(
            FraudCase.case_number.like(f"FRAUD-{year}-%")
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def count_high_risk_since(
        session: AsyncSession,
        *,
        since_utc: datetime,
        min_risk_score: int,
    ) -> int:
        stmt = select(func.count(FraudCase.id)).where(
            FraudCase.detected_at >= since_utc,
            FraudCase.risk_score >= min_risk_score,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def count_by_status_since(
        session: AsyncSession,
        *,
        since_utc: datetime,
    ) -> dict[str, int]:
        stmt = (
            select(FraudCase.status, func.count(FraudCase.id))
            .where(FraudCase.detected_at >= since_utc)
            .group_by(FraudCase.status)
        )
        result = await session.execute(stmt)
        return {str(status): int(count) for status, count in result.all()}

    @staticmethod
    async def create(session: AsyncSession, *, fraud_case: FraudCase) -> FraudCase:
        session.add(fraud_case)
        await session.flush()
        return fraud_case

    @staticmethod
    async def add_history(
        session: AsyncSession,
        *,
        entry: FraudCaseHistory,
    ) -> FraudCaseHistory:
        session.add(entry)
        await session.flush()
        return entry

    @staticmethod
    async def list_history(session: AsyncSession, *, case_id: UUID) -> list[FraudCaseHistory]:
        stmt = (
            select(FraudCaseHistory)
            .where(FraudCaseHistory.fraud_case_id == case_id)
            .order_by(FraudCaseHistory.created_at.asc(), FraudCaseHistory.id.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def search(
        session: AsyncSession,
        *,
        status: str | None = None,
        provider_id: UUID | None = None,
        customer_id: UUID | None = None,
        min_risk_score: int | None = None,
        since_utc: datetime | None = None,
        limit: int = 50,
    ) -> list[FraudCase]:
        stmt = select(FraudCase)
        if status is not None:
            stmt = stmt.where(FraudCase.status == status)
        if provider_id is not None:
            stmt = stmt.where(FraudCase.provider_id == provider_id)
        if customer_id is not None:
            stmt = stmt.where(FraudCase.customer_id == customer_id)
        if min_risk_score is not None:
            stmt = stmt.where(FraudCase.risk_score >= min_risk_score)
        if since_utc is not None:
            stmt = stmt.where(FraudCase.detected_at >= since_utc)
        stmt = stmt.order_by(FraudCase.detected_at.desc(), FraudCase.id.desc()).limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_statistics_rows(
        session: AsyncSession,
        *,
        provider_id: UUID | None = None,
        since_utc: datetime | None = None,
    ) -> list[tuple[str, int, list[dict[str, object]]]]:
        stmt = select(FraudCase.status, FraudCase.risk_score, FraudCase.flags)
        if provider_id is not None:
            stmt = stmt.where(FraudCase.provider_id == provider_id)
        if since_utc is not None:
            stmt = stmt.where(FraudCase.detected_at >= since_utc)
        result = await session.execute(stmt)
        return [(str(status), int(risk_score), list(flags or [])) for status, risk_score, flags in result.all()]
