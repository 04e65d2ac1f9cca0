from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from voucher_redemption.db.models.fraud_case_history import FraudCaseHistory
from voucher_redemption.db.models.fraud_cases import FraudCase
from voucher_redemption.db.repo.fraud_cases_repo import FraudCasesRepo
from voucher_redemption.fraud.constants import (
    FRAUD_CASE_ACTIONS,
    FRAUD_CASE_LIST_MAX_LIMIT,
    FRAUD_CASE_NOTES_MAX_LENGTH,
    FRAUD_CASE_NUMBER_ATTEMPTS,
    FRAUD_CASE_REVIEW_STATUSES,
    FRAUD_CASE_STATUS_PENDING,
    FRAUD_CASE_STATUSES,
    FRAUD_STATISTICS_PERIOD_DAYS,
    SYSTEM_ACTOR_ID,
)
from voucher_redemption.fraud.errors import (
    FraudCaseAccessDeniedError,
    FraudCaseNotFoundError,
    FraudCaseNotPendingError,
    FraudCaseQueryInvalidError,
    FraudCaseReviewInvalidError,
)
from voucher_redemption.fraud.types import (
    FraudCheckResult,
    FraudStatistics,
    RedemptionAttempt,
    ReviewAction,
)

logger = structlog.get_logger(__name__)


def format_case_number(*, year: int, sequence: int) -> str:
    return f"FRAUD-{year}-{sequence:04d}"


def _assert_can_access(case: FraudCase, *, is_admin: bool, provider_id: UUID | None) -> None:
    if is_admin:
        return
    if provider_id is None or case.provider_id != provider_id:
        raise FraudCaseAccessDeniedError


def summarize_cases(rows: list[tuple[str, int, list[dict[str, object]]]]) -> FraudStatistics:
    cases_by_status: Counter[str] = Counter()
    cases_by_flag_type: Counter[str] = Counter()
    risk_total = 0
    for status, risk_score, flags in rows:
        cases_by_status[status] += 1
        risk_total += risk_score
        for flag in flags:
            flag_type = flag.get("type")
            if flag_type:
                cases_by_flag_type[str(flag_type)] += 1
    total = len(rows)
    return FraudStatistics(
        total_cases=total,
        pending_cases=cases_by_status.get(FRAUD_CASE_STATUS_PENDING, 0),
        average_risk_score=round(risk_total / total, 2) if total else 0.0,
        cases_by_status=dict(cases_by_status),
        cases_by_flag_type=dict(cases_by_flag_type),
    )


class FraudCaseService:
    @staticmethod
    async def create_case(
        session: AsyncSession,
        *,
        attempt: RedemptionAttempt,
        result: FraudCheckResult,
        now_utc: datetime,
    ) -> tuple[FraudCase, bool]:
        for number_attempt in range(1, FRAUD_CASE_NUMBER_ATTEMPTS + 1):
            existing = await FraudCasesRepo.get_by_redemption_id(
                session,
                redemption_id=attempt.redemption_id,
            )
            if existing is not None:
                return existing, False

            try:
                async with session.begin_nested():
                    fraud_case = await FraudCaseService._insert_case(
                        session,
                        attempt=attempt,
                        result=result,
                        now_utc=now_utc,
                    )
            except IntegrityError:
                # Another writer took the same yearly case number or this redemption's case.
                if number_attempt == FRAUD_CASE_NUMBER_ATTEMPTS:
                    raise
                logger.info(
                    "fraud_case_number_conflict",
                    redemption_id=str(attempt.redemption_id),
                    number_attempt=number_attempt,
                )
                continue

            logger.info(
                "fraud_case_created",
                case_id=str(fraud_case.id),
                case_number=fraud_case.case_number,
                redemption_id=str(attempt.redemption_id),
                risk_score=result.risk_score,
            )
            return fraud_case, True
        raise RuntimeError("unable to allocate fraud case number")

    @staticmethod
    async def _insert_case(
        session: AsyncSession,
        *,
        attempt: RedemptionAttempt,
        result: FraudCheckResult,
        now_utc: datetime,
    ) -> FraudCase:
        sequence = await FraudCasesRepo.count_cases_for_year(session, year=now_utc.year) + 1
        fraud_case = await FraudCasesRepo.create(
            session,
            fraud_case=FraudCase(
                id=uuid4(),
                case_number=format_case_number(year=now_utc.year, sequence=sequence),
                redemption_id=attempt.redemption_id,
                detected_at=now_utc,
                risk_score=result.risk_score,
                flags=[flag.as_dict() for flag in result.flags],
                customer_id=attempt.customer_id,
                provider_id=attempt.provider_id,
                voucher_id=attempt.voucher_id,
                status=FRAUD_CASE_STATUS_PENDING,
                actions_taken=[],
                detection_metadata={
                    "requires_review": result.requires_review,
                    "device_id": attempt.device_id,
                    "redeemed_at": attempt.timestamp.isoformat(),
                },
                created_at=now_utc,
                updated_at=now_utc,
            ),
        )
        await FraudCasesRepo.add_history(
            session,
            entry=FraudCaseHistory(
                fraud_case_id=fraud_case.id,
                action="case_created",
                performed_by=UUID(SYSTEM_ACTOR_ID),
                metadata_={"risk_score": result.risk_score, "flag_count": len(result.flags)},
                created_at=now_utc,
            ),
        )
        return fraud_case

    @staticmethod
    async def search_cases(
        session: AsyncSession,
        *,
        is_admin: bool,
        provider_id: UUID | None,
        status: str | None = None,
        customer_id: UUID | None = None,
        min_risk_score: int | None = None,
        since_utc: datetime | None = None,
        limit: int = 50,
    ) -> list[FraudCase]:
        """Lists cases newest first; non-admin callers only ever see their own provider's cases."""
        if not is_admin and provider_id is None:
            raise FraudCaseAccessDeniedError
        normalized_status = status.strip().upper() if status else None
        if normalized_status is not None and normalized_status not in FRAUD_CASE_STATUSES:
            raise FraudCaseQueryInvalidError("unsupported case status")
        return await FraudCasesRepo.search(
            session,
            status=normalized_status,
            provider_id=provider_id,
            customer_id=customer_id,
            min_risk_score=min_risk_score,
            since_utc=since_utc,
            limit=max(1, min(limit, FRAUD_CASE_LIST_MAX_LIMIT)),
        )

    @staticmethod
    async def statistics(
        session: AsyncSession,
        *,
        period: str,
        provider_id: UUID | None,
        now_utc: datetime,
    ) -> FraudStatistics:
        if period not in FRAUD_STATISTICS_PERIOD_DAYS:
            raise FraudCaseQueryInvalidError("unsupported statistics period")
        days = FRAUD_STATISTICS_PERIOD_DAYS[period]
        since_utc = now_utc - timedelta(days=days) if days is not None else None
        rows = await FraudCasesRepo.list_statistics_rows(
            session,
            provider_id=provider_id,
            since_utc=since_utc,
        )
        return summarize_cases(rows)

    @staticmethod
    async def get_case(
        session: AsyncSession,
        *,
        case_id: UUID,
        is_admin: bool,
        provider_id: UUID | None,
    ) -> FraudCase:
        fraud_case = await FraudCasesRepo.get_by_id(session, case_id)
        if fraud_case is None:
            raise FraudCaseNotFoundError
        _assert_can_access(fraud_case, is_admin=is_admin, provider_id=provider_id)
        return fraud_case

    @staticmethod
    async def review_case(
        session: AsyncSession,
        *,
        case_id: UUID,
        reviewer_id: UUID,
        is_admin: bool,
        provider_id: UUID | None,
        status: str,
        notes: str | None,
        actions: list[ReviewAction],
        now_utc: datetime,
    ) -> FraudCase:
        next_status = status.strip().upper()
        if next_status not in FRAUD_CASE_REVIEW_STATUSES:
            raise FraudCaseReviewInvalidError("unsupported review status")
        if notes is not None and len(notes) > FRAUD_CASE_NOTES_MAX_LENGTH:
            raise FraudCaseReviewInvalidError("review notes are too long")
        for action in actions:
            if action.action_type not in FRAUD_CASE_ACTIONS:
                raise FraudCaseReviewInvalidError("unsupported review action")

        fraud_case = await FraudCasesRepo.get_by_id_for_update(session, case_id)
        if fraud_case is None:
            raise FraudCaseNotFoundError
        _assert_can_access(fraud_case, is_admin=is_admin, provider_id=provider_id)
        if fraud_case.status != FRAUD_CASE_STATUS_PENDING:
            raise FraudCaseNotPendingError

        stamped_actions = [
            {
                "type": action.action_type,
                "details": action.details,
                "performed_by": str(reviewer_id),
                "timestamp": now_utc.isoformat(),
            }
            for action in actions
        ]
        previous_status = fraud_case.status
        fraud_case.status = next_status
        fraud_case.reviewed_by = reviewer_id
        fraud_case.reviewed_at = now_utc
        fraud_case.review_notes = notes
        fraud_case.actions_taken = [*fraud_case.actions_taken, *stamped_actions]
        fraud_case.updated_at = now_utc

        await FraudCasesRepo.add_history(
            session,
            entry=FraudCaseHistory(
                fraud_case_id=fraud_case.id,
                action="case_reviewed",
                performed_by=reviewer_id,
                notes=notes,
                metadata_={
                    "previous_status": previous_status,
                    "status": next_status,
                    "actions": [action["type"] for action in stamped_actions],
                },
                created_at=now_utc,
            ),
        )
        logger.info(
            "fraud_case_reviewed",
            case_id=str(fraud_case.id),
            reviewer_id=str(reviewer_id),
            status=next_status,
            action_count=len(stamped_actions),
        )
        return fraud_case
