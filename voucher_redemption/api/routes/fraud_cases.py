from __future__ import annotations

from datetime import datetime, timezone
from typing import NoReturn
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, Request

from voucher_redemption.clients.errors import ServiceUnavailableError
from voucher_redemption.db.models.fraud_cases import FraudCase
from voucher_redemption.db.session import SessionLocal
from voucher_redemption.fraud.cases import FraudCaseService
from voucher_redemption.fraud.errors import (
    FraudCaseAccessDeniedError,
    FraudCaseNotFoundError,
    FraudCaseNotPendingError,
    FraudCaseQueryInvalidError,
    FraudCaseReviewInvalidError,
)
from voucher_redemption.fraud.types import ReviewAction
from voucher_redemption.redemption.factory import get_fraud_engine, get_provider_client

from .fraud_models import (
    FraudCaseListResponse,
    FraudCaseResponse,
    FraudCaseReviewRequest,
    FraudLogsResponse,
    FraudStatisticsResponse,
)
from .helpers import Caller, assert_internal_access, require_caller

router = APIRouter(tags=["fraud"])
FRAUD_LOG_SCOPES = {"customer", "provider", "admin"}


def _as_case_response(fraud_case: FraudCase) -> FraudCaseResponse:
    return FraudCaseResponse(
        id=fraud_case.id,
        case_number=fraud_case.case_number,
        redemption_id=fraud_case.redemption_id,
        detected_at=fraud_case.detected_at,
        risk_score=fraud_case.risk_score,
        flags=list(fraud_case.flags or []),
        customer_id=fraud_case.customer_id,
        provider_id=fraud_case.provider_id,
        voucher_id=fraud_case.voucher_id,
        status=fraud_case.status,
        reviewed_by=fraud_case.reviewed_by,
        reviewed_at=fraud_case.reviewed_at,
        review_notes=fraud_case.review_notes,
        actions_taken=list(fraud_case.actions_taken or []),
    )


async def _caller_provider_id(caller: Caller) -> UUID | None:
    if caller.is_admin:
        return None
    try:
        provider = await get_provider_client().get_provider_by_user(caller.user_id)
    except ServiceUnavailableError as exc:
        raise HTTPException(status_code=503, detail={"code": "E_DEPENDENCY_UNAVAILABLE"}) from exc
    return provider.id if provider is not None else None


def _raise_case_error(exc: Exception) -> NoReturn:
    if isinstance(exc, FraudCaseNotFoundError):
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND"}) from exc
    if isinstance(exc, FraudCaseNotPendingError):
        raise HTTPException(status_code=409, detail={"code": "NOT_PENDING"}) from exc
    if isinstance(exc, FraudCaseAccessDeniedError):
        raise HTTPException(status_code=403, detail={"code": "ACCESS_DENIED"}) from exc
    if isinstance(exc, FraudCaseReviewInvalidError):
        raise HTTPException(
            status_code=422,
            detail={"code": "E_FRAUD_REVIEW_INVALID", "message": str(exc)},
        ) from exc
    if isinstance(exc, FraudCaseQueryInvalidError):
        raise HTTPException(
            status_code=422,
            detail={"code": "E_FRAUD_QUERY_INVALID", "message": str(exc)},
        ) from exc
    raise exc


@router.get("/fraud/cases", response_model=FraudCaseListResponse)
async def list_fraud_cases(
    request: Request,
    status: str | None = Query(default=None, max_length=32),
    provider_id: UUID | None = Query(default=None),
    customer_id: UUID | None = Query(default=None),
    min_risk_score: int | None = Query(default=None, ge=0, le=100),
    since: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
) -> FraudCaseListResponse:
    assert_internal_access(request)
    caller = require_caller(request)
    if not caller.is_admin:
        provider_id = await _caller_provider_id(caller)

    try:
        async with SessionLocal() as session:
            cases = await FraudCaseService.search_cases(
                session,
                is_admin=caller.is_admin,
                provider_id=provider_id,
                status=status,
                customer_id=customer_id,
                min_risk_score=min_risk_score,
                since_utc=since,
                limit=limit,
            )
    except (FraudCaseAccessDeniedError, FraudCaseQueryInvalidError) as exc:
        _raise_case_error(exc)
    return FraudCaseListResponse(items=[_as_case_response(fraud_case) for fraud_case in cases])


@router.get("/fraud/statistics", response_model=FraudStatisticsResponse)
async def get_fraud_statistics(
    request: Request,
    period: str = Query(default="week"),
    provider_id: UUID | None = Query(default=None),
) -> FraudStatisticsResponse:
    assert_internal_access(request)
    caller = require_caller(request)
    if not caller.is_admin:
        provider_id = await _caller_provider_id(caller)
        if provider_id is None:
            raise HTTPException(status_code=403, detail={"code": "ACCESS_DENIED"})

    normalized_period = period.strip().lower()
    try:
        async with SessionLocal() as session:
            statistics = await FraudCaseService.statistics(
                session,
                period=normalized_period,
                provider_id=provider_id,
                now_utc=datetime.now(timezone.utc),
            )
    except FraudCaseQueryInvalidError as exc:
        _raise_case_error(exc)
    return FraudStatisticsResponse(
        period=normalized_period,
        total_cases=statistics.total_cases,
        pending_cases=statistics.pending_cases,
        average_risk_score=statistics.average_risk_score,
        cases_by_status=statistics.cases_by_status,
        cases_by_flag_type=statistics.cases_by_flag_type,
    )


@router.get("/fraud/cases/{case_id}", response_model=FraudCaseResponse)
async def get_fraud_case(case_id: UUID, request: Request) -> FraudCaseResponse:
    assert_internal_access(request)
    caller = require_caller(request)
    provider_id = await _caller_provider_id(caller)

    try:
        async with SessionLocal() as session:
            fraud_case = await FraudCaseService.get_case(
                session,
                case_id=case_id,
                is_admin=caller.is_admin,
                provider_id=provider_id,
            )
    except (FraudCaseNotFoundError, FraudCaseAccessDeniedError) as exc:
        _raise_case_error(exc)
    return _as_case_response(fraud_case)


@router.put("/fraud/cases/{case_id}/review", response_model=FraudCaseResponse)
async def review_fraud_case(
    case_id: UUID,
    payload: FraudCaseReviewRequest,
    request: Request,
) -> FraudCaseResponse:
    assert_internal_access(request)
    caller = require_caller(request)
    provider_id = await _caller_provider_id(caller)

    try:
        async with SessionLocal.begin() as session:
            fraud_case = await FraudCaseService.review_case(
                session,
                case_id=case_id,
                reviewer_id=caller.user_id,
                is_admin=caller.is_admin,
                provider_id=provider_id,
                status=payload.status,
                notes=payload.notes,
                actions=[
                    ReviewAction(action_type=action.type, details=action.details)
                    for action in payload.actions
                ],
                now_utc=datetime.now(timezone.utc),
            )
            response = _as_case_response(fraud_case)
    except (
        FraudCaseNotFoundError,
        FraudCaseNotPendingError,
        FraudCaseAccessDeniedError,
        FraudCaseReviewInvalidError,
    ) as exc:
        _raise_case_error(exc)
    return response


@router.get("/fraud/logs", response_model=FraudLogsResponse)
async def get_fraud_logs(
    request: Request,
    scope: str = Query(default="provider"),
    subject_id: UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
) -> FraudLogsResponse:
    assert_internal_access(request)
    caller = require_caller(request)
    normalized_scope = scope.strip().lower()
    if normalized_scope not in FRAUD_LOG_SCOPES:
        raise HTTPException(status_code=422, detail={"code": "E_FRAUD_LOG_SCOPE_INVALID"})

    if caller.is_admin:
        if normalized_scope != "admin" and subject_id is None:
            raise HTTPException(status_code=422, detail={"code": "E_FRAUD_LOG_SUBJECT_REQUIRED"})
    elif normalized_scope == "customer":
        if subject_id is not None and subject_id != caller.user_id:
            raise HTTPException(status_code=403, detail={"code": "ACCESS_DENIED"})
        subject_id = caller.user_id
    elif normalized_scope == "provider":
        subject_id = await _caller_provider_id(caller)
        if subject_id is None:
            raise HTTPException(status_code=403, detail={"code": "ACCESS_DENIED"})
    else:
        raise HTTPException(status_code=403, detail={"code": "ACCESS_DENIED"})

    items = await get_fraud_engine().get_logs(
        scope=normalized_scope,
        subject_id=subject_id,
        limit=limit,
    )
    return FraudLogsResponse(scope=normalized_scope, items=items)
