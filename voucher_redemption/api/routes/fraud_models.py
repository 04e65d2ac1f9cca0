from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class ReviewActionPayload(BaseModel):
    type: str = Field(min_length=1, max_length=64)
    details: dict[str, Any] = Field(default_factory=dict)


class FraudCaseReviewRequest(BaseModel):
    status: str = Field(min_length=1, max_length=32)
    notes: str | None = Field(default=None, max_length=500)
    actions: list[ReviewActionPayload] = Field(default_factory=list, max_length=10)


class FraudCaseResponse(BaseModel):
    id: UUID
    case_number: str
    redemption_id: UUID
    detected_at: datetime
    risk_score: int = Field(ge=0, le=100)
    flags: list[dict[str, Any]]
    customer_id: UUID
    provider_id: UUID
    voucher_id: UUID
    status: str
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    actions_taken: list[dict[str, Any]]


class FraudLogsResponse(BaseModel):
    scope: str
    items: list[dict[str, Any]]


class FraudCaseListResponse(BaseModel):
    items: list[FraudCaseResponse]


class FraudStatisticsResponse(BaseModel):
    period: str
    total_cases: int
    pending_cases: int
    average_risk_score: float
    cases_by_status: dict[str, int]
    cases_by_flag_type: dict[str, int]
