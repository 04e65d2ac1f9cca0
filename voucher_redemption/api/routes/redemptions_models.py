from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class LocationPayload(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class RedeemRequest(BaseModel):
    code: str = Field(min_length=4, max_length=4096)
    customer_id: UUID | None = None
    location: LocationPayload | None = None
    device_id: str | None = Field(default=None, max_length=128)
    language: str | None = Field(default=None, max_length=8)
    offline: bool = False


class VoucherDetailsResponse(BaseModel):
    title: str
    discount: str
    provider_name: str
    instructions: str


class RedeemResponse(BaseModel):
    success: bool
    redemption_id: UUID
    voucher_details: VoucherDetailsResponse


class ValidateOfflineRequest(BaseModel):
    token: str = Field(min_length=1, max_length=4096)


class ValidateOfflineResponse(BaseModel):
    valid: bool
    voucher_id: UUID | None = None
    customer_id: UUID | None = None
    expiry: datetime | None = None
    error: str | None = None


class OfflineRedemptionPayload(BaseModel):
    code: str = Field(min_length=4, max_length=4096)
    redeemed_at: datetime
    customer_id: UUID | None = None
    location: LocationPayload | None = None
    device_id: str | None = Field(default=None, max_length=128)


class SyncOfflineRequest(BaseModel):
    redemptions: list[OfflineRedemptionPayload] = Field(min_length=1, max_length=500)


class SyncErrorResponse(BaseModel):
    code: str
    error: str


class SyncOfflineResponse(BaseModel):
    synced_ids: list[UUID]
    errors: list[SyncErrorResponse]


class IssueTokenRequest(BaseModel):
    voucher_id: UUID


class IssueTokenResponse(BaseModel):
    token: str
    expires_at: datetime
    short_code: str
    short_code_expires_at: datetime


class StaticShortCodeRequest(BaseModel):
    voucher_id: UUID
    code: str | None = Field(default=None, min_length=4, max_length=20)


class StaticShortCodeResponse(BaseModel):
    code: str
    voucher_id: UUID
    type: str


class RedemptionResponse(BaseModel):
    id: UUID
    voucher_id: UUID
    customer_id: UUID
    provider_id: UUID
    customer_sequence: int
    redeemed_at: datetime
    latitude: float | None = None
    longitude: float | None = None
    offline: bool
    synced_at: datetime | None = None
    device_id: str | None = None


class RedemptionListResponse(BaseModel):
    items: list[RedemptionResponse]


class TopVoucherResponse(BaseModel):
    voucher_id: UUID
    redemptions: int


class ProviderStatsResponse(BaseModel):
    provider_id: UUID
    total_redemptions: int
    unique_customers: int
    top_vouchers: list[TopVoucherResponse]


class VoucherStatsResponse(BaseModel):
    voucher_id: UUID
    total_redemptions: int
    unique_customers: int
    redemptions_by_hour: dict[str, int]
    redemptions_by_day_of_week: dict[str, int]
