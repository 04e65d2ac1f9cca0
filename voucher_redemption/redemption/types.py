from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class CodeKind(str, Enum):
    JWT = "jwt"
    SHORT = "short"


class ShortCodeType(str, Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"


@dataclass(slots=True, frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(slots=True, frozen=True)
class RedemptionClaims:
    voucher_id: UUID
    customer_id: UUID
    issued_at: datetime
    expires_at: datetime
    token_id: str | None = None


@dataclass(slots=True, frozen=True)
class ShortCodeInfo:
    code: str
    voucher_id: UUID
    code_type: ShortCodeType
    customer_id: UUID | None = None
    expires_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class ResolvedCode:
    kind: CodeKind
    voucher_id: UUID
    customer_id: UUID
    short_code: ShortCodeInfo | None = None
    expires_at: datetime | None = None

    @property
    def is_dynamic_short_code(self) -> bool:
        return self.short_code is not None and self.short_code.code_type is ShortCodeType.DYNAMIC


@dataclass(slots=True, frozen=True)
class VoucherSnapshot:
    id: UUID
    provider_id: UUID
    state: str
    title: dict[str, str]
    discount_type: str
    discount_value: Decimal
    currency: str | None = None
    expires_at: datetime | None = None
    max_redemptions: int | None = None
    max_redemptions_per_user: int = 1


@dataclass(slots=True, frozen=True)
class ProviderSnapshot:
    id: UUID
    business_name: dict[str, str]
    active: bool = True


@dataclass(slots=True, frozen=True)
class RedemptionRequest:
    code: str
    acting_user_id: UUID
    customer_id: UUID | None = None
    location: Location | None = None
    device_id: str | None = None
    language: str | None = None
    offline: bool = False


@dataclass(slots=True)
class VoucherDisplay:
    title: str
    discount: str
    provider_name: str
    instructions: str


@dataclass(slots=True)
class RedemptionResult:
    success: bool
    redemption_id: UUID
    voucher_details: VoucherDisplay


@dataclass(slots=True)
class OfflineValidationResult:
    valid: bool
    voucher_id: UUID | None = None
    customer_id: UUID | None = None
    expiry: datetime | None = None
    error: str | None = None


@dataclass(slots=True, frozen=True)
class OfflineSyncItem:
    code: str
    redeemed_at: datetime
    customer_id: UUID | None = None
    location: Location | None = None
    device_id: str | None = None


@dataclass(slots=True)
class SyncError:
    code: str
    error: str


@dataclass(slots=True)
class SyncResult:
    synced_ids: list[UUID] = field(default_factory=list)
    errors: list[SyncError] = field(default_factory=list)


@dataclass(slots=True)
class IssuedRedemptionToken:
    token: str
    expires_at: datetime
    short_code: str
    short_code_expires_at: datetime
