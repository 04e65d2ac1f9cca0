from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from voucher_redemption.redemption.types import Location


class FraudFlagType(str, Enum):
    RAPID_REDEMPTION = "RAPID_REDEMPTION"
    VELOCITY = "VELOCITY"
    LOCATION_ANOMALY = "LOCATION_ANOMALY"
    DEVICE_REUSE = "DEVICE_REUSE"
    KNOWN_BAD_DEVICE = "KNOWN_BAD_DEVICE"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(slots=True)
class FraudFlag:
    flag_type: FraudFlagType
    severity: Severity
    message: str
    details: dict[str, object] = field(default_factory=dict)

    def as_dict(self) -> dict[str, object]:
        return {
            "type": self.flag_type.value,
            "severity": self.severity.value,
            "message": self.message,
            "details": self.details,
        }


@dataclass(slots=True, frozen=True)
class RedemptionAttempt:
    redemption_id: UUID
    voucher_id: UUID
    customer_id: UUID
    provider_id: UUID
    timestamp: datetime
    location: Location | None = None
    device_id: str | None = None


@dataclass(slots=True, frozen=True)
class PreviousRedemption:
    redeemed_at: datetime
    voucher_id: UUID | None


@dataclass(slots=True, frozen=True)
class PreviousLocation:
    location: Location
    redeemed_at: datetime
    provider_id: UUID | None


@dataclass(slots=True)
class FraudSignals:
    previous_redemption: PreviousRedemption | None = None
    previous_location: PreviousLocation | None = None
    location_pattern: list[Location] = field(default_factory=list)
    device_customer_count: int = 0
    device_blocked: bool = False


@dataclass(slots=True)
class FraudCheckResult:
    risk_score: int
    flags: list[FraudFlag]
    requires_review: bool

    @property
    def flagged(self) -> bool:
        return bool(self.flags)


@dataclass(slots=True, frozen=True)
class ReviewAction:
    action_type: str
    details: dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class FraudStatistics:
    total_cases: int
    pending_cases: int
    average_risk_score: float
    cases_by_status: dict[str, int]
    cases_by_flag_type: dict[str, int]
