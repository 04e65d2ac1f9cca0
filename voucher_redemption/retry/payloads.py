from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from voucher_redemption.fraud.types import (
    FraudCheckResult,
    FraudFlag,
    FraudFlagType,
    RedemptionAttempt,
    Severity,
)
from voucher_redemption.redemption.types import Location


def location_to_payload(location: Location | None) -> dict[str, float] | None:
    if location is None:
        return None
    return {"latitude": location.latitude, "longitude": location.longitude}


def location_from_payload(payload: object) -> Location | None:
    if not isinstance(payload, dict):
        return None
    return Location(latitude=float(payload["latitude"]), longitude=float(payload["longitude"]))


def fraud_case_payload(attempt: RedemptionAttempt, result: FraudCheckResult) -> dict[str, object]:
    return {
        "attempt": {
            "redemption_id": str(attempt.redemption_id),
            "voucher_id": str(attempt.voucher_id),
            "customer_id": str(attempt.customer_id),
            "provider_id": str(attempt.provider_id),
            "timestamp": attempt.timestamp.isoformat(),
            "location": location_to_payload(attempt.location),
            "device_id": attempt.device_id,
        },
        "result": {
            "risk_score": result.risk_score,
            "requires_review": result.requires_review,
            "flags": [flag.as_dict() for flag in result.flags],
        },
    }


def attempt_from_payload(payload: dict[str, Any]) -> RedemptionAttempt:
    return RedemptionAttempt(
        redemption_id=UUID(payload["redemption_id"]),
        voucher_id=UUID(payload["voucher_id"]),
        customer_id=UUID(payload["customer_id"]),
        provider_id=UUID(payload["provider_id"]),
        timestamp=datetime.fromisoformat(payload["timestamp"]),
        location=location_from_payload(payload.get("location")),
        device_id=payload.get("device_id"),
    )


def result_from_payload(payload: dict[str, Any]) -> FraudCheckResult:
    flags = [
        FraudFlag(
            flag_type=FraudFlagType(raw["type"]),
            severity=Severity(raw["severity"]),
            message=str(raw.get("message", "")),
            details=dict(raw.get("details") or {}),
        )
        for raw in payload.get("flags", [])
    ]
    return FraudCheckResult(
        risk_score=int(payload["risk_score"]),
        flags=flags,
        requires_review=bool(payload.get("requires_review", False)),
    )


def voucher_state_payload(
    *,
    voucher_id: UUID,
    state: str,
    redeemed_at: datetime,
    redeemed_by: UUID,
    location: Location | None,
) -> dict[str, object]:
    return {
        "voucher_id": str(voucher_id),
        "state": state,
        "redeemed_at": redeemed_at.isoformat(),
        "redeemed_by": str(redeemed_by),
        "location": location_to_payload(location),
    }
