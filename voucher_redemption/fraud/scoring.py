from __future__ import annotations

from collections.abc import Callable

from voucher_redemption.fraud.constants import (
    DEVICE_REUSE_HIGH_CUSTOMERS,
    DEVICE_REUSE_WARNING_CUSTOMERS,
    LOCATION_ANOMALY_HIGH_KM,
    LOCATION_ANOMALY_KM,
    LOCATION_PATTERN_MIN_POINTS,
    MAX_RISK_SCORE,
    RAPID_REDEMPTION_HIGH_MINUTES,
    RAPID_REDEMPTION_WINDOW_MINUTES,
    SEVERITY_SCORES,
    VELOCITY_HIGH_KM_PER_HOUR,
    VELOCITY_WARNING_KM_PER_HOUR,
)
from voucher_redemption.fraud.geo import haversine_km
from voucher_redemption.fraud.types import (
    FraudCheckResult,
    FraudFlag,
    FraudFlagType,
    FraudSignals,
    RedemptionAttempt,
    Severity,
)

SignalRule = Callable[[RedemptionAttempt, FraudSignals], FraudFlag | None]


def _location_dict(location: object) -> dict[str, float]:
    return {
        "latitude": float(getattr(location, "latitude")),
        "longitude": float(getattr(location, "longitude")),
    }


def rapid_redemption_rule(attempt: RedemptionAttempt, signals: FraudSignals) -> FraudFlag | None:
    previous = signals.previous_redemption
    if previous is None:
        return None

    minutes_apart = (attempt.timestamp - previous.redeemed_at).total_seconds() / 60
    if minutes_apart >= RAPID_REDEMPTION_WINDOW_MINUTES:
        return None

    return FraudFlag(
        flag_type=FraudFlagType.RAPID_REDEMPTION,
        severity=Severity.HIGH if minutes_apart < RAPID_REDEMPTION_HIGH_MINUTES else Severity.MEDIUM,
        message=f"Multiple redemptions within {round(minutes_apart)} minutes",
        details={
            "previous_voucher_id": str(previous.voucher_id) if previous.voucher_id else None,
            "minutes_apart": round(minutes_apart),
        },
    )


def velocity_rule(attempt: RedemptionAttempt, signals: FraudSignals) -> FraudFlag | None:
    previous = signals.previous_location
    if attempt.location is None or previous is None:
        return None
    # Multi-branch providers are exempt.
    if previous.provider_id == attempt.provider_id:
        return None

    distance_km = haversine_km(previous.location, attempt.location)
    elapsed_hours = (attempt.timestamp - previous.redeemed_at).total_seconds() / 3600
    if elapsed_hours <= 0:
        return FraudFlag(
            flag_type=FraudFlagType.VELOCITY,
            severity=Severity.HIGH,
            message="Multiple locations at the same time",
            details={
                "distance_km": round(distance_km),
                "locations": [_location_dict(previous.location), _location_dict(attempt.location)],
            },
        )

    velocity = distance_km / elapsed_hours
    if velocity <= VELOCITY_WARNING_KM_PER_HOUR:
        return None

    return FraudFlag(
        flag_type=FraudFlagType.VELOCITY,
        severity=Severity.HIGH if velocity > VELOCITY_HIGH_KM_PER_HOUR else Severity.MEDIUM,
        message=f"High travel speed: {round(velocity)} km/h",
        details={
            "distance_km": round(distance_km),
            "elapsed_hours": round(elapsed_hours, 1),
            "velocity_km_per_hour": round(velocity),
        },
    )


def location_anomaly_rule(attempt: RedemptionAttempt, signals: FraudSignals) -> FraudFlag | None:
    if attempt.location is None or len(signals.location_pattern) < LOCATION_PATTERN_MIN_POINTS:
        return None

    distances = [haversine_km(point, attempt.location) for point in signals.location_pattern]
    average_km = sum(distances) / len(distances)
    if average_km <= LOCATION_ANOMALY_KM:
        return None

    return FraudFlag(
        flag_type=FraudFlagType.LOCATION_ANOMALY,
        severity=Severity.HIGH if average_km > LOCATION_ANOMALY_HIGH_KM else Severity.MEDIUM,
        message=f"Unusual location: {round(average_km)}km from typical areas",
        details={
            "average_distance_km": round(average_km),
            "current_location": _location_dict(attempt.location),
        },
    )


def device_reuse_rule(attempt: RedemptionAttempt, signals: FraudSignals) -> FraudFlag | None:
    if attempt.device_id is None or signals.device_customer_count < DEVICE_REUSE_WARNING_CUSTOMERS:
        return None

    return FraudFlag(
        flag_type=FraudFlagType.DEVICE_REUSE,
        severity=(
            Severity.HIGH
            if signals.device_customer_count >= DEVICE_REUSE_HIGH_CUSTOMERS
            else Severity.MEDIUM
        ),
        message=f"Device used by {signals.device_customer_count} customers",
        details={"customer_count": signals.device_customer_count},
    )


def known_bad_device_rule(attempt: RedemptionAttempt, signals: FraudSignals) -> FraudFlag | None:
    if attempt.device_id is None or not signals.device_blocked:
        return None
    return FraudFlag(
        flag_type=FraudFlagType.KNOWN_BAD_DEVICE,
        severity=Severity.HIGH,
        message="Device is on the block list",
    )


SIGNAL_RULES: tuple[SignalRule, ...] = (
    rapid_redemption_rule,
    velocity_rule,
    location_anomaly_rule,
    device_reuse_rule,
    known_bad_device_rule,
)


def calculate_risk_score(flags: list[FraudFlag]) -> int:
    score = sum(SEVERITY_SCORES.get(flag.severity.value, 0) for flag in flags)
    return min(score, MAX_RISK_SCORE)


def score_attempt(
    attempt: RedemptionAttempt,
    signals: FraudSignals,
    *,
    review_threshold: int,
) -> FraudCheckResult:
    flags: list[FraudFlag] = []
    for rule in SIGNAL_RULES:
        flag = rule(attempt, signals)
        if flag is not None:
            flags.append(flag)

    risk_score = calculate_risk_score(flags)
    requires_review = risk_score > review_threshold or any(
        flag.severity is Severity.HIGH for flag in flags
    )
    return FraudCheckResult(risk_score=risk_score, flags=flags, requires_review=requires_review)
