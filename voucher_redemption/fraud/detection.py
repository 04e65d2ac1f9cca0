from __future__ import annotations

from collections.abc import Awaitable, Iterable
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

import structlog

from voucher_redemption.fraud.constants import (
    BLOCKED_DEVICES_KEY,
    DEVICE_CUSTOMERS_TTL_SECONDS,
    FRAUD_LOG_MAX_ENTRIES,
    FRAUD_LOG_TTL_SECONDS,
    HIGH_RISK_LOG_SCORE,
    LAST_REDEMPTION_TTL_SECONDS,
    LOCATION_HISTORY_TTL_SECONDS,
    LOCATION_PATTERN_MAX_POINTS,
    LOCATION_PATTERN_MIN_POINTS,
    LOCATION_PATTERN_TTL_SECONDS,
    device_customers_key,
    fraud_log_key,
    last_redemption_key,
    location_history_key,
    location_pattern_key,
)
from voucher_redemption.fraud.scoring import score_attempt
from voucher_redemption.fraud.types import (
    FraudCheckResult,
    FraudSignals,
    PreviousLocation,
    PreviousRedemption,
    RedemptionAttempt,
)
from voucher_redemption.redemption.types import Location
from voucher_redemption.services.cache import CacheStore

logger = structlog.get_logger(__name__)
T = TypeVar("T")


def _optional_uuid(value: object) -> UUID | None:
    if not value:
        return None
    return UUID(str(value))


def _location_payload(location: Location) -> dict[str, float]:
    return {"latitude": location.latitude, "longitude": location.longitude}


def _location_from_payload(payload: dict[str, Any]) -> Location:
    return Location(latitude=float(payload["latitude"]), longitude=float(payload["longitude"]))


def parse_blocked_device_ids(raw: str) -> frozenset[str]:
    return frozenset(item.strip() for item in raw.split(",") if item.strip())


class FraudSignalStore:
    def __init__(self, cache: CacheStore, *, blocked_device_ids: Iterable[str] = ()) -> None:
        self._cache = cache
        self._blocked_device_ids = frozenset(blocked_device_ids)

    async def _guarded(self, signal: str, awaitable: Awaitable[T], default: T, attempt: RedemptionAttempt) -> T:
        try:
            return await awaitable
        except Exception:
            logger.exception(
                "fraud_signal_failed",
                signal=signal,
                redemption_id=str(attempt.redemption_id),
                customer_id=str(attempt.customer_id),
            )
            return default

    async def _previous_redemption(self, customer_id: UUID) -> PreviousRedemption | None:
        payload = await self._cache.get_json(last_redemption_key(customer_id))
        if not isinstance(payload, dict):
            return None
        return PreviousRedemption(
            redeemed_at=datetime.fromisoformat(payload["timestamp"]),
            voucher_id=_optional_uuid(payload.get("voucher_id")),
        )

    async def _previous_location(self, customer_id: UUID) -> PreviousLocation | None:
        payload = await self._cache.get_json(location_history_key(customer_id))
        if not isinstance(payload, dict) or not isinstance(payload.get("location"), dict):
            return None
        return PreviousLocation(
            location=_location_from_payload(payload["location"]),
            redeemed_at=datetime.fromisoformat(payload["timestamp"]),
            provider_id=_optional_uuid(payload.get("provider_id")),
        )

    async def _location_pattern(self, customer_id: UUID) -> list[Location]:
        payload = await self._cache.get_json(location_pattern_key(customer_id))
        if not isinstance(payload, list):
            return []
        return [_location_from_payload(item) for item in payload if isinstance(item, dict)]

    async def _device_customer_count(self, attempt: RedemptionAttempt) -> int:
        if attempt.device_id is None:
            return 0
        return await self._cache.add_member(
            device_customers_key(attempt.device_id),
            str(attempt.customer_id),
            ttl_seconds=DEVICE_CUSTOMERS_TTL_SECONDS,
        )

    async def _device_blocked(self, device_id: str | None) -> bool:
        if device_id is None:
            return False
        if device_id in self._blocked_device_ids:
            return True
        return await self._cache.is_member(BLOCKED_DEVICES_KEY, device_id)

    async def gather(self, attempt: RedemptionAttempt) -> FraudSignals:
        customer_id = attempt.customer_id
        return FraudSignals(
            previous_redemption=await self._guarded(
                "rapid_redemption", self._previous_redemption(customer_id), None, attempt
            ),
            previous_location=await self._guarded(
                "velocity", self._previous_location(customer_id), None, attempt
            ),
            location_pattern=await self._guarded(
                "location_anomaly", self._location_pattern(customer_id), [], attempt
            ),
            device_customer_count=await self._guarded(
                "device_reuse", self._device_customer_count(attempt), 0, attempt
            ),
            device_blocked=await self._guarded(
                "known_bad_device", self._device_blocked(attempt.device_id), False, attempt
            ),
        )

    async def _record_location(self, attempt: RedemptionAttempt, signals: FraudSignals) -> None:
        if attempt.location is None:
            return
        await self._cache.set_json(
            location_history_key(attempt.customer_id),
            {
                "location": _location_payload(attempt.location),
                "timestamp": attempt.timestamp.isoformat(),
                "provider_id": str(attempt.provider_id),
            },
            ttl_seconds=LOCATION_HISTORY_TTL_SECONDS,
        )

        pattern = signals.location_pattern
        if len(pattern) >= LOCATION_PATTERN_MIN_POINTS:
            pattern = pattern[-(LOCATION_PATTERN_MAX_POINTS - 1) :]
        updated = [_location_payload(point) for point in pattern]
        updated.append(_location_payload(attempt.location))
        await self._cache.set_json(
            location_pattern_key(attempt.customer_id),
            updated,
            ttl_seconds=LOCATION_PATTERN_TTL_SECONDS,
        )

    async def _record_last_redemption(self, attempt: RedemptionAttempt) -> None:
        await self._cache.set_json(
            last_redemption_key(attempt.customer_id),
            {
                "timestamp": attempt.timestamp.isoformat(),
                "voucher_id": str(attempt.voucher_id),
            },
            ttl_seconds=LAST_REDEMPTION_TTL_SECONDS,
        )

    async def record(self, attempt: RedemptionAttempt, signals: FraudSignals) -> None:
        await self._guarded("rapid_redemption", self._record_last_redemption(attempt), None, attempt)
        await self._guarded("velocity", self._record_location(attempt, signals), None, attempt)

    async def append_logs(self, attempt: RedemptionAttempt, result: FraudCheckResult) -> None:
        entry = {
            "redemption_id": str(attempt.redemption_id),
            "voucher_id": str(attempt.voucher_id),
            "customer_id": str(attempt.customer_id),
            "provider_id": str(attempt.provider_id),
            "device_id": attempt.device_id,
            "location": _location_payload(attempt.location) if attempt.location else None,
            "timestamp": attempt.timestamp.isoformat(),
            "risk_score": result.risk_score,
            "flags": [flag.as_dict() for flag in result.flags],
        }
        keys = [
            fraud_log_key("customer", attempt.customer_id),
            fraud_log_key("provider", attempt.provider_id),
        ]
        if result.risk_score > HIGH_RISK_LOG_SCORE:
            keys.append(fraud_log_key("admin"))

        try:
            for key in keys:
                await self._cache.push_capped(
                    key,
                    entry,
                    max_length=FRAUD_LOG_MAX_ENTRIES,
                    ttl_seconds=FRAUD_LOG_TTL_SECONDS,
                )
        except Exception:
            logger.exception(
                "fraud_activity_log_failed",
                redemption_id=str(attempt.redemption_id),
                risk_score=result.risk_score,
            )
            return

        logger.info(
            "fraud_activity_logged",
            redemption_id=str(attempt.redemption_id),
            customer_id=str(attempt.customer_id),
            provider_id=str(attempt.provider_id),
            risk_score=result.risk_score,
            flag_count=len(result.flags),
        )

    async def get_logs(
        self,
        *,
        scope: str,
        subject_id: UUID | None = None,
        limit: int = FRAUD_LOG_MAX_ENTRIES,
    ) -> list[dict[str, Any]]:
        entries = await self._cache.list_json(fraud_log_key(scope, subject_id), limit=limit)
        return [entry for entry in entries if isinstance(entry, dict)]


class FraudDetectionEngine:
    def __init__(self, store: FraudSignalStore, *, review_threshold: int = HIGH_RISK_LOG_SCORE) -> None:
        self._store = store
        self._review_threshold = review_threshold

    async def check(self, attempt: RedemptionAttempt) -> FraudCheckResult:
        signals = await self._store.gather(attempt)
        result = score_attempt(attempt, signals, review_threshold=self._review_threshold)
        await self._store.record(attempt, signals)
        if result.flagged:
            await self._store.append_logs(attempt, result)
        return result

    async def get_logs(
        self,
        *,
        scope: str,
        subject_id: UUID | None = None,
        limit: int = FRAUD_LOG_MAX_ENTRIES,
    ) -> list[dict[str, Any]]:
        return await self._store.get_logs(scope=scope, subject_id=subject_id, limit=limit)
