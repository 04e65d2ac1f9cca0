from __future__ import annotations

import random
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog

from voucher_redemption.services.cache import CacheStore

logger = structlog.get_logger(__name__)

RETRY_DUE_INDEX_KEY = "retry:queue:due"
RETRY_DEAD_LETTER_PREFIX = "retry:dead:"
RETRY_DEAD_LETTER_TTL_SECONDS = 86400 * 7
RETRY_CLAIM_LEASE_SECONDS = 300
RETRY_JITTER_RATIO = 0.2

RetryHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class RetryItem:
    key: str
    operation: str
    payload: dict[str, Any]
    attempt: int
    last_error: str
    enqueued_at: datetime
    next_attempt_at: datetime

    def as_dict(self) -> dict[str, object]:
        return {
            "operation": self.operation,
            "payload": self.payload,
            "attempt": self.attempt,
            "last_error": self.last_error,
            "enqueued_at": self.enqueued_at.isoformat(),
            "next_attempt_at": self.next_attempt_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, key: str, raw: dict[str, Any]) -> "RetryItem":
        return cls(
            key=key,
            operation=str(raw["operation"]),
            payload=dict(raw.get("payload") or {}),
            attempt=int(raw.get("attempt", 1)),
            last_error=str(raw.get("last_error", "")),
            enqueued_at=datetime.fromisoformat(raw["enqueued_at"]),
            next_attempt_at=datetime.fromisoformat(raw["next_attempt_at"]),
        )


@dataclass(slots=True)
class DrainSummary:
    examined: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    dead_lettered: int = 0
    expired: int = 0
    missing_handler: int = 0
    claimed_elsewhere: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "examined": self.examined,
            "succeeded": self.succeeded,
            "rescheduled": self.rescheduled,
            "dead_lettered": self.dead_lettered,
            "expired": self.expired,
            "missing_handler": self.missing_handler,
            "claimed_elsewhere": self.claimed_elsewhere,
        }


class RetryQueue:
    """Durable queue for side effects that failed after a redemption was recorded.

    Items live under their own key with a TTL and are indexed by due time in a
    sorted set. Draining runs the registered handler per operation; failures are
    rescheduled with jittered exponential backoff until ``max_attempts`` is reached, after
    which the item is moved to a dead-letter key.
    """

    def __init__(
        self,
        cache: CacheStore,
        *,
        ttl_seconds: int = 86400,
        max_attempts: int = 5,
        backoff_max_seconds: int = 300,
    ) -> None:
        self._cache = cache
        self._ttl_seconds = ttl_seconds
        self._max_attempts = max(1, max_attempts)
        self._backoff_max_seconds = max(1, backoff_max_seconds)

    async def enqueue(
        self,
        key: str,
        *,
        operation: str,
        payload: dict[str, Any],
        last_error: str,
        now_utc: datetime,
        attempt: int = 1,
    ) -> RetryItem:
        item = RetryItem(
            key=key,
            operation=operation,
            payload=payload,
            attempt=attempt,
            last_error=last_error,
            enqueued_at=now_utc,
            next_attempt_at=now_utc,
        )
        await self._cache.set_json(key, item.as_dict(), ttl_seconds=self._ttl_seconds)
        await self._cache.schedule(RETRY_DUE_INDEX_KEY, key, due_at=now_utc.timestamp())
        logger.warning(
            "retry_item_enqueued",
            retry_key=key,
            operation=operation,
            attempt=attempt,
            last_error=last_error,
        )
        return item

    async def get(self, key: str) -> RetryItem | None:
        raw = await self._cache.get_json(key)
        if not isinstance(raw, dict):
            return None
        return RetryItem.from_dict(key, raw)

    async def _dead_letter(self, item: RetryItem) -> None:
        await self._cache.set_json(
            f"{RETRY_DEAD_LETTER_PREFIX}{item.key}",
            item.as_dict(),
            ttl_seconds=RETRY_DEAD_LETTER_TTL_SECONDS,
        )
        await self._cache.delete(item.key)
        await self._cache.unschedule(RETRY_DUE_INDEX_KEY, item.key)
        logger.error(
            "retry_item_dead_lettered",
            retry_key=item.key,
            operation=item.operation,
            attempt=item.attempt,
            last_error=item.last_error,
        )

    def _backoff_seconds(self, attempt: int) -> float:
        base_delay = min(self._backoff_max_seconds, 2 ** (max(1, attempt) - 1))
        jittered = base_delay * random.uniform(1.0, 1.0 + RETRY_JITTER_RATIO)
        return min(float(self._backoff_max_seconds), jittered)

    async def _reschedule(self, item: RetryItem, *, now_utc: datetime) -> None:
        delay_seconds = self._backoff_seconds(item.attempt)
        item.next_attempt_at = now_utc + timedelta(seconds=delay_seconds)
        remaining_ttl = await self._cache.ttl(item.key)
        await self._cache.set_json(
            item.key,
            item.as_dict(),
            ttl_seconds=remaining_ttl if remaining_ttl > 0 else self._ttl_seconds,
        )
        await self._cache.schedule(
            RETRY_DUE_INDEX_KEY,
            item.key,
            due_at=item.next_attempt_at.timestamp(),
        )
        logger.warning(
            "retry_item_rescheduled",
            retry_key=item.key,
            operation=item.operation,
            attempt=item.attempt,
            delay_seconds=round(delay_seconds, 3),
            last_error=item.last_error,
        )

    async def drain(
        self,
        handlers: Mapping[str, RetryHandler],
        *,
        now_utc: datetime,
        batch_size: int = 100,
    ) -> tuple[DrainSummary, list[RetryItem]]:
        summary = DrainSummary()
        dead_lettered: list[RetryItem] = []
        now_ts = now_utc.timestamp()
        due_keys = await self._cache.due(
            RETRY_DUE_INDEX_KEY,
            now=now_ts,
            limit=max(1, batch_size),
        )

        for key in due_keys:
            summary.examined += 1
            # The lease pushes the due time forward so a crashed worker's item comes back later.
            claimed = await self._cache.claim_due(
                RETRY_DUE_INDEX_KEY,
                key,
                now=now_ts,
                lease_until=now_ts + RETRY_CLAIM_LEASE_SECONDS,
            )
            if not claimed:
                summary.claimed_elsewhere += 1
                logger.info("retry_item_claimed_elsewhere", retry_key=key)
                continue

            item = await self.get(key)
            if item is None:
                await self._cache.unschedule(RETRY_DUE_INDEX_KEY, key)
                summary.expired += 1
                logger.warning("retry_item_expired", retry_key=key)
                continue

            handler = handlers.get(item.operation)
            if handler is None:
                item.last_error = f"no handler registered for {item.operation}"
                await self._dead_letter(item)
                summary.missing_handler += 1
                summary.dead_lettered += 1
                dead_lettered.append(item)
                continue

            try:
                await handler(item.payload)
            except Exception as exc:
                item.attempt += 1
                item.last_error = f"{type(exc).__name__}: {exc}"
                if item.attempt >= self._max_attempts:
                    await self._dead_letter(item)
                    summary.dead_lettered += 1
                    dead_lettered.append(item)
                else:
                    await self._reschedule(item, now_utc=now_utc)
                    summary.rescheduled += 1
                continue

            await self._cache.delete(item.key)
            await self._cache.unschedule(RETRY_DUE_INDEX_KEY, item.key)
            summary.succeeded += 1
            logger.info(
                "retry_item_succeeded",
                retry_key=item.key,
                operation=item.operation,
                attempt=item.attempt,
            )

        return summary, dead_lettered
