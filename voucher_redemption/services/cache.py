"""Redis-backed cache, counter and schedule primitives shared by the redemption flow."""

from __future__ import annotations

import json
from typing import Any

from redis.asyncio import Redis

from voucher_redemption.core.config import get_settings


# Deletes the key only when its JSON field matches, so two callers cannot both consume it.
_POP_JSON_IF_FIELD_MATCHES = """
local raw = redis.call('GET', KEYS[1])
if not raw then
    return false
end
local ok, entry = pcall(cjson.decode, raw)
if ok and type(entry) == 'table' and entry[ARGV[1]] == ARGV[2] then
    redis.call('DEL', KEYS[1])
    return raw
end
return false
"""

# Moves a due member to its lease deadline; members not yet due are left untouched.
_CLAIM_DUE_MEMBER = """
local score = redis.call('ZSCORE', KEYS[1], ARGV[1])
if score and tonumber(score) <= tonumber(ARGV[2]) then
    redis.call('ZADD', KEYS[1], ARGV[3], ARGV[1])
    return 1
end
return 0
"""


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


class CacheStore:
    def __init__(self, redis_client: Redis | None = None) -> None:
        self._redis = redis_client or Redis.from_url(
            get_settings().redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    async def get_json(self, key: str) -> Any | None:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set_json(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        await self._redis.set(key, _dumps(value), ex=ttl_seconds)

    async def set_json_if_absent(self, key: str, value: Any, *, ttl_seconds: int) -> bool:
        created = await self._redis.set(key, _dumps(value), ex=ttl_seconds, nx=True)
        return bool(created)

    async def pop_json_if(self, key: str, *, field: str, expected: str) -> Any | None:
        raw = await self._redis.eval(_POP_JSON_IF_FIELD_MATCHES, 1, key, field, expected)
        if raw is None:
            return None
        return json.loads(raw)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._redis.delete(*keys))

    async def ttl(self, key: str) -> int:
        return int(await self._redis.ttl(key))

    async def incr_window(self, key: str, *, window_seconds: int) -> tuple[int, int]:
        count = int(await self._redis.incr(key))
        if count == 1:
            await self._redis.expire(key, window_seconds)
        ttl = int(await self._redis.ttl(key))
        return count, ttl if ttl > 0 else window_seconds

    async def push_capped(
        self,
        key: str,
        value: Any,
        *,
        max_length: int,
        ttl_seconds: int,
    ) -> None:
        await self._redis.lpush(key, _dumps(value))
        await self._redis.ltrim(key, 0, max_length - 1)
        await self._redis.expire(key, ttl_seconds)

    async def list_json(self, key: str, *, limit: int) -> list[Any]:
        raw_items = await self._redis.lrange(key, 0, max(0, limit - 1))
        return [json.loads(raw) for raw in raw_items]

    async def add_member(self, key: str, member: str, *, ttl_seconds: int) -> int:
        await self._redis.sadd(key, member)
        await self._redis.expire(key, ttl_seconds)
        return int(await self._redis.scard(key))

    async def is_member(self, key: str, member: str) -> bool:
        return bool(await self._redis.sismember(key, member))

    async def schedule(self, key: str, member: str, *, due_at: float) -> None:
        await self._redis.zadd(key, {member: due_at})

    async def due(self, key: str, *, now: float, limit: int) -> list[str]:
        return list(await self._redis.zrangebyscore(key, "-inf", now, start=0, num=limit))

    async def claim_due(self, key: str, member: str, *, now: float, lease_until: float) -> bool:
        claimed = await self._redis.eval(_CLAIM_DUE_MEMBER, 1, key, member, now, lease_until)
        return int(claimed or 0) == 1

    async def unschedule(self, key: str, member: str) -> None:
        await self._redis.zrem(key, member)

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()
