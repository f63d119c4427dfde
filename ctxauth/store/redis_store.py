"""
Redis-backed cache store.

Lets the decision cache and rate-limit buckets be shared across engine
instances. Values are JSON documents stored with millisecond TTLs; token
buckets are hashes updated by a Lua script so the refill and spend run as
one atomic step inside Redis.
"""

import json
import logging
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import NoScriptError

from .types import CacheStore


logger = logging.getLogger(__name__)


# Lua script for atomic token bucket operations. Floats are returned as
# strings because Redis truncates Lua numbers to integers.
TOKEN_BUCKET_SCRIPT = """
local key = KEYS[1]
local capacity = tonumber(ARGV[1])
local rate_per_second = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local ttl_ms = tonumber(ARGV[4])
local cost = tonumber(ARGV[5])

local bucket = redis.call('HMGET', key, 'tokens', 'last_update')
local tokens = tonumber(bucket[1])
local last_update = tonumber(bucket[2])

if tokens == nil then
    tokens = capacity
    last_update = now
end

-- Calculate token replenishment
local time_passed = math.max(0, now - last_update)
tokens = math.min(capacity, tokens + time_passed * rate_per_second)

local allowed = 0
local retry_after = 0

if tokens >= cost then
    tokens = tokens - cost
    allowed = 1
else
    retry_after = (cost - tokens) / rate_per_second
end

redis.call('HSET', key, 'tokens', tostring(tokens), 'last_update', tostring(now))
redis.call('PEXPIRE', key, ttl_ms)

return {allowed, tostring(tokens), tostring(retry_after)}
"""


def _text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class RedisCacheStore(CacheStore):
    """Redis-based cache store for distributed deployments."""

    def __init__(
        self,
        redis_client: Any = None,
        redis_url: Optional[str] = None,
        key_prefix: str = "ctxauth:",
    ):
        """
        Initialize Redis cache store.

        Args:
            redis_client: Existing ``redis.asyncio`` client
            redis_url: Connection URL used when no client is given
            key_prefix: Prefix applied to every key
        """
        if redis_client is None:
            redis_client = redis.from_url(redis_url) if redis_url else redis.Redis()
        self.redis_client = redis_client
        self.key_prefix = key_prefix
        self.script_sha: Optional[str] = None

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        data = await self.redis_client.get(self._key(key))
        if data is None:
            return None
        try:
            return json.loads(_text(data))
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable cache value for {key}")
            await self.redis_client.delete(self._key(key))
            return None

    async def set(self, key: str, value: Dict[str, Any], ttl: float) -> None:
        ttl_ms = max(1, int(ttl * 1000))
        await self.redis_client.set(self._key(key), json.dumps(value, default=str), px=ttl_ms)

    async def delete(self, key: str) -> bool:
        return bool(await self.redis_client.delete(self._key(key)))

    async def _ensure_script_loaded(self) -> str:
        """Ensure the token bucket script is loaded into Redis."""
        if self.script_sha is None:
            self.script_sha = _text(await self.redis_client.script_load(TOKEN_BUCKET_SCRIPT))
        return self.script_sha

    async def take_token(
        self,
        key: str,
        capacity: float,
        refill_per_second: float,
        now: float,
        ttl: float,
        cost: float = 1.0,
    ) -> Tuple[bool, float, float]:
        args = (self._key(key), capacity, refill_per_second, now, max(1, int(ttl * 1000)), cost)
        try:
            result = await self.redis_client.evalsha(await self._ensure_script_loaded(), 1, *args)
        except NoScriptError:
            # Script cache was flushed (restart or SCRIPT FLUSH); load it again
            logger.info("Token bucket script missing from Redis, reloading")
            self.script_sha = None
            result = await self.redis_client.evalsha(await self._ensure_script_loaded(), 1, *args)

        allowed, tokens, retry_after = result
        return bool(int(allowed)), float(_text(tokens)), float(_text(retry_after))

    async def close(self) -> None:
        await self.redis_client.aclose()
