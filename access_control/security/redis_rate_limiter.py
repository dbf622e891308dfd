"""Redis-backed fixed window rate limiter."""

from __future__ import annotations

import logging
from typing import Final

from redis import Redis
from redis.exceptions import RedisError, ResponseError

logger = logging.getLogger(__name__)


class RedisFixedWindowRateLimiter:
    """Shared fixed window counter so every replica sees the same budget.

    The limiter is advisory: when Redis cannot be reached the request is
    allowed and the fault is logged.
    """

    _LUA_SCRIPT: Final[str] = """
    local key = KEYS[1]
    local window_ms = tonumber(ARGV[1])
    local max_requests = tonumber(ARGV[2])

    local current = redis.call('INCR', key)
    if current == 1 then
        redis.call('PEXPIRE', key, window_ms)
    end
    if current > max_requests then
        return 0
    end
    return 1
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "rate"
    ) -> None:
        """Initialise the Redis client, window configuration, and Lua script cache."""
        self._client = client
        self._max_requests = max_requests
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._script = client.register_script(self._LUA_SCRIPT)

    def is_allowed(self, key: str) -> bool:
        """Return ``True`` when the key is still within the shared rate limit."""
        redis_key = f"{self._key_prefix}:{key}"
        try:
            return self._check(redis_key)
        except RedisError as exc:
            logger.warning("redis rate limiter unavailable, allowing %s: %s", key, exc)
            return True

    def _check(self, redis_key: str) -> bool:
        try:
            result = self._script(keys=[redis_key], args=[self._window_ms, self._max_requests])
            return int(result) == 1
        except ResponseError as exc:
            message = str(exc).lower()
            if "unknown command `evalsha`" in message or "unknown command `eval`" in message:
                return self._allow_fallback(redis_key)
            raise

    def _allow_fallback(self, redis_key: str) -> bool:
        """Plain-command implementation used when Lua scripting is unavailable."""
        current = self._client.incr(redis_key)
        if current == 1:
            self._client.pexpire(redis_key, self._window_ms)
        return current <= self._max_requests
