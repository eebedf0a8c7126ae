"""Redis-backed sliding window rate limiter shared by every worker process."""

from __future__ import annotations

import time
from typing import Final

from redis import Redis
from redis.exceptions import ResponseError


class RedisSlidingWindowRateLimiter:
    """Attempts are members of a sorted set scored by their millisecond timestamp."""

    _SCRIPT: Final[str] = """
    local key = KEYS[1]
    local seq_key = KEYS[2]
    local window_ms = tonumber(ARGV[1])
    local limit = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])

    redis.call('ZREMRANGEBYSCORE', key, 0, now_ms - window_ms)
    if redis.call('ZCARD', key) >= limit then
        return 0
    end
    local seq = redis.call('INCR', seq_key)
    redis.call('PEXPIRE', seq_key, window_ms)
    redis.call('ZADD', key, now_ms, tostring(now_ms) .. ':' .. tostring(seq))
    redis.call('PEXPIRE', key, window_ms)
    return 1
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "docvault:rate",
    ) -> None:
        self._client = client
        self._max_requests = max_requests
        self._window_ms = window_seconds * 1000
        self._key_prefix = key_prefix
        self._script = client.register_script(self._SCRIPT)

    def allow(self, key: str) -> bool:
        """Return ``True`` when ``key`` is still under the shared limit."""
        now_ms = int(time.time() * 1000)
        redis_key = f"{self._key_prefix}:{key}"
        try:
            result = self._script(
                keys=[redis_key, f"{redis_key}:seq"],
                args=[self._window_ms, self._max_requests, now_ms],
            )
        except ResponseError as exc:
            message = str(exc).lower()
            if "unknown command" in message and "eval" in message:
                return self._allow_without_lua(redis_key, now_ms)
            raise
        return int(result) == 1

    def _allow_without_lua(self, redis_key: str, now_ms: int) -> bool:
        """Non-atomic fallback for servers without scripting support."""
        self._client.zremrangebyscore(redis_key, 0, now_ms - self._window_ms)
        if self._client.zcard(redis_key) >= self._max_requests:
            return False
        seq_key = f"{redis_key}:seq"
        seq = self._client.incr(seq_key)
        self._client.pexpire(seq_key, self._window_ms)
        self._client.zadd(redis_key, {f"{now_ms}:{seq}": now_ms})
        self._client.pexpire(redis_key, self._window_ms)
        return True
