"""
Login throttling

Counts failed logins per email inside a fixed window. Counters live in
Redis when REDIS_URL is set, otherwise in process memory.
"""
import logging
import time
from typing import Dict, Optional, Tuple

import redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


def init_redis(redis_url: str):
    """Connect to Redis, returning None when unset or unreachable."""
    if not redis_url:
        logger.warning("REDIS_URL not set - using in-memory login throttle")
        return None

    try:
        client = redis.from_url(redis_url, decode_responses=True)
        client.ping()
        logger.info("Redis connected successfully")
        return client
    except (RedisError, ValueError) as e:
        logger.error(f"Redis connection failed: {e}")
        return None


class LoginThrottle:
    """Lock an email out after too many failed logins."""

    KEY_PREFIX = "login_failures:"

    def __init__(self, max_failures: int = 5, window_seconds: int = 900, redis_client=None):
        self.max_failures = max_failures
        self.window_seconds = window_seconds
        self.redis_client = redis_client
        self._counters: Dict[str, Tuple[int, float]] = {}  # key -> (count, expiry)

    @property
    def enabled(self) -> bool:
        return self.max_failures > 0

    def _key(self, email: str) -> str:
        return f"{self.KEY_PREFIX}{email.lower()}"

    def failures(self, email: str) -> int:
        key = self._key(email)
        if self.redis_client is not None:
            try:
                value = self.redis_client.get(key)
            except RedisError as e:
                logger.error(f"Error reading login failures: {e}")
                return 0
            return int(value) if value else 0

        entry = self._counters.get(key)
        if entry is None:
            return 0
        count, expiry = entry
        if time.time() >= expiry:
            del self._counters[key]
            return 0
        return count

    def _purge_expired(self):
        now = time.time()
        expired = [key for key, (_, expiry) in self._counters.items() if now >= expiry]
        for key in expired:
            del self._counters[key]

    def is_locked(self, email: str) -> bool:
        return self.enabled and self.failures(email) >= self.max_failures

    def record_failure(self, email: str) -> int:
        if not self.enabled:
            return 0

        key = self._key(email)
        if self.redis_client is not None:
            try:
                # INCR keeps the TTL set by the first failure in the window
                pipe = self.redis_client.pipeline(transaction=True)
                pipe.set(key, 0, ex=self.window_seconds, nx=True)
                pipe.incr(key)
                _, count = pipe.execute()
            except RedisError as e:
                logger.error(f"Error recording login failure: {e}")
                return 0
        else:
            self._purge_expired()
            count = self.failures(email) + 1
            _, expiry = self._counters.get(key, (0, time.time() + self.window_seconds))
            self._counters[key] = (count, expiry)

        if count >= self.max_failures:
            logger.warning(f"Login locked for {self.window_seconds}s after {count} failures")
        return count

    def reset(self, email: str):
        key = self._key(email)
        if self.redis_client is not None:
            try:
                self.redis_client.delete(key)
            except RedisError as e:
                logger.error(f"Error resetting login failures: {e}")
        else:
            self._counters.pop(key, None)


def create_throttle(max_failures: int, window_seconds: int, redis_url: Optional[str] = None) -> LoginThrottle:
    return LoginThrottle(
        max_failures=max_failures,
        window_seconds=window_seconds,
        redis_client=init_redis(redis_url or ""),
    )
