# chatbot_verifier/auth.py
"""
API key auth and per-key rate limiting for /api/* routes.

Every chat query can cost a ledger transaction, so keys are limited per minute.

Env vars:
- MOCK_AUTH (default: true): bypass auth in dev
- API_KEYS: comma-separated allowed keys
- API_KEYS_FILE: optional path to file with one key per line
- RATE_LIMIT_PER_MINUTE (default: 30)
- REDIS_URL: optional, shares the limiter across workers
"""

import os
import time
import threading
from typing import Dict, Iterable, Optional, Set, Tuple

from chatbot_verifier import monitoring

# Redis is an optional extra
try:
    import redis as _redis_mod
except ImportError:
    _redis_mod = None

logger = monitoring.logger

MOCK_AUTH = os.getenv("MOCK_AUTH", "true").lower() in ("1", "true", "yes")
RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "30"))
REDIS_URL = os.getenv("REDIS_URL", "")


def _clean(keys: Iterable[str]) -> Set[str]:
    return {k.strip() for k in keys if k and k.strip()}


def load_api_keys(env_value: str = None, path: str = None) -> Set[str]:
    env_value = os.getenv("API_KEYS", "") if env_value is None else env_value
    path = os.getenv("API_KEYS_FILE", "") if path is None else path
    keys = _clean(env_value.split(","))
    if path and os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                keys |= _clean(f)
        except OSError:
            logger.warning("Could not read API_KEYS_FILE", extra={"path": path})
    return keys


API_KEYS = load_api_keys()


class InMemoryFixedWindowLimiter:
    """Thread-safe per-process limiter; one counter per key per wall-clock minute."""

    def __init__(self, limit_per_minute: int = 30):
        self.limit = limit_per_minute
        self._windows: Dict[str, Tuple[int, int]] = {}  # key -> (minute, count)
        self._lock = threading.Lock()

    def allow_request(self, api_key: str) -> Tuple[bool, Optional[int]]:
        minute = int(time.time()) // 60
        with self._lock:
            window, count = self._windows.get(api_key, (minute, 0))
            if window != minute:
                count = 0
            if count >= self.limit:
                return False, 0
            self._windows[api_key] = (minute, count + 1)
            return True, self.limit - (count + 1)

    def reset(self):
        with self._lock:
            self._windows.clear()


class RedisFixedWindowLimiter:
    """Shared limiter using INCR + EXPIRE on a per-minute key."""

    def __init__(self, redis_url: str, limit_per_minute: int = 30):
        if _redis_mod is None:
            raise RuntimeError("redis package not installed")
        self.limit = limit_per_minute
        self._client = _redis_mod.from_url(redis_url, decode_responses=True)

    def allow_request(self, api_key: str) -> Tuple[bool, Optional[int]]:
        key = f"chat-rate:{api_key}:{int(time.time()) // 60}"
        try:
            count = int(self._client.incr(key))
            if count == 1:
                self._client.expire(key, 120)
        except Exception:
            # fail open; the ledger lock still bounds write throughput
            logger.warning("Redis rate limiter unavailable", exc_info=True)
            return True, None
        if count > self.limit:
            return False, 0
        return True, self.limit - count


def _build_limiter():
    if REDIS_URL and _redis_mod is not None:
        try:
            return RedisFixedWindowLimiter(REDIS_URL, RATE_LIMIT_PER_MINUTE)
        except Exception:
            logger.warning("Falling back to in-memory rate limiter", exc_info=True)
    return InMemoryFixedWindowLimiter(RATE_LIMIT_PER_MINUTE)


_rate_limiter = _build_limiter()


def is_key_allowed(api_key: Optional[str]) -> bool:
    """Check if API key is valid. If MOCK_AUTH=true, always returns True."""
    if MOCK_AUTH:
        return True
    return bool(api_key) and api_key in API_KEYS


def check_rate_limit(api_key: str) -> Tuple[bool, Optional[int]]:
    """Check and consume quota. Returns (allowed, remaining)."""
    if MOCK_AUTH:
        return True, None
    if not api_key:
        return False, 0
    return _rate_limiter.allow_request(api_key)
