# cache.py
"""
Redis-backed session store and answer cache.

Keys:
  session:{session_id}  -> user id (string), expires with the cookie
  astrology:...         -> JSON-encoded cached answers
"""
import os
import json
import logging
from typing import Any, Optional

import redis

log = logging.getLogger("cache")

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", str(60 * 60 * 24 * 7)))
DEFAULT_CACHE_TTL = int(os.getenv("ANSWER_CACHE_TTL_SECONDS", "3600"))

_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """FastAPI dependency; one pooled client per process."""
    global _client
    if _client is None:
        _client = redis.Redis.from_url(
            REDIS_URL,
            decode_responses=True,
            health_check_interval=30,
            retry_on_timeout=True,
        )
    return _client


def _session_key(session_id: str) -> str:
    return f"session:{session_id}"


# --- Sessions -----------------------------------------------------------------
def set_session(r: redis.Redis, user_id: int, session_id: str, ttl: int = SESSION_TTL_SECONDS) -> None:
    r.set(_session_key(session_id), str(user_id), ex=ttl)


def get_session(r: redis.Redis, session_id: str) -> Optional[int]:
    raw = r.get(_session_key(session_id))
    if not raw:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        log.warning("Malformed session value for %s", session_id)
        return None


def delete_session(r: redis.Redis, session_id: str) -> None:
    r.delete(_session_key(session_id))


# --- Generic cache ------------------------------------------------------------
def cache_data(r: redis.Redis, key: str, data: Any, ttl: int = DEFAULT_CACHE_TTL) -> None:
    try:
        r.set(key, json.dumps(data), ex=ttl)
    except redis.RedisError as e:
        log.warning("Cache write failed for %s: %s", key[:80], e)


def get_cached_data(r: redis.Redis, key: str) -> Any:
    try:
        raw = r.get(key)
    except redis.RedisError as e:
        log.warning("Cache read failed for %s: %s", key[:80], e)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None
