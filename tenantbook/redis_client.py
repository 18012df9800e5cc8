"""
tenantbook/redis_client.py

Redis access for the token blacklist, per-user logout markers and the
notifications pub/sub channel.

Redis is optional: with REDIS_URL unset every helper degrades to a no-op
(nothing is revoked, nothing is published) and the API keeps serving.
Redis errors are logged and never fail a request.
"""

from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional

import redis

from tenantbook.config import (
    IS_DEV,
    LOGOUT_MARKER_TTL_SECONDS,
    NOTIFICATIONS_CHANNEL,
    REDIS_URL,
)

_client: Optional[Any] = None
_initialized = False


def get_redis() -> Optional[Any]:
    """Return the shared Redis client, or None when Redis is disabled."""
    global _client, _initialized
    if _initialized:
        return _client
    _initialized = True
    if not REDIS_URL:
        _client = None
        return None
    _client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
    print("[REDIS] Client configured")
    return _client


def set_redis(client: Optional[Any]) -> None:
    """Swap the shared client (tests inject an in-memory stand-in; None disables)."""
    global _client, _initialized
    _client = client
    _initialized = True


def redis_status() -> str:
    client = get_redis()
    if client is None:
        return "disabled"
    try:
        client.ping()
        return "ok"
    except redis.RedisError as e:
        print(f"[REDIS] Ping failed: {e}")
        return "unavailable"


# ---------------------------------------------------------
# Token blacklist
# ---------------------------------------------------------
def logout_marker_key(user_id: Any) -> str:
    return f"user_logout:{user_id}"


def revoke_token(token: str, ttl_seconds: int) -> bool:
    """Blacklist a token until it would have expired anyway."""
    client = get_redis()
    if client is None:
        return False
    try:
        client.set(token, "blacklisted", ex=max(1, int(ttl_seconds)))
        return True
    except redis.RedisError as e:
        print(f"[REDIS] Failed to blacklist token: {e}")
        return False


def is_token_revoked(token: str) -> bool:
    client = get_redis()
    if client is None:
        return False
    try:
        return bool(client.get(token))
    except redis.RedisError as e:
        print(f"[REDIS] Blacklist lookup failed: {e}")
        return False


def mark_user_logout(user_id: Any, now_ms: Optional[int] = None) -> Optional[int]:
    """Record when a user logged out; tokens issued before this are rejected."""
    client = get_redis()
    if client is None:
        return None
    marker = now_ms if now_ms is not None else int(time.time() * 1000)
    try:
        client.set(logout_marker_key(user_id), str(marker), ex=LOGOUT_MARKER_TTL_SECONDS)
        return marker
    except redis.RedisError as e:
        print(f"[REDIS] Failed to set logout marker: {e}")
        return None


def get_user_logout_ms(user_id: Any) -> Optional[int]:
    client = get_redis()
    if client is None:
        return None
    try:
        raw = client.get(logout_marker_key(user_id))
    except redis.RedisError as e:
        print(f"[REDIS] Logout marker lookup failed: {e}")
        return None
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------
# Pub/sub
# ---------------------------------------------------------
def publish_event(payload: Dict[str, Any], channel: str = NOTIFICATIONS_CHANNEL) -> bool:
    """Publish a JSON event. Returns True when handed to Redis."""
    client = get_redis()
    if client is None:
        if IS_DEV:
            print(f"[REDIS] Publish skipped (disabled): type={payload.get('type')}")
        return False
    try:
        client.publish(channel, json.dumps(payload, default=str))
        return True
    except redis.RedisError as e:
        print(f"[REDIS] Publish failed: type={payload.get('type')}, error={e}")
        return False
