"""Webhook idempotency: Redis-based deduplication by Bridge event_id.

Security contract:
- Tracks event IDs in Redis with 24h TTL
- Duplicates are acknowledged with 200 (Bridge retries on errors)
- Key pattern: webhook:seen:{provider}:{event_id}
- If Redis is down, falls back to allowing (fail-open for availability)

Failed deliveries (dispatch raised) drop their seen-marker and are recorded
in the hash webhook:failed:{provider}, so a redelivery from Bridge is
processed again. Records are cleared once a delivery dispatches cleanly.
"""

from __future__ import annotations

import json
import logging
import time

import redis

from bridge_webhooks.config import get_settings

logger = logging.getLogger(__name__)

_DEDUP_TTL_SECONDS = 86400  # 24 hours
_FAILED_TTL_SECONDS = 7 * 86400

_KEY_PREFIX = "webhook:seen"
_FAILED_PREFIX = "webhook:failed"


def _get_redis() -> redis.Redis:
    return redis.from_url(get_settings().redis_url, decode_responses=True)


def _key(provider: str, event_id: str) -> str:
    return f"{_KEY_PREFIX}:{provider}:{event_id}"


def _failed_key(provider: str) -> str:
    return f"{_FAILED_PREFIX}:{provider}"


def is_duplicate(provider: str, event_id: str) -> bool:
    """Check-and-mark an event as seen (atomic SET NX).

    Args:
        provider: Webhook provider ("bridge")
        event_id: Bridge event_id (globally unique)

    Returns:
        True if this event has already been seen (duplicate)
    """
    if not event_id:
        return False  # No ID = can't dedup, allow through

    try:
        r = _get_redis()
        # SET NX returns True if the key was set (new), None if it already existed
        was_set = r.set(_key(provider, event_id), "1", nx=True, ex=_DEDUP_TTL_SECONDS)
        if not was_set:
            logger.info("Duplicate webhook rejected: %s/%s", provider, event_id)
            return True
        return False
    except redis.RedisError:
        logger.warning(
            "Redis unavailable for webhook dedup, allowing %s/%s",
            provider,
            event_id,
            exc_info=True,
        )
        return False


def mark_seen(provider: str, event_id: str) -> None:
    """Explicitly mark an event as seen (e.g. after a manual replay)."""
    if not event_id:
        return

    try:
        r = _get_redis()
        r.set(_key(provider, event_id), "1", ex=_DEDUP_TTL_SECONDS)
    except redis.RedisError:
        logger.warning("Failed to mark webhook as seen: %s/%s", provider, event_id)


def forget(provider: str, event_id: str) -> bool:
    """Drop the seen-marker so a redelivered event is processed again.

    Returns:
        True if a marker was removed
    """
    if not event_id:
        return False

    try:
        r = _get_redis()
        return bool(r.delete(_key(provider, event_id)))
    except redis.RedisError:
        logger.warning("Failed to clear webhook seen-marker: %s/%s", provider, event_id)
        return False


# ── Failed deliveries ────────────────────────────────────────────────────


def record_failure(provider: str, event_id: str, event_type: str, error: str) -> None:
    """Remember a delivery whose dispatch raised, for `failed` / `replay-failed`."""
    if not event_id:
        return

    record = {
        "event_id": event_id,
        "event_type": event_type,
        "error": error,
        "failed_at": time.time(),
    }
    try:
        r = _get_redis()
        r.hset(_failed_key(provider), event_id, json.dumps(record))
        r.expire(_failed_key(provider), _FAILED_TTL_SECONDS)
    except redis.RedisError:
        logger.warning("Failed to record webhook failure: %s/%s", provider, event_id)


def clear_failure(provider: str, event_id: str) -> None:
    if not event_id:
        return

    try:
        _get_redis().hdel(_failed_key(provider), event_id)
    except redis.RedisError:
        logger.warning("Failed to clear webhook failure: %s/%s", provider, event_id)


def list_failures(provider: str) -> list[dict]:
    """Recorded failed deliveries, oldest first.

    Raises:
        redis.RedisError: if Redis is unreachable (callers report it)
    """
    raw = _get_redis().hgetall(_failed_key(provider))
    records = []
    for event_id, value in raw.items():
        try:
            records.append(json.loads(value))
        except ValueError:
            logger.warning("Skipping unreadable failure record for %s/%s", provider, event_id)
    return sorted(records, key=lambda rec: rec.get("failed_at", 0))
