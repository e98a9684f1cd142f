from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Dict, Iterable

import redis
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder

logger = logging.getLogger(__name__)

STREAM_MAXLEN = 1000


@lru_cache(maxsize=1)
def get_redis_client() -> "redis.Redis":
    """
    Return a Redis client configured from settings.REDIS_URL.
    Safe to call from views and Celery tasks.
    """
    url = getattr(settings, "REDIS_URL", None)
    if not url:
        raise RuntimeError("REDIS_URL is not configured")
    return redis.Redis.from_url(url)


def _user_stream_key(user_id: int) -> str:
    return f"fixitnow:events:user:{int(user_id)}"


def push_event(user_id: int, event_type: str, payload: Dict[str, Any]) -> str | None:
    """
    Append a realtime event for one user to their Redis stream.

    - event_type: e.g. "chat:new_message", "dispute:status_changed"
    - payload: JSON-serializable dict (datetimes and decimals allowed)

    Returns the stream entry ID, or None when events are disabled or the
    push failed.
    """
    if not getattr(settings, "REALTIME_EVENTS_ENABLED", True):
        return None

    stream_key = _user_stream_key(user_id)
    try:
        data = {
            "type": event_type,
            "payload": json.dumps(
                payload or {}, cls=DjangoJSONEncoder, separators=(",", ":")
            ),
        }
        client = get_redis_client()
        entry_id = client.xadd(stream_key, data, maxlen=STREAM_MAXLEN, approximate=True)
        if isinstance(entry_id, bytes):
            entry_id = entry_id.decode("utf-8")
        return str(entry_id)
    except Exception:
        logger.warning(
            "events: failed to push event for user %s type=%s",
            user_id,
            event_type,
            exc_info=True,
        )
        return None


def push_event_to_users(
    user_ids: Iterable[int], event_type: str, payload: Dict[str, Any]
) -> None:
    """Fan a single event out to several users, skipping empty ids."""
    for user_id in user_ids:
        if user_id:
            push_event(user_id, event_type, payload)
