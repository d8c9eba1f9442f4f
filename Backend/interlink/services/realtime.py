"""
Row-change notifications for the client sync layer.
Every job mutation is published on `job:{id}` and `project:{project_id}`.
"""
import json
import logging
from typing import Any, Dict, Optional

import redis

from interlink.core.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None
_redis_checked = False


def job_channel(job_id: str) -> str:
    return f"job:{job_id}"


def project_channel(project_id: str) -> str:
    return f"project:{project_id}"


def get_redis_client() -> Optional[redis.Redis]:
    """Lazily connect once. None means Pub/Sub is unavailable and clients poll."""
    global _redis_client, _redis_checked
    if _redis_checked:
        return _redis_client
    _redis_checked = True
    if not settings.REDIS_URL:
        logger.info("REDIS_URL not set. Real-time updates disabled; clients will poll.")
        return None
    try:
        client = redis.from_url(settings.REDIS_URL, decode_responses=True, socket_connect_timeout=1)
        client.ping()
        _redis_client = client
        logger.info(f"Connected to Redis for Pub/Sub at {settings.REDIS_URL}")
    except redis.RedisError as e:
        logger.warning(f"Redis not available ({e}). WebSockets will fallback to polling.")
    return _redis_client


def reset_redis_client(client: Optional[redis.Redis] = None) -> None:
    """Drop the cached connection (or install one). Used by tests."""
    global _redis_client, _redis_checked
    _redis_client = client
    _redis_checked = client is not None


def publish_update(channel: str, data: Dict[str, Any]) -> bool:
    """Publish update to a Redis channel. Failures are logged, never raised."""
    client = get_redis_client()
    if not client:
        return False
    try:
        client.publish(channel, json.dumps(data, default=str))
        return True
    except redis.RedisError as e:
        logger.error(f"Redis publish failed on {channel}: {e}")
        return False


def publish_job_change(job_data: Dict[str, Any]) -> None:
    publish_update(job_channel(job_data["id"]), job_data)
    publish_update(project_channel(job_data["project_id"]), job_data)
