"""
Rate Limiting Module
Uses slowapi (Token Bucket) to protect API endpoints from abuse.
"""
import logging

import redis
from slowapi import Limiter
from slowapi.util import get_remote_address

from interlink.core.config import settings

logger = logging.getLogger(__name__)

# Check if Redis is available
storage_uri = "memory://"
if settings.REDIS_URL:
    try:
        client = redis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        client.ping()
        storage_uri = settings.REDIS_URL
        logger.info(f"Rate Limiter connected to Redis at {settings.REDIS_URL}")
    except redis.RedisError as e:
        logger.warning(f"Rate Limiter: Redis not available ({e}). Falling back to memory storage.")

# Key function: rate limit per client IP address
limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=storage_uri,
)

# Endpoint-specific limits (importable constants)
AUTH_LIMIT = "10/minute"
CREATE_LIMIT = "30/minute"
STATUS_LIMIT = "120/minute"
INTERNAL_LIMIT = "600/minute"
WEBHOOK_LIMIT = "300/minute"

logger.info(f"Rate limiting {'ENABLED' if settings.RATE_LIMIT_ENABLED else 'DISABLED'}")
