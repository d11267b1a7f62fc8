import logging
import os
from typing import Optional

import redis
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"

_redis_client: Optional[redis.Redis] = None


def resolve_redis_url() -> str:
    """REDIS_URL with a scheme added when missing (e.g. "localhost:6379")"""
    raw_url = (os.getenv("REDIS_URL") or "").strip()
    if not raw_url:
        return DEFAULT_REDIS_URL
    return raw_url if "://" in raw_url else f"redis://{raw_url}"


def get_redis_client() -> redis.Redis:
    """Get or create the shared Redis client. Connects lazily on first command."""
    global _redis_client
    if _redis_client is None:
        redis_url = resolve_redis_url()
        _redis_client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            retry_on_timeout=True,
        )
        logger.info("Redis client configured for %s", redis_url.rsplit("@", 1)[-1])
    return _redis_client
