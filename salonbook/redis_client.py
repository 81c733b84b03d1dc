"""
Shared Redis connection
Used by the availability cache and the change-notification bridge
"""

import logging
from typing import Optional

import redis

from .config import REDIS_DB, REDIS_HOST, REDIS_PASSWORD, REDIS_PORT, REDIS_SSL, REDIS_URL

logger = logging.getLogger(__name__)

# Redis connection
redis_client: Optional[redis.Redis] = None


def _mask_url(url: str) -> str:
    if "@" in url:
        url_parts = url.split("@")
        protocol = url_parts[0].split(":")[0]
        return f"{protocol}:****@{url_parts[1]}"
    return "****"


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client
    Supports both a REDIS_URL and discrete host/port settings
    """
    global redis_client

    if redis_client is None:
        logger.info("🔄 Initializing Redis connection...")

        common = {
            "decode_responses": True,
            "socket_connect_timeout": 5,
            "socket_timeout": 5,  # Keep well under the request budget
            "retry_on_timeout": True,
            "health_check_interval": 30,
            "max_connections": 20,
        }

        if REDIS_URL:
            logger.info(f"📡 Using Redis URL connection: {_mask_url(REDIS_URL)}")
            client = redis.from_url(REDIS_URL, **common)
        else:
            logger.info(
                f"📡 Using Redis at {REDIS_HOST}:{REDIS_PORT}/{REDIS_DB} "
                f"({'with' if REDIS_SSL else 'without'} SSL)"
            )
            client = redis.Redis(
                host=REDIS_HOST,
                port=REDIS_PORT,
                password=REDIS_PASSWORD,
                db=REDIS_DB,
                ssl=REDIS_SSL,
                **common,
            )

        try:
            client.ping()
        except Exception as e:
            logger.error(f"❌ Failed to connect to Redis: {str(e)}")
            raise

        redis_client = client
        logger.info("Redis connected successfully")

    return redis_client
