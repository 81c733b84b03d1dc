"""
Redis caching utilities for availability reads
Cached results are hints only; mutating operations always go to the database
"""
import hashlib
import json
import logging
from datetime import date
from typing import Any, Callable, Optional

from .redis_client import get_redis_client

logger = logging.getLogger(__name__)


class Cache:
    """Redis cache wrapper with automatic serialization. Fails open when Redis is down."""

    def __init__(self, client_factory: Callable = get_redis_client):
        self.client_factory = client_factory
        self.redis_client = None

    def _get_client(self):
        """Lazy load Redis client"""
        if self.redis_client is None:
            try:
                self.redis_client = self.client_factory()
            except Exception as e:
                logger.warning(f"⚠️ Redis cache unavailable: {e}")
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.get(key)
            if value:
                logger.debug(f"✅ Cache HIT: {key}")
                return json.loads(value)
            logger.debug(f"❌ Cache MISS: {key}")
            return None
        except Exception as e:
            logger.error(f"❌ Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = 30) -> bool:
        """Set value in cache with TTL"""
        client = self._get_client()
        if not client:
            return False

        try:
            serialized = json.dumps(value)
            client.setex(key, ttl, serialized)
            logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False


# Global cache instance
cache = Cache()


# Cache key builders

def build_availability_key(
    tenant_id: int,
    target_date: date,
    version: str,
    service_id: int,
    staff_id: Optional[int] = None,
    owner_token: Optional[str] = None,
) -> str:
    """
    Build cache key for an availability query.

    The version segment comes from the change-notification bridge; bumping
    it orphans every entry computed before the change. The owner token is
    hashed because a caller's own holds do not block their own view.
    """
    staff_str = str(staff_id) if staff_id else "all"
    owner_str = hashlib.sha256(owner_token.encode()).hexdigest()[:16] if owner_token else "anon"
    return (
        f"availability:{tenant_id}:{target_date.isoformat()}:v{version}:"
        f"{service_id}:{staff_str}:{owner_str}"
    )

