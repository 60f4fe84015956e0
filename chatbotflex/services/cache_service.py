# /chatbotflex/services/cache_service.py

import logging
import redis.asyncio as redis

from chatbotflex.config.settings import settings
from chatbotflex.utils.circuit_breaker import CircuitBreaker
from chatbotflex.utils.metrics import cache_operations

# Redis access for short-lived markers. Meta redelivers webhook events it
# thinks were not acknowledged, so every inbound message id is claimed here
# before the bot reacts to it.

logger = logging.getLogger(__name__)

PROCESSED_KEY_PREFIX = "processed_message"


class CacheService:
    def __init__(self, redis_url: str):
        try:
            self.redis_pool = redis.ConnectionPool.from_url(redis_url, max_connections=20)
            self.redis = redis.Redis(connection_pool=self.redis_pool)
            self.circuit_breaker = CircuitBreaker("redis")
        except Exception as e:
            logger.critical(f"Failed to connect to Redis at {redis_url}: {e}")
            self.redis = None

    async def claim_message(self, channel: str, message_id: str, ttl: int = 300) -> bool:
        """
        Atomically marks an inbound message as seen.

        Returns True the first time the id is claimed within `ttl` seconds and
        False for a redelivery. When Redis is unreachable every message is
        treated as new.
        """
        if not self.redis:
            return True
        key = f"{PROCESSED_KEY_PREFIX}:{channel}:{message_id}"
        try:
            created = await self.circuit_breaker.call(self.redis.set, key, "1", nx=True, ex=ttl)
        except Exception as e:
            cache_operations.labels(operation="claim", status="error").inc()
            logger.warning(f"Could not claim message {message_id}: {e}")
            return True
        cache_operations.labels(operation="claim", status="new" if created else "duplicate").inc()
        return bool(created)

    async def ping(self) -> bool:
        if not self.redis:
            return False
        try:
            return bool(await self.redis.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        if self.redis:
            await self.redis.aclose()


# Globally accessible instance
cache_service = CacheService(settings.redis_url)
