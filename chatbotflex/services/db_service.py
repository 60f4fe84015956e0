# /chatbotflex/services/db_service.py

import uuid
import logging
from motor.motor_asyncio import AsyncIOMotorClient
from datetime import datetime, timezone
from typing import Any, Dict

from chatbotflex.config.settings import settings
from chatbotflex.utils.circuit_breaker import CircuitBreaker
from chatbotflex.utils.metrics import database_operations_counter

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = "chatbotflex"


def new_id() -> str:
    """Document ids are opaque strings so they travel unchanged through JSON and URLs."""
    return uuid.uuid4().hex


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class DatabaseService:
    """
    Owns the MongoDB client and the collection layout. Feature services
    (flows, conversations, operator queue) receive `db_service.db` and keep
    their own queries.
    """

    def __init__(self, mongo_uri: str):
        try:
            self.client = AsyncIOMotorClient(
                mongo_uri,
                maxPoolSize=settings.max_pool_size,
                minPoolSize=settings.min_pool_size,
                tls=settings.mongo_tls,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000
            )
            self.db = self.client.get_default_database(DEFAULT_DATABASE)
            self.circuit_breaker = CircuitBreaker("mongodb")
            logger.info("MongoDB client initialized successfully.")
        except Exception as e:
            logger.error(f"Error initializing MongoDB client: {e}")
            raise

    async def _safe_db_operation(self, operation, default_return: Any = None) -> Any:
        """Runs a best-effort write (audit trail); failures are logged, never raised."""
        try:
            return await self.circuit_breaker.call(operation)
        except Exception as e:
            logger.exception(f"Database operation failed: {type(e).__name__}")
            database_operations_counter.labels(operation="db_error", status="failed").inc()
            return default_return

    # ==================== Index Management ====================

    async def create_indexes(self) -> None:
        """Create all necessary database indexes on startup."""
        indexes = [
            ("flows", [("isActive", 1)], {}),
            ("flows", [("updated_at", -1)], {}),
            ("conversations", [("channel", 1), ("contact_id", 1), ("status", 1)], {}),
            ("conversations", [("status", 1), ("waiting_since", 1)], {}),
            ("conversations", [("assigned_to", 1), ("status", 1)], {}),
            ("conversations", [("status", 1), ("updated_at", 1)], {}),
            ("messages", [("conversation_id", 1), ("timestamp", 1)], {}),
            ("messages", [("external_id", 1)], {"sparse": True}),
            ("users", [("role", 1), ("status", 1)], {}),
            ("security_events", [("timestamp", -1)], {}),
        ]

        for collection, keys, options in indexes:
            try:
                await self.db[collection].create_index(keys, **options)
                logger.debug(f"Created index on {collection}: {keys}")
            except Exception as e:
                logger.error(f"Failed to create index on {collection} {keys}: {e}")

        logger.info("Database indexes created successfully.")

    async def health_check(self) -> bool:
        try:
            await self.client.admin.command('ping')
            return True
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return False

    # ==================== Security Operations ====================

    async def log_security_event(self, event_type: str, ip_address: str, details: Dict[str, Any]) -> None:
        event_data = {
            "event_type": event_type,
            "ip_address": ip_address,
            "timestamp": now_utc(),
            "details": details
        }
        await self._safe_db_operation(
            lambda: self.db.security_events.insert_one(event_data)
        )

    def close(self) -> None:
        if self.client:
            self.client.close()


# Globally accessible instance
db_service = DatabaseService(settings.mongo_uri)
