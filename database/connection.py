"""Database connection setup for MongoDB and Redis."""
import logging
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
import redis.asyncio as redis
from pymongo import ASCENDING, DESCENDING
from shared.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """Owns the MongoDB and Redis clients for one process.

    Open it once at startup with ``connect()`` and release it with
    ``close()`` on shutdown. Services receive ``db`` and ``redis`` from it.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self._mongo_client: Optional[AsyncIOMotorClient] = None
        self._redis_client: Optional[redis.Redis] = None
        self._db: Optional[AsyncIOMotorDatabase] = None

    async def connect(self) -> "DatabaseConnection":
        """Initialize MongoDB and Redis connections."""
        if self._mongo_client is None:
            self._mongo_client = AsyncIOMotorClient(self.settings.mongo_url)
            self._db = self._mongo_client[self.settings.mongo_db_name]
            await self._setup_indexes()
        if self._redis_client is None:
            self._redis_client = redis.from_url(
                self.settings.redis_url,
                decode_responses=True
            )
        logger.info("Connected to MongoDB and Redis")
        return self

    async def _setup_indexes(self):
        """Set up MongoDB indexes for optimal query performance."""
        if self._db is None:
            return

        # Jobs collection indexes
        await self._db.jobs.create_index(
            [("external_id", ASCENDING), ("source", ASCENDING)],
            unique=True
        )
        await self._db.jobs.create_index("category")
        await self._db.jobs.create_index("job_type")
        await self._db.jobs.create_index([("created_at", DESCENDING)])

        # Import logs collection indexes
        await self._db.import_logs.create_index([("import_date_time", DESCENDING)])
        await self._db.import_logs.create_index("status")
        await self._db.import_logs.create_index("source")

    @property
    def db(self) -> AsyncIOMotorDatabase:
        if self._db is None:
            raise RuntimeError("DatabaseConnection.connect() has not been called")
        return self._db

    @property
    def redis(self) -> redis.Redis:
        if self._redis_client is None:
            raise RuntimeError("DatabaseConnection.connect() has not been called")
        return self._redis_client

    async def close(self):
        """Close all database connections."""
        if self._mongo_client:
            self._mongo_client.close()
            self._mongo_client = None
            self._db = None
        if self._redis_client:
            await self._redis_client.aclose()
            self._redis_client = None
        logger.info("Database connections closed")
