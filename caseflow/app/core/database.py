"""
Database connection and management for the caseflow pipeline service.

This module provides:
- MongoDB connection management with async support (motor)
- Index creation for the case and audit collections
- Database health checking
- Graceful shutdown and error handling
"""

import asyncio
import time
from typing import Any, Dict, Optional

import pymongo
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from caseflow.app.core.exceptions import ErrorCode, raise_database_error
from caseflow.app.utils.logging import database_logger, get_logger, performance_context
from caseflow.config.settings import get_settings

logger = get_logger(__name__)

CASES_COLLECTION = "cases"
CASE_AUDIT_COLLECTION = "case_audit_logs"


class MongoDBManager:
    """
    MongoDB connection and lifecycle management.

    The client is created with ``tz_aware=True`` so every datetime read back
    from the ``cases`` collection carries UTC tzinfo.
    """

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.is_connected: bool = False
        self._connection_lock = asyncio.Lock()

    async def connect(self) -> None:
        """
        Establish connection to MongoDB.

        Raises:
            DatabaseError: If connection fails
        """
        if self.is_connected:
            return

        async with self._connection_lock:
            if self.is_connected:
                return

            db_settings = get_settings().database

            try:
                with performance_context("mongodb_connection"):
                    self.client = AsyncIOMotorClient(
                        db_settings.mongodb_url,
                        serverSelectionTimeoutMS=db_settings.server_selection_timeout_ms,
                        maxPoolSize=db_settings.max_pool_size,
                        minPoolSize=db_settings.min_pool_size,
                        tz_aware=True,
                        retryWrites=True,
                        retryReads=True
                    )
                    self.database = self.client[db_settings.mongodb_database]

                    await self.client.admin.command("ping")
                    self.is_connected = True

                    database_logger.connection_established(
                        database_type="mongodb",
                        database_name=db_settings.mongodb_database
                    )
                    logger.info(
                        "MongoDB connection established",
                        database=db_settings.mongodb_database,
                        uri=db_settings.mongodb_url.split("@")[-1]  # hide credentials
                    )

            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                database_logger.connection_failed("mongodb", str(e))
                raise_database_error(
                    f"Failed to connect to MongoDB: {e}",
                    operation="connect",
                    error_code=ErrorCode.DATABASE_CONNECTION_ERROR
                )

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client and self.is_connected:
            self.client.close()
            self.is_connected = False
            logger.info("MongoDB connection closed")

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform MongoDB health check.

        Returns:
            Health status information
        """
        if not self.is_connected or self.client is None:
            return {"status": "disconnected", "error": "Not connected to MongoDB"}

        try:
            start_time = time.perf_counter()
            await self.client.admin.command("ping")
            latency = (time.perf_counter() - start_time) * 1000
            return {"status": "healthy", "latency_ms": round(latency, 2)}
        except PyMongoError as e:
            return {"status": "unhealthy", "error": str(e)}

    async def create_indexes(self) -> None:
        """Create the indexes used by pipeline queries and audit lookups."""
        if self.database is None:
            raise_database_error(
                "Database not connected",
                operation="create_indexes"
            )

        try:
            with performance_context("mongodb_create_indexes"):
                cases = self.database[CASES_COLLECTION]
                await cases.create_index([
                    ("firmId", pymongo.ASCENDING),
                    ("deletedAt", pymongo.ASCENDING),
                    ("createdAt", pymongo.DESCENDING)
                ])
                await cases.create_index([
                    ("lawyerId", pymongo.ASCENDING),
                    ("deletedAt", pymongo.ASCENDING),
                    ("createdAt", pymongo.DESCENDING)
                ])
                await cases.create_index([
                    ("category", pymongo.ASCENDING),
                    ("currentStage", pymongo.ASCENDING)
                ])

                audit = self.database[CASE_AUDIT_COLLECTION]
                await audit.create_index([
                    ("caseId", pymongo.ASCENDING),
                    ("timestamp", pymongo.DESCENDING)
                ])

                logger.info("MongoDB indexes created successfully")

        except PyMongoError as e:
            raise_database_error(
                f"Failed to create MongoDB indexes: {e}",
                operation="create_indexes"
            )

    def get_database(self) -> AsyncIOMotorDatabase:
        """
        Get the MongoDB database instance.

        Raises:
            DatabaseError: If not connected
        """
        if not self.is_connected or self.database is None:
            raise_database_error(
                "MongoDB not connected",
                operation="get_database",
                error_code=ErrorCode.DATABASE_CONNECTION_ERROR
            )
        return self.database


# Global database manager instance
_db_manager: Optional[MongoDBManager] = None


def get_database_manager() -> MongoDBManager:
    """Get the global database manager instance."""
    global _db_manager
    if _db_manager is None:
        _db_manager = MongoDBManager()
    return _db_manager


async def init_database() -> None:
    """Connect to MongoDB and ensure indexes exist."""
    db_manager = get_database_manager()
    await db_manager.connect()
    await db_manager.create_indexes()


async def close_database() -> None:
    """Close the MongoDB connection."""
    global _db_manager
    if _db_manager:
        await _db_manager.disconnect()
        _db_manager = None


# FastAPI dependency function
async def get_mongodb_database() -> AsyncIOMotorDatabase:
    """FastAPI dependency to get MongoDB database."""
    return get_database_manager().get_database()
