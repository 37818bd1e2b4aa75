"""
MongoDB repository for the case audit trail.

Audit records are append-only documents in ``case_audit_logs``. Writes are
best effort from the caller's point of view; the event dispatcher decides
what happens when one fails.
"""

from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from caseflow.app.core.database import CASE_AUDIT_COLLECTION, get_mongodb_database
from caseflow.app.core.exceptions import raise_database_error
from caseflow.app.models.domain.case import utcnow
from caseflow.app.repositories.mongodb.case_repository import to_object_id
from caseflow.app.utils.logging import database_logger, get_logger

logger = get_logger(__name__)


class CaseAuditRepository:
    """Append-only store for case update audit records."""

    def __init__(self, database: Optional[AsyncIOMotorDatabase] = None):
        self._db: Optional[AsyncIOMotorDatabase] = database
        self._collection: Optional[AsyncIOMotorCollection] = None
        self._collection_name = CASE_AUDIT_COLLECTION

    async def _get_collection(self) -> AsyncIOMotorCollection:
        if self._collection is None:
            if self._db is None:
                self._db = await get_mongodb_database()
            self._collection = self._db[self._collection_name]
        return self._collection

    async def log_case_update(self, case_id: str, user_id: str, details: Dict[str, Any]) -> str:
        """
        Record one update made to a case.

        Args:
            case_id: Case that was changed
            user_id: User who made the change
            details: Action payload, e.g. ``{"action": "stage_change", ...}``

        Returns:
            Id of the inserted audit record
        """
        collection = await self._get_collection()
        record = {
            "caseId": to_object_id(case_id),
            "userId": to_object_id(user_id),
            "action": details.get("action"),
            "details": details,
            "timestamp": utcnow(),
        }

        try:
            result = await collection.insert_one(record)
            database_logger.query_executed(
                database_type="mongodb",
                operation="insert_one",
                collection=self._collection_name,
                result_count=1
            )
            logger.debug("Audit record written", case_id=case_id, action=record["action"])
            return str(result.inserted_id)
        except PyMongoError as e:
            raise_database_error(
                f"Failed to write audit record for case {case_id}: {e}",
                operation="log_case_update",
                collection_name=self._collection_name
            )


_audit_repository: Optional[CaseAuditRepository] = None


def get_audit_repository() -> CaseAuditRepository:
    global _audit_repository
    if _audit_repository is None:
        _audit_repository = CaseAuditRepository()
    return _audit_repository
