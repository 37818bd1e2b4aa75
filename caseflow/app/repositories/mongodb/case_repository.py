"""
MongoDB repository for legal cases in the caseflow pipeline service.

This module provides the data access layer for the pipeline:
- Loading a case by id and writing back its pipeline fields
- Optimistic concurrency through a ``revision`` counter on each document
- Tenant-scoped listing and counting driven by ``CaseQuery``
- Cross-collection counts (tasks, wiki pages, reminders, events) per case

Documents use the camelCase field names shared with the other writers of
the ``cases`` collection; only the fields owned by the pipeline are written.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from caseflow.app.core.database import CASES_COLLECTION, get_mongodb_database
from caseflow.app.core.exceptions import ConcurrencyConflict, raise_database_error
from caseflow.app.models.domain.case import (
    CaseNote,
    CaseStatus,
    EndDetails,
    LegalCase,
    StageHistoryEntry,
    ensure_utc,
)
from caseflow.app.models.domain.case_query import CaseQuery
from caseflow.app.utils.logging import database_logger, get_logger, performance_context
from caseflow.app.utils.validators import is_valid_object_id

logger = get_logger(__name__)

# collection name -> extra match conditions
RELATED_COLLECTIONS: Dict[str, Dict[str, Any]] = {
    "tasks": {},
    "casenotionpages": {"deletedAt": None},
    "reminders": {},
    "events": {},
}

RELATED_COUNT_KEYS = {
    "tasks": "tasks",
    "casenotionpages": "notion_pages",
    "reminders": "reminders",
    "events": "events",
}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

DEFAULT_SORT: Sequence[Tuple[str, int]] = (("updatedAt", DESCENDING),)


def to_object_id(value: Any) -> Any:
    """Convert a 24-hex id string to ``ObjectId``; other values pass through."""
    if isinstance(value, str) and is_valid_object_id(value):
        return ObjectId(value)
    return value


def _id_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, dict):
        # populated references from legacy writers
        value = value.get("_id")
        if value is None:
            return None
    return str(value)


def _dict_or_empty(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _float_or_none(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class CaseRepository:
    """
    MongoDB repository for the pipeline view of case documents.

    ``save_case`` is a compare-and-swap on ``revision``: the write only
    applies if the stored revision still equals the one the case was loaded
    with. Legacy documents without the field count as revision 0.
    """

    def __init__(self, database: Optional[AsyncIOMotorDatabase] = None):
        self._db: Optional[AsyncIOMotorDatabase] = database
        self._collection: Optional[AsyncIOMotorCollection] = None
        self._collection_name = CASES_COLLECTION

    async def _get_database(self) -> AsyncIOMotorDatabase:
        if self._db is None:
            self._db = await get_mongodb_database()
        return self._db

    async def _get_collection(self) -> AsyncIOMotorCollection:
        """Get MongoDB collection with lazy initialization."""
        if self._collection is None:
            db = await self._get_database()
            self._collection = db[self._collection_name]
        return self._collection

    async def get_case(self, case_id: str, include_deleted: bool = False) -> Optional[LegalCase]:
        """
        Get a case by its id.

        Args:
            case_id: Case identifier (24-hex string)
            include_deleted: Also return soft-deleted cases

        Returns:
            LegalCase if found, None otherwise
        """
        collection = await self._get_collection()
        query_filter: Dict[str, Any] = {"_id": to_object_id(case_id)}
        if not include_deleted:
            query_filter["deletedAt"] = None

        try:
            with performance_context("mongodb_get_case", case_id=case_id):
                case_doc = await collection.find_one(query_filter)

                database_logger.query_executed(
                    database_type="mongodb",
                    operation="find_one",
                    collection=self._collection_name,
                    result_count=1 if case_doc else 0
                )

                if not case_doc:
                    return None
                return self._document_to_case(case_doc)

        except PyMongoError as e:
            raise_database_error(
                f"Failed to get case {case_id}: {e}",
                operation="get_case",
                collection_name=self._collection_name
            )

    async def save_case(self, case: LegalCase) -> LegalCase:
        """
        Write the pipeline-owned fields of ``case`` back to its document.

        Returns:
            The same case with ``revision`` advanced

        Raises:
            ConcurrencyConflict: If the document changed since it was loaded
            DatabaseError: If the write fails
        """
        collection = await self._get_collection()
        expected_revision = case.revision

        query_filter: Dict[str, Any] = {"_id": to_object_id(case.case_id), "deletedAt": None}
        if expected_revision == 0:
            query_filter["$or"] = [{"revision": 0}, {"revision": {"$exists": False}}]
        else:
            query_filter["revision"] = expected_revision

        update = {
            "$set": self._case_to_update(case),
            "$inc": {"revision": 1},
        }

        try:
            with performance_context("mongodb_save_case", case_id=case.case_id, revision=expected_revision):
                result = await collection.update_one(query_filter, update)

                database_logger.query_executed(
                    database_type="mongodb",
                    operation="update_one",
                    collection=self._collection_name,
                    result_count=result.matched_count
                )

        except PyMongoError as e:
            raise_database_error(
                f"Failed to save case {case.case_id}: {e}",
                operation="save_case",
                collection_name=self._collection_name
            )

        if result.matched_count == 0:
            logger.warning(
                "Case write rejected by revision check",
                case_id=case.case_id,
                expected_revision=expected_revision
            )
            raise ConcurrencyConflict(case.case_id, expected_revision)

        case.revision = expected_revision + 1
        return case

    async def find_cases(
        self,
        query: CaseQuery,
        skip: int = 0,
        limit: Optional[int] = None,
        sort: Sequence[Tuple[str, int]] = DEFAULT_SORT
    ) -> List[LegalCase]:
        """
        Find the cases matching ``query``.

        Args:
            query: Tenant-scoped case query
            skip: Number of cases to skip
            limit: Maximum number of cases, None for all
            sort: Sort specification

        Returns:
            Matching cases in sort order
        """
        collection = await self._get_collection()
        query_filter = query.to_mongo_filter(id_converter=to_object_id)

        try:
            with performance_context("mongodb_find_cases", skip=skip, limit=limit):
                cursor = collection.find(query_filter).sort(list(sort))
                if skip:
                    cursor = cursor.skip(skip)
                if limit:
                    cursor = cursor.limit(limit)
                case_docs = await cursor.to_list(length=limit)

                database_logger.query_executed(
                    database_type="mongodb",
                    operation="find",
                    collection=self._collection_name,
                    result_count=len(case_docs)
                )

                return [self._document_to_case(doc) for doc in case_docs]

        except PyMongoError as e:
            raise_database_error(
                f"Failed to find cases: {e}",
                operation="find_cases",
                collection_name=self._collection_name
            )

    async def count_cases(self, query: CaseQuery) -> int:
        collection = await self._get_collection()
        try:
            total = await collection.count_documents(query.to_mongo_filter(id_converter=to_object_id))
            database_logger.query_executed(
                database_type="mongodb",
                operation="count_documents",
                collection=self._collection_name,
                result_count=total
            )
            return total
        except PyMongoError as e:
            raise_database_error(
                f"Failed to count cases: {e}",
                operation="count_cases",
                collection_name=self._collection_name
            )

    async def count_by_stage_and_outcome(self, query: CaseQuery) -> List[Dict[str, Any]]:
        """
        Group the cases matching ``query`` by category, stage and outcome.

        Returns:
            Rows of ``{"category", "stage", "outcome", "count"}``; ``stage`` and
            ``outcome`` are None where the stored case has no value
        """
        collection = await self._get_collection()
        pipeline = [
            {"$match": query.to_mongo_filter(id_converter=to_object_id)},
            {"$group": {
                "_id": {
                    "category": "$category",
                    "stage": {"$ifNull": ["$currentStage", "$pipelineStage"]},
                    "outcome": "$outcome",
                },
                "count": {"$sum": 1},
            }},
        ]

        try:
            with performance_context("mongodb_count_by_stage_and_outcome"):
                results = await collection.aggregate(pipeline).to_list(length=None)

            database_logger.query_executed(
                database_type="mongodb",
                operation="aggregate",
                collection=self._collection_name,
                result_count=len(results)
            )
            return [
                {
                    "category": row["_id"].get("category"),
                    "stage": row["_id"].get("stage") or None,
                    "outcome": row["_id"].get("outcome") or None,
                    "count": row["count"],
                }
                for row in results
            ]

        except PyMongoError as e:
            raise_database_error(
                f"Failed to aggregate case counts: {e}",
                operation="count_by_stage_and_outcome",
                collection_name=self._collection_name
            )

    async def count_related_entities(self, case_ids: Iterable[str]) -> Dict[str, Dict[str, int]]:
        """
        Count tasks, wiki pages, reminders and events linked to each case.

        Returns:
            ``{case_id: {"tasks": n, "notion_pages": n, "reminders": n, "events": n}}``
            with zero counts for cases that have no linked entities
        """
        ids = [case_id for case_id in case_ids]
        counts = {case_id: {key: 0 for key in RELATED_COUNT_KEYS.values()} for case_id in ids}
        if not ids:
            return counts

        db = await self._get_database()
        object_ids = [to_object_id(case_id) for case_id in ids]

        try:
            with performance_context("mongodb_count_related", case_count=len(ids)):
                for collection_name, extra_match in RELATED_COLLECTIONS.items():
                    pipeline = [
                        {"$match": {"caseId": {"$in": object_ids}, **extra_match}},
                        {"$group": {"_id": "$caseId", "count": {"$sum": 1}}},
                    ]
                    results = await db[collection_name].aggregate(pipeline).to_list(length=None)

                    database_logger.query_executed(
                        database_type="mongodb",
                        operation="aggregate",
                        collection=collection_name,
                        result_count=len(results)
                    )

                    count_key = RELATED_COUNT_KEYS[collection_name]
                    for row in results:
                        case_id = str(row["_id"])
                        if case_id in counts:
                            counts[case_id][count_key] = row["count"]

            return counts

        except PyMongoError as e:
            raise_database_error(
                f"Failed to count related entities: {e}",
                operation="count_related_entities"
            )

    def _case_to_update(self, case: LegalCase) -> Dict[str, Any]:
        """Pipeline-owned fields of ``case`` as a ``$set`` document."""
        fields: Dict[str, Any] = {
            "stageHistory": [
                {
                    "stage": entry.stage,
                    "enteredAt": entry.entered_at,
                    "exitedAt": entry.exited_at,
                    "notes": entry.notes,
                    "changedBy": to_object_id(entry.changed_by),
                }
                for entry in case.stage_history
            ],
            "status": case.status,
            "outcome": case.outcome,
            "notes": [
                {
                    "_id": to_object_id(note.note_id),
                    "text": note.text,
                    "date": note.date,
                    "createdBy": to_object_id(note.created_by),
                    "createdAt": note.created_at,
                    "updatedAt": note.updated_at,
                    "isPrivate": note.is_private,
                    "stageId": note.stage_id,
                }
                for note in case.notes
            ],
            "updatedAt": case.updated_at,
        }

        if case.current_stage is not None:
            # pipelineStage is the legacy alias and stays in sync
            fields["currentStage"] = case.current_stage
            fields["pipelineStage"] = case.current_stage
        if case.stage_entered_at is not None:
            fields["stageEnteredAt"] = case.stage_entered_at
        if case.end_date is not None:
            fields["endDate"] = case.end_date
        if case.end_details is not None:
            details = case.end_details
            fields["endDetails"] = {
                "endDate": details.end_date,
                "endReason": details.end_reason,
                "finalAmount": details.final_amount,
                "notes": details.notes,
                "endedBy": to_object_id(details.ended_by),
            }
        return fields

    def _document_to_case(self, doc: Dict[str, Any]) -> LegalCase:
        """Convert a MongoDB case document to the pipeline domain object."""
        created_at = ensure_utc(doc.get("createdAt"))
        # incomplete legacy entries are kept so the write-back does not drop them
        history = [
            StageHistoryEntry(
                stage=entry.get("stage"),
                entered_at=ensure_utc(entry.get("enteredAt") or entry.get("exitedAt")) or created_at or EPOCH,
                exited_at=ensure_utc(entry.get("exitedAt")),
                notes=entry.get("notes"),
                changed_by=_id_str(entry.get("changedBy")),
            )
            for entry in doc.get("stageHistory") or []
            if isinstance(entry, dict)
        ]

        notes = []
        for note_doc in doc.get("notes") or []:
            date = ensure_utc(note_doc.get("date") or note_doc.get("createdAt"))
            notes.append(
                CaseNote(
                    note_id=_id_str(note_doc.get("_id")),
                    text=note_doc.get("text") or "",
                    created_by=_id_str(note_doc.get("createdBy")),
                    date=date,
                    created_at=ensure_utc(note_doc.get("createdAt")) or date,
                    updated_at=ensure_utc(note_doc.get("updatedAt")),
                    is_private=bool(note_doc.get("isPrivate", False)),
                    stage_id=note_doc.get("stageId"),
                )
            )

        end_details = None
        end_doc = doc.get("endDetails")
        if end_doc:
            end_details = EndDetails(
                end_date=ensure_utc(end_doc.get("endDate") or doc.get("endDate")),
                ended_by=_id_str(end_doc.get("endedBy")),
                end_reason=end_doc.get("endReason"),
                final_amount=_float_or_none(end_doc.get("finalAmount")),
                notes=end_doc.get("notes"),
            )

        return LegalCase(
            case_id=str(doc["_id"]),
            category=doc.get("category"),
            firm_id=_id_str(doc.get("firmId")),
            lawyer_id=_id_str(doc.get("lawyerId")),
            current_stage=doc.get("currentStage") or doc.get("pipelineStage"),
            stage_entered_at=ensure_utc(doc.get("stageEnteredAt")),
            stage_history=history,
            status=doc.get("status") or CaseStatus.OPEN.value,
            outcome=doc.get("outcome"),
            end_date=ensure_utc(doc.get("endDate")),
            end_details=end_details,
            notes=notes,
            claim_amount=_float_or_none(doc.get("claimAmount")),
            expected_win_amount=_float_or_none(doc.get("expectedWinAmount")),
            title=doc.get("title"),
            case_number=doc.get("caseNumber"),
            priority=doc.get("priority"),
            court=doc.get("court"),
            judge=doc.get("judge"),
            next_hearing=ensure_utc(doc.get("nextHearing")),
            client_id=_id_str(doc.get("clientId")),
            plaintiff_name=doc.get("plaintiffName"),
            defendant_name=doc.get("defendantName"),
            plaintiff=_dict_or_empty(doc.get("plaintiff")),
            defendant=_dict_or_empty(doc.get("defendant")),
            labor_case_details=_dict_or_empty(doc.get("laborCaseDetails")),
            created_at=created_at,
            updated_at=ensure_utc(doc.get("updatedAt")),
            deleted_at=ensure_utc(doc.get("deletedAt")),
            revision=int(doc.get("revision") or 0),
        )


# Singleton instance for dependency injection
_case_repository: Optional[CaseRepository] = None


def get_case_repository() -> CaseRepository:
    """Get the singleton case repository instance."""
    global _case_repository
    if _case_repository is None:
        _case_repository = CaseRepository()
    return _case_repository
