"""
Tenant-scoped case queries for pipeline views and statistics.

A ``CaseQuery`` always carries the caller's tenant scope and always excludes
soft-deleted cases; the optional filters narrow it further.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from caseflow.app.models.domain.case import FINAL_OUTCOMES, CaseStatus, LegalCase, ensure_utc
from caseflow.app.models.domain.tenant import CallerContext

ALL_FILTER_VALUE = "all"


class StatusBucket(str, Enum):
    """Kanban board selector."""

    ACTIVE = "active"
    CLOSED = "closed"
    ALL = "all"


# statuses hidden from the active board
INACTIVE_STATUSES = (CaseStatus.CLOSED.value, CaseStatus.COMPLETED.value, CaseStatus.ARCHIVED.value)
CLOSED_STATUSES = (CaseStatus.CLOSED.value, CaseStatus.COMPLETED.value)


def normalize_filter(value: Optional[str]) -> Optional[str]:
    """``None``, empty and ``"all"`` mean no filter."""
    if value is None:
        return None
    value = value.strip()
    if not value or value.lower() == ALL_FILTER_VALUE:
        return None
    return value


@dataclass(frozen=True)
class CaseQuery:
    """Filter over the cases visible to ``caller``."""

    caller: CallerContext
    category: Optional[str] = None
    outcome: Optional[str] = None
    priority: Optional[str] = None
    status_bucket: StatusBucket = StatusBucket.ALL
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None

    def to_mongo_filter(self, id_converter=None) -> Dict[str, Any]:
        """
        Build the MongoDB filter document.

        Args:
            id_converter: Optional callable converting id strings into the
                stored representation (e.g. ``ObjectId``)

        Returns:
            Filter document combining all conditions with ``$and``
        """
        convert = id_converter or (lambda value: value)
        firm_id = self.caller.effective_firm_id
        if firm_id:
            tenant = {"$or": [{"firmId": convert(firm_id)}, {"lawyerId": convert(self.caller.user_id)}]}
        else:
            tenant = {"lawyerId": convert(self.caller.user_id)}

        conditions: List[Dict[str, Any]] = [{"deletedAt": None}, tenant]

        if self.category:
            conditions.append({"category": self.category})
        if self.outcome:
            conditions.append({"outcome": self.outcome})
        if self.priority:
            conditions.append({"priority": self.priority})

        if self.status_bucket == StatusBucket.ACTIVE:
            conditions.append({"status": {"$nin": list(INACTIVE_STATUSES)}})
            conditions.append({"outcome": {"$nin": list(FINAL_OUTCOMES)}})
        elif self.status_bucket == StatusBucket.CLOSED:
            conditions.append({
                "$or": [
                    {"status": {"$in": list(CLOSED_STATUSES)}},
                    {"outcome": {"$in": list(FINAL_OUTCOMES)}},
                ]
            })

        if self.created_from or self.created_to:
            created: Dict[str, Any] = {}
            if self.created_from:
                created["$gte"] = self.created_from
            if self.created_to:
                created["$lte"] = self.created_to
            conditions.append({"createdAt": created})

        return {"$and": conditions}

    def matches(self, case: LegalCase) -> bool:
        """Evaluate the query against an in-memory case."""
        if case.is_deleted:
            return False

        firm_id = self.caller.effective_firm_id
        is_lawyer = case.lawyer_id is not None and str(case.lawyer_id) == str(self.caller.user_id)
        if firm_id:
            in_scope = is_lawyer or (case.firm_id is not None and str(case.firm_id) == str(firm_id))
        else:
            in_scope = is_lawyer
        if not in_scope:
            return False

        if self.category and case.category != self.category:
            return False
        if self.outcome and case.outcome != self.outcome:
            return False
        if self.priority and case.priority != self.priority:
            return False

        if self.status_bucket == StatusBucket.ACTIVE:
            if case.status in INACTIVE_STATUSES or case.outcome in FINAL_OUTCOMES:
                return False
        elif self.status_bucket == StatusBucket.CLOSED:
            if case.status not in CLOSED_STATUSES and case.outcome not in FINAL_OUTCOMES:
                return False

        if self.created_from or self.created_to:
            created = ensure_utc(case.created_at)
            if created is None:
                return False
            if self.created_from and created < ensure_utc(self.created_from):
                return False
            if self.created_to and created > ensure_utc(self.created_to):
                return False

        return True
