"""
In-memory collaborators and case factories shared by the test suites.

``FakeCaseRepository`` mirrors the ``CaseRepository`` contract: it hands out
copies of stored cases, applies ``CaseQuery`` filters in Python, sorts by
``updated_at`` descending and enforces the revision check on save.
"""

import asyncio
import copy
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId

from caseflow.app.core.exceptions import ConcurrencyConflict
from caseflow.app.models.domain.case import CaseNote, LegalCase, ensure_utc, utcnow
from caseflow.app.models.domain.case_query import CaseQuery
from caseflow.app.models.domain.stage_vocabulary import StageVocabulary
from caseflow.app.models.domain.tenant import CallerContext
from caseflow.config.settings import DEFAULT_STAGE_VOCABULARY, PipelineSettings

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

FIRM_ID = "64b000000000000000000001"
OTHER_FIRM_ID = "64b000000000000000000002"
LAWYER_ID = "64a000000000000000000001"
COLLEAGUE_ID = "64a000000000000000000002"
OUTSIDER_ID = "64a000000000000000000003"

ZERO_RELATED = {"tasks": 0, "notion_pages": 0, "reminders": 0, "events": 0}


def run(coroutine):
    return asyncio.run(coroutine)


def new_id() -> str:
    return str(ObjectId())


def default_vocabulary() -> StageVocabulary:
    return StageVocabulary(DEFAULT_STAGE_VOCABULARY)


def lawyer_caller() -> CallerContext:
    """The lawyer assigned to cases built by ``make_case``."""
    return CallerContext(user_id=LAWYER_ID, firm_id=FIRM_ID)


def colleague_caller() -> CallerContext:
    """Another member of the same firm."""
    return CallerContext(user_id=COLLEAGUE_ID, firm_id=FIRM_ID)


def outsider_caller() -> CallerContext:
    """A user from a different firm."""
    return CallerContext(user_id=OUTSIDER_ID, firm_id=OTHER_FIRM_ID)


def make_case(**overrides: Any) -> LegalCase:
    """A civil case in ``filing`` owned by ``FIRM_ID`` and assigned to ``LAWYER_ID``."""
    now = utcnow()
    created = now - timedelta(days=10)
    values: Dict[str, Any] = {
        "case_id": new_id(),
        "category": "civil",
        "firm_id": FIRM_ID,
        "lawyer_id": LAWYER_ID,
        "current_stage": "filing",
        "stage_entered_at": now - timedelta(days=3),
        "status": "open",
        "outcome": "ongoing",
        "title": "Employment dispute",
        "case_number": "CIV-2024-001",
        "priority": "medium",
        "claim_amount": 50000.0,
        "created_at": created,
        "updated_at": created,
    }
    values.update(overrides)
    return LegalCase(**values)


def make_note(**overrides: Any) -> CaseNote:
    now = utcnow()
    values: Dict[str, Any] = {
        "note_id": new_id(),
        "text": "Called the client",
        "created_by": LAWYER_ID,
        "date": now,
        "created_at": now,
        "is_private": False,
        "stage_id": "filing",
    }
    values.update(overrides)
    return CaseNote(**values)


def pipeline_settings(**overrides: Any) -> PipelineSettings:
    return PipelineSettings(**overrides)


class FakeCaseRepository:
    """Dictionary-backed stand-in for ``CaseRepository``."""

    def __init__(self, cases: Iterable[LegalCase] = ()):
        self._cases: Dict[str, LegalCase] = {}
        self.related: Dict[str, Dict[str, int]] = {}
        self.save_count = 0
        for case in cases:
            self.insert(case)

    def insert(self, case: LegalCase) -> LegalCase:
        self._cases[case.case_id] = copy.deepcopy(case)
        return case

    def stored(self, case_id: str) -> LegalCase:
        return self._cases[case_id]

    async def get_case(self, case_id: str, include_deleted: bool = False) -> Optional[LegalCase]:
        case = self._cases.get(case_id)
        if case is None or (case.is_deleted and not include_deleted):
            return None
        return copy.deepcopy(case)

    async def save_case(self, case: LegalCase) -> LegalCase:
        stored = self._cases.get(case.case_id)
        if stored is None or stored.is_deleted or stored.revision != case.revision:
            raise ConcurrencyConflict(case.case_id, case.revision)
        case.revision += 1
        self._cases[case.case_id] = copy.deepcopy(case)
        self.save_count += 1
        return case

    async def find_cases(
        self,
        query: CaseQuery,
        skip: int = 0,
        limit: Optional[int] = None,
        sort=None
    ) -> List[LegalCase]:
        matched = [case for case in self._cases.values() if query.matches(case)]
        matched.sort(key=lambda case: ensure_utc(case.updated_at) or EPOCH, reverse=True)
        end = skip + limit if limit else None
        return [copy.deepcopy(case) for case in matched[skip:end]]

    async def count_cases(self, query: CaseQuery) -> int:
        return sum(1 for case in self._cases.values() if query.matches(case))

    async def count_by_stage_and_outcome(self, query: CaseQuery) -> List[Dict[str, Any]]:
        groups = Counter(
            (case.category, case.current_stage, case.outcome)
            for case in self._cases.values()
            if query.matches(case)
        )
        return [
            {"category": category, "stage": stage, "outcome": outcome, "count": count}
            for (category, stage, outcome), count in groups.items()
        ]

    async def count_related_entities(self, case_ids: Iterable[str]) -> Dict[str, Dict[str, int]]:
        return {case_id: dict(self.related.get(case_id, ZERO_RELATED)) for case_id in case_ids}


class ConcurrentWriterRepository(FakeCaseRepository):
    """Simulates another writer updating the case between load and save."""

    async def get_case(self, case_id: str, include_deleted: bool = False) -> Optional[LegalCase]:
        case = await super().get_case(case_id, include_deleted)
        if case is not None:
            self._cases[case_id].revision += 1
        return case


class RecordingAuditRepository:
    """Collects audit records; can be told to fail every write."""

    def __init__(self, fail: bool = False):
        self.records: List[Dict[str, Any]] = []
        self.fail = fail

    async def log_case_update(self, case_id: str, user_id: str, details: Dict[str, Any]) -> str:
        if self.fail:
            raise RuntimeError("audit store unavailable")
        self.records.append({"case_id": case_id, "user_id": user_id, "details": details})
        return new_id()
