"""
Read projections of cases for the pipeline list, kanban board and commands.

Party names live in one of several places depending on which version of
the case form wrote the document. They are resolved through an explicit,
ordered list of accessors; the first non-empty value wins and the empty
string is the final fallback.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence

from caseflow.app.models.api.pipeline_schemas import (
    CaseNoteSchema,
    EndCaseResponse,
    EndDetailsSchema,
    KanbanCard,
    MoveStageResponse,
    PipelineCaseRow,
    StageHistoryEntrySchema,
)
from caseflow.app.models.domain.case import CaseNote, LegalCase, ensure_utc, utcnow
from caseflow.app.models.domain.stage_vocabulary import StageVocabulary

NameAccessor = Callable[[LegalCase], Any]


def _nested(mapping: Dict[str, Any], *path: str) -> Any:
    current: Any = mapping
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


PLAINTIFF_NAME_ACCESSORS: Sequence[NameAccessor] = (
    lambda case: case.plaintiff_name,
    lambda case: _nested(case.plaintiff, "fullNameArabic"),
    lambda case: _nested(case.labor_case_details, "plaintiff", "name"),
)

DEFENDANT_NAME_ACCESSORS: Sequence[NameAccessor] = (
    lambda case: case.defendant_name,
    lambda case: _nested(case.defendant, "fullNameArabic"),
    lambda case: _nested(case.labor_case_details, "company", "name"),
)


def resolve_first(case: LegalCase, accessors: Sequence[NameAccessor], default: str = "") -> str:
    for accessor in accessors:
        value = accessor(case)
        if isinstance(value, str) and value.strip():
            return value
    return default


def plaintiff_name(case: LegalCase) -> str:
    return resolve_first(case, PLAINTIFF_NAME_ACCESSORS)


def defendant_name(case: LegalCase) -> str:
    return resolve_first(case, DEFENDANT_NAME_ACCESSORS)


def days_between(since: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Whole days elapsed since ``since``; 0 when unknown."""
    if since is None:
        return 0
    elapsed = ensure_utc(now or utcnow()) - ensure_utc(since)
    return max(0, elapsed.days)


def note_schema(note: CaseNote) -> CaseNoteSchema:
    return CaseNoteSchema(
        id=note.note_id,
        text=note.text,
        date=note.date,
        created_by=note.created_by,
        created_at=note.created_at,
        updated_at=note.updated_at,
        is_private=note.is_private,
        stage_id=note.stage_id,
    )


def pipeline_row(
    case: LegalCase,
    vocabulary: StageVocabulary,
    related_counts: Optional[Dict[str, int]] = None,
    now: Optional[datetime] = None
) -> PipelineCaseRow:
    """Project a case into a pipeline list row."""
    related_counts = related_counts or {}
    latest = case.latest_note
    return PipelineCaseRow(
        id=case.case_id,
        case_number=case.case_number,
        title=case.title,
        category=case.category,
        status=case.status,
        priority=case.priority,
        outcome=case.reported_outcome,
        plaintiff_name=plaintiff_name(case),
        defendant_name=defendant_name(case),
        client_id=case.client_id,
        court=case.court,
        judge=case.judge,
        next_hearing=case.next_hearing,
        claim_amount=case.claim_amount,
        expected_win_amount=case.expected_win_amount,
        current_stage=case.effective_stage(vocabulary),
        stage_entered_at=case.stage_since,
        tasks_count=related_counts.get("tasks", 0),
        notion_pages_count=related_counts.get("notion_pages", 0),
        reminders_count=related_counts.get("reminders", 0),
        events_count=related_counts.get("events", 0),
        notes_count=len(case.notes),
        latest_note=note_schema(latest) if latest else None,
        days_in_current_stage=case.days_in_current_stage(now),
        created_at=case.created_at,
        updated_at=case.updated_at,
    )


def kanban_card(case: LegalCase, vocabulary: StageVocabulary, now: Optional[datetime] = None) -> KanbanCard:
    """Project a case into a kanban card; days in stage only count a recorded entry time."""
    latest = case.latest_note
    return KanbanCard(
        id=case.case_id,
        title=case.title,
        case_number=case.case_number,
        category=case.category,
        status=case.status,
        priority=case.priority,
        plaintiff_name=plaintiff_name(case),
        defendant_name=defendant_name(case),
        client_id=case.client_id,
        court=case.court,
        claim_amount=case.claim_amount,
        current_stage=case.effective_stage(vocabulary),
        stage_entered_at=case.stage_entered_at,
        days_in_stage=days_between(case.stage_entered_at, now),
        next_hearing=case.next_hearing,
        outcome=case.outcome,
        latest_note=latest.text if latest else None,
        created_at=case.created_at,
        updated_at=case.updated_at,
    )


def move_result(case: LegalCase, vocabulary: StageVocabulary) -> MoveStageResponse:
    return MoveStageResponse(
        case_id=case.case_id,
        current_stage=case.effective_stage(vocabulary),
        stage_entered_at=case.stage_entered_at,
        stage_history=[
            StageHistoryEntrySchema(
                stage=entry.stage,
                entered_at=entry.entered_at,
                exited_at=entry.exited_at,
                notes=entry.notes,
                changed_by=entry.changed_by,
            )
            for entry in case.stage_history
        ],
    )


def end_result(case: LegalCase) -> EndCaseResponse:
    details = case.end_details
    return EndCaseResponse(
        case_id=case.case_id,
        status=case.status,
        outcome=case.reported_outcome,
        end_details=EndDetailsSchema(
            end_date=details.end_date,
            end_reason=details.end_reason,
            final_amount=details.final_amount,
            notes=details.notes,
            ended_by=details.ended_by,
        ),
    )
