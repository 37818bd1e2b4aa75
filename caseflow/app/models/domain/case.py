"""
Domain model for legal cases in the case pipeline.

This module defines the case entity as the pipeline sees it:
- Category, status, outcome and priority enumerations
- Stage history entries with enter/exit timestamps
- Case notes and end-of-case details
- Stage transition and case ending state changes

Validation of caller input (stage legality, ownership, terminal state) is the
job of the services; the methods here apply already-validated changes while
keeping the stage history consistent.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from caseflow.app.models.domain.stage_vocabulary import StageVocabulary


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as stored by BSON) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CaseCategory(str, Enum):
    """Legal case categories; each owns a stage vocabulary."""

    LABOR = "labor"
    COMMERCIAL = "commercial"
    CIVIL = "civil"
    FAMILY = "family"
    CRIMINAL = "criminal"
    ADMINISTRATIVE = "administrative"
    OTHER = "other"


class CaseStatus(str, Enum):
    """Case status values written or recognised by the pipeline."""

    OPEN = "open"
    ACTIVE = "active"
    PENDING = "pending"
    ON_HOLD = "on_hold"
    ARCHIVED = "archived"
    CLOSED = "closed"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({CaseStatus.CLOSED.value, CaseStatus.COMPLETED.value})


class CaseOutcome(str, Enum):
    """Case outcome; ``ONGOING`` until the case is ended."""

    ONGOING = "ongoing"
    WON = "won"
    LOST = "lost"
    SETTLED = "settled"


FINAL_OUTCOMES = (CaseOutcome.WON.value, CaseOutcome.LOST.value, CaseOutcome.SETTLED.value)


class CasePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


@dataclass
class StageHistoryEntry:
    """One stage occupancy interval. ``exited_at is None`` marks the open entry."""

    stage: Optional[str]
    entered_at: datetime
    exited_at: Optional[datetime] = None
    notes: Optional[str] = None
    changed_by: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.exited_at is None

    def close(self, at: datetime) -> None:
        # exit never precedes entry
        self.exited_at = max(at, self.entered_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "entered_at": self.entered_at,
            "exited_at": self.exited_at,
            "notes": self.notes,
            "changed_by": self.changed_by,
        }


@dataclass
class CaseNote:
    """A note attached to a case; editable and deletable only by its creator."""

    note_id: str
    text: str
    created_by: str
    date: datetime
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_private: bool = False
    stage_id: Optional[str] = None

    def is_created_by(self, user_id: str) -> bool:
        return self.created_by is not None and str(self.created_by) == str(user_id)

    def is_visible_to(self, user_id: str) -> bool:
        return not self.is_private or self.is_created_by(user_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "note_id": self.note_id,
            "text": self.text,
            "date": self.date,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "is_private": self.is_private,
            "stage_id": self.stage_id,
        }


@dataclass
class EndDetails:
    """Details recorded when a case is ended."""

    end_date: datetime
    ended_by: str
    end_reason: Optional[str] = None
    final_amount: Optional[float] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "end_date": self.end_date,
            "end_reason": self.end_reason,
            "final_amount": self.final_amount,
            "notes": self.notes,
            "ended_by": self.ended_by,
        }


@dataclass
class LegalCase:
    """
    Core pipeline view of a legal case document.

    The case is owned by a firm (``firm_id``) or a solo lawyer
    (``lawyer_id``). Stage fields change only through ``move_to_stage`` and
    ``end``; ``revision`` is the persisted document version used for
    optimistic concurrency on write-back.
    """

    case_id: str
    category: Optional[str] = None
    firm_id: Optional[str] = None
    lawyer_id: Optional[str] = None

    current_stage: Optional[str] = None
    stage_entered_at: Optional[datetime] = None
    stage_history: List[StageHistoryEntry] = field(default_factory=list)

    status: str = CaseStatus.OPEN.value
    outcome: Optional[str] = CaseOutcome.ONGOING.value
    end_date: Optional[datetime] = None
    end_details: Optional[EndDetails] = None

    notes: List[CaseNote] = field(default_factory=list)

    claim_amount: Optional[float] = None
    expected_win_amount: Optional[float] = None

    # Display fields used by pipeline projections
    title: Optional[str] = None
    case_number: Optional[str] = None
    priority: Optional[str] = None
    court: Optional[str] = None
    judge: Optional[str] = None
    next_hearing: Optional[datetime] = None
    client_id: Optional[str] = None
    plaintiff_name: Optional[str] = None
    defendant_name: Optional[str] = None
    plaintiff: Dict[str, Any] = field(default_factory=dict)
    defendant: Dict[str, Any] = field(default_factory=dict)
    labor_case_details: Dict[str, Any] = field(default_factory=dict)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    revision: int = 0

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_ended(self) -> bool:
        """Terminal state: no further transitions and no second end."""
        return self.status in TERMINAL_STATUSES

    @property
    def reported_outcome(self) -> str:
        return self.outcome or CaseOutcome.ONGOING.value

    @property
    def stage_since(self) -> Optional[datetime]:
        """When the current stage was entered, falling back to creation time."""
        return self.stage_entered_at or self.created_at

    @property
    def latest_note(self) -> Optional[CaseNote]:
        # notes are stored newest first
        return self.notes[0] if self.notes else None

    def effective_stage(self, vocabulary: StageVocabulary) -> str:
        return self.current_stage or vocabulary.initial_stage(self.category)

    def days_in_current_stage(self, now: Optional[datetime] = None) -> int:
        since = self.stage_since
        if since is None:
            return 0
        return (ensure_utc(now or utcnow()) - ensure_utc(since)) // timedelta(days=1)

    def open_history_entry(self) -> Optional[StageHistoryEntry]:
        """The last history entry if it is still open."""
        if self.stage_history and self.stage_history[-1].is_open:
            return self.stage_history[-1]
        return None

    def _seed_initial_history(self, vocabulary: StageVocabulary) -> None:
        if self.stage_history:
            return
        self.stage_history.append(
            StageHistoryEntry(
                stage=self.effective_stage(vocabulary),
                entered_at=self.stage_since or utcnow(),
            )
        )

    def move_to_stage(
        self,
        new_stage: str,
        changed_by: str,
        vocabulary: StageVocabulary,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> str:
        """
        Close the open history entry and enter ``new_stage``.

        Returns:
            The stage the case was in before the move
        """
        now = now or utcnow()
        old_stage = self.effective_stage(vocabulary)

        self._seed_initial_history(vocabulary)
        open_entry = self.open_history_entry()
        if open_entry is not None:
            open_entry.close(now)

        self.stage_history.append(
            StageHistoryEntry(
                stage=new_stage,
                entered_at=now,
                notes=notes,
                changed_by=changed_by,
            )
        )
        self.current_stage = new_stage
        self.stage_entered_at = now
        self.updated_at = now
        return old_stage

    def end(
        self,
        outcome: str,
        ended_by: str,
        vocabulary: StageVocabulary,
        end_date: Optional[datetime] = None,
        end_reason: Optional[str] = None,
        final_amount: Optional[float] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> EndDetails:
        """Record the outcome, close the case and freeze its current stage."""
        now = now or utcnow()
        end_date = end_date or now

        self.outcome = outcome
        self.status = CaseStatus.CLOSED.value
        self.end_date = end_date
        self.end_details = EndDetails(
            end_date=end_date,
            ended_by=ended_by,
            end_reason=end_reason,
            final_amount=final_amount,
            notes=notes,
        )

        self._seed_initial_history(vocabulary)
        open_entry = self.open_history_entry()
        if open_entry is not None:
            open_entry.close(end_date)

        self.updated_at = now
        return self.end_details

    def add_note(self, note: CaseNote) -> None:
        self.notes.insert(0, note)
        self.updated_at = note.created_at

    def find_note(self, note_id: str) -> Optional[CaseNote]:
        for note in self.notes:
            if note.note_id == note_id:
                return note
        return None

    def remove_note(self, note_id: str, now: Optional[datetime] = None) -> bool:
        for index, note in enumerate(self.notes):
            if note.note_id == note_id:
                del self.notes[index]
                self.updated_at = now or utcnow()
                return True
        return False
