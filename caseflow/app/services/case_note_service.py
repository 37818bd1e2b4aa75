"""
Case Note Service - notes attached to a case document.

Notes are stored newest first inside the case. Private notes are only
visible to their creator, and only the creator may edit or delete a note.
Every mutation goes through the same revision-checked write as the
pipeline commands.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId

from caseflow.app.core.exceptions import CaseManagementError, ErrorCode, InvalidStageError, raise_validation_error
from caseflow.app.models.api.pipeline_schemas import CaseNoteSchema, NoteListResponse, NotePageInfo
from caseflow.app.models.domain.case import CaseNote, LegalCase, ensure_utc, utcnow
from caseflow.app.models.domain.stage_vocabulary import StageVocabulary
from caseflow.app.models.domain.tenant import CallerContext
from caseflow.app.services.case_access import CaseAccessGuard
from caseflow.app.services.case_projection import note_schema
from caseflow.app.utils.logging import get_logger, log_business_event, performance_context
from caseflow.app.utils.validators import (
    clamp_page_size,
    is_valid_object_id,
    parse_note_sort,
    require_note_text,
)
from caseflow.config.settings import PipelineSettings, get_settings

logger = get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# note attribute read for each accepted sort field
SORT_ATTRIBUTES = {
    "date": "date",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


class CaseNoteService:
    """List, add, update and delete the notes of a case."""

    def __init__(
        self,
        case_repository,
        vocabulary: StageVocabulary,
        pipeline_settings: Optional[PipelineSettings] = None
    ):
        self.case_repository = case_repository
        self.vocabulary = vocabulary
        self.settings = pipeline_settings or get_settings().pipeline
        self.access_guard = CaseAccessGuard(
            case_repository,
            conceal_forbidden=self.settings.conceal_forbidden_cases
        )

    async def get_notes(
        self,
        case_id: str,
        caller: CallerContext,
        limit: Optional[int] = None,
        offset: int = 0,
        sort: Optional[str] = None
    ) -> NoteListResponse:
        """
        Visible notes of a case, sorted and paginated.

        Args:
            case_id: Case identifier
            caller: Requesting user
            limit: Page size (default from settings)
            offset: Number of visible notes to skip
            sort: ``date``, ``createdAt`` or ``updatedAt``; ``-`` prefix for descending

        Returns:
            NoteListResponse whose total counts the notes visible to the caller
        """
        field, descending = parse_note_sort(sort)
        limit = clamp_page_size(limit, self.settings.notes_page_size, self.settings.max_notes_page_size)
        offset = max(0, int(offset or 0))

        with performance_context("notes_list", case_id=case_id, user_id=caller.user_id):
            case = await self.access_guard.load(case_id, caller)
            visible = [note for note in case.notes if note.is_visible_to(caller.user_id)]

            attribute = SORT_ATTRIBUTES[field]
            # notes missing the sort field fall back to their creation time
            visible.sort(
                key=lambda note: ensure_utc(getattr(note, attribute) or note.created_at or note.date) or EPOCH,
                reverse=descending
            )

            return NoteListResponse(
                notes=[note_schema(note) for note in visible[offset:offset + limit]],
                pagination=NotePageInfo(total=len(visible), limit=limit, offset=offset),
            )

    async def add_note(
        self,
        case_id: str,
        caller: CallerContext,
        text: Any,
        is_private: Optional[bool] = False,
        stage_id: Optional[str] = None
    ) -> CaseNoteSchema:
        """
        Add a note at the front of the case's notes.

        ``stage_id`` defaults to the case's current stage and must otherwise
        belong to the case's category.
        """
        text = require_note_text(text)

        with performance_context("notes_add", case_id=case_id, user_id=caller.user_id):
            case = await self.access_guard.load(case_id, caller)

            if stage_id:
                if not self.vocabulary.is_valid_stage(case.category, stage_id):
                    raise InvalidStageError(
                        "Invalid stage for case category",
                        category=case.category,
                        requested_stage=stage_id,
                        valid_stages=self.vocabulary.stages_for(case.category),
                        case_id=case.case_id
                    )
            else:
                stage_id = case.effective_stage(self.vocabulary)

            now = utcnow()
            note = CaseNote(
                note_id=str(ObjectId()),
                text=text,
                created_by=caller.user_id,
                date=now,
                created_at=now,
                is_private=bool(is_private),
                stage_id=stage_id,
            )
            case.add_note(note)
            await self.case_repository.save_case(case)

            log_business_event("case_note_added", user_id=caller.user_id, case_id=case.case_id, note_id=note.note_id)
            return note_schema(note)

    async def update_note(
        self,
        case_id: str,
        note_id: str,
        caller: CallerContext,
        text: Any = None,
        is_private: Optional[bool] = None,
        text_supplied: Optional[bool] = None
    ) -> CaseNoteSchema:
        """
        Edit a note's text and/or privacy flag. Creator only.

        Args:
            text_supplied: Whether ``text`` was part of the request, even as
                null; defaults to ``text is not None``. A supplied text must be
                non-empty after trimming
        """
        self._require_ids(case_id, note_id)

        with performance_context("notes_update", case_id=case_id, note_id=note_id, user_id=caller.user_id):
            case = await self.access_guard.load(case_id, caller, invalid_id_message="Invalid case or note ID")
            note = self._creator_note(case, note_id, caller, "Only the note creator can edit this note")

            if text_supplied is None:
                text_supplied = text is not None
            if text_supplied:
                note.text = require_note_text(text, message="Note text must be a non-empty string")
            if is_private is not None:
                note.is_private = is_private

            now = utcnow()
            note.updated_at = now
            case.updated_at = now
            await self.case_repository.save_case(case)

            log_business_event("case_note_updated", user_id=caller.user_id, case_id=case.case_id, note_id=note_id)
            return note_schema(note)

    async def delete_note(self, case_id: str, note_id: str, caller: CallerContext) -> None:
        """Remove a note from the case. Creator only."""
        self._require_ids(case_id, note_id)

        with performance_context("notes_delete", case_id=case_id, note_id=note_id, user_id=caller.user_id):
            case = await self.access_guard.load(case_id, caller, invalid_id_message="Invalid case or note ID")
            self._creator_note(case, note_id, caller, "Only the note creator can delete this note")

            case.remove_note(note_id)
            await self.case_repository.save_case(case)

            log_business_event("case_note_deleted", user_id=caller.user_id, case_id=case.case_id, note_id=note_id)

    # Helpers

    def _require_ids(self, case_id: str, note_id: str) -> None:
        if not is_valid_object_id(case_id) or not is_valid_object_id(note_id):
            raise_validation_error("Invalid case or note ID", field="note_id")

    def _creator_note(self, case: LegalCase, note_id: str, caller: CallerContext, denied_message: str) -> CaseNote:
        note = case.find_note(note_id)
        if note is None:
            raise CaseManagementError(
                "Note not found",
                error_code=ErrorCode.NOTE_NOT_FOUND,
                case_id=case.case_id,
                user_id=caller.user_id,
                note_id=note_id
            )
        if not note.is_created_by(caller.user_id):
            raise CaseManagementError(
                denied_message,
                error_code=ErrorCode.NOTE_ACCESS_DENIED,
                case_id=case.case_id,
                user_id=caller.user_id,
                note_id=note_id
            )
        return note
