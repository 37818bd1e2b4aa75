"""
Unit tests for the case note service.

Test Coverage:
- Adding notes (trimming, ordering, stage defaults)
- Listing with privacy, sorting and pagination
- Creator-only update and delete
"""

from datetime import timedelta

import pytest

from caseflow.app.core.exceptions import CaseManagementError, ErrorCode, InvalidStageError, ValidationError
from caseflow.app.models.domain.case import utcnow

from fakes import (
    COLLEAGUE_ID,
    LAWYER_ID,
    OUTSIDER_ID,
    colleague_caller,
    lawyer_caller,
    make_case,
    make_note,
    new_id,
    outsider_caller,
    run,
)


class TestAddNote:
    """Test suite for CaseNoteService.add_note."""

    @pytest.fixture(autouse=True)
    def setup(self, note_service, case_repository):
        self.service = note_service
        self.repository = case_repository
        self.case = case_repository.insert(make_case(current_stage="reconciliation"))

    def test_text_is_trimmed_and_stage_defaults_to_current(self):
        note = run(self.service.add_note(self.case.case_id, lawyer_caller(), "  Client called back  "))

        assert note.text == "Client called back"
        assert note.stage_id == "reconciliation"
        assert note.created_by == LAWYER_ID
        assert note.is_private is False

        stored = self.repository.stored(self.case.case_id)
        assert stored.notes[0].note_id == note.id
        assert stored.revision == 1

    def test_new_note_goes_to_front(self):
        run(self.service.add_note(self.case.case_id, lawyer_caller(), "first"))
        run(self.service.add_note(self.case.case_id, colleague_caller(), "second"))

        stored = self.repository.stored(self.case.case_id)
        assert [note.text for note in stored.notes] == ["second", "first"]

    def test_explicit_stage_must_belong_to_category(self):
        note = run(self.service.add_note(self.case.case_id, lawyer_caller(), "About the appeal", stage_id="appeal"))
        assert note.stage_id == "appeal"

        with pytest.raises(InvalidStageError):
            run(self.service.add_note(self.case.case_id, lawyer_caller(), "Wrong", stage_id="labor_court"))

    def test_empty_text_is_rejected(self):
        for text in (None, "", "   ", 12):
            with pytest.raises(ValidationError) as exc_info:
                run(self.service.add_note(self.case.case_id, lawyer_caller(), text))
            assert exc_info.value.message == "Note text is required"
        assert self.repository.save_count == 0

    def test_other_firm_is_forbidden(self):
        with pytest.raises(CaseManagementError) as exc_info:
            run(self.service.add_note(self.case.case_id, outsider_caller(), "Hello"))
        assert exc_info.value.error_code == ErrorCode.CASE_ACCESS_DENIED

    def test_unknown_case(self):
        with pytest.raises(CaseManagementError) as exc_info:
            run(self.service.add_note(new_id(), lawyer_caller(), "Hello"))
        assert exc_info.value.error_code == ErrorCode.CASE_NOT_FOUND

    def test_private_flag(self):
        note = run(self.service.add_note(self.case.case_id, lawyer_caller(), "Secret", is_private=True))
        assert note.is_private is True


class TestListNotes:
    """Test suite for CaseNoteService.get_notes."""

    @pytest.fixture(autouse=True)
    def setup(self, note_service, case_repository):
        self.service = note_service
        now = utcnow()
        self.notes = [
            make_note(text="newest", date=now - timedelta(hours=1), created_at=now - timedelta(days=3)),
            make_note(text="private", is_private=True, date=now - timedelta(hours=2), created_at=now - timedelta(days=2)),
            make_note(text="colleague", created_by=COLLEAGUE_ID, date=now - timedelta(hours=3), created_at=now - timedelta(days=1)),
            make_note(text="oldest", date=now - timedelta(hours=4), created_at=now - timedelta(days=4)),
        ]
        self.case = case_repository.insert(make_case(notes=list(self.notes)))

    def texts(self, result):
        return [note.text for note in result.notes]

    def test_default_sort_is_newest_date_first(self):
        result = run(self.service.get_notes(self.case.case_id, lawyer_caller()))
        assert self.texts(result) == ["newest", "private", "colleague", "oldest"]
        assert result.pagination.total == 4
        assert result.pagination.limit == 50
        assert result.pagination.offset == 0

    def test_private_notes_hidden_from_others(self):
        result = run(self.service.get_notes(self.case.case_id, colleague_caller()))
        assert "private" not in self.texts(result)
        assert result.pagination.total == 3

    def test_sort_by_created_at_ascending(self):
        result = run(self.service.get_notes(self.case.case_id, lawyer_caller(), sort="createdAt"))
        assert self.texts(result) == ["oldest", "newest", "private", "colleague"]

    def test_missing_updated_at_falls_back_to_created_at(self):
        result = run(self.service.get_notes(self.case.case_id, lawyer_caller(), sort="-updatedAt"))
        assert self.texts(result) == ["colleague", "private", "newest", "oldest"]

    def test_invalid_sort(self):
        with pytest.raises(ValidationError):
            run(self.service.get_notes(self.case.case_id, lawyer_caller(), sort="-title"))

    def test_pagination(self):
        result = run(self.service.get_notes(self.case.case_id, lawyer_caller(), limit=2, offset=1))
        assert self.texts(result) == ["private", "colleague"]
        assert result.pagination.total == 4
        assert result.pagination.limit == 2
        assert result.pagination.offset == 1

    def test_other_firm_is_forbidden(self):
        with pytest.raises(CaseManagementError) as exc_info:
            run(self.service.get_notes(self.case.case_id, outsider_caller()))
        assert exc_info.value.error_code == ErrorCode.CASE_ACCESS_DENIED


class TestUpdateAndDeleteNote:
    """Test suite for creator-only note mutations."""

    @pytest.fixture(autouse=True)
    def setup(self, note_service, case_repository):
        self.service = note_service
        self.repository = case_repository
        self.note = make_note(text="Original")
        self.case = case_repository.insert(make_case(notes=[self.note]))

    def test_creator_updates_text(self):
        updated = run(self.service.update_note(self.case.case_id, self.note.note_id, lawyer_caller(), text=" Edited "))

        assert updated.text == "Edited"
        assert updated.updated_at is not None
        stored_note = self.repository.stored(self.case.case_id).notes[0]
        assert stored_note.text == "Edited"
        assert stored_note.updated_at == updated.updated_at

    def test_privacy_toggle_keeps_text(self):
        updated = run(self.service.update_note(self.case.case_id, self.note.note_id, lawyer_caller(), is_private=True))
        assert updated.is_private is True
        assert updated.text == "Original"

    def test_supplied_text_must_not_be_empty(self):
        for text in ("", "   "):
            with pytest.raises(ValidationError) as exc_info:
                run(self.service.update_note(self.case.case_id, self.note.note_id, lawyer_caller(), text=text))
            assert exc_info.value.message == "Note text must be a non-empty string"

    def test_explicit_null_text_is_rejected(self):
        with pytest.raises(ValidationError):
            run(self.service.update_note(
                self.case.case_id,
                self.note.note_id,
                lawyer_caller(),
                text=None,
                text_supplied=True
            ))

    def test_non_creator_cannot_edit(self):
        with pytest.raises(CaseManagementError) as exc_info:
            run(self.service.update_note(self.case.case_id, self.note.note_id, colleague_caller(), text="Mine now"))
        assert exc_info.value.error_code == ErrorCode.NOTE_ACCESS_DENIED
        assert exc_info.value.http_status_code == 403
        assert self.repository.stored(self.case.case_id).notes[0].text == "Original"

    def test_missing_note(self):
        with pytest.raises(CaseManagementError) as exc_info:
            run(self.service.update_note(self.case.case_id, new_id(), lawyer_caller(), text="x"))
        assert exc_info.value.error_code == ErrorCode.NOTE_NOT_FOUND
        assert exc_info.value.http_status_code == 404

    def test_malformed_note_id(self):
        with pytest.raises(ValidationError) as exc_info:
            run(self.service.update_note(self.case.case_id, "abc", lawyer_caller(), text="x"))
        assert exc_info.value.message == "Invalid case or note ID"

    def test_creator_deletes_note(self):
        run(self.service.delete_note(self.case.case_id, self.note.note_id, lawyer_caller()))
        assert self.repository.stored(self.case.case_id).notes == []

    def test_non_creator_cannot_delete(self):
        with pytest.raises(CaseManagementError) as exc_info:
            run(self.service.delete_note(self.case.case_id, self.note.note_id, colleague_caller()))
        assert exc_info.value.error_code == ErrorCode.NOTE_ACCESS_DENIED
        assert len(self.repository.stored(self.case.case_id).notes) == 1

    def test_other_firm_cannot_edit(self):
        with pytest.raises(CaseManagementError) as exc_info:
            run(self.service.update_note(self.case.case_id, self.note.note_id, outsider_caller(), text="Mine now"))
        assert exc_info.value.error_code == ErrorCode.CASE_ACCESS_DENIED
        assert exc_info.value.http_status_code == 403
        assert self.repository.stored(self.case.case_id).notes[0].text == "Original"

    def test_other_firm_cannot_delete(self):
        with pytest.raises(CaseManagementError) as exc_info:
            run(self.service.delete_note(self.case.case_id, self.note.note_id, outsider_caller()))
        assert exc_info.value.error_code == ErrorCode.CASE_ACCESS_DENIED
        assert len(self.repository.stored(self.case.case_id).notes) == 1

    def test_case_access_is_checked_before_authorship(self):
        own_note = make_note(created_by=OUTSIDER_ID, text="Left behind")
        self.repository.stored(self.case.case_id).notes.append(own_note)

        for command in (
            self.service.update_note(self.case.case_id, own_note.note_id, outsider_caller(), text="Edited"),
            self.service.delete_note(self.case.case_id, own_note.note_id, outsider_caller()),
        ):
            with pytest.raises(CaseManagementError) as exc_info:
                run(command)
            assert exc_info.value.error_code == ErrorCode.CASE_ACCESS_DENIED

        stored_notes = self.repository.stored(self.case.case_id).notes
        assert [note.text for note in stored_notes] == ["Original", "Left behind"]

    def test_delete_missing_note(self):
        with pytest.raises(CaseManagementError) as exc_info:
            run(self.service.delete_note(self.case.case_id, new_id(), lawyer_caller()))
        assert exc_info.value.error_code == ErrorCode.NOTE_NOT_FOUND
