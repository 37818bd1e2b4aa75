"""Shared pytest fixtures."""

import pytest

from caseflow.app.services.case_events import build_default_dispatcher
from caseflow.app.services.case_note_service import CaseNoteService
from caseflow.app.services.case_pipeline_service import CasePipelineService

from fakes import FakeCaseRepository, RecordingAuditRepository, default_vocabulary, pipeline_settings


@pytest.fixture
def vocabulary():
    return default_vocabulary()


@pytest.fixture
def case_repository():
    return FakeCaseRepository()


@pytest.fixture
def audit_repository():
    return RecordingAuditRepository()


@pytest.fixture
def pipeline_service(case_repository, vocabulary, audit_repository):
    return CasePipelineService(
        case_repository=case_repository,
        vocabulary=vocabulary,
        event_dispatcher=build_default_dispatcher(audit_repository),
        pipeline_settings=pipeline_settings()
    )


@pytest.fixture
def note_service(case_repository, vocabulary):
    return CaseNoteService(
        case_repository=case_repository,
        vocabulary=vocabulary,
        pipeline_settings=pipeline_settings()
    )
