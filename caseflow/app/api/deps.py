"""
Dependency injection module for API routes.

This module provides the FastAPI dependencies for the pipeline routes:
the caller identity, the stage vocabulary, repositories and services.
Tests replace any of them through ``app.dependency_overrides``.
"""

import threading
from typing import Optional

from fastapi import Depends, Header, Request

from caseflow.app.core.exceptions import AuthenticationError
from caseflow.app.models.domain.stage_vocabulary import StageVocabulary
from caseflow.app.models.domain.tenant import CallerContext
from caseflow.app.repositories.mongodb.audit_repository import CaseAuditRepository, get_audit_repository
from caseflow.app.repositories.mongodb.case_repository import CaseRepository, get_case_repository
from caseflow.app.services.case_events import CaseEventDispatcher, build_default_dispatcher
from caseflow.app.services.case_note_service import CaseNoteService
from caseflow.app.services.case_pipeline_service import CasePipelineService
from caseflow.app.utils.logging import get_logger
from caseflow.config.settings import Settings, get_settings

logger = get_logger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}

# Global instances for dependency injection
_vocabulary_instance: Optional[StageVocabulary] = None
_vocabulary_lock = threading.Lock()


def get_app_settings() -> Settings:
    return get_settings()


def get_stage_vocabulary(settings: Settings = Depends(get_app_settings)) -> StageVocabulary:
    """Stage vocabulary built once from the pipeline settings."""
    global _vocabulary_instance
    if _vocabulary_instance is None:
        with _vocabulary_lock:
            if _vocabulary_instance is None:
                _vocabulary_instance = StageVocabulary.from_settings(settings.pipeline)
    return _vocabulary_instance


def get_caller(
    request: Request,
    x_user_id: Optional[str] = Header(None),
    x_firm_id: Optional[str] = Header(None),
    x_solo_lawyer: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings)
) -> CallerContext:
    """
    Identity of the calling user.

    The upstream authentication middleware stores ``user_id``, ``firm_id``
    and ``is_solo_lawyer`` on ``request.state``. Only when
    ``pipeline.trust_identity_headers`` is enabled, for deployments behind a
    gateway that sets them, are the ``X-User-Id``, ``X-Firm-Id`` and
    ``X-Solo-Lawyer`` headers used instead.
    """
    state = request.state
    if not settings.pipeline.trust_identity_headers:
        x_user_id = x_firm_id = x_solo_lawyer = None

    user_id = getattr(state, "user_id", None) or x_user_id
    if not user_id:
        raise AuthenticationError("Unauthorized - missing user identity")

    firm_id = getattr(state, "firm_id", None) or x_firm_id
    is_solo = getattr(state, "is_solo_lawyer", None)
    if is_solo is None:
        is_solo = (x_solo_lawyer or "").strip().lower() in TRUE_VALUES

    return CallerContext(user_id=str(user_id), firm_id=str(firm_id) if firm_id else None, is_solo_lawyer=bool(is_solo))


def get_case_store() -> CaseRepository:
    return get_case_repository()


def get_audit_store() -> CaseAuditRepository:
    return get_audit_repository()


def get_event_dispatcher(audit_repository: CaseAuditRepository = Depends(get_audit_store)) -> CaseEventDispatcher:
    return build_default_dispatcher(audit_repository)


def get_pipeline_service(
    case_repository: CaseRepository = Depends(get_case_store),
    vocabulary: StageVocabulary = Depends(get_stage_vocabulary),
    event_dispatcher: CaseEventDispatcher = Depends(get_event_dispatcher),
    settings: Settings = Depends(get_app_settings)
) -> CasePipelineService:
    """Get pipeline service instance with full dependencies."""
    return CasePipelineService(
        case_repository=case_repository,
        vocabulary=vocabulary,
        event_dispatcher=event_dispatcher,
        pipeline_settings=settings.pipeline
    )


def get_note_service(
    case_repository: CaseRepository = Depends(get_case_store),
    vocabulary: StageVocabulary = Depends(get_stage_vocabulary),
    settings: Settings = Depends(get_app_settings)
) -> CaseNoteService:
    """Get note service instance with full dependencies."""
    return CaseNoteService(
        case_repository=case_repository,
        vocabulary=vocabulary,
        pipeline_settings=settings.pipeline
    )
