"""
Case Pipeline Service - stage transitions, case ending and pipeline views.

This module provides the business logic for moving legal cases through
their category-specific stages:
- Stage vocabulary lookup per case category
- Move-to-stage with history bookkeeping and legality checks
- Ending a case with an outcome, freezing its final stage
- Pipeline list view, kanban board and aggregate statistics

Commands load the case, validate, mutate it in memory, write it back with a
revision check and only then dispatch their domain events. Event handlers
(audit trail, business-event log) cannot fail a command.
"""

import math
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from caseflow.app.core.exceptions import CaseManagementError, ErrorCode, InvalidStageError, raise_validation_error
from caseflow.app.models.api.pipeline_schemas import (
    EndCaseResponse,
    KanbanCard,
    MoveStageResponse,
    PageInfo,
    PipelineListResponse,
    PipelineStatisticsResponse,
    ValidStagesResponse,
)
from caseflow.app.models.domain.case import LegalCase, utcnow
from caseflow.app.models.domain.case_query import CaseQuery, StatusBucket, normalize_filter
from caseflow.app.models.domain.stage_vocabulary import StageVocabulary
from caseflow.app.models.domain.tenant import CallerContext
from caseflow.app.services.case_access import CaseAccessGuard
from caseflow.app.services.case_events import CaseEnded, CaseEvent, CaseEventDispatcher, CaseStageChanged
from caseflow.app.services.case_projection import end_result, kanban_card, move_result, pipeline_row
from caseflow.app.services.pipeline_statistics import list_statistics, pipeline_statistics
from caseflow.app.utils.logging import get_logger, performance_context
from caseflow.app.utils.validators import (
    clamp_page_size,
    parse_non_negative_amount,
    parse_optional_datetime,
    require_outcome,
    require_stage_identifier,
)
from caseflow.config.settings import PipelineSettings, get_settings

logger = get_logger(__name__)


class CasePipelineService:
    """
    Business logic service for the case pipeline.

    The stage vocabulary is injected so that tests and tenants can run with
    their own stage lists.
    """

    def __init__(
        self,
        case_repository,
        vocabulary: StageVocabulary,
        event_dispatcher: Optional[CaseEventDispatcher] = None,
        pipeline_settings: Optional[PipelineSettings] = None
    ):
        """
        Initialize the pipeline service with dependencies.

        Args:
            case_repository: Case store (``CaseRepository`` or compatible)
            vocabulary: Stage vocabulary per case category
            event_dispatcher: Receives domain events after each successful write
            pipeline_settings: Paging limits and access policy
        """
        self.case_repository = case_repository
        self.vocabulary = vocabulary
        self.event_dispatcher = event_dispatcher or CaseEventDispatcher()
        self.settings = pipeline_settings or get_settings().pipeline
        self.access_guard = CaseAccessGuard(
            case_repository,
            conceal_forbidden=self.settings.conceal_forbidden_cases
        )

    # Stage vocabulary

    def get_valid_stages(self, category: Optional[str]) -> ValidStagesResponse:
        """Valid stages for ``category``; unknown categories get the fallback list."""
        category_key = (category or "").strip().lower() or self.vocabulary.fallback_category
        return ValidStagesResponse(
            category=category_key,
            stages=list(self.vocabulary.stages_for(category_key)),
            all_categories=list(self.vocabulary.categories),
        )

    # Commands

    async def move_case_to_stage(
        self,
        case_id: str,
        new_stage: Any,
        caller: CallerContext,
        notes: Optional[str] = None
    ) -> MoveStageResponse:
        """
        Move a case to another stage of its category.

        Raises:
            ValidationError: Malformed case id or missing stage
            CaseManagementError: Case not found, not accessible, or ended
            InvalidStageError: Stage outside the category's vocabulary
        """
        with performance_context("pipeline_move_stage", case_id=case_id, user_id=caller.user_id):
            case = await self.access_guard.load(case_id, caller)

            if case.is_ended:
                raise CaseManagementError(
                    "Cannot modify ended case",
                    error_code=ErrorCode.CASE_INVALID_STATE,
                    case_id=case.case_id,
                    user_id=caller.user_id
                )

            stage = require_stage_identifier(new_stage)
            if not self.vocabulary.is_valid_stage(case.category, stage):
                raise InvalidStageError(
                    "Invalid stage for case category",
                    category=case.category,
                    requested_stage=stage,
                    valid_stages=self.vocabulary.stages_for(case.category),
                    case_id=case.case_id
                )

            old_stage = case.move_to_stage(stage, caller.user_id, self.vocabulary, notes=notes)

            await self._commit(
                case,
                [
                    CaseStageChanged(
                        case_id=case.case_id,
                        user_id=caller.user_id,
                        old_stage=old_stage,
                        new_stage=stage,
                        notes=notes,
                    )
                ]
            )

            logger.info(
                "Case moved to stage",
                case_id=case.case_id,
                old_stage=old_stage,
                new_stage=stage,
                user_id=caller.user_id
            )
            return move_result(case, self.vocabulary)

    async def end_case(
        self,
        case_id: str,
        caller: CallerContext,
        outcome: Any,
        end_reason: Optional[str] = None,
        final_amount: Any = None,
        notes: Optional[str] = None,
        end_date: Any = None
    ) -> EndCaseResponse:
        """
        End a case with an outcome; its current stage is frozen.

        Raises:
            ValidationError: Malformed id, bad outcome, amount or date
            CaseManagementError: Case not found, not accessible, or already ended
        """
        with performance_context("pipeline_end_case", case_id=case_id, user_id=caller.user_id):
            case = await self.access_guard.load(case_id, caller)

            if case.is_ended:
                raise CaseManagementError(
                    "Case is already ended",
                    error_code=ErrorCode.CASE_INVALID_STATE,
                    case_id=case.case_id,
                    user_id=caller.user_id
                )

            outcome_value = require_outcome(outcome)
            amount = parse_non_negative_amount(final_amount)
            ended_at = parse_optional_datetime(end_date, "endDate")

            case.end(
                outcome_value,
                caller.user_id,
                self.vocabulary,
                end_date=ended_at,
                end_reason=end_reason,
                final_amount=amount,
                notes=notes
            )

            await self._commit(
                case,
                [
                    CaseEnded(
                        case_id=case.case_id,
                        user_id=caller.user_id,
                        outcome=outcome_value,
                        end_reason=end_reason,
                        final_amount=amount,
                    )
                ]
            )

            logger.info(
                "Case ended",
                case_id=case.case_id,
                outcome=outcome_value,
                user_id=caller.user_id
            )
            return end_result(case)

    # Queries

    async def list_cases_for_pipeline(
        self,
        caller: CallerContext,
        category: Optional[str] = None,
        outcome: Optional[str] = None,
        priority: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> PipelineListResponse:
        """
        Paginated pipeline list, newest activity first.

        The statistics block covers the whole filtered set, not only the page.
        """
        page = max(1, int(page or 1))
        limit = clamp_page_size(limit, self.settings.default_page_size, self.settings.max_page_size)
        query = CaseQuery(
            caller=caller,
            category=normalize_filter(category),
            outcome=normalize_filter(outcome),
            priority=normalize_filter(priority),
        )

        with performance_context("pipeline_list_cases", user_id=caller.user_id, page=page, limit=limit):
            page_cases = await self.case_repository.find_cases(query, skip=(page - 1) * limit, limit=limit)
            total = await self.case_repository.count_cases(query)
            count_rows = await self.case_repository.count_by_stage_and_outcome(query)
            related = await self.case_repository.count_related_entities([case.case_id for case in page_cases])

            now = utcnow()
            return PipelineListResponse(
                cases=[
                    pipeline_row(case, self.vocabulary, related.get(case.case_id), now=now)
                    for case in page_cases
                ],
                pagination=PageInfo(
                    page=page,
                    limit=limit,
                    total=total,
                    pages=math.ceil(total / limit),
                ),
                statistics=list_statistics(count_rows, self.vocabulary),
            )

    async def get_cases_grouped_by_stage(
        self,
        caller: CallerContext,
        category: Optional[str] = None,
        status: Optional[str] = StatusBucket.ACTIVE.value
    ) -> Dict[str, List[KanbanCard]]:
        """
        Kanban board: cases bucketed by current stage.

        ``status`` selects ``active`` (default), ``closed`` or ``all`` cases.
        """
        bucket = self._status_bucket(status)
        query = CaseQuery(caller=caller, category=normalize_filter(category), status_bucket=bucket)

        with performance_context("pipeline_kanban", user_id=caller.user_id, status=bucket.value):
            cases = await self.case_repository.find_cases(query)
            now = utcnow()

            grouped: Dict[str, List[KanbanCard]] = OrderedDict()
            for case in cases:
                card = kanban_card(case, self.vocabulary, now=now)
                grouped.setdefault(card.current_stage, []).append(card)
            return grouped

    async def get_pipeline_statistics(
        self,
        caller: CallerContext,
        category: Optional[str] = None,
        date_from: Any = None,
        date_to: Any = None
    ) -> PipelineStatisticsResponse:
        """Aggregate statistics over the caller's cases, optionally by category and creation date."""
        query = CaseQuery(
            caller=caller,
            category=normalize_filter(category),
            created_from=parse_optional_datetime(date_from, "dateFrom"),
            created_to=parse_optional_datetime(date_to, "dateTo"),
        )

        with performance_context("pipeline_statistics", user_id=caller.user_id):
            cases = await self.case_repository.find_cases(query)
            return pipeline_statistics(cases, self.vocabulary)

    # Helpers

    def _status_bucket(self, status: Optional[str]) -> StatusBucket:
        value = (status or StatusBucket.ACTIVE.value).strip().lower()
        try:
            return StatusBucket(value)
        except ValueError:
            raise_validation_error(
                f"Invalid status filter '{status}'",
                field="status",
                valid_values=[bucket.value for bucket in StatusBucket]
            )

    async def _commit(self, case: LegalCase, events: List[CaseEvent]) -> None:
        """Persist ``case`` with its revision check, then dispatch ``events``."""
        await self.case_repository.save_case(case)
        await self.event_dispatcher.dispatch(events)
