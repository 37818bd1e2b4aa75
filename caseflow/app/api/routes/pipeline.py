"""
Case Pipeline API Routes

REST endpoints for moving legal cases through their category stages:

- Pipeline list view with filters, pagination and summary statistics
- Kanban board grouped by current stage
- Dashboard statistics
- Valid stages per category
- Stage transitions and case ending

Service exceptions propagate to the global error handler, which renders
them as the standard error envelope.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request, status

from caseflow.app.api.deps import get_caller, get_pipeline_service
from caseflow.app.api.middleware.logging import log_route_entry
from caseflow.app.models.api.pipeline_schemas import ApiResponse, EndCaseRequest, MoveStageRequest
from caseflow.app.models.domain.tenant import CallerContext
from caseflow.app.services.case_pipeline_service import CasePipelineService

router = APIRouter()


# Pipeline views

@router.get(
    "/pipeline",
    response_model=ApiResponse,
    summary="Pipeline List",
    description="Cases with their pipeline position, newest activity first"
)
async def list_pipeline_cases(
    request: Request,
    category: Optional[str] = Query(None, description="Case category, or 'all'"),
    outcome: Optional[str] = Query(None, description="Case outcome, or 'all'"),
    priority: Optional[str] = Query(None, description="Case priority, or 'all'"),
    page: int = Query(1, description="Page number, starting at 1"),
    limit: Optional[int] = Query(None, description="Page size"),
    caller: CallerContext = Depends(get_caller),
    service: CasePipelineService = Depends(get_pipeline_service)
) -> ApiResponse:
    log_route_entry(request, category=category, outcome=outcome, priority=priority, page=page, limit=limit)

    result = await service.list_cases_for_pipeline(
        caller,
        category=category,
        outcome=outcome,
        priority=priority,
        page=page,
        limit=limit
    )
    return ApiResponse(success=True, data=result.model_dump(by_alias=True, mode="json"))


@router.get(
    "/pipeline/board",
    response_model=ApiResponse,
    summary="Kanban Board",
    description="Cases bucketed by their current stage"
)
async def get_pipeline_board(
    request: Request,
    category: Optional[str] = Query(None, description="Case category, or 'all'"),
    status_filter: Optional[str] = Query("active", alias="status", description="active, closed or all"),
    caller: CallerContext = Depends(get_caller),
    service: CasePipelineService = Depends(get_pipeline_service)
) -> ApiResponse:
    log_route_entry(request, category=category, status=status_filter)

    grouped = await service.get_cases_grouped_by_stage(caller, category=category, status=status_filter)
    return ApiResponse(
        success=True,
        data={
            stage: [card.model_dump(by_alias=True, mode="json") for card in cards]
            for stage, cards in grouped.items()
        }
    )


@router.get(
    "/pipeline/statistics",
    response_model=ApiResponse,
    summary="Pipeline Statistics",
    description="Counts, amounts, average days in stage and success rate"
)
async def get_pipeline_statistics(
    request: Request,
    category: Optional[str] = Query(None, description="Case category, or 'all'"),
    date_from: Optional[str] = Query(None, alias="dateFrom", description="Created on or after (ISO-8601)"),
    date_to: Optional[str] = Query(None, alias="dateTo", description="Created on or before (ISO-8601)"),
    caller: CallerContext = Depends(get_caller),
    service: CasePipelineService = Depends(get_pipeline_service)
) -> ApiResponse:
    log_route_entry(request, category=category, date_from=date_from, date_to=date_to)

    result = await service.get_pipeline_statistics(caller, category=category, date_from=date_from, date_to=date_to)
    return ApiResponse(success=True, data=result.model_dump(by_alias=True, mode="json"))


@router.get(
    "/pipeline/stages/{category}",
    response_model=ApiResponse,
    summary="Valid Stages",
    description="Ordered stages for a case category"
)
async def get_valid_stages(
    category: str = Path(..., description="Case category"),
    caller: CallerContext = Depends(get_caller),
    service: CasePipelineService = Depends(get_pipeline_service)
) -> ApiResponse:
    result = service.get_valid_stages(category)
    return ApiResponse(success=True, data=result.model_dump(by_alias=True, mode="json"))


# Commands

@router.patch(
    "/{case_id}/stage",
    response_model=ApiResponse,
    summary="Move Case To Stage",
    description="Move a case to another stage of its category"
)
async def move_case_to_stage(
    request: Request,
    body: MoveStageRequest,
    case_id: str = Path(..., description="Case identifier"),
    caller: CallerContext = Depends(get_caller),
    service: CasePipelineService = Depends(get_pipeline_service)
) -> ApiResponse:
    log_route_entry(request, case_id=case_id, new_stage=body.new_stage)

    result = await service.move_case_to_stage(case_id, body.new_stage, caller, notes=body.notes)
    return ApiResponse(
        success=True,
        message="Case stage updated successfully",
        data=result.model_dump(by_alias=True, mode="json")
    )


@router.post(
    "/{case_id}/end",
    response_model=ApiResponse,
    status_code=status.HTTP_200_OK,
    summary="End Case",
    description="Close a case with an outcome"
)
async def end_case(
    request: Request,
    body: EndCaseRequest,
    case_id: str = Path(..., description="Case identifier"),
    caller: CallerContext = Depends(get_caller),
    service: CasePipelineService = Depends(get_pipeline_service)
) -> ApiResponse:
    log_route_entry(request, case_id=case_id, outcome=body.outcome)

    result = await service.end_case(
        case_id,
        caller,
        outcome=body.outcome,
        end_reason=body.end_reason,
        final_amount=body.final_amount,
        notes=body.notes,
        end_date=body.end_date
    )
    return ApiResponse(
        success=True,
        message="Case ended successfully",
        data=result.model_dump(by_alias=True, mode="json")
    )
