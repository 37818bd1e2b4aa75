"""Case note endpoints: list, add, edit and delete notes on a case."""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request, status

from caseflow.app.api.deps import get_caller, get_note_service
from caseflow.app.api.middleware.logging import log_route_entry
from caseflow.app.models.api.pipeline_schemas import ApiResponse, NoteCreateRequest, NoteUpdateRequest
from caseflow.app.models.domain.tenant import CallerContext
from caseflow.app.services.case_note_service import CaseNoteService

router = APIRouter()


@router.get(
    "/{case_id}/notes",
    response_model=ApiResponse,
    summary="List Case Notes"
)
async def list_case_notes(
    request: Request,
    case_id: str = Path(..., description="Case identifier"),
    limit: Optional[int] = Query(None, description="Page size"),
    offset: int = Query(0, description="Number of notes to skip"),
    sort: Optional[str] = Query("-date", description="date, createdAt or updatedAt; '-' for descending"),
    caller: CallerContext = Depends(get_caller),
    service: CaseNoteService = Depends(get_note_service)
) -> ApiResponse:
    log_route_entry(request, case_id=case_id, limit=limit, offset=offset, sort=sort)

    result = await service.get_notes(case_id, caller, limit=limit, offset=offset, sort=sort)
    return ApiResponse(success=True, data=result.model_dump(by_alias=True, mode="json"))


@router.post(
    "/{case_id}/notes",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add Case Note"
)
async def add_case_note(
    request: Request,
    body: NoteCreateRequest,
    case_id: str = Path(..., description="Case identifier"),
    caller: CallerContext = Depends(get_caller),
    service: CaseNoteService = Depends(get_note_service)
) -> ApiResponse:
    log_route_entry(request, case_id=case_id)

    note = await service.add_note(
        case_id,
        caller,
        text=body.text,
        is_private=body.is_private,
        stage_id=body.stage_id
    )
    return ApiResponse(
        success=True,
        message="Note added successfully",
        data=note.model_dump(by_alias=True, mode="json")
    )


@router.patch(
    "/{case_id}/notes/{note_id}",
    response_model=ApiResponse,
    summary="Update Case Note"
)
async def update_case_note(
    request: Request,
    body: NoteUpdateRequest,
    case_id: str = Path(..., description="Case identifier"),
    note_id: str = Path(..., description="Note identifier"),
    caller: CallerContext = Depends(get_caller),
    service: CaseNoteService = Depends(get_note_service)
) -> ApiResponse:
    log_route_entry(request, case_id=case_id, note_id=note_id)

    note = await service.update_note(
        case_id,
        note_id,
        caller,
        text=body.text,
        is_private=body.is_private,
        text_supplied="text" in body.model_fields_set
    )
    return ApiResponse(
        success=True,
        message="Note updated successfully",
        data=note.model_dump(by_alias=True, mode="json")
    )


@router.delete(
    "/{case_id}/notes/{note_id}",
    response_model=ApiResponse,
    summary="Delete Case Note"
)
async def delete_case_note(
    request: Request,
    case_id: str = Path(..., description="Case identifier"),
    note_id: str = Path(..., description="Note identifier"),
    caller: CallerContext = Depends(get_caller),
    service: CaseNoteService = Depends(get_note_service)
) -> ApiResponse:
    log_route_entry(request, case_id=case_id, note_id=note_id)

    await service.delete_note(case_id, note_id, caller)
    return ApiResponse(success=True, message="Note deleted successfully")
