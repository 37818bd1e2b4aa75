"""
Pydantic API schemas for the case pipeline endpoints.

This module defines the request/response schemas for:
- Stage transitions and case ending
- Pipeline list view, kanban board and statistics
- Case notes
- The generic ``{"success": ..., "data": ...}`` response wrapper

All schemas serialize with camelCase aliases. Request bodies ignore unknown
fields, so callers cannot set anything beyond the declared inputs.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema serializing with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# Requests

class MoveStageRequest(CamelModel):
    """Body of ``PATCH /cases/{case_id}/stage``."""

    # type checks happen in the service so they surface as CASE_INVALID_INPUT
    new_stage: Optional[Any] = Field(None, description="Target stage identifier")
    notes: Optional[str] = Field(None, description="Free-text note stored on the history entry")

    model_config = ConfigDict(
        json_schema_extra={"example": {"newStage": "reconciliation", "notes": "moving forward"}}
    )


class EndCaseRequest(CamelModel):
    """Body of ``POST /cases/{case_id}/end``."""

    outcome: Optional[Any] = Field(None, description="won, lost or settled")
    end_reason: Optional[str] = Field(None, description="Reason for ending the case")
    final_amount: Optional[Any] = Field(None, description="Non-negative final amount")
    notes: Optional[str] = Field(None, description="Closing notes")
    end_date: Optional[Any] = Field(None, description="ISO-8601 end date, defaults to now")

    model_config = ConfigDict(
        json_schema_extra={"example": {"outcome": "won", "endReason": "judgment", "finalAmount": 100000}}
    )


class NoteCreateRequest(CamelModel):
    """Body of ``POST /cases/{case_id}/notes``."""

    text: Optional[Any] = Field(None, description="Note text, trimmed before storage")
    is_private: Optional[bool] = Field(False, description="Visible only to the creator")
    stage_id: Optional[str] = Field(None, description="Stage the note refers to")


class NoteUpdateRequest(CamelModel):
    """Body of ``PATCH /cases/{case_id}/notes/{note_id}``; omitted fields are unchanged."""

    text: Optional[Any] = None
    is_private: Optional[bool] = None


# Responses

class StageHistoryEntrySchema(CamelModel):
    stage: Optional[str] = None
    entered_at: datetime
    exited_at: Optional[datetime] = None
    notes: Optional[str] = None
    changed_by: Optional[str] = None


class MoveStageResponse(CamelModel):
    case_id: str
    current_stage: str
    stage_entered_at: Optional[datetime] = None
    stage_history: List[StageHistoryEntrySchema] = Field(default_factory=list)


class EndDetailsSchema(CamelModel):
    end_date: datetime
    end_reason: Optional[str] = None
    final_amount: Optional[float] = None
    notes: Optional[str] = None
    ended_by: Optional[str] = None


class EndCaseResponse(CamelModel):
    case_id: str
    status: str
    outcome: str
    end_details: EndDetailsSchema


class ValidStagesResponse(CamelModel):
    category: str
    stages: List[str]
    all_categories: List[str]


class CaseNoteSchema(CamelModel):
    id: str
    text: str
    date: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_private: bool = False
    stage_id: Optional[str] = None


class PipelineCaseRow(CamelModel):
    """One row of the pipeline list view."""

    id: str
    case_number: Optional[str] = None
    title: Optional[str] = None
    category: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    outcome: str
    plaintiff_name: str = ""
    defendant_name: str = ""
    client_id: Optional[str] = None
    court: Optional[str] = None
    judge: Optional[str] = None
    next_hearing: Optional[datetime] = None
    claim_amount: Optional[float] = None
    expected_win_amount: Optional[float] = None
    current_stage: str
    stage_entered_at: Optional[datetime] = None
    tasks_count: int = 0
    notion_pages_count: int = 0
    reminders_count: int = 0
    events_count: int = 0
    notes_count: int = 0
    latest_note: Optional[CaseNoteSchema] = None
    days_in_current_stage: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PageInfo(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class PipelineListStatistics(CamelModel):
    total: int
    by_stage: Dict[str, int] = Field(default_factory=dict)
    by_outcome: Dict[str, int] = Field(default_factory=dict)


class PipelineListResponse(CamelModel):
    cases: List[PipelineCaseRow]
    pagination: PageInfo
    statistics: PipelineListStatistics


class KanbanCard(CamelModel):
    """Denormalized case summary shown on the kanban board."""

    id: str
    title: Optional[str] = None
    case_number: Optional[str] = None
    category: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    plaintiff_name: str = ""
    defendant_name: str = ""
    client_id: Optional[str] = None
    court: Optional[str] = None
    claim_amount: Optional[float] = None
    current_stage: str
    stage_entered_at: Optional[datetime] = None
    days_in_stage: int = 0
    next_hearing: Optional[datetime] = None
    outcome: Optional[str] = None
    latest_note: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PipelineStatisticsResponse(CamelModel):
    total_cases: int = 0
    active_cases: int = 0
    won_cases: int = 0
    lost_cases: int = 0
    settled_cases: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_stage: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    avg_days_in_stage: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    total_claim_amount: float = 0
    total_won_amount: float = 0
    success_rate: float = 0


class NotePageInfo(CamelModel):
    total: int
    limit: int
    offset: int


class NoteListResponse(CamelModel):
    notes: List[CaseNoteSchema]
    pagination: NotePageInfo


class ApiResponse(BaseModel):
    """Generic API response wrapper."""

    success: bool = Field(..., description="Whether the request was successful")
    message: Optional[str] = Field(None, description="Human-readable message")
    data: Optional[Any] = Field(None, description="Response payload")


class ErrorResponse(BaseModel):
    """Schema for API error responses."""

    success: bool = Field(False, description="Always false for error responses")
    error: Dict[str, Any] = Field(..., description="Error details")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID for tracking")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "error": {
                    "code": "CASE_INVALID_STAGE",
                    "message": "Invalid stage for case category",
                    "details": {
                        "category": "labor",
                        "requested_stage": "mediation",
                        "valid_stages": ["filing", "friendly_settlement_1"],
                    },
                },
                "correlation_id": "req_123456",
            }
        }
    )
