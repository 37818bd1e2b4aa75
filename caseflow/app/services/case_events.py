"""
Domain events emitted by pipeline commands and their dispatcher.

Commands collect events while they mutate a case and hand them to the
``CaseEventDispatcher`` only after the case was persisted. Every handler
runs inside its own error boundary: a failing handler is logged at WARNING
and never changes the outcome of the command that produced the event.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, DefaultDict, Dict, Iterable, List, Optional, Type

from caseflow.app.models.domain.case import utcnow
from caseflow.app.utils.logging import get_logger, log_business_event

logger = get_logger(__name__)


@dataclass(frozen=True)
class CaseEvent:
    """Base class for case domain events."""

    case_id: str
    user_id: str
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def action(self) -> str:
        raise NotImplementedError

    def audit_details(self) -> Dict[str, Any]:
        return {"action": self.action}


@dataclass(frozen=True)
class CaseStageChanged(CaseEvent):
    old_stage: str = ""
    new_stage: str = ""
    notes: Optional[str] = None

    @property
    def action(self) -> str:
        return "stage_change"

    def audit_details(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "oldStage": self.old_stage,
            "newStage": self.new_stage,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class CaseEnded(CaseEvent):
    outcome: str = ""
    end_reason: Optional[str] = None
    final_amount: Optional[float] = None

    @property
    def action(self) -> str:
        return "case_ended"

    def audit_details(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "outcome": self.outcome,
            "endReason": self.end_reason,
            "finalAmount": self.final_amount,
        }


EventHandler = Callable[[CaseEvent], Awaitable[None]]


class CaseEventDispatcher:
    """Delivers persisted-case events to registered async handlers."""

    def __init__(self):
        self._handlers: DefaultDict[Type[CaseEvent], List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: Type[CaseEvent], handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)
        logger.debug(
            "Event handler added",
            event_type=event_type.__name__,
            handler_count=len(self._handlers[event_type])
        )

    def handlers_for(self, event: CaseEvent) -> List[EventHandler]:
        handlers: List[EventHandler] = []
        for event_type, registered in self._handlers.items():
            if isinstance(event, event_type):
                handlers.extend(registered)
        return handlers

    async def dispatch(self, events: Iterable[CaseEvent]) -> None:
        """Deliver each event to each matching handler, isolating failures."""
        for event in events:
            for handler in self.handlers_for(event):
                try:
                    await handler(event)
                except Exception as e:
                    logger.warning(
                        "Case event handler failed",
                        event_type=type(event).__name__,
                        case_id=event.case_id,
                        handler=getattr(handler, "__name__", repr(handler)),
                        error=str(e),
                        error_type=type(e).__name__
                    )


def make_audit_handler(audit_repository) -> EventHandler:
    """Handler writing each event to the case audit trail."""

    async def write_audit_record(event: CaseEvent) -> None:
        await audit_repository.log_case_update(event.case_id, event.user_id, event.audit_details())

    return write_audit_record


async def log_case_event(event: CaseEvent) -> None:
    log_business_event(event.action, user_id=event.user_id, case_id=event.case_id, **event.audit_details())


def build_default_dispatcher(audit_repository) -> CaseEventDispatcher:
    """Dispatcher wired with the business-event logger and the audit trail."""
    dispatcher = CaseEventDispatcher()
    dispatcher.subscribe(CaseEvent, log_case_event)
    dispatcher.subscribe(CaseEvent, make_audit_handler(audit_repository))
    return dispatcher
