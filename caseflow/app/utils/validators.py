"""
Validation utilities for the caseflow pipeline service.

``require_*`` and ``parse_*`` functions raise ``ValidationError`` on bad input
and return the normalized value otherwise.
"""

import math
from datetime import datetime
from typing import Any, Optional, Tuple

from bson import ObjectId

from caseflow.app.core.exceptions import raise_validation_error
from caseflow.app.models.domain.case import FINAL_OUTCOMES, ensure_utc

NOTE_SORT_FIELDS = ("date", "createdAt", "updatedAt")
DEFAULT_NOTE_SORT = "-date"


def is_valid_object_id(value: Any) -> bool:
    """True for an ``ObjectId`` or its 24-character hex string form."""
    if isinstance(value, ObjectId):
        return True
    return isinstance(value, str) and len(value) == 24 and ObjectId.is_valid(value)


def require_object_id(value: Any, message: str = "Invalid case ID", field: str = "case_id") -> str:
    """Return ``value`` as a string id or raise ``ValidationError``."""
    if not is_valid_object_id(value):
        raise_validation_error(message, field=field)
    return str(value)


def require_stage_identifier(value: Any) -> str:
    """A target stage must be a non-empty string."""
    if not isinstance(value, str) or not value.strip():
        raise_validation_error("Valid stage is required", field="newStage")
    return value.strip()


def require_outcome(value: Any) -> str:
    """An end outcome must be one of won, lost or settled."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise_validation_error(
            "Outcome is required",
            field="outcome",
            valid_outcomes=list(FINAL_OUTCOMES)
        )
    if not isinstance(value, str) or value.strip() not in FINAL_OUTCOMES:
        raise_validation_error(
            "Invalid outcome",
            field="outcome",
            valid_outcomes=list(FINAL_OUTCOMES)
        )
    return value.strip()


def parse_non_negative_amount(value: Any, field: str = "finalAmount") -> Optional[float]:
    """
    Parse an optional monetary amount.

    ``None`` and empty strings mean "not supplied". Booleans, negatives, NaN
    and infinities are rejected.

    Returns:
        The amount as a float, or None when not supplied
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise_validation_error("Invalid final amount", field=field)
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise_validation_error("Invalid final amount", field=field)
    if math.isnan(amount) or math.isinf(amount) or amount < 0:
        raise_validation_error("Invalid final amount", field=field)
    return amount


def parse_optional_datetime(value: Any, field: str) -> Optional[datetime]:
    """Accept a datetime or an ISO-8601 string; return it in UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass
    raise_validation_error(f"Invalid date for {field}", field=field)


def require_note_text(value: Any, message: str = "Note text is required") -> str:
    """Note text must be a string that is non-empty after trimming."""
    if not isinstance(value, str) or not value.strip():
        raise_validation_error(message, field="text")
    return value.strip()


def parse_note_sort(sort: Optional[str]) -> Tuple[str, bool]:
    """
    Parse a note sort expression such as ``-date`` or ``createdAt``.

    Returns:
        (field, descending)
    """
    sort = (sort or DEFAULT_NOTE_SORT).strip()
    descending = sort.startswith("-")
    field = sort[1:] if descending else sort
    if field not in NOTE_SORT_FIELDS:
        raise_validation_error(
            f"Invalid sort field '{field}'",
            field="sort",
            valid_fields=list(NOTE_SORT_FIELDS)
        )
    return field, descending


def clamp_page_size(limit: Optional[int], default: int, maximum: int) -> int:
    if limit is None:
        return default
    return max(1, min(int(limit), maximum))
