"""
Custom exception classes for the caseflow case pipeline service.

This module defines the exception hierarchy used across the service:
- Standardized error codes for client-side handling
- HTTP status code mapping for API responses
- Structured error details for remediation (e.g. valid stage lists)
- Convenience raise helpers used by services and repositories
"""

import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorCode(str, Enum):
    """
    Standardized error codes for the case pipeline service.

    These codes are stable identifiers that clients can branch on; the
    human-readable message may change.
    """

    # Configuration Errors (1xxx)
    CONFIG_VALIDATION_FAILED = "1001"
    CONFIG_INVALID_VALUE = "1004"

    # Database Errors (2xxx)
    DATABASE_CONNECTION_ERROR = "2001"
    DATABASE_OPERATION_FAILED = "2002"
    DATABASE_TIMEOUT = "2004"

    # Case Management Errors (4xxx)
    CASE_NOT_FOUND = "4001"
    CASE_ACCESS_DENIED = "4002"
    CASE_INVALID_STATE = "4004"
    CASE_INVALID_INPUT = "4006"
    CASE_INVALID_STAGE = "4007"

    # Case Note Errors (45xx)
    NOTE_NOT_FOUND = "4501"
    NOTE_ACCESS_DENIED = "4502"

    # Authentication & Authorization Errors (8xxx)
    AUTH_MISSING_IDENTITY = "8005"

    # Resource Errors (9xxx)
    RESOURCE_UNAVAILABLE = "9003"
    RESOURCE_CONFLICT = "9004"


class BaseCustomException(Exception):
    """
    Base exception class for all custom exceptions in the service.

    Provides common functionality for error tracking, context preservation,
    and structured error information.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: Optional[Dict[str, Any]] = None,
        http_status_code: int = 500,
        correlation_id: Optional[str] = None,
        user_message: Optional[str] = None
    ):
        """
        Initialize base exception with structured error information.

        Args:
            message: Technical error message for developers
            error_code: Standardized error code for identification
            details: Additional context and remediation information
            http_status_code: HTTP status code for API responses
            correlation_id: Request correlation ID for tracking
            user_message: User-friendly error message for display
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.http_status_code = http_status_code
        self.correlation_id = correlation_id
        self.user_message = user_message or self._generate_user_message()
        self.traceback_info = traceback.format_exc()

    def _generate_user_message(self) -> str:
        """Generate a user-friendly error message based on the error code."""
        user_messages = {
            ErrorCode.CASE_NOT_FOUND: "Case not found.",
            ErrorCode.CASE_ACCESS_DENIED: "You do not have access to this case.",
            ErrorCode.CASE_INVALID_STATE: "This case has ended and can no longer be changed.",
            ErrorCode.CASE_INVALID_STAGE: "Invalid stage for case category.",
            ErrorCode.NOTE_NOT_FOUND: "Note not found.",
            ErrorCode.NOTE_ACCESS_DENIED: "Only the note creator can change this note.",
            ErrorCode.RESOURCE_CONFLICT: "The case was modified by someone else. Please reload and retry.",
            ErrorCode.DATABASE_CONNECTION_ERROR: "Unable to connect to the database. Please try again later.",
        }
        return user_messages.get(self.error_code, self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
            "http_status_code": self.http_status_code,
            "correlation_id": self.correlation_id,
        }

    def add_context(self, key: str, value: Any) -> None:
        """Add additional context to the exception details."""
        self.details[key] = value

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class ConfigurationError(BaseCustomException):
    """Exception raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE,
        config_section: Optional[str] = None,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        **kwargs
    ):
        details = {
            "config_section": config_section,
            "config_key": config_key,
            "config_value": str(config_value) if config_value is not None else None,
        }
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=400,
            **kwargs
        )


class DatabaseError(BaseCustomException):
    """Exception raised for database-related errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATABASE_OPERATION_FAILED,
        database_type: Optional[str] = None,
        collection_name: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        details = {
            "database_type": database_type,
            "collection_name": collection_name,
            "operation": operation,
        }
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=500,
            user_message="An internal error occurred while saving the case. Please resubmit.",
            **kwargs
        )


class CaseManagementError(BaseCustomException):
    """Exception raised for case and case-note errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CASE_NOT_FOUND,
        case_id: Optional[str] = None,
        user_id: Optional[str] = None,
        note_id: Optional[str] = None,
        **kwargs
    ):
        details = {
            "case_id": case_id,
            "user_id": user_id,
        }
        if note_id is not None:
            details["note_id"] = note_id

        # Set appropriate HTTP status code based on error type
        status_map = {
            ErrorCode.CASE_NOT_FOUND: 404,
            ErrorCode.NOTE_NOT_FOUND: 404,
            ErrorCode.CASE_ACCESS_DENIED: 403,
            ErrorCode.NOTE_ACCESS_DENIED: 403,
            ErrorCode.CASE_INVALID_STATE: 400,
        }

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=status_map.get(error_code, 400),
            user_message=message,
            **kwargs
        )


class InvalidStageError(BaseCustomException):
    """Exception raised when a stage does not belong to a category's vocabulary."""

    def __init__(
        self,
        message: str,
        category: Optional[str],
        requested_stage: Any,
        valid_stages: Sequence[str],
        case_id: Optional[str] = None,
        **kwargs
    ):
        details = {
            "case_id": case_id,
            "category": category,
            "requested_stage": requested_stage,
            "valid_stages": list(valid_stages),
        }
        super().__init__(
            message=message,
            error_code=ErrorCode.CASE_INVALID_STAGE,
            details=details,
            http_status_code=400,
            user_message=message,
            **kwargs
        )


class ValidationError(BaseCustomException):
    """Exception raised for malformed or missing client input."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[List[Dict[str, Any]]] = None,
        error_code: ErrorCode = ErrorCode.CASE_INVALID_INPUT,
        extra_details: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        details = {
            "field_errors": field_errors or [],
        }
        if extra_details:
            details.update(extra_details)
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=400,
            user_message=message,
            **kwargs
        )


class AuthenticationError(BaseCustomException):
    """Exception raised when no caller identity reached the service."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.AUTH_MISSING_IDENTITY,
        **kwargs
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details={},
            http_status_code=401,
            user_message=message,
            **kwargs
        )


class ResourceError(BaseCustomException):
    """Exception raised for resource-related errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs
    ):
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }

        status_map = {
            ErrorCode.RESOURCE_UNAVAILABLE: 503,
            ErrorCode.RESOURCE_CONFLICT: 409,
        }

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            http_status_code=status_map.get(error_code, 500),
            **kwargs
        )


class ConcurrencyConflict(ResourceError):
    """Raised when a case document changed between read and write-back."""

    def __init__(self, case_id: str, expected_revision: int, **kwargs):
        super().__init__(
            message=f"Case {case_id} was modified concurrently (expected revision {expected_revision})",
            error_code=ErrorCode.RESOURCE_CONFLICT,
            resource_type="case",
            resource_id=case_id,
            **kwargs
        )
        self.expected_revision = expected_revision
        self.add_context("expected_revision", expected_revision)


# Utility functions to check error types and determine retry behavior

def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error is retryable based on its type and code.

    Args:
        error: Exception to check

    Returns:
        True if the error is retryable, False otherwise
    """
    if isinstance(error, BaseCustomException):
        retryable_codes = {
            ErrorCode.DATABASE_TIMEOUT,
            ErrorCode.RESOURCE_UNAVAILABLE,
            ErrorCode.RESOURCE_CONFLICT,
        }
        return error.error_code in retryable_codes

    return isinstance(error, (ConnectionError, TimeoutError))


def get_exception_response_data(exception: BaseCustomException) -> Dict[str, Any]:
    """
    Extract response data from a custom exception for API responses.

    Args:
        exception: Custom exception instance

    Returns:
        Dictionary containing structured error data
    """
    return {
        "success": False,
        "error": {
            "code": exception.error_code.name,
            "numeric_code": exception.error_code.value,
            "message": exception.message,
            "user_message": exception.user_message,
            "details": exception.details,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "correlation_id": exception.correlation_id,
    }


# Convenience functions for common exception patterns

def raise_config_error(
    message: str,
    config_section: Optional[str] = None,
    config_key: Optional[str] = None,
    config_value: Optional[Any] = None
) -> None:
    """Raise a configuration error with context."""
    raise ConfigurationError(
        message=message,
        config_section=config_section,
        config_key=config_key,
        config_value=config_value
    )


def raise_database_error(
    message: str,
    database_type: str = "mongodb",
    operation: Optional[str] = None,
    collection_name: Optional[str] = None,
    error_code: ErrorCode = ErrorCode.DATABASE_OPERATION_FAILED
) -> None:
    """Raise a database error with context."""
    raise DatabaseError(
        message=message,
        error_code=error_code,
        database_type=database_type,
        operation=operation,
        collection_name=collection_name
    )


def raise_case_error(
    message: str,
    case_id: Optional[str] = None,
    user_id: Optional[str] = None,
    error_code: ErrorCode = ErrorCode.CASE_NOT_FOUND,
    **kwargs
) -> None:
    """Raise a case management error with context."""
    raise CaseManagementError(
        message=message,
        error_code=error_code,
        case_id=case_id,
        user_id=user_id,
        **kwargs
    )


def raise_case_not_found(case_id: str, user_id: Optional[str] = None) -> None:
    """Raise a standardized case-not-found error."""
    raise_case_error(
        "Case not found",
        case_id=case_id,
        user_id=user_id,
        error_code=ErrorCode.CASE_NOT_FOUND
    )


def raise_case_access_denied(case_id: str, user_id: Optional[str] = None) -> None:
    """Raise a standardized case access error."""
    raise_case_error(
        "Unauthorized - you do not have access to this case",
        case_id=case_id,
        user_id=user_id,
        error_code=ErrorCode.CASE_ACCESS_DENIED
    )


def raise_validation_error(
    message: str,
    field: Optional[str] = None,
    **extra_details: Any
) -> None:
    """Raise an input validation error, optionally naming the offending field."""
    field_errors = [{"field": field, "message": message}] if field else None
    raise ValidationError(
        message=message,
        field_errors=field_errors,
        extra_details=extra_details or None
    )
