"""
Global error handling for the caseflow HTTP API.

Every exception that leaves a route is rendered as the same JSON envelope:

    {"success": false, "error": {"code", "message", "user_message", "details",
                                 "correlation_id", "category", "severity",
                                 "retryable"}}

with the request's correlation id echoed in the ``X-Correlation-ID`` header.

- Application exceptions keep their own status code and error code
- FastAPI request validation failures are reported as invalid input (400)
- Plain HTTP exceptions (404 for unknown routes, 405, ...) are mapped to the
  closest error code
- Anything else becomes a 500; the technical message and traceback are only
  included in development
"""

import re
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.status import HTTP_400_BAD_REQUEST, HTTP_500_INTERNAL_SERVER_ERROR

from caseflow.app.core.exceptions import (
    BaseCustomException,
    ErrorCode,
    get_exception_response_data,
    is_retryable_error,
)
from caseflow.app.utils.logging import get_correlation_id, get_logger
from caseflow.config.settings import get_settings


class ErrorSeverity(str, Enum):
    """Error severity levels for monitoring and alerting."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories for classification."""
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RESOURCE = "resource"
    CONFLICT = "conflict"
    SYSTEM = "system"


ERROR_CATEGORIES: Dict[ErrorCode, ErrorCategory] = {
    ErrorCode.CONFIG_INVALID_VALUE: ErrorCategory.VALIDATION,
    ErrorCode.CASE_INVALID_INPUT: ErrorCategory.VALIDATION,
    ErrorCode.CASE_INVALID_STAGE: ErrorCategory.VALIDATION,
    ErrorCode.CASE_INVALID_STATE: ErrorCategory.VALIDATION,

    ErrorCode.AUTH_MISSING_IDENTITY: ErrorCategory.AUTHENTICATION,
    ErrorCode.CASE_ACCESS_DENIED: ErrorCategory.AUTHORIZATION,
    ErrorCode.NOTE_ACCESS_DENIED: ErrorCategory.AUTHORIZATION,

    ErrorCode.CASE_NOT_FOUND: ErrorCategory.RESOURCE,
    ErrorCode.NOTE_NOT_FOUND: ErrorCategory.RESOURCE,
    ErrorCode.RESOURCE_UNAVAILABLE: ErrorCategory.RESOURCE,
    ErrorCode.RESOURCE_CONFLICT: ErrorCategory.CONFLICT,

    ErrorCode.DATABASE_CONNECTION_ERROR: ErrorCategory.SYSTEM,
    ErrorCode.DATABASE_OPERATION_FAILED: ErrorCategory.SYSTEM,
    ErrorCode.DATABASE_TIMEOUT: ErrorCategory.SYSTEM,
    ErrorCode.CONFIG_VALIDATION_FAILED: ErrorCategory.SYSTEM,
}

ERROR_SEVERITIES: Dict[ErrorCode, ErrorSeverity] = {
    ErrorCode.DATABASE_CONNECTION_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.CONFIG_VALIDATION_FAILED: ErrorSeverity.CRITICAL,

    ErrorCode.DATABASE_OPERATION_FAILED: ErrorSeverity.HIGH,
    ErrorCode.DATABASE_TIMEOUT: ErrorSeverity.HIGH,

    ErrorCode.RESOURCE_CONFLICT: ErrorSeverity.MEDIUM,
    ErrorCode.RESOURCE_UNAVAILABLE: ErrorSeverity.MEDIUM,
}

STATUS_ERROR_CODES: Dict[int, ErrorCode] = {
    400: ErrorCode.CASE_INVALID_INPUT,
    401: ErrorCode.AUTH_MISSING_IDENTITY,
    403: ErrorCode.CASE_ACCESS_DENIED,
    404: ErrorCode.CASE_NOT_FOUND,
    405: ErrorCode.CASE_INVALID_INPUT,
    409: ErrorCode.RESOURCE_CONFLICT,
    422: ErrorCode.CASE_INVALID_INPUT,
    503: ErrorCode.RESOURCE_UNAVAILABLE,
}


class ErrorMetrics:
    """In-process error counters, reported by the health endpoint."""

    def __init__(self):
        self.total_errors = 0
        self.error_counts_by_code: Dict[str, int] = {}
        self.error_counts_by_category: Dict[str, int] = {}
        self.last_error_time: Optional[datetime] = None

    def record_error(self, error_code: ErrorCode, category: ErrorCategory) -> None:
        self.total_errors += 1
        self.error_counts_by_code[error_code.name] = self.error_counts_by_code.get(error_code.name, 0) + 1
        self.error_counts_by_category[category.value] = self.error_counts_by_category.get(category.value, 0) + 1
        self.last_error_time = datetime.now(timezone.utc)

    def get_summary(self) -> Dict[str, Any]:
        return {
            "total_errors": self.total_errors,
            "error_counts_by_code": dict(self.error_counts_by_code),
            "error_counts_by_category": dict(self.error_counts_by_category),
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
        }


class ErrorHandler:
    """Centralized error handling with classification and formatting."""

    def __init__(self):
        self.settings = get_settings()
        self.logger = get_logger(__name__)
        self.metrics = ErrorMetrics()
        self.is_development = self.settings.is_development

    def classify_error(self, error_code: ErrorCode) -> Tuple[ErrorCategory, ErrorSeverity]:
        """
        Classify error by category and severity.

        Unlisted codes are system errors of low severity when they describe
        caller mistakes (4xx families), medium otherwise.
        """
        category = ERROR_CATEGORIES.get(error_code, ErrorCategory.SYSTEM)
        default_severity = ErrorSeverity.MEDIUM if category == ErrorCategory.SYSTEM else ErrorSeverity.LOW
        severity = ERROR_SEVERITIES.get(error_code, default_severity)
        return category, severity

    def handle_custom_exception(self, request: Request, exc: BaseCustomException) -> JSONResponse:
        """Render an application exception with its own status code."""
        correlation_id = self._get_correlation_id(request, exc)
        category, severity = self.classify_error(exc.error_code)
        self.metrics.record_error(exc.error_code, category)

        response = get_exception_response_data(exc)
        response["correlation_id"] = correlation_id
        response["error"].update({
            "correlation_id": correlation_id,
            "category": category.value,
            "severity": severity.value,
            "retryable": is_retryable_error(exc),
            "user_message": self._sanitize_error_message(exc.user_message),
        })
        if self.is_development:
            response["error"]["debug"] = self._debug_info(request, exc)

        self._log_error(exc, request, correlation_id, category, severity)

        return JSONResponse(
            status_code=exc.http_status_code,
            content=response,
            headers={"X-Correlation-ID": correlation_id}
        )

    def handle_http_exception(self, request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Render a plain HTTP exception raised by the framework or a route."""
        correlation_id = self._get_correlation_id(request)
        error_code = STATUS_ERROR_CODES.get(exc.status_code, ErrorCode.DATABASE_OPERATION_FAILED)
        category, severity = self.classify_error(error_code)
        self.metrics.record_error(error_code, category)

        response = self._envelope(
            error_code=error_code,
            message=str(exc.detail),
            user_message=self._sanitize_error_message(str(exc.detail)),
            details={"http_status": exc.status_code},
            correlation_id=correlation_id,
            category=category,
            severity=severity,
        )

        self.logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            error_code=error_code.name,
            method=request.method,
            path=request.url.path,
        )

        return JSONResponse(
            status_code=exc.status_code,
            content=response,
            headers={"X-Correlation-ID": correlation_id}
        )

    def handle_validation_error(self, request: Request, exc: RequestValidationError) -> JSONResponse:
        """Request bodies or parameters that do not parse are invalid input."""
        correlation_id = self._get_correlation_id(request)
        error_code = ErrorCode.CASE_INVALID_INPUT
        category, severity = self.classify_error(error_code)
        self.metrics.record_error(error_code, category)

        validation_errors = [
            {
                "field": ".".join(str(loc) for loc in error.get("loc", ())),
                "message": error.get("msg"),
                "type": error.get("type"),
            }
            for error in exc.errors()
        ]

        response = self._envelope(
            error_code=error_code,
            message="Request validation failed",
            user_message="Please check your input and try again",
            details={"field_errors": validation_errors, "error_count": len(validation_errors)},
            correlation_id=correlation_id,
            category=category,
            severity=severity,
        )

        self.logger.warning(
            "Request validation failed",
            error_count=len(validation_errors),
            validation_errors=validation_errors,
            method=request.method,
            path=request.url.path,
        )

        return JSONResponse(
            status_code=HTTP_400_BAD_REQUEST,
            content=response,
            headers={"X-Correlation-ID": correlation_id}
        )

    def handle_unexpected_error(self, request: Request, exc: Exception) -> JSONResponse:
        """Unhandled exceptions become a generic 500."""
        correlation_id = self._get_correlation_id(request)
        error_code = ErrorCode.DATABASE_OPERATION_FAILED
        category, severity = ErrorCategory.SYSTEM, ErrorSeverity.CRITICAL
        self.metrics.record_error(error_code, category)

        response = self._envelope(
            error_code=error_code,
            message="Internal server error",
            user_message="An unexpected error occurred. Please try again later.",
            details={"error_type": type(exc).__name__},
            correlation_id=correlation_id,
            category=category,
            severity=severity,
        )
        if self.is_development:
            response["error"]["debug"] = {
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
                "traceback": traceback.format_exception(type(exc), exc, exc.__traceback__),
                "request_method": request.method,
                "request_path": request.url.path,
            }

        self.logger.error(
            "Unexpected error",
            exception_type=type(exc).__name__,
            error=str(exc),
            method=request.method,
            path=request.url.path,
            exc_info=exc,
        )

        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content=response,
            headers={"X-Correlation-ID": correlation_id}
        )

    def get_metrics(self) -> Dict[str, Any]:
        return self.metrics.get_summary()

    # Helpers

    def _envelope(
        self,
        error_code: ErrorCode,
        message: str,
        user_message: str,
        details: Dict[str, Any],
        correlation_id: str,
        category: ErrorCategory,
        severity: ErrorSeverity
    ) -> Dict[str, Any]:
        return {
            "success": False,
            "error": {
                "code": error_code.name,
                "numeric_code": error_code.value,
                "message": message,
                "user_message": user_message,
                "details": details,
                "correlation_id": correlation_id,
                "category": category.value,
                "severity": severity.value,
                "retryable": False,
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "correlation_id": correlation_id,
        }

    def _debug_info(self, request: Request, exc: BaseCustomException) -> Dict[str, Any]:
        return {
            "exception_type": type(exc).__name__,
            "technical_message": exc.message,
            "request_method": request.method,
            "request_path": request.url.path,
        }

    def _get_correlation_id(self, request: Request, exc: Optional[BaseCustomException] = None) -> str:
        """Correlation id from the exception, the request context, or a fresh one."""
        if exc is not None and exc.correlation_id:
            return exc.correlation_id

        correlation_id = getattr(request.state, "correlation_id", None) or get_correlation_id()
        if correlation_id:
            return correlation_id

        header_value = request.headers.get("X-Correlation-ID")
        if header_value:
            return header_value

        return str(uuid.uuid4())

    def _sanitize_error_message(self, message: str) -> str:
        """Strip connection strings and credentials from client-facing messages."""
        message = re.sub(r'mongodb(\+srv)?://[^\s]*', '[connection_string]', message)
        message = re.sub(r'[Pp]assword[:\s=]+[^\s]+', 'password=[redacted]', message)
        message = re.sub(r'[Tt]oken[:\s=]+[^\s]+', 'token=[redacted]', message)
        return message

    def _log_error(
        self,
        exc: BaseCustomException,
        request: Request,
        correlation_id: str,
        category: ErrorCategory,
        severity: ErrorSeverity
    ) -> None:
        """Log error with a level matching its severity."""
        log_data = {
            "error_code": exc.error_code.name,
            "category": category.value,
            "severity": severity.value,
            "technical_message": exc.message,
            "details": exc.details,
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else "unknown",
        }

        if severity == ErrorSeverity.CRITICAL:
            self.logger.critical("Critical error", **log_data)
        elif severity == ErrorSeverity.HIGH:
            self.logger.error("High severity error", **log_data)
        elif severity == ErrorSeverity.MEDIUM:
            self.logger.warning("Medium severity error", **log_data)
        else:
            self.logger.info("Request rejected", **log_data)


def setup_error_handlers(app: FastAPI) -> ErrorHandler:
    """
    Register the global exception handlers on ``app``.

    Returns:
        The ErrorHandler instance, whose metrics the health endpoint reports
    """
    error_handler = ErrorHandler()

    @app.exception_handler(BaseCustomException)
    async def custom_exception_handler(request: Request, exc: BaseCustomException):
        return error_handler.handle_custom_exception(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return error_handler.handle_validation_error(request, exc)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return error_handler.handle_http_exception(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def starlette_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_handler.handle_http_exception(request, exc)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        return error_handler.handle_unexpected_error(request, exc)

    get_logger(__name__).info("Global error handlers configured")
    return error_handler


__all__ = [
    "ErrorCategory",
    "ErrorHandler",
    "ErrorMetrics",
    "ErrorSeverity",
    "setup_error_handlers",
]
