"""
Request context and access logging middleware.

Each request gets a correlation id, taken from the ``X-Correlation-ID``
header when the caller sends one. The id is stored on ``request.state``,
bound to the logging context for everything logged while the request is
handled, and echoed on the response.
"""

import time
import uuid
from typing import Callable, Iterable, Optional, Set

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from caseflow.app.utils.logging import clear_correlation_id, get_logger, set_correlation_id
from caseflow.config.settings import get_settings

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class RequestLoggingConfig:
    """Configuration for request logging behavior."""

    def __init__(
        self,
        excluded_paths: Optional[Iterable[str]] = None,
        log_query_params: bool = True,
        log_user_agent: bool = True,
        slow_request_ms: float = 2000.0,
    ):
        """
        Args:
            excluded_paths: Paths that get a correlation id but no access log line
            log_query_params: Whether to log query parameters
            log_user_agent: Whether to log user agent information
            slow_request_ms: Requests slower than this are logged at WARNING
        """
        self.excluded_paths: Set[str] = set(excluded_paths or {"/health", "/docs", "/openapi.json", "/redoc"})
        self.log_query_params = log_query_params
        self.log_user_agent = log_user_agent
        self.slow_request_ms = slow_request_ms


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Establishes the correlation id and logs one line per completed request.

    Register it last so that it wraps every other middleware and handler.
    """

    def __init__(self, app: ASGIApp, config: Optional[RequestLoggingConfig] = None):
        super().__init__(app)
        self.config = config or RequestLoggingConfig()
        self.logger = get_logger("middleware.context")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            self.logger.error(
                "Request processing failed",
                method=request.method,
                path=request.url.path,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        else:
            response.headers[CORRELATION_HEADER] = correlation_id
            self._log_request_complete(request, response, (time.perf_counter() - start_time) * 1000)
            return response
        finally:
            clear_correlation_id()

    def _log_request_complete(self, request: Request, response: Response, duration_ms: float) -> None:
        if request.url.path in self.config.excluded_paths:
            return

        log_data = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "client_ip": self._get_client_ip(request),
        }
        if self.config.log_query_params and request.url.query:
            log_data["query"] = request.url.query
        if self.config.log_user_agent:
            log_data["user_agent"] = request.headers.get("user-agent", "unknown")[:100]

        if duration_ms > self.config.slow_request_ms:
            self.logger.warning("Slow request", **log_data)
        elif response.status_code >= 500:
            self.logger.error("Request completed", **log_data)
        elif response.status_code >= 400:
            self.logger.warning("Request completed", **log_data)
        else:
            self.logger.info("Request completed", **log_data)

    def _get_client_ip(self, request: Request) -> str:
        """Client address, honouring reverse proxy headers."""
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"


def create_logging_config_from_settings() -> RequestLoggingConfig:
    settings = get_settings()
    return RequestLoggingConfig(excluded_paths=settings.logging.excluded_paths)


def setup_logging_middleware(app: FastAPI, config: Optional[RequestLoggingConfig] = None) -> None:
    """Install the request context middleware on ``app``."""
    config = config or create_logging_config_from_settings()
    app.add_middleware(RequestContextMiddleware, config=config)

    logger.info("Logging middleware configured", excluded_paths=sorted(config.excluded_paths))


def log_route_entry(request: Request, **context) -> None:
    """Log route entry with its path parameters and filters."""
    get_logger("routes").debug(
        "Route handler entered",
        method=request.method,
        path=request.url.path,
        **context
    )
