"""
FastAPI application entry point for the caseflow pipeline service.

Builds the application: logging, MongoDB lifecycle, middleware, global
error handlers and the pipeline and note routers under ``/api/v1/cases``.

Run locally with:

    uvicorn caseflow.main:app --reload
"""

import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from caseflow.app.api.middleware.error_handler import setup_error_handlers
from caseflow.app.api.middleware.logging import setup_logging_middleware
from caseflow.app.api.routes import notes, pipeline
from caseflow.app.core.database import close_database, get_database_manager, init_database
from caseflow.app.utils.logging import get_logger, initialize_logging_from_settings
from caseflow.config.settings import get_settings

logger = get_logger(__name__)

API_PREFIX = "/api/v1/cases"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect to MongoDB on startup and disconnect on shutdown."""
    initialize_logging_from_settings()
    settings = get_settings()
    logger.info(
        "=== Caseflow Pipeline API Starting Up ===",
        environment=settings.environment,
        debug_mode=settings.debug
    )

    await init_database()
    logger.info("Database connections established successfully")

    try:
        yield
    finally:
        logger.info("=== Caseflow Pipeline API Shutting Down ===")
        await close_database()
        logger.info("Database connections closed")


def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Case pipeline: stages, outcomes, notes and pipeline statistics",
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan
    )

    configure_middleware(app)
    error_handler = setup_error_handlers(app)
    configure_routes(app, error_handler)

    return app


def configure_middleware(app: FastAPI) -> None:
    """Configure the middleware stack; the last one added runs first."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Correlation-ID"]
    )
    setup_logging_middleware(app)

    logger.info("Middleware configuration completed")


def configure_routes(app: FastAPI, error_handler) -> None:
    """Configure system endpoints and the API routers."""

    @app.get("/health", tags=["system"], include_in_schema=False)
    async def health_check():
        """Liveness plus a MongoDB ping."""
        database = await get_database_manager().health_check()
        healthy = database.get("status") == "healthy"
        body = {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": {"mongodb": database},
            "errors": error_handler.get_metrics(),
        }
        return JSONResponse(status_code=200 if healthy else 503, content=body)

    app.include_router(pipeline.router, prefix=API_PREFIX, tags=["pipeline"])
    app.include_router(notes.router, prefix=API_PREFIX, tags=["notes"])

    logger.info("Routes configuration completed")


app = create_application()


if __name__ == "__main__":
    logger.info("Starting caseflow development server...")
    try:
        uvicorn.run("caseflow.main:app", host="0.0.0.0", port=8000, reload=True)
    except KeyboardInterrupt:
        logger.info("Development server stopped by user")
    except Exception as e:
        logger.error("Failed to start development server", error=str(e))
        sys.exit(1)
