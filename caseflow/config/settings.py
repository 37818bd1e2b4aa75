"""
Application settings for the caseflow case pipeline service.

Settings are loaded from environment variables and an optional ``.env`` file.
Nested sections use ``__`` as the delimiter, e.g. ``DATABASE__MONGODB_URL`` or
``PIPELINE__MAX_PAGE_SIZE``.
"""

from functools import lru_cache
from typing import Any, Dict, List

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_STAGE_VOCABULARY: Dict[str, List[str]] = {
    "labor": [
        "filing",
        "friendly_settlement_1",
        "friendly_settlement_2",
        "labor_court",
        "appeal",
        "execution",
    ],
    "commercial": ["filing", "mediation", "commercial_court", "appeal", "supreme", "execution"],
    "civil": ["filing", "reconciliation", "general_court", "appeal", "supreme", "execution"],
    "family": [
        "filing",
        "reconciliation_committee",
        "family_court",
        "appeal",
        "supreme",
        "execution",
    ],
    "criminal": ["investigation", "prosecution", "criminal_court", "appeal", "supreme", "execution"],
    "administrative": [
        "grievance",
        "administrative_court",
        "admin_appeal",
        "supreme_admin",
        "execution",
    ],
    "other": ["filing", "first_hearing", "ongoing_hearings", "appeal", "final"],
}


class DatabaseSettings(BaseModel):
    """Database configuration settings."""
    mongodb_url: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URL"
    )
    mongodb_database: str = Field(
        default="legal_practice",
        description="MongoDB database name"
    )
    server_selection_timeout_ms: int = Field(
        default=5000,
        description="Server selection timeout in milliseconds"
    )
    max_pool_size: int = Field(
        default=50,
        description="Maximum connection pool size"
    )
    min_pool_size: int = Field(
        default=5,
        description="Minimum connection pool size"
    )


class LoggingSettings(BaseModel):
    """Logging configuration settings."""
    level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    format: str = Field(
        default="text",
        description="Log format (json/text)"
    )
    enable_correlation_ids: bool = Field(
        default=True,
        description="Enable correlation ID tracking"
    )
    excluded_paths: List[str] = Field(
        default_factory=lambda: ["/health", "/docs", "/openapi.json", "/redoc"],
        description="Paths to exclude from request logging"
    )

    def get_log_level_numeric(self) -> int:
        import logging
        return getattr(logging, self.level.upper(), logging.INFO)


class PipelineSettings(BaseModel):
    """Case pipeline behaviour and paging limits."""
    stage_vocabulary: Dict[str, List[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_STAGE_VOCABULARY.items()},
        description="Ordered stage identifiers per case category"
    )
    fallback_category: str = Field(
        default="other",
        description="Category used when a case category is unknown"
    )
    default_page_size: int = Field(
        default=100,
        description="Default page size for the pipeline list view"
    )
    max_page_size: int = Field(
        default=500,
        description="Maximum page size for the pipeline list view"
    )
    notes_page_size: int = Field(
        default=50,
        description="Default page size for case notes"
    )
    max_notes_page_size: int = Field(
        default=200,
        description="Maximum page size for case notes"
    )
    conceal_forbidden_cases: bool = Field(
        default=False,
        description="Report inaccessible cases as not found instead of forbidden"
    )
    trust_identity_headers: bool = Field(
        default=False,
        description="Accept X-User-Id, X-Firm-Id and X-Solo-Lawyer headers when no authenticated identity is on the request"
    )


class Settings(BaseSettings):
    """
    Application configuration settings.

    Values come from environment variables, the ``.env`` file and the
    defaults declared here, in that order of precedence.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(
        default="Caseflow Pipeline API",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode enabled"
    )
    environment: str = Field(
        default="development",
        description="Environment (development/staging/production)"
    )

    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings,
        description="Database configuration"
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration"
    )
    pipeline: PipelineSettings = Field(
        default_factory=PipelineSettings,
        description="Case pipeline configuration"
    )

    @property
    def is_development(self) -> bool:
        return self.debug or self.environment.lower() in {"development", "dev", "local"}

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for JSON serialization."""
        return self.model_dump(exclude_unset=False, exclude_none=False)

    def get_nested_setting(self, path: str, default: Any = None) -> Any:
        """
        Get a nested setting using dot notation.

        Args:
            path: Dot-separated path (e.g., "pipeline.max_page_size")
            default: Default value if path not found

        Returns:
            Setting value or default
        """
        try:
            current = self
            for part in path.split('.'):
                current = getattr(current, part)
            return current
        except AttributeError:
            return default


@lru_cache()
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()


# Environment variable mapping examples:
# DATABASE__MONGODB_URL=mongodb://mongo:27017
# DATABASE__MONGODB_DATABASE=legal_practice
# LOGGING__LEVEL=DEBUG
# LOGGING__FORMAT=json
# PIPELINE__MAX_PAGE_SIZE=250
# PIPELINE__CONCEAL_FORBIDDEN_CASES=true
