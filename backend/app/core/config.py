"""Application configuration."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backend.app.schemas.records import EntityKind


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Airtable credentials (all required)
    airtable_api_key: str = Field(..., description="Airtable personal access token")
    airtable_base_id: str = Field(..., description="Airtable base identifier")

    # One table per entity kind
    boards_table_id: str = Field(..., description="Boards table identifier")
    sessions_table_id: str = Field(..., description="Sessions table identifier")
    topics_table_id: str = Field(..., description="Topics table identifier")
    votes_table_id: str = Field(..., description="Votes table identifier")
    comments_table_id: str = Field(..., description="Comments table identifier")
    users_table_id: str = Field(..., description="Users table identifier")

    # Airtable transport
    airtable_api_base_url: str = Field(
        default="https://api.airtable.com/v0",
        description="Airtable REST API base URL (override for testing)"
    )
    airtable_max_retries: int = Field(
        default=3,
        description="Retries on rate-limited (429) responses"
    )
    airtable_retry_backoff: float = Field(
        default=0.5,
        description="Initial retry delay in seconds, doubled per attempt"
    )
    airtable_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")

    # Routing
    function_path_pattern: str = Field(
        default=r"\.netlify/functions/[^/?#]+",
        description="Regex locating the function mount prefix inside request paths"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:8888,http://localhost:5173,http://localhost:3000",
        description="Comma-separated list of allowed CORS origins"
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    # Development Settings
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    def table_id(self, kind: EntityKind) -> str:
        """Return the Airtable table identifier for an entity kind."""
        return {
            EntityKind.BOARD: self.boards_table_id,
            EntityKind.SESSION: self.sessions_table_id,
            EntityKind.TOPIC: self.topics_table_id,
            EntityKind.VOTE: self.votes_table_id,
            EntityKind.COMMENT: self.comments_table_id,
            EntityKind.USER: self.users_table_id,
        }[kind]

    @field_validator(
        "airtable_api_key",
        "airtable_base_id",
        "boards_table_id",
        "sessions_table_id",
        "topics_table_id",
        "votes_table_id",
        "comments_table_id",
        "users_table_id",
    )
    @classmethod
    def validate_required(cls, v: str, info) -> str:
        """Reject blank values for required settings."""
        if not v or not v.strip():
            raise ValueError(f"Missing required environment variable: {info.field_name.upper()}")
        return v.strip()

    @field_validator("airtable_api_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Strip trailing slashes from the API base URL."""
        return v.rstrip("/")

    @field_validator("airtable_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate retry count is not negative."""
        if v < 0:
            raise ValueError("airtable_max_retries must not be negative")
        return v

    @field_validator("airtable_retry_backoff", "airtable_timeout")
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        """Validate duration is positive."""
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, validated on first use."""
    return Settings()
