"""
Application settings with environment variable support.

Configuration is loaded from environment variables with optional .env file.
Pipeline defaults (policy, retries, stage timeout) can be overridden per run
through ``PipelineConfig``; the values here are the process-wide defaults.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Policy settings
    policy_id: str = Field(default="default", alias="POLICY_ID")
    policy_file: Optional[str] = Field(default=None, alias="POLICY_FILE")

    # Pipeline execution settings
    pipeline_max_retries: int = Field(
        default=3, ge=1, le=10, alias="PIPELINE_MAX_RETRIES"
    )
    pipeline_stage_timeout_s: float = Field(
        default=300.0, gt=0, alias="PIPELINE_STAGE_TIMEOUT_S"
    )
    pipeline_backoff_base_ms: int = Field(
        default=1000, ge=0, alias="PIPELINE_BACKOFF_BASE_MS"
    )
    pipeline_backoff_max_ms: int = Field(
        default=10000, ge=0, alias="PIPELINE_BACKOFF_MAX_MS"
    )

    # Ledger persistence
    ledger_store_backend: Literal["memory", "file", "firestore"] = Field(
        default="file", alias="LEDGER_STORE_BACKEND"
    )
    ledger_store_dir: str = Field(default="data/ledgers", alias="LEDGER_STORE_DIR")
    firestore_collection: str = Field(
        default="ledgers", alias="FIRESTORE_COLLECTION"
    )

    # Firebase settings
    google_application_credentials: Optional[str] = Field(
        default=None, alias="GOOGLE_APPLICATION_CREDENTIALS"
    )
    firebase_project_id: Optional[str] = Field(
        default=None, alias="FIREBASE_PROJECT_ID"
    )

    # Extraction service settings
    extraction_service_url: Optional[str] = Field(
        default=None, alias="EXTRACTION_SERVICE_URL"
    )
    extraction_api_key: Optional[str] = Field(
        default=None, alias="EXTRACTION_API_KEY"
    )
    extraction_timeout_s: float = Field(
        default=120.0, gt=0, alias="EXTRACTION_TIMEOUT_S"
    )

    # LangSmith settings
    langchain_api_key: Optional[str] = Field(default=None, alias="LANGCHAIN_API_KEY")
    langchain_project: str = Field(default="takeoff-ledger", alias="LANGCHAIN_PROJECT")
    langchain_tracing_v2: bool = Field(default=True, alias="LANGCHAIN_TRACING_V2")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    def is_langsmith_configured(self) -> bool:
        """Check if LangSmith is configured."""
        return self.langchain_api_key is not None

    def is_firestore_configured(self) -> bool:
        """Check if Firestore can be used for ledger storage."""
        return (
            self.google_application_credentials is not None
            or self.firebase_project_id is not None
        )

    def is_extraction_service_configured(self) -> bool:
        """Check if the remote extraction service is configured."""
        return self.extraction_service_url is not None


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
