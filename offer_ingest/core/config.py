"""Application configuration."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from offer_ingest.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_ANALYSIS_API_URL = "https://mineru.net/api/v4"


def find_env_file() -> Optional[Path]:
    """Return the first .env in the working directory, the package or the repo root."""
    package_dir = Path(__file__).resolve().parent.parent
    for directory in (Path.cwd(), package_dir, package_dir.parent):
        candidate = directory / ".env"
        if candidate.is_file():
            LOGGER.debug("Using .env file", extra={"path": str(candidate)})
            return candidate
    return None


ENV_FILE = find_env_file()

_MODEL_CONFIG = SettingsConfigDict(
    env_file=str(ENV_FILE) if ENV_FILE else None,
    env_file_encoding="utf-8",
    case_sensitive=False,
    extra="ignore",
    env_prefix="",
    populate_by_name=True,
)


class AnalysisServiceSettings(BaseSettings):
    """Remote document analysis service settings."""

    api_key: str = Field(default="", validation_alias="ANALYSIS_API_KEY")
    api_url: str = Field(default=DEFAULT_ANALYSIS_API_URL, validation_alias="ANALYSIS_API_URL")
    organization_id: Optional[str] = Field(default=None, validation_alias="ANALYSIS_ORGANIZATION_ID")

    # Per-request timeout and transient retry budget
    request_timeout: float = Field(default=30.0, validation_alias="ANALYSIS_REQUEST_TIMEOUT")
    max_retries: int = Field(default=2, validation_alias="ANALYSIS_MAX_RETRIES")
    retry_delay: float = Field(default=0.5, validation_alias="ANALYSIS_RETRY_DELAY")

    # Task polling
    poll_interval: float = Field(default=2.0, validation_alias="ANALYSIS_POLL_INTERVAL")
    poll_timeout: float = Field(default=300.0, validation_alias="ANALYSIS_POLL_TIMEOUT")
    max_poll_attempts: Optional[int] = Field(default=None, validation_alias="ANALYSIS_MAX_POLL_ATTEMPTS")

    model_config = _MODEL_CONFIG

    @field_validator("request_timeout")
    @classmethod
    def _floor_timeout(cls, value: float) -> float:
        return max(1.0, value)

    @field_validator("max_retries")
    @classmethod
    def _floor_retries(cls, value: int) -> int:
        return max(0, value)

    @field_validator("organization_id")
    @classmethod
    def _blank_organization(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class ClassifierSettings(BaseSettings):
    """Section classifier thresholds."""

    min_paragraph_length: int = Field(default=10, validation_alias="CLASSIFIER_MIN_PARAGRAPH_LENGTH")
    min_block_length: int = Field(default=20, validation_alias="CLASSIFIER_MIN_BLOCK_LENGTH")
    snippet_length: int = Field(default=240, validation_alias="CLASSIFIER_SNIPPET_LENGTH")

    model_config = _MODEL_CONFIG


class ExtractionSettings(BaseSettings):
    """Secondary AI extraction settings."""

    timeout: float = Field(default=120.0, validation_alias="AI_EXTRACTION_TIMEOUT")
    max_pages: int = Field(default=3, validation_alias="AI_EXTRACTION_MAX_PAGES")
    degraded_max_pages: int = Field(default=1, validation_alias="AI_EXTRACTION_DEGRADED_MAX_PAGES")

    model_config = _MODEL_CONFIG


class Settings(BaseSettings):
    """Unified application settings with nested models."""

    app_name: str = Field(default="Offer Ingest", validation_alias="APP_NAME")
    app_version: str = "0.1.0"
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    analysis: AnalysisServiceSettings = Field(default_factory=lambda: AnalysisServiceSettings())
    classifier: ClassifierSettings = Field(default_factory=lambda: ClassifierSettings())
    extraction: ExtractionSettings = Field(default_factory=lambda: ExtractionSettings())

    model_config = _MODEL_CONFIG

    @property
    def analysis_api_key(self) -> str:
        return self.analysis.api_key

    @property
    def analysis_api_url(self) -> str:
        return self.analysis.api_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    settings = Settings()
    LOGGER.info(
        "Settings initialized",
        extra={
            "environment": settings.environment,
            "analysis_api_url": settings.analysis_api_url,
            "analysis_api_key_present": bool(settings.analysis_api_key),
        },
    )
    return settings
