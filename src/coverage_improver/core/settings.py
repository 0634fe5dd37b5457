"""Configuration settings for coverage-improver."""

import os
import sys
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_default_data_dir() -> Path:
    """Get platform-specific default data directory."""
    app_name = "coverage-improver"

    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA")
        if not base:
            base = Path.home() / "AppData" / "Local"
        return Path(base) / app_name
    elif sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / app_name
    else:
        xdg_data_home = os.environ.get("XDG_DATA_HOME")
        if xdg_data_home:
            return Path(xdg_data_home) / app_name
        return Path.home() / ".local" / "share" / app_name


def get_default_config_dir() -> Path:
    """Get platform-specific default config directory."""
    if sys.platform in ("win32", "darwin"):
        return get_default_data_dir()

    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home) / "coverage-improver"
    return Path.home() / ".config" / "coverage-improver"


class Settings(BaseSettings):
    """Application settings with support for .env files."""

    model_config = SettingsConfigDict(
        env_file=[
            get_default_config_dir() / ".env",
            ".env",
        ],
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="COVERAGE_IMPROVER_",
        extra="ignore",
    )

    database_path: Path | None = None
    temp_dir: Path | None = Field(default=None, description="Parent directory for per-job working copies")

    debug_mode: bool = False

    coverage_threshold: float = Field(default=80.0, description="Per-file coverage percentage considered sufficient")
    max_retries: int = Field(default=3, ge=1, description="AI generation attempts per improvement job")
    require_aggregate_threshold: bool = Field(
        default=False,
        description="Only stop retrying once the repository aggregate coverage also reaches the threshold",
    )

    poll_interval_seconds: float = Field(default=5.0, gt=0, description="Scheduler tick interval")
    queue_lock_timeout_seconds: float = Field(
        default=2.0, gt=0, description="How long a worker waits to claim a job before skipping the tick"
    )
    command_timeout_seconds: int = Field(default=300, description="Timeout for install, test and git commands")
    ai_timeout_seconds: int = Field(default=600, description="Timeout for a single AI generation call")

    default_ai_provider: str = "claude"
    claude_executable: str = "claude"
    claude_model: str = ""
    anthropic_api_key: str = ""

    llm_proxy_url: str = ""
    llm_proxy_api_key: str = ""
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"

    github_token: str = ""
    git_author_name: str = "Coverage Improver Bot"
    git_author_email: str = "coverage-improver@automated.local"

    sandbox_enabled: bool = Field(default=False, description="Run analysis inside the Docker sandbox")
    sandbox_image: str = "coverage-improver-sandbox:v2"
    sandbox_timeout_seconds: int = 600
    sandbox_memory: str = "2g"
    sandbox_cpus: float = 2.0

    @field_validator("database_path", "temp_dir", mode="before")
    @classmethod
    def validate_path(cls, v: str | Path | None) -> Path | None:
        """Convert string paths to Path objects."""
        if v is None or v == "":
            return None
        if isinstance(v, str):
            return Path(v)
        return v

    @field_validator("coverage_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0 <= v <= 100:
            raise ValueError("coverage_threshold must be between 0 and 100")
        return v

    @property
    def resolved_database_path(self) -> Path:
        """Get the resolved database path, using default if not set."""
        if self.database_path is not None:
            return self.database_path.resolve()

        return get_default_data_dir() / "coverage_improver.db"

    @property
    def resolved_temp_dir(self) -> Path:
        """Get the directory that holds per-job clones."""
        if self.temp_dir is not None:
            return self.temp_dir.resolve()
        return Path.cwd() / "tmp"


settings = Settings()
