"""Configuration settings for monoship.

Settings come from ``MONOSHIP_*`` environment variables (or a ``.env``
file); command-line flags override them for a single invocation.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from monoship.types import Platform


def _default_work_dir() -> Path:
    """Return the default working directory for build outputs and logs."""
    return Path.home() / ".cache" / "monoship" / "work"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "monoship" / "db.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the MONOSHIP_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="MONOSHIP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    source_dir: Path = Field(
        default=Path("."),
        description="Root of the monorepo source tree",
    )
    catalog_path: Path = Field(
        default=Path("services.yaml"),
        description="Service catalog file (YAML or JSON)",
    )
    work_dir: Path = Field(
        default_factory=_default_work_dir,
        description="Root directory for extracted artifacts and build logs",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL for release history",
    )

    # Registry
    registry: str = Field(
        default="",
        description="Registry endpoint images are published to",
    )
    registry_username: str = Field(
        default="AWS",
        description="Registry login user",
    )
    registry_password: SecretStr | None = Field(
        default=None,
        description="Registry login secret",
    )

    # Release metadata
    platform: str = Field(
        default="linux/arm64",
        description="Deployment platform images are built for",
    )
    revision: str | None = Field(
        default=None,
        description="Source revision (resolved from git if not set)",
    )
    date_tag: str | None = Field(
        default=None,
        description="Date component of the versioned tag (YYYYMMDD, today if not set)",
    )
    cache_namespace: str = Field(
        default="monoship",
        description="Prefix for persistent build cache identifiers",
    )

    # Execution
    failure_policy: Literal["isolate", "fail-fast"] = Field(
        default="isolate",
        description="Keep sibling services running on failure, or cancel them",
    )
    max_concurrent_builds: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum services released concurrently",
    )
    docker_bin: str = Field(
        default="docker",
        description="Docker CLI executable",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    build_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for a single build command",
    )
    push_timeout: int = Field(
        default=900,
        ge=30,
        description="Timeout for a single registry push",
    )

    @field_validator("platform")
    @classmethod
    def validate_platform(cls, v: str) -> str:
        """Validate platform is of the form os/arch."""
        Platform.parse(v)
        return v


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings. Secrets are masked.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
