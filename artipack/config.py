"""Runtime configuration: env-driven.

Reads ARTIPACK_* environment variables and an optional .env file. Components
never read the module-level ``settings`` themselves; the CLI and the build
pipeline pass explicit values down.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from artipack import __version__


class Settings(BaseSettings):
    """Engine settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export ARTIPACK_CACHE_DIR=/var/cache/artipack
        export ARTIPACK_MAX_WORKERS=8
        export ARTIPACK_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ARTIPACK_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Storage paths
    cache_dir: Path = Path(".artipack/cache")
    definitions_path: Path = Path("artifacts")

    # Fetch policy
    max_workers: int = Field(default=4, ge=1)
    retry_attempts: int = Field(default=3, ge=1)
    backoff_base: float = Field(default=0.5, ge=0)
    backoff_max: float = Field(default=8.0, ge=0)
    download_timeout: float = Field(default=60.0, gt=0)
    user_agent: str = f"artipack/{__version__}"

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


# Module-level defaults: import as `from artipack.config import settings`
settings = Settings()
