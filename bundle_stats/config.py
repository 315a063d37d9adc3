"""Library configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Every setting has a working default, so the
library imports cleanly with an empty environment.
"""

VERSION = "0.1.0"

import os
import tempfile

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings sourced from environment / ``.env`` file.

    List-valued settings (``INSTALL_CLIENTS``) are given as JSON, e.g.
    ``INSTALL_CLIENTS='["pnpm", "npm"]'``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    TMP_DIR: str = os.path.join(tempfile.gettempdir(), "bundle-stats")
    LOG_LEVEL: str = "INFO"

    # -- installation --
    # Package managers tried in order; later entries are fallbacks used
    # only when an earlier client fails for a reason other than a 404.
    INSTALL_CLIENTS: list[str] = Field(default_factory=lambda: ["npm", "yarn", "pnpm"])
    INSTALL_TIMEOUT_S: int = Field(default=120, ge=1)
    NETWORK_CONCURRENCY: int = Field(default=0, ge=0)  # 0 = client default

    # -- bundling --
    ESBUILD_BIN: str = "esbuild"
    BUILD_TIMEOUT_S: int = Field(default=300, ge=1)
    MAX_BUILD_RETRIES: int = 3
    MAX_AUTO_EXTERNALS: int = 6

    # -- export-size probing --
    EXPORT_BATCH_SIZE: int = 20
    EXPORT_CONCURRENCY: int = Field(default=3, ge=1)

    @field_validator("MAX_BUILD_RETRIES", "MAX_AUTO_EXTERNALS", "EXPORT_BATCH_SIZE")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("INSTALL_CLIENTS")
    @classmethod
    def _known_clients(cls, value: list[str]) -> list[str]:
        unknown = [c for c in value if c not in ("npm", "yarn", "pnpm")]
        if unknown:
            raise ValueError(f"unknown install client(s): {', '.join(unknown)}")
        if not value:
            raise ValueError("at least one install client is required")
        return value


settings = Settings()
