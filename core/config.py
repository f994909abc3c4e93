"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the storage server happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. upload_limit_gb -> UPLOAD_LIMIT_GB).

  @model_validator(mode="after"): dev mode (DEBUG=true) generates a SECRET_KEY
      with a warning, production mode refuses to start without one.

Units:
  upload_limit_gb is configured in gigabytes and exposed in bytes through
  upload_limit_bytes. access_code_expiration_ms is in milliseconds.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or storage/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("pss.config")

_BYTES_PER_GB = 1024**3


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 5000
    verbose_logs: bool = True
    # When true, unknown routes answer 404 before the session gate runs.
    predictive_404: bool = False
    cors_origins: list[str] = ["http://localhost", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    token_expire_seconds: int = 3600
    access_code_expiration_ms: int = 15 * 60 * 1000
    login_rate_limit: str = "10/minute"
    database_url: str = f"sqlite:///{Path('.data-auth.db').resolve()}"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    storage_root: Path = Path(".data")
    upload_limit_gb: float = 10.0

    @property
    def upload_limit_bytes(self) -> int:
        return int(self.upload_limit_gb * _BYTES_PER_GB)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.upload_limit_gb <= 0:
            raise ValueError("UPLOAD_LIMIT_GB must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
