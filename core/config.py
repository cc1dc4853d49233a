"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for CODEGEN happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a signing key with a warning, production
      mode refuses to start without one. The hosted provider refuses to start
      without its URL and anon key.

Layer rule: core/ is the kernel. This module may not import from auth/,
storage/, or practice/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("codegen.config")

_DEFAULT_DATA_DIR = Path.home() / ".codegen"


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    token_validity_seconds: int = 7 * 24 * 60 * 60
    session_check_interval_seconds: float = 60.0
    # Tokens closer than this to expiry are refreshed proactively.
    token_refresh_margin_seconds: int = 300

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    data_dir: Path = _DEFAULT_DATA_DIR
    # Empty string means "accounts.db inside data_dir".
    accounts_db_url: str = ""
    seed_demo_account: bool = False

    # ------------------------------------------------------------------
    # Backing provider
    # ------------------------------------------------------------------

    auth_provider: Literal["local", "supabase"] = "local"
    supabase_url: str = ""
    supabase_anon_key: str = ""
    provider_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Remembered sessions will not survive restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Remembered sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_provider(self) -> "Settings":
        """The hosted provider cannot run without its project URL and anon key."""
        if self.auth_provider == "supabase" and not (self.supabase_url and self.supabase_anon_key):
            raise ValueError("AUTH_PROVIDER=supabase requires SUPABASE_URL and SUPABASE_ANON_KEY.")
        return self

    @property
    def resolved_accounts_db_url(self) -> str:
        if self.accounts_db_url:
            return self.accounts_db_url
        return f"sqlite:///{self.data_dir / 'accounts.db'}"

    @property
    def storage_path(self) -> Path:
        """SQLite file backing the persistent storage namespace."""
        return self.data_dir / "storage.db"


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
