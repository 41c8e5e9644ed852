"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Gatehouse happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates signing keys with a
      warning, production mode refuses to start without them.

Security notes:
  [M6] Signing keys shorter than 32 chars are rejected outright. HMAC-SHA256
       and JWT signing both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY,
       REFRESH_SECRET_KEY or DIGEST_PEPPER is a hard startup failure.

  [M8] Access and refresh tokens must be signed with different keys so a
       leaked access key cannot mint refresh tokens.
       DIGEST_PEPPER keys the HMAC over stored bearer secrets and must differ
       from both, so rotating a signing key leaves stored digests valid.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or notify/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    refresh_secret_key: str = ""
    digest_pepper: str = ""
    database_url: str = "sqlite:///gatehouse.db"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 3600
    refresh_token_expire_seconds: int = 7 * 24 * 3600

    # ------------------------------------------------------------------
    # Secret hashing and short-lived secrets
    # ------------------------------------------------------------------

    # bcrypt accepts 4..31. Tests use 4 to keep the suite fast.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    otp_ttl_seconds: int = 4 * 60
    otp_max_attempts: int = 3
    two_factor_ttl_seconds: int = 10 * 60
    reset_token_ttl_seconds: int = 30 * 60
    cleanup_interval_seconds: int = 10 * 60

    # ------------------------------------------------------------------
    # Email (SMTP). Empty smtp_host means "log instead of send".
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = "no-reply@gatehouse.local"
    mail_from_name: str = "Gatehouse"
    frontend_url: str = "http://localhost:3001"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_keys(self) -> "Settings":
        """Enforce the signing key policy [M6][M7][M8].

        Dev mode (DEBUG=true): auto-generate random keys with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if any key is missing.

        Both modes: reject keys shorter than 32 characters and reject a
            refresh key equal to the access key or a pepper equal to either.
        """
        for name in ("secret_key", "refresh_secret_key", "digest_pepper"):
            if not getattr(self, name):
                if self.debug:
                    setattr(self, name, secrets.token_hex(32))
                    logger.warning(
                        "WARNING: Using auto-generated %s. Tokens will not persist across restarts.",
                        name.upper(),
                    )
                else:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(getattr(self, name)) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
        if self.secret_key == self.refresh_secret_key:
            raise ValueError("REFRESH_SECRET_KEY must differ from SECRET_KEY.")
        if self.digest_pepper in (self.secret_key, self.refresh_secret_key):
            raise ValueError("DIGEST_PEPPER must differ from both signing keys.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly, except tests, which build Settings(...) explicitly and inject it.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
