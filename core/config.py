"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Tasklane happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Dev mode generates missing token secrets with a warning;
      production mode refuses to start without them.

Security notes:
  [M6] Token secrets shorter than 32 chars are rejected outright.

  [M7] In production mode a missing ACCESS_TOKEN_SECRET or REFRESH_TOKEN_SECRET
       is a hard startup failure.

  [M8] Access and refresh secrets must differ. A refresh token must never
       verify as an access token (and vice versa).

Layer rule: core/ is the kernel. This module may not import from api/, auth/
or mail/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tasklane.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'tasklane_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true supplies the secrets).
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
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the "not configured" sentinel -- see validate_secrets().
    access_token_secret: str = ""
    access_token_expire_seconds: int = 15 * 60
    refresh_token_secret: str = ""
    refresh_token_expire_seconds: int = 7 * 24 * 3600

    # ------------------------------------------------------------------
    # Second factor
    # ------------------------------------------------------------------

    # Steps accepted either side of the current 30s TOTP step. Two steps
    # (+/- 60s) trades a larger replay surface for tolerance of phone clock
    # drift. One value for login and setup verification alike.
    totp_valid_window: int = 2
    totp_issuer: str = "Tasklane"

    email_otp_length: int = 6
    email_otp_expire_seconds: int = 10 * 60

    # When true, disabling a factor requires a valid code for that factor in
    # addition to an authenticated session.
    second_factor_disable_requires_code: bool = True

    # ------------------------------------------------------------------
    # Abuse mitigation
    # ------------------------------------------------------------------

    login_max_failures: int = 5
    login_failure_window_seconds: int = 3600
    # Per-IP limit on POST /auth/login (slowapi syntax).
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Outbound email
    # ------------------------------------------------------------------

    email_backend: str = "smtp"  # "smtp" or "memory"
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_ssl: bool = False
    smtp_timeout_seconds: float = 10.0
    mail_from: str = "Tasklane <no-reply@tasklane.local>"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the token secret policy [M6][M7][M8].

        Dev mode (DEBUG=true): missing secrets are generated. Issued tokens do
            not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.
        """
        for field_name in ("access_token_secret", "refresh_token_secret"):
            value = getattr(self, field_name)
            env_name = field_name.upper()
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{env_name} is required in production mode. "
                        f"Set {env_name} in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                setattr(self, field_name, secrets.token_hex(32))
                logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", env_name)
            elif len(value) < 32:
                raise ValueError(f"{env_name} must be at least 32 characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        return self

    @model_validator(mode="after")
    def validate_lifetimes(self) -> "Settings":
        """Reject configurations that break the short-access / long-refresh contract."""
        if self.access_token_expire_seconds <= 0:
            raise ValueError("ACCESS_TOKEN_EXPIRE_SECONDS must be positive.")
        if self.refresh_token_expire_seconds <= self.access_token_expire_seconds:
            raise ValueError("REFRESH_TOKEN_EXPIRE_SECONDS must be longer than ACCESS_TOKEN_EXPIRE_SECONDS.")
        if not 4 <= self.email_otp_length <= 10:
            raise ValueError("EMAIL_OTP_LENGTH must be between 4 and 10.")
        if self.email_otp_expire_seconds <= 0:
            raise ValueError("EMAIL_OTP_EXPIRE_SECONDS must be positive.")
        if self.totp_valid_window < 0:
            raise ValueError("TOTP_VALID_WINDOW cannot be negative.")
        if self.login_max_failures < 1 or self.login_failure_window_seconds <= 0:
            raise ValueError("LOGIN_MAX_FAILURES and LOGIN_FAILURE_WINDOW_SECONDS must be positive.")
        if self.email_backend not in ("smtp", "memory"):
            raise ValueError("EMAIL_BACKEND must be 'smtp' or 'memory'.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
