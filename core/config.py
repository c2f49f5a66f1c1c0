"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for tokenguard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The
      blacklist reason set and retention windows are therefore fixed for the
      lifetime of the process.

  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. blacklist_reasons -> BLACKLIST_REASONS, given as a JSON list).

  @model_validator(mode="after"): cross-field checks that must fail startup
      rather than be coerced -- an empty reason set, negative retention
      windows, or a provider with no key source.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tokenguard.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'tokenguard_blacklist.db'}"

DEFAULT_BLACKLIST_REASONS = [
    "LOGOUT",
    "PASSWORD_CHANGE",
    "SECURITY_BREACH",
    "ACCOUNT_DELETION",
    "ADMIN_REVOCATION",
]

SUPPORTED_PROVIDERS = ("jose",)


class Settings(BaseSettings):
    """Process configuration loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in tests
    without a real .env file. Only debug mode may run without a provider key
    source; production refuses to start rather than reject every token.
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

    # ------------------------------------------------------------------
    # Identity provider
    # ------------------------------------------------------------------

    token_provider: str = "jose"
    token_issuer: str = ""
    token_audience: str = ""
    token_algorithms: list[str] = ["RS256"]
    # Shared-secret verification (HS256 family). Empty = not configured.
    token_secret_key: str = ""
    # JWKS verification (RS/ES family). Empty = not configured.
    token_jwks_url: str = ""
    token_jwks_cache_seconds: int = 3600
    token_leeway_seconds: int = 0

    # Optional admin REST API used for claims sync and native revocation.
    provider_admin_url: str = ""
    provider_admin_token: str = ""

    # ------------------------------------------------------------------
    # Blacklist
    # ------------------------------------------------------------------

    blacklist_reasons: list[str] = DEFAULT_BLACKLIST_REASONS
    blacklist_cleanup_retention_days: int = 30
    global_revocation_retention_days: int = 30
    blacklist_db_url: str = _DEFAULT_DB_URL
    blacklist_table: str = "token_blacklist"
    cleanup_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_policy(self) -> "Settings":
        """Reject configurations that would silently weaken revocation.

        The reason set is a closed audit vocabulary: an empty set would make
        every blacklist call fail, and blank entries would let callers record
        meaningless reasons. Retention windows must be non-negative so that
        expiry arithmetic never lands in the past at creation time.
        """
        if self.token_provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"TOKEN_PROVIDER must be one of {', '.join(SUPPORTED_PROVIDERS)}; got {self.token_provider!r}."
            )
        if not self.blacklist_reasons:
            raise ValueError("BLACKLIST_REASONS must contain at least one reason.")
        if any(not r or not r.strip() for r in self.blacklist_reasons):
            raise ValueError("BLACKLIST_REASONS must not contain blank entries.")
        if self.blacklist_cleanup_retention_days < 0 or self.global_revocation_retention_days < 0:
            raise ValueError("Retention windows must be zero or more days.")
        if self.cleanup_interval_seconds <= 0:
            raise ValueError("CLEANUP_INTERVAL_SECONDS must be positive.")
        if not self.token_secret_key and not self.token_jwks_url:
            if self.debug:
                logger.warning("WARNING: No token key source configured. Every bearer token will be rejected.")
            else:
                raise ValueError(
                    "Either TOKEN_SECRET_KEY or TOKEN_JWKS_URL is required in production mode. "
                    "To run in development mode, set DEBUG=true."
                )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
