"""
core/config.py -- Centralized application configuration via pydantic-settings.

Every AuthKit setting is read here, from the environment or .env. Other
modules call get_settings(); none of them touch os.environ.

Groups (env var = field name uppercased):
  core           DEBUG, SECRET_KEY, DATABASE_URL
  tokens         JWT_ISSUER, ACCESS_TOKEN_EXPIRE_SECONDS (3600),
                 REFRESH_TOKEN_EXPIRE_DAYS (7), PASSWORD_RESET_EXPIRE_MINUTES (15)
  http           CORS_ORIGINS, ALLOWED_HOSTS, FRONTEND_URL
  rate limits    LOGIN_RATE_LIMIT, PASSWORD_RESET_RATE_LIMIT (slowapi syntax)
  email          SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_USE_TLS,
                 MAIL_FROM, MAIL_FROM_NAME
  notifications  NOTIFICATION_WORKERS, NOTIFICATION_MAX_ATTEMPTS,
                 NOTIFICATION_RETRY_DELAY_SECONDS

get_settings() is lru_cached, so Settings is built once per process. The
model_validator settles SECRET_KEY after all fields are loaded.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
  the HMAC used to store refresh/reset tokens both rely on key entropy.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
  hard startup failure. A random key in production would invalidate every
  access token and every stored refresh token on restart.

  Secrets (SECRET_KEY, SMTP_PASSWORD) are loaded once and never logged.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or notify/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authkit.config")


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
    # Empty string means "use the SQLite file next to auth/store.py".
    database_url: str = ""

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    jwt_issuer: str = "authkit"
    access_token_expire_seconds: int = 3600
    refresh_token_expire_days: int = 7
    password_reset_expire_minutes: int = 15

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    # Comma-separated lists. "*" allows everything.
    cors_origins: str = "http://localhost:3000"
    allowed_hosts: str = "*"
    # Base URL of the frontend that renders the reset-password form.
    frontend_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    password_reset_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Email (optional -- empty smtp_host means log-only delivery)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = ""
    mail_from_name: str = "AuthKit"

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    notification_workers: int = 2
    notification_max_attempts: int = 3
    notification_retry_delay_seconds: float = 2.0

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Issued tokens will not survive a restart."
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

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def allowed_host_list(self) -> list[str]:
        return [h.strip() for h in self.allowed_hosts.split(",") if h.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
