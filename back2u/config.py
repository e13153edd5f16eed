"""
Back2U — Application Configuration

Environment-driven settings for the database, the AI gateway used by the
oracle scorer, notification delivery (remote sink or in-process, plus
SMTP) and the HTTP surface.  Values may also come from a local .env file.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Back2U matching service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database
    # ------------------------------------------------------------------ #
    DATABASE_URL: str

    # ------------------------------------------------------------------ #
    # AI gateway (chat-completions compatible scoring oracle)
    # ------------------------------------------------------------------ #
    AI_GATEWAY_URL: str = "https://ai.gateway.lovable.dev/v1/chat/completions"
    AI_GATEWAY_API_KEY: str = ""
    AI_MODEL: str = "google/gemini-3-flash-preview"
    AI_REQUEST_TIMEOUT_SECONDS: float = 60.0

    # ------------------------------------------------------------------ #
    # Match scoring
    # ------------------------------------------------------------------ #
    MATCH_SCORER: str = "oracle"  # oracle / heuristic
    HEURISTIC_DATE_WINDOW_DAYS: int = 30

    # ------------------------------------------------------------------ #
    # Notifications
    # ------------------------------------------------------------------ #
    NOTIFICATION_SINK_URL: str = ""  # empty -> dispatch in-process
    SERVICE_API_KEY: str = ""

    # ------------------------------------------------------------------ #
    # Email (SMTP)
    # ------------------------------------------------------------------ #
    SMTP_HOST: str = ""  # empty -> email disabled
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: str = "Back2U <onboarding@back2u.app>"
    APP_BASE_URL: str = "https://back2u.lovable.app"

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_SECONDS: float = 70.0

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def email_enabled(self) -> bool:
        return bool(self.SMTP_HOST)

    @field_validator("MATCH_SCORER")
    @classmethod
    def _scorer_must_be_known(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("oracle", "heuristic"):
            raise ValueError(f"MATCH_SCORER must be 'oracle' or 'heuristic', got {v!r}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide ``Settings``; the environment is parsed on first call."""
    return Settings()  # type: ignore[call-arg]
