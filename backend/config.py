"""
config.py - Credit-Action consultation service settings.

Usage:
    from backend.config import settings
    print(settings.inactivity_end_seconds)

Never use FastAPI Depends() for settings - import directly as a module-level singleton.
The session controller does not read this module; it receives a SessionConfig built
from it (see consultation_agent/schemas.py).
"""
from typing import List

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore any extra env vars
    )

    # --- Consultation session timing (seconds) ---
    inactivity_warning_seconds: float = 90.0
    inactivity_end_seconds: float = 120.0
    navigation_delay_seconds: float = 3.0
    # Ended sessions stay readable this long after navigation, then get pruned
    session_retention_seconds: float = 300.0
    # Sessions untouched this long are unmounted (e.g. a greeting that never resolved)
    session_idle_ttl_seconds: float = 3600.0
    max_active_sessions: int = 500

    # --- Consultation session texts ---
    confirmation_path: str = "/merci"
    fallback_greeting: str = (
        "Bienvenue! Je suis votre conseiller en crédit. "
        "Comment puis-je vous aider aujourd'hui?"
    )
    apology_message: str = (
        "Désolé, une erreur est survenue. Pouvez-vous reformuler votre question?"
    )
    warning_notice: str = (
        "Êtes-vous toujours là? La consultation se terminera bientôt par inactivité."
    )
    ended_notice: str = "La consultation est terminée. Redirection en cours..."

    # --- Collaborator endpoints ---
    reply_service_url: str = "http://localhost:8000/api/chat"
    summary_sink_url: str = "http://localhost:8000/api/chat-summary"

    # --- External APIs ---
    mistral_api_key: str = ""
    mistral_model: str = "mistral-small-latest"
    llm_concurrency: int = 2
    sendgrid_api_key: str = ""
    sender_email: str = ""
    recipient_email: str = ""

    # --- Conversion tracking ---
    # Comma-separated ad-platform tag ids fired once on the confirmation view
    conversion_send_to: str = "AW-1055107787,AW-1055107787/buvXCMfAyrIbEMvVjvcD"
    conversion_value: float = 1.0
    conversion_currency: str = "CAD"

    # --- CORS ---
    # Comma-separated list of allowed frontend origins
    cors_origins: str = "http://localhost:5173,http://localhost:5174"

    # --- Application ---
    debug: bool = True
    app_version: str = "0.1.0"

    @model_validator(mode="after")
    def _check_session_timing(self) -> "Settings":
        """Warning must fire strictly before the session ends."""
        if self.inactivity_warning_seconds >= self.inactivity_end_seconds:
            raise ValueError(
                "inactivity_warning_seconds must be lower than inactivity_end_seconds"
            )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Split comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def conversion_send_to_list(self) -> List[str]:
        """Split comma-separated conversion tag ids into a list."""
        return [t.strip() for t in self.conversion_send_to.split(",") if t.strip()]


# Module-level singleton - import this throughout the codebase
settings = Settings()
