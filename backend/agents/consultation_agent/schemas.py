"""
schemas.py - ConsultationAgent Pydantic v2 data contracts.

Defines:
  - TurnRole / Phase / EndReason  enums
  - ContactMetadata   (lead fields captured before the session, never mutated)
  - Turn              (single transcript entry, immutable)
  - SessionConfig     (timing + text policy handed to the SessionController)
  - ReplyRequest / ReplyResponse      (reply-generation service wire contract)
  - SummaryRequest / SummaryResponse  (summary email sink wire contract)
  - SessionSnapshot / MessageRequest / MessageResult  (presentation adapter)

Wire models use camelCase aliases (creditChallenge, endReason, transactionId) and
accept snake_case field names too.
"""
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from backend.config import Settings


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TurnRole(str, Enum):
    advisor = "advisor"
    visitor = "visitor"


class Phase(str, Enum):
    initializing = "initializing"
    active = "active"
    awaiting_reply = "awaiting_reply"
    warning_shown = "warning_shown"   # display only: reported over active/awaiting_reply
    ended = "ended"


class EndReason(str, Enum):
    inactivity = "inactivity"
    manual = "manual"


_WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Session data
# ---------------------------------------------------------------------------

class ContactMetadata(BaseModel):
    """Contact/lead fields collected by the consultation form."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",  # form widgets may post fields the session does not use
    )

    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    phone: Optional[str] = None
    credit_challenge: Optional[str] = None
    credit_score: Optional[str] = None
    message: Optional[str] = None
    source: Optional[str] = None

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0] if parts else self.name


class Turn(BaseModel):
    """One message in the transcript."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    role: TurnRole
    text: str = Field(..., min_length=1)

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("turn text must not be blank")
        return value


class SessionConfig(BaseModel):
    """
    Immutable policy for one SessionController.

    Delays share one time unit (seconds in production, virtual units in tests).
    warning_delay < end_delay, so the visitor sees the warning for
    end_delay - warning_delay before the session ends.
    """
    model_config = ConfigDict(frozen=True)

    warning_delay: float = 90.0
    end_delay: float = 120.0
    navigation_delay: float = 3.0
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

    @model_validator(mode="after")
    def _check_delays(self) -> "SessionConfig":
        if min(self.warning_delay, self.end_delay, self.navigation_delay) <= 0:
            raise ValueError("session delays must be positive")
        if self.warning_delay >= self.end_delay:
            raise ValueError("warning_delay must be lower than end_delay")
        return self

    @classmethod
    def from_settings(cls, settings: "Settings") -> "SessionConfig":
        return cls(
            warning_delay=settings.inactivity_warning_seconds,
            end_delay=settings.inactivity_end_seconds,
            navigation_delay=settings.navigation_delay_seconds,
            confirmation_path=settings.confirmation_path,
            fallback_greeting=settings.fallback_greeting,
            apology_message=settings.apology_message,
            warning_notice=settings.warning_notice,
            ended_notice=settings.ended_notice,
        )


# ---------------------------------------------------------------------------
# Reply-generation service contract
# ---------------------------------------------------------------------------

class ReplyRequest(BaseModel):
    """Full ordered transcript plus metadata. Empty transcript = opening greeting."""
    model_config = _WIRE_CONFIG

    transcript: List[Turn] = Field(default_factory=list)
    metadata: ContactMetadata


class ReplyResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reply: str = Field(..., min_length=1)

    @field_validator("reply")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reply must not be blank")
        return value


# ---------------------------------------------------------------------------
# Summary sink contract
# ---------------------------------------------------------------------------

class SummaryRequest(BaseModel):
    model_config = _WIRE_CONFIG

    metadata: ContactMetadata
    transcript: List[Turn]
    end_reason: EndReason
    transaction_id: Optional[str] = Field(
        default=None,
        description="Wall-clock YYYYMMDDHHMMSS id; the sink generates one when absent.",
    )


class SummaryResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    transaction_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Presentation adapter
# ---------------------------------------------------------------------------

class SessionSnapshot(BaseModel):
    """Observable controller state consumed by the presentation layer."""
    model_config = _WIRE_CONFIG

    session_id: str
    phase: Phase
    warning_shown: bool
    transcript: List[Turn]
    end_reason: Optional[EndReason] = None
    notice: Optional[str] = Field(
        default=None,
        description="Inactivity warning or ending notice to display, if any.",
    )
    navigate_to: Optional[str] = Field(
        default=None,
        description="Set once the post-termination navigation signal has fired.",
    )


class MessageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = Field(..., max_length=4000)


class MessageResult(BaseModel):
    model_config = _WIRE_CONFIG

    accepted: bool
    session: SessionSnapshot


__all__ = [
    "TurnRole",
    "Phase",
    "EndReason",
    "ContactMetadata",
    "Turn",
    "SessionConfig",
    "ReplyRequest",
    "ReplyResponse",
    "SummaryRequest",
    "SummaryResponse",
    "SessionSnapshot",
    "MessageRequest",
    "MessageResult",
]
