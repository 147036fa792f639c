"""Error taxonomy shared by the Voice Agent server and client."""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ErrorDetail:
    """Structured error information."""
    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


class VoiceAgentError(Exception):
    """Base exception carrying structured error information."""

    default_code = "VOICE_AGENT_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.error = ErrorDetail(
            code=code or self.default_code,
            message=message,
            details=details or {}
        )
        super().__init__(message)


class ValidationError(VoiceAgentError):
    """A required request field is missing or malformed."""

    default_code = "VALIDATION_ERROR"


class GatewayError(VoiceAgentError):
    """A backend (language model or speech synthesis) is unreachable or failed."""

    default_code = "GATEWAY_ERROR"


class PersistenceError(VoiceAgentError):
    """The conversation store is unavailable."""

    default_code = "PERSISTENCE_ERROR"


class PlaybackError(VoiceAgentError):
    """Decoding or transport failed while streaming audio to the output."""

    default_code = "PLAYBACK_ERROR"
