"""Conversation data models."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Author of a message."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """Represents a single message in a conversation."""
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        # Raises ValueError for anything outside system/user/assistant
        self.role = Role(self.role)

    def to_record(self) -> Dict[str, Any]:
        """Persisted shape of the message."""
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Conversation:
    """Represents the append-only message log of one user."""
    user_id: str
    messages: List[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    persisted: bool = False


@dataclass
class Turn:
    """One transcript and the reply generated for it."""
    transcript: str
    reply: str

    def to_messages(self) -> List[Message]:
        """The two messages a completed turn appends, user first."""
        return [
            Message(role=Role.USER, content=self.transcript),
            Message(role=Role.ASSISTANT, content=self.reply),
        ]
