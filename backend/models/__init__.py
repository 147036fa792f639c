"""Data models for the Voice Agent."""
from .conversation import Conversation, Message, Role, Turn
from .api import ChatRequest, ChatResponse, TTSRequest, ErrorResponse

__all__ = [
    "Conversation",
    "Message",
    "Role",
    "Turn",
    "ChatRequest",
    "ChatResponse",
    "TTSRequest",
    "ErrorResponse",
]
