"""Request and response models for the HTTP API."""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """Body of POST /api/chat.

    Fields are optional at the schema level so that missing values produce
    the plain `{"error": ...}` 400 response instead of a 422.
    """
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    user_id: Optional[str] = Field(default=None, alias="userId")


class ChatResponse(BaseModel):
    """Body returned by POST /api/chat."""
    response: str


class TTSRequest(BaseModel):
    """Body of POST /api/tts."""
    text: Optional[str] = None


class ErrorResponse(BaseModel):
    """Body returned for every failed request."""
    error: str
