"""Services for the Voice Agent server."""
from .conversation_store import (
    ConversationStore,
    InMemoryConversationStore,
    SupabaseConversationStore,
    create_conversation_store,
)
from .completion_gateway import (
    CompletionGateway,
    CompletionBackend,
    OllamaBackend,
    GroqBackend,
    create_completion_backend,
)
from .speech_gateway import SpeechSynthesisGateway, SynthesisStream

__all__ = [
    'ConversationStore', 'InMemoryConversationStore', 'SupabaseConversationStore', 'create_conversation_store',
    'CompletionGateway', 'CompletionBackend', 'OllamaBackend', 'GroqBackend', 'create_completion_backend',
    'SpeechSynthesisGateway', 'SynthesisStream',
]
