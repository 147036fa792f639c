"""Integration tests for the /api/chat and /api/tts endpoints."""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import Mock, AsyncMock, patch
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))


@pytest.fixture
def client():
    """Create a test client with mocked services."""
    # Import after path is set
    import main
    from services.conversation_store import InMemoryConversationStore

    # The lifespan is not entered without a context manager, so set services manually
    client = TestClient(main.app)
    main.conversation_store = InMemoryConversationStore()
    main.completion_gateway = Mock()
    main.completion_gateway.complete.return_value = "Hey, good to hear you!"
    main.speech_gateway = Mock()

    with patch('main.persist_mode', "sync"):
        yield client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_chat_first_message_creates_conversation(client):
    """Test that a first turn stores exactly the user and assistant messages."""
    import main
    from models.conversation import Role

    response = client.post("/api/chat", json={"message": "hello", "userId": "u1"})

    assert response.status_code == 200
    assert response.json() == {"response": "Hey, good to hear you!"}

    kwargs = main.completion_gateway.complete.call_args.kwargs
    assert kwargs["history"] == []
    assert kwargs["new_user_text"] == "hello"
    assert kwargs["system_prompt"] is None

    stored = main.conversation_store.find_or_create("u1")
    assert [(m.role, m.content) for m in stored.messages] == [
        (Role.USER, "hello"),
        (Role.ASSISTANT, "Hey, good to hear you!"),
    ]


def test_chat_passes_history_on_later_turns(client):
    """Test that prior messages are sent to the completion gateway."""
    import main

    client.post("/api/chat", json={"message": "hello", "userId": "u1"})
    client.post("/api/chat", json={"message": "how are you?", "userId": "u1", "systemPrompt": "Be a pirate."})

    kwargs = main.completion_gateway.complete.call_args.kwargs
    assert [m.content for m in kwargs["history"]] == ["hello", "Hey, good to hear you!"]
    assert kwargs["system_prompt"] == "Be a pirate."
    assert len(main.conversation_store.find_or_create("u1").messages) == 4


def test_chat_missing_message(client):
    response = client.post("/api/chat", json={"userId": "u1"})

    assert response.status_code == 400
    assert response.json() == {"error": "No message provided"}


def test_chat_missing_user_id(client):
    response = client.post("/api/chat", json={"message": "hello"})

    assert response.status_code == 400
    assert response.json() == {"error": "No userId provided"}


def test_chat_malformed_body(client):
    response = client.post("/api/chat", content=b"not json", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert "error" in response.json()


def test_chat_completion_failure(client):
    """Test that a backend failure answers 500 and stores nothing."""
    import main
    from errors import GatewayError

    main.completion_gateway.complete.side_effect = GatewayError("Ollama error: 500", code="API_ERROR")

    response = client.post("/api/chat", json={"message": "hello", "userId": "u1"})

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to generate response"}
    assert main.conversation_store.find_or_create("u1").messages == []


def test_chat_unexpected_failure_returns_error_body(client):
    """Test that any unexpected exception still answers with the JSON error body."""
    import main

    main.completion_gateway.complete.side_effect = OSError("offline")

    response = client.post("/api/chat", json={"message": "hello", "userId": "u1"})

    assert response.status_code == 500
    assert response.headers["content-type"] == "application/json"
    assert response.json() == {"error": "Failed to generate response"}
    assert main.conversation_store.find_or_create("u1").messages == []


def test_chat_empty_reply_is_not_stored(client):
    """Test that an empty model reply fails the request and stores nothing."""
    import main

    main.completion_gateway.complete.return_value = "  "

    response = client.post("/api/chat", json={"message": "hello", "userId": "u1"})

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to generate response"}
    assert main.conversation_store.find_or_create("u1").messages == []


def test_chat_survives_persistence_failures(client):
    """Test that store outages are logged and the reply is still returned."""
    import main
    from errors import PersistenceError

    main.conversation_store = Mock()
    main.conversation_store.find_or_create.side_effect = PersistenceError("store down")
    main.conversation_store.append.side_effect = PersistenceError("store down")

    response = client.post("/api/chat", json={"message": "hello", "userId": "u1"})

    assert response.status_code == 200
    assert response.json() == {"response": "Hey, good to hear you!"}
    assert main.completion_gateway.complete.call_args.kwargs["history"] == []
    main.conversation_store.append.assert_called_once()


def test_chat_background_persistence(client):
    """Test that background mode still appends the turn."""
    import main

    with patch('main.persist_mode', "background"):
        response = client.post("/api/chat", json={"message": "hello", "userId": "u1"})

    assert response.status_code == 200
    assert len(main.conversation_store.find_or_create("u1").messages) == 2


def _synthesis_stream(chunks, content_type="audio/mpeg"):
    async def iter_bytes():
        for chunk in chunks:
            yield chunk

    stream = Mock()
    stream.content_type = content_type
    stream.iter_bytes = iter_bytes
    stream.aclose = AsyncMock()
    return stream


def test_tts_streams_audio(client):
    """Test that the synthesized bytes are relayed with the backend content type."""
    import main

    stream = _synthesis_stream([b"ID3", b"frame1", b"frame2"])
    main.speech_gateway.synthesize = AsyncMock(return_value=stream)

    response = client.post("/api/tts", json={"text": "hello there"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.content == b"ID3frame1frame2"
    main.speech_gateway.synthesize.assert_awaited_once_with("hello there")
    stream.aclose.assert_awaited_once()


def test_tts_missing_text(client):
    response = client.post("/api/tts", json={})

    assert response.status_code == 400
    assert response.json() == {"error": "No text provided"}


def test_tts_backend_failure(client):
    import main
    from errors import GatewayError

    main.speech_gateway.synthesize = AsyncMock(side_effect=GatewayError("TTS API error", code="API_ERROR"))

    response = client.post("/api/tts", json={"text": "hello"})

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to generate speech"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
