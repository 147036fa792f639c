"""Unit tests for SpeechSynthesisGateway."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import asyncio
import httpx
import pytest

from errors import GatewayError
from services.speech_gateway import SpeechSynthesisGateway


def make_gateway(handler):
    return SpeechSynthesisGateway(
        url="https://tts.test/api/generate",
        voice="nova",
        prompt="Affect: jolly",
        generation="gen-1",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )


async def drain(stream):
    data = b""
    async for chunk in stream.iter_bytes():
        data += chunk
    await stream.aclose()
    return data


def test_synthesize_sends_text_and_voice_configuration():
    """Test that the request carries the text plus the fixed voice settings."""
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, content=b"ID3audio", headers={"content-type": "audio/mpeg"})

    async def scenario():
        gateway = make_gateway(handler)
        stream = await gateway.synthesize("hello there")
        data = await drain(stream)
        await gateway.aclose()
        return stream, data

    stream, data = asyncio.run(scenario())

    assert seen["method"] == "GET"
    assert seen["params"] == {
        "input": "hello there",
        "prompt": "Affect: jolly",
        "voice": "nova",
        "generation": "gen-1",
    }
    assert stream.content_type == "audio/mpeg"
    assert data == b"ID3audio"


def test_synthesize_returns_before_body_is_read():
    """Test that the stream is handed back while the body is still arriving."""
    produced = []

    async def body():
        for i in range(3):
            produced.append(i)
            yield f"chunk{i}".encode()

    async def scenario():
        gateway = make_gateway(lambda request: httpx.Response(200, content=body()))
        stream = await gateway.synthesize("hi")
        produced_before_read = list(produced)
        data = await drain(stream)
        return produced_before_read, data

    produced_before_read, data = asyncio.run(scenario())

    assert produced_before_read == []
    assert data == b"chunk0chunk1chunk2"


def test_synthesize_defaults_content_type():
    """Test the fallback content type when the backend declares none."""
    async def scenario():
        gateway = make_gateway(lambda request: httpx.Response(200, content=b"x"))
        stream = await gateway.synthesize("hi")
        await stream.aclose()
        return stream

    assert asyncio.run(scenario()).content_type == "audio/mpeg"


def test_synthesize_backend_error_status():
    """Test that a non-success status becomes a GatewayError."""
    async def scenario():
        gateway = make_gateway(lambda request: httpx.Response(503, json={"error": "busy"}))
        await gateway.synthesize("hi")

    with pytest.raises(GatewayError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.error.code == "API_ERROR"
    assert exc_info.value.error.details["status_code"] == 503


def test_synthesize_transport_error():
    """Test that an unreachable backend becomes a GatewayError."""
    def handler(request):
        raise httpx.ConnectError("no route to host", request=request)

    async def scenario():
        await make_gateway(handler).synthesize("hi")

    with pytest.raises(GatewayError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.error.code == "CONNECTION_ERROR"
