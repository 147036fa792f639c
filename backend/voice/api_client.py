"""HTTP client for the Voice Agent server's chat and tts endpoints."""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional
import httpx

from errors import GatewayError
from config import VOICE_API_URL, VOICE_USER_ID, PLAYBACK_CHUNK_SIZE, TTS_CONTENT_TYPE

logger = logging.getLogger(__name__)


@dataclass
class AudioStream:
    """Synthesized speech arriving from the server."""
    content_type: str
    chunks: AsyncIterator[bytes]


class VoiceAgentAPI:
    """Async client bound to one user identifier."""

    def __init__(
        self,
        base_url: str = VOICE_API_URL,
        user_id: str = VOICE_USER_ID,
        chunk_size: int = PLAYBACK_CHUNK_SIZE,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.user_id = user_id
        self.chunk_size = chunk_size
        # No read timeout: replies and audio take as long as the backends need
        self.http_client = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(None, connect=10.0)
        )

    async def chat(self, message: str, system_prompt: Optional[str] = None) -> str:
        """
        Ask the server for the assistant reply to a transcript.

        Args:
            message: The user's transcript
            system_prompt: Optional preamble overriding the server persona

        Returns:
            The reply text

        Raises:
            GatewayError: If the server is unreachable or answers with an error
        """
        body = {"message": message, "userId": self.user_id}
        if system_prompt:
            body["systemPrompt"] = system_prompt

        try:
            response = await self.http_client.post("/api/chat", json=body)
        except httpx.HTTPError as e:
            raise GatewayError(f"Chat request failed: {e}", code="CONNECTION_ERROR") from e

        if response.is_error:
            raise GatewayError(
                f"Chat request failed: {_error_message(response)}",
                code="API_ERROR",
                details={"status_code": response.status_code}
            )

        try:
            return response.json().get("response") or ""
        except ValueError as e:
            raise GatewayError("Chat response is not JSON", code="API_ERROR") from e

    @asynccontextmanager
    async def synthesize(self, text: str) -> AsyncIterator[AudioStream]:
        """
        Request speech for a reply and expose the audio while it downloads.

        Args:
            text: Text to speak

        Yields:
            AudioStream whose chunks are read from the network on demand

        Raises:
            GatewayError: If the request fails or the server answers with an error
        """
        request = self.http_client.build_request("POST", "/api/tts", json={"text": text})
        try:
            response = await self.http_client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise GatewayError(f"TTS request failed: {e}", code="CONNECTION_ERROR") from e

        try:
            if response.is_error:
                await response.aread()
                raise GatewayError(
                    f"TTS failed: {_error_message(response)}",
                    code="API_ERROR",
                    details={"status_code": response.status_code}
                )

            yield AudioStream(
                content_type=response.headers.get("content-type", TTS_CONTENT_TYPE),
                chunks=response.aiter_bytes(self.chunk_size)
            )
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self.http_client.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return data["error"]
    return f"{response.status_code} {response.reason_phrase}"
