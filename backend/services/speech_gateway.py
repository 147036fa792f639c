"""Speech synthesis gateway that relays the backend's audio stream unmodified."""
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional
import httpx

from errors import GatewayError
from config import (
    TTS_URL,
    TTS_VOICE,
    TTS_PROMPT,
    TTS_GENERATION,
    TTS_CONTENT_TYPE,
    TTS_TIMEOUT,
)

logger = logging.getLogger(__name__)


@dataclass
class SynthesisStream:
    """A live synthesis response whose body is still arriving."""
    content_type: str
    response: httpx.Response

    def iter_bytes(self) -> AsyncIterator[bytes]:
        return self.response.aiter_bytes()

    async def aclose(self) -> None:
        await self.response.aclose()


class SpeechSynthesisGateway:
    """Forwards text to the synthesis backend with a fixed voice configuration."""

    def __init__(
        self,
        url: str = TTS_URL,
        voice: str = TTS_VOICE,
        prompt: str = TTS_PROMPT,
        generation: str = TTS_GENERATION,
        timeout: float = TTS_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the gateway.

        Args:
            url: Synthesis endpoint
            voice: Voice identifier
            prompt: Tone and style descriptor sent with every request
            generation: Generation/version tag of the voice
            timeout: Request timeout in seconds
            http_client: Shared async HTTP client
        """
        self.url = url
        self.voice = voice
        self.prompt = prompt
        self.generation = generation
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        logger.info(f"SpeechSynthesisGateway initialized: url={url}, voice={voice}")

    async def synthesize(self, text: str) -> SynthesisStream:
        """
        Start synthesizing text and return as soon as the response headers arrive.

        The body is not read here; the caller drains it with
        `iter_bytes()` and must call `aclose()` afterwards.

        Args:
            text: Text to speak

        Returns:
            SynthesisStream over the still-filling response body

        Raises:
            GatewayError: If the backend is unreachable or answers with a non-success status
        """
        params = {
            "input": text,
            "prompt": self.prompt,
            "voice": self.voice,
            "generation": self.generation,
        }
        request = self.http_client.build_request("GET", self.url, params=params)

        try:
            response = await self.http_client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error(f"TTS transport error: {e}")
            raise GatewayError(
                f"Could not reach synthesis backend: {e}",
                code="CONNECTION_ERROR",
                details={"url": self.url, "original_error": str(e)}
            ) from e

        if response.is_error:
            await response.aclose()
            logger.error(f"TTS API error: status={response.status_code}")
            raise GatewayError(
                "TTS API error",
                code="API_ERROR",
                details={"url": self.url, "status_code": response.status_code}
            )

        content_type = response.headers.get("content-type") or TTS_CONTENT_TYPE
        logger.info(f"Streaming synthesized speech: chars={len(text)}, content_type={content_type}")
        return SynthesisStream(content_type=content_type, response=response)

    async def aclose(self) -> None:
        await self.http_client.aclose()
