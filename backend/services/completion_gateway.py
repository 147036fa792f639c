"""Completion gateway: turns conversation history into a single prompt for the language model."""
import time
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence
import httpx
import tiktoken
from groq import Groq
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError

from models.conversation import Message, Role
from errors import GatewayError
from config import (
    LLM_BACKEND,
    OLLAMA_URL,
    OLLAMA_MODEL,
    GROQ_API_KEY,
    GROQ_MODEL,
    LLM_TEMPERATURE,
    LLM_MAX_TOKENS,
    LLM_TIMEOUT,
    PERSONA_PROMPT,
    PERSONA_ROLE,
    HISTORY_MAX_MESSAGES,
)

logger = logging.getLogger(__name__)


class CompletionBackend(ABC):
    """A language model that completes a plain-text prompt."""

    model: str

    @abstractmethod
    def generate(self, prompt: str, temperature: float, max_tokens: int) -> str:
        """
        Generate a completion for the prompt.

        Raises:
            GatewayError: Structured error with code, message, and details
        """

    def close(self) -> None:
        pass


class OllamaBackend(CompletionBackend):
    """Locally hosted model served by Ollama's generate endpoint."""

    def __init__(
        self,
        base_url: str = OLLAMA_URL,
        model: str = OLLAMA_MODEL,
        timeout: float = LLM_TIMEOUT,
        http_client: Optional[httpx.Client] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        # One keep-alive connection pool for every request
        self.http_client = http_client or httpx.Client(timeout=timeout)
        logger.info(f"OllamaBackend initialized: url={self.base_url}, model={model}")

    def generate(self, prompt: str, temperature: float, max_tokens: int) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }

        try:
            response = self.http_client.post(f"{self.base_url}/api/generate", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise GatewayError(
                "Request timed out. Please try again.",
                code="TIMEOUT_ERROR",
                details={"model": self.model, "original_error": str(e)}
            ) from e
        except httpx.HTTPStatusError as e:
            raise GatewayError(
                f"Ollama error: {e.response.status_code} {e.response.reason_phrase}",
                code="API_ERROR",
                details={"model": self.model, "status_code": e.response.status_code}
            ) from e
        except httpx.HTTPError as e:
            raise GatewayError(
                f"Could not reach Ollama: {e}",
                code="CONNECTION_ERROR",
                details={"model": self.model, "original_error": str(e)}
            ) from e
        except ValueError as e:
            raise GatewayError(
                "Ollama returned a body that is not JSON",
                code="API_ERROR",
                details={"model": self.model, "original_error": str(e)}
            ) from e

        return data.get("response") or ""

    def close(self) -> None:
        self.http_client.close()


class GroqBackend(CompletionBackend):
    """Hosted model served by the Groq API."""

    def __init__(self, api_key: Optional[str] = None, model: str = GROQ_MODEL):
        """
        Initialize the backend with a Groq API key.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
            model: Model name
        """
        self.api_key = api_key or GROQ_API_KEY
        if not self.api_key:
            raise ValueError("GROQ_API_KEY must be provided or set in environment")

        self.model = model
        self.client = Groq(api_key=self.api_key)
        logger.info(f"GroqBackend initialized: model={model}")

    def generate(self, prompt: str, temperature: float, max_tokens: int) -> str:
        try:
            # The flattened prompt goes out as a single user message
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": prompt
                    }
                ],
                max_tokens=max_tokens,
                temperature=temperature
            )
        except RateLimitError as e:
            raise GatewayError(
                "Rate limit exceeded. Please try again in a few moments.",
                code="RATE_LIMIT_ERROR",
                details={"retry_after": 60, "model": self.model, "original_error": str(e)}
            ) from e
        except AuthenticationError as e:
            raise GatewayError(
                "Authentication failed. Please check your API key.",
                code="AUTHENTICATION_ERROR",
                details={"model": self.model, "original_error": str(e)}
            ) from e
        except APITimeoutError as e:
            raise GatewayError(
                "Request timed out. Please try again.",
                code="TIMEOUT_ERROR",
                details={"model": self.model, "original_error": str(e)}
            ) from e
        except APIError as e:
            raise GatewayError(
                f"Groq API error: {str(e)}",
                code="API_ERROR",
                details={"model": self.model, "original_error": str(e)}
            ) from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


class CompletionGateway:
    """Builds a linear prompt from message history and calls the language model."""

    def __init__(
        self,
        backend: CompletionBackend,
        persona_prompt: str = PERSONA_PROMPT,
        persona_role: str = PERSONA_ROLE,
        temperature: float = LLM_TEMPERATURE,
        max_tokens: int = LLM_MAX_TOKENS,
        max_history_messages: int = HISTORY_MAX_MESSAGES,
        token_encoder=None
    ):
        """
        Initialize the gateway.

        Args:
            backend: Language model backend
            persona_prompt: Preamble prepended when the history is empty
            persona_role: Role the preamble is rendered with ("user" or "system")
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            max_history_messages: Most recent messages kept in the prompt (0 keeps all)
            token_encoder: tiktoken encoding used to count prompt tokens
                (defaults to o200k_base, loaded on first use)
        """
        self.backend = backend
        self.persona_prompt = persona_prompt
        self.persona_role = Role(persona_role)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_history_messages = max_history_messages
        self._token_encoder = token_encoder
        logger.info(
            f"CompletionGateway initialized: backend={type(backend).__name__}, "
            f"persona_role={self.persona_role.value}, max_history_messages={max_history_messages}"
        )

    @property
    def token_encoder(self):
        if self._token_encoder is None:
            self._token_encoder = tiktoken.get_encoding("o200k_base")
        return self._token_encoder

    def count_tokens(self, text: str) -> Optional[int]:
        """Count prompt tokens for logging; None if the encoding is unavailable."""
        try:
            return len(self.token_encoder.encode(text))
        except Exception as e:
            logger.warning(f"Token counting unavailable: {e}")
            return None

    def complete(
        self,
        history: Sequence[Message],
        new_user_text: str,
        system_prompt: Optional[str] = None
    ) -> str:
        """
        Generate the assistant reply to a new user message.

        Args:
            history: Prior messages of the conversation, oldest first
            new_user_text: The user's new message
            system_prompt: Optional preamble that replaces the persona and is
                used even when the history is not empty

        Returns:
            The generated text, or an empty string if the backend returned none

        Raises:
            GatewayError: If the backend is unreachable or fails
        """
        messages = self.build_messages(history, new_user_text, system_prompt)
        prompt = self.build_prompt(messages)
        prompt_tokens = self.count_tokens(prompt)

        start_time = time.time()
        try:
            text = self.backend.generate(prompt, self.temperature, self.max_tokens)
        except GatewayError as e:
            latency_ms = int((time.time() - start_time) * 1000)
            e.error.details["latency_ms"] = latency_ms
            logger.error(
                f"Completion failed: model={self.backend.model}, latency={latency_ms}ms, error={e}",
                extra={"error_code": e.error.code, "error_details": e.error.details}
            )
            raise
        except Exception as e:
            latency_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f"Unexpected error: model={self.backend.model}, latency={latency_ms}ms, error={e}",
                exc_info=True
            )
            raise GatewayError(
                f"Unexpected error during generation: {str(e)}",
                code="UNKNOWN_ERROR",
                details={
                    "model": self.backend.model,
                    "latency_ms": latency_ms,
                    "original_error": str(e),
                    "error_type": type(e).__name__
                }
            ) from e

        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Generated response: model={self.backend.model}, "
            f"prompt_tokens={prompt_tokens}, history_messages={len(history)}, "
            f"latency={latency_ms}ms"
        )
        return text

    def build_messages(
        self,
        history: Sequence[Message],
        new_user_text: str,
        system_prompt: Optional[str] = None
    ) -> List[Message]:
        """
        Assemble the transient message list for one completion call.

        Args:
            history: Prior messages of the conversation, oldest first
            new_user_text: The user's new message
            system_prompt: Optional preamble overriding the persona

        Returns:
            Preamble (if any), capped history, then the new user message
        """
        messages: List[Message] = list(history)
        if self.max_history_messages and len(messages) > self.max_history_messages:
            messages = messages[-self.max_history_messages:]

        if system_prompt:
            messages.insert(0, Message(role=self.persona_role, content=system_prompt))
        elif not history:
            messages.insert(0, Message(role=self.persona_role, content=self.persona_prompt))

        messages.append(Message(role=Role.USER, content=new_user_text))
        return messages

    @staticmethod
    def build_prompt(messages: Sequence[Message]) -> str:
        """
        Flatten chat messages into one prompt, one "<role>: <content>" line each.

        Args:
            messages: Messages in prompt order

        Returns:
            Complete prompt string
        """
        return "\n".join(f"{m.role.value}: {m.content}" for m in messages)

    def close(self) -> None:
        self.backend.close()


def create_completion_backend(backend: str = LLM_BACKEND) -> CompletionBackend:
    """
    Build the language model backend selected by configuration.

    Args:
        backend: "ollama" or "groq"

    Returns:
        CompletionBackend instance
    """
    if backend == "ollama":
        return OllamaBackend()
    if backend == "groq":
        return GroqBackend()
    raise ValueError(f"Unknown LLM backend: {backend}")
