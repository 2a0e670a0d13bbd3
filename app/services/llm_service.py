"""
LLM Service
Wraps the OpenAI chat completion API behind a single `generate` call and
classifies provider errors into GenerationFailure.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from openai import AsyncOpenAI
from openai import APIError, APITimeoutError, RateLimitError

from app.core.config import settings
from app.core.errors import GenerationFailure, LLMErrorType

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    """Anything that turns a prompt into model text"""

    async def generate(self, prompt: str, system_message: Optional[str] = None) -> str:
        ...


async def generate_text(
    generator: TextGenerator,
    prompt: str,
    system_message: Optional[str] = None,
    timeout: Optional[float] = None
) -> str:
    """
    Call the generator with a hard timeout.

    Args:
        generator: Text generator (LLMService or any compatible object)
        prompt: User prompt
        system_message: Optional system message
        timeout: Seconds before giving up (defaults to LLM_TIMEOUT_SECONDS)

    Returns:
        Raw model text

    Raises:
        GenerationFailure: If the call fails or times out
    """
    timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(
            generator.generate(prompt, system_message=system_message),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.error(f"Generation timed out after {timeout:.1f}s")
        raise GenerationFailure(
            f"Model call timed out after {timeout:.1f}s",
            LLMErrorType.TIMEOUT
        )


class LLMService:
    """
    OpenAI-backed text generator.

    Calls are not retried here: a failed generation is surfaced to the caller
    as GenerationFailure and retry policy belongs to the transport layer.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        client: Optional[AsyncOpenAI] = None
    ):
        """
        Initialize LLM service.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY from settings)
            model: Chat model (defaults to OPENAI_MODEL)
            temperature: Sampling temperature (defaults to LLM_TEMPERATURE)
            max_tokens: Output token limit (defaults to LLM_MAX_TOKENS)
            client: Pre-built AsyncOpenAI client
        """
        self.api_key = api_key or settings.OPENAI_API_KEY
        if client is None and not self.api_key:
            raise ValueError("OpenAI API key is required. Set OPENAI_API_KEY in environment variables.")

        self.model = model or settings.OPENAI_MODEL
        self.temperature = temperature if temperature is not None else settings.LLM_TEMPERATURE
        self.max_tokens = max_tokens if max_tokens is not None else settings.LLM_MAX_TOKENS
        self.client = client or AsyncOpenAI(api_key=self.api_key, timeout=settings.LLM_TIMEOUT_SECONDS, max_retries=0)

    def _parse_error(self, error: Exception) -> GenerationFailure:
        """
        Classify a provider error.

        Args:
            error: Exception raised by the OpenAI SDK or httpx

        Returns:
            GenerationFailure with the matching LLMErrorType
        """
        error_str = str(error).lower()

        if isinstance(error, (APITimeoutError, httpx.TimeoutException)):
            return GenerationFailure(f"Model call timed out: {error}", LLMErrorType.TIMEOUT)

        if isinstance(error, RateLimitError) or "rate limit" in error_str or "429" in error_str:
            return GenerationFailure(f"Rate limit exceeded: {error}", LLMErrorType.RATE_LIMIT)

        if "token" in error_str and ("limit" in error_str or "exceeded" in error_str):
            return GenerationFailure(f"Token limit exceeded: {error}", LLMErrorType.TOKEN_LIMIT)

        if "401" in error_str or "unauthorized" in error_str or "invalid api key" in error_str:
            return GenerationFailure(f"Authentication failed: {error}", LLMErrorType.AUTHENTICATION)

        if "403" in error_str or "permission" in error_str or "forbidden" in error_str:
            return GenerationFailure(f"Permission denied: {error}", LLMErrorType.PERMISSION)

        if "400" in error_str or "invalid" in error_str:
            return GenerationFailure(f"Invalid request: {error}", LLMErrorType.INVALID_REQUEST)

        if any(code in error_str for code in ("500", "502", "503", "504")):
            return GenerationFailure(f"Model server error: {error}", LLMErrorType.SERVER_ERROR)

        if isinstance(error, (httpx.NetworkError, ConnectionError)):
            return GenerationFailure(f"Network error: {error}", LLMErrorType.NETWORK)

        if isinstance(error, APIError):
            return GenerationFailure(f"Model API error: {error}", LLMErrorType.UNKNOWN)

        return GenerationFailure(f"Unknown error: {error}", LLMErrorType.UNKNOWN)

    def _build_messages(self, prompt: str, system_message: Optional[str]) -> List[Dict[str, str]]:
        if not prompt or not prompt.strip():
            raise ValueError("Prompt must not be empty")
        messages = []
        if system_message:
            messages.append({"role": "system", "content": system_message})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def generate(self, prompt: str, system_message: Optional[str] = None) -> str:
        """
        Generate a completion and return just the text.

        Args:
            prompt: User prompt
            system_message: Optional system message

        Returns:
            Response text (empty string when the model returned no content)

        Raises:
            GenerationFailure: If the provider call fails
        """
        messages = self._build_messages(prompt, system_message)

        try:
            completion: Any = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens
            )
        except Exception as e:
            failure = self._parse_error(e)
            logger.error(f"Failed to create chat completion: {failure.message}")
            raise failure from e

        if not completion.choices:
            raise GenerationFailure("Model returned no choices", LLMErrorType.UNKNOWN)

        choice = completion.choices[0]
        if getattr(choice, "finish_reason", None) == "length":
            logger.warning(f"Completion truncated by max_tokens (model={self.model})")

        tokens_used = completion.usage.total_tokens if getattr(completion, "usage", None) else 0
        logger.info(f"Chat completion created successfully (tokens: {tokens_used})")
        return choice.message.content or ""

    def is_configured(self) -> bool:
        """Check if the service has credentials"""
        return bool(self.api_key)

    async def close(self) -> None:
        await self.client.close()
