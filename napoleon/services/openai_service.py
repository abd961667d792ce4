"""
OpenAI Service for message analysis
Wraps the chat-completions API behind a single JSON-in/JSON-out call.

Every failure mode (network error, timeout, empty body, malformed JSON)
surfaces as an LLMServiceError so callers can switch to their keyword
fallback without caring which one happened.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import openai
from openai import AsyncOpenAI

from napoleon.config import settings
from napoleon.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class LLMServiceError(Exception):
    """Base exception for LLM service errors."""

    def __init__(self, message: str, api_error: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.api_error = api_error
        self.recoverable = recoverable


class LLMResponseError(LLMServiceError):
    """Raised when the model answered but the body is empty or not a JSON object."""


@dataclass(slots=True)
class LLMResponse:
    data: dict[str, Any]
    tokens_used: int
    model: str


class OpenAIService:
    """
    Service for OpenAI chat completions with a JSON response contract.

    Retries rate limits with exponential backoff and bounds the whole call
    (retries included) with a caller-supplied deadline.
    """

    def __init__(self, client: AsyncOpenAI | None = None, model: str | None = None):
        self.model = model or settings.OPENAI_MODEL
        self.client = client
        if self.client is None:
            self._initialize_client()

    def _initialize_client(self):
        """Initialize OpenAI async client with configuration."""
        if not settings.OPENAI_API_KEY:
            logger.warning("OPENAI_API_KEY not configured; keyword fallbacks will be used")
            return

        self.client = AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.OPENAI_EXTRACTION_TIMEOUT_SECONDS,
        )
        logger.info("OpenAI client initialized", model=self.model)

    @property
    def available(self) -> bool:
        return self.client is not None

    async def complete_json(
        self,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        timeout: float | None = None,
        system: str | None = None,
    ) -> LLMResponse:
        """
        Send a single prompt and parse the answer as a JSON object.

        Args:
            prompt: Fully rendered user prompt
            temperature: Sampling temperature
            max_tokens: Completion token cap
            timeout: Deadline in seconds for the whole call, retries included
            system: Optional system message

        Returns:
            LLMResponse with the parsed object and token usage

        Raises:
            LLMServiceError: On any failure, including timeout and bad JSON
        """
        if not self.client:
            raise LLMServiceError("OpenAI client not configured", recoverable=False)

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        deadline = timeout or settings.OPENAI_TIMEOUT_SECONDS
        try:
            raw, tokens_used = await asyncio.wait_for(
                self._call_openai_with_retry(messages, temperature, max_tokens),
                timeout=deadline,
            )
        except TimeoutError as e:
            logger.warning("OpenAI call exceeded deadline", timeout=deadline, model=self.model)
            raise LLMServiceError(f"OpenAI call timed out after {deadline}s") from e

        return LLMResponse(data=self._parse_json(raw), tokens_used=tokens_used, model=self.model)

    async def _call_openai_with_retry(
        self, messages: list[dict[str, str]], temperature: float, max_tokens: int
    ) -> tuple[str, int]:
        """Call OpenAI API with retry logic for transient failures."""

        last_error = None
        max_retries = max(1, settings.OPENAI_MAX_RETRIES)

        for attempt in range(max_retries):
            try:
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    response_format={"type": "json_object"},
                )

                if not response.choices or not response.choices[0].message.content:
                    raise LLMResponseError("Empty response from OpenAI API")

                result = response.choices[0].message.content.strip()
                tokens_used = response.usage.total_tokens if response.usage else 0

                logger.debug(
                    "OpenAI API call successful",
                    attempt=attempt + 1,
                    response_length=len(result),
                    usage_tokens=tokens_used,
                )
                return result, tokens_used

            except LLMResponseError:
                raise

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 30)
                logger.warning(
                    "OpenAI rate limit hit, retrying",
                    attempt=attempt + 1,
                    wait_time=wait_time,
                    error=str(e),
                )
                if attempt < max_retries - 1:
                    await asyncio.sleep(wait_time)

            except openai.APITimeoutError as e:
                last_error = e
                logger.warning("OpenAI API timeout, retrying", attempt=attempt + 1, error=str(e))

            except openai.APIStatusError as e:
                last_error = e
                # Don't retry on client errors (4xx)
                if 400 <= e.status_code < 500:
                    logger.error("OpenAI client error (not retrying)", error=str(e))
                    break
                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

            except openai.APIError as e:
                last_error = e
                logger.warning("OpenAI API error, retrying", attempt=attempt + 1, error=str(e))

        logger.error(
            "OpenAI API call failed after all retries",
            max_retries=max_retries,
            final_error=str(last_error),
        )
        raise LLMServiceError(
            f"OpenAI API failed after {max_retries} attempts",
            api_error=str(last_error),
        ) from last_error

    def _parse_json(self, raw_result: str) -> dict[str, Any]:
        """Parse the completion body, tolerating a surrounding markdown fence."""
        text = raw_result.strip()
        if text.startswith("```"):
            text = text.strip("`")
            if text.lower().startswith("json"):
                text = text[4:]

        try:
            result = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("OpenAI returned invalid JSON", error=str(e), preview=text[:80])
            raise LLMResponseError(f"Invalid JSON from OpenAI: {e}") from e

        if not isinstance(result, dict):
            raise LLMResponseError(f"Expected JSON object, got {type(result).__name__}")

        return result
