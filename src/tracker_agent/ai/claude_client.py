"""Claude API client with vision support for context matching."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from anthropic import APIError, AsyncAnthropic, RateLimitError

logger = logging.getLogger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block from a model response."""
    cleaned = text.strip()

    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]

    return cleaned.strip()


def parse_json_response(text: str) -> dict[str, Any]:
    """Parse a JSON object out of a model response.

    Raises:
        ValueError: If the response is not a JSON object.
    """
    cleaned = strip_code_fences(text)
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class ClaudeClient:
    """Async Claude API client with vision support and rate limiting."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-haiku-4-5-20251001",
        max_tokens: int = 500,
        max_retries: int = 3,
        base_delay: float = 1.0,
        temperature: float = 0.3,
    ):
        """Initialize the Claude client.

        Args:
            api_key: Claude API key. If None, uses ANTHROPIC_API_KEY env var.
            model: Model to use.
            max_tokens: Maximum tokens in response.
            max_retries: Maximum retry attempts on rate limit.
            base_delay: Base delay for exponential backoff.
            temperature: Sampling temperature.
        """
        self.model = model
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.temperature = temperature

        self._client = AsyncAnthropic(api_key=api_key) if api_key else AsyncAnthropic()

        self._total_input_tokens = 0
        self._total_output_tokens = 0
        self._request_count = 0

    @property
    def request_count(self) -> int:
        """Total API requests made."""
        return self._request_count

    async def complete(
        self,
        prompt: str,
        system: str | None = None,
        image_base64: str | None = None,
        media_type: str = "image/jpeg",
    ) -> str:
        """Send a prompt (optionally with an image) and return the text reply."""
        messages = self._build_messages(prompt, image_base64, media_type)
        text, _ = await self._call_api_with_retry(messages, system)
        return text

    def _build_messages(
        self,
        prompt: str,
        image_base64: str | None = None,
        media_type: str = "image/jpeg",
    ) -> list[dict[str, Any]]:
        """Build messages for API call, optionally including image."""
        content: list[dict[str, Any]] = []

        if image_base64:
            content.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": media_type,
                    "data": image_base64,
                },
            })

        content.append({"type": "text", "text": prompt})

        return [{"role": "user", "content": content}]

    async def _call_api_with_retry(
        self, messages: list[dict[str, Any]], system: str | None = None
    ) -> tuple[str, dict[str, int]]:
        """Call API with exponential backoff retry on rate limits."""
        last_error: Exception | None = None

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system

        for attempt in range(self.max_retries):
            try:
                response = await self._client.messages.create(**kwargs)

                usage = {
                    "input_tokens": response.usage.input_tokens,
                    "output_tokens": response.usage.output_tokens,
                }
                self._total_input_tokens += usage["input_tokens"]
                self._total_output_tokens += usage["output_tokens"]
                self._request_count += 1

                text_content = ""
                for block in response.content:
                    if hasattr(block, "text"):
                        text_content += block.text

                logger.debug(
                    f"API call successful: {usage['input_tokens']} in, "
                    f"{usage['output_tokens']} out"
                )

                return text_content, usage

            except RateLimitError as e:
                last_error = e
                delay = self.base_delay * (2 ** attempt)
                logger.warning(f"Rate limited, retrying in {delay}s (attempt {attempt + 1})")
                await asyncio.sleep(delay)

            except APIError as e:
                last_error = e
                status_code = getattr(e, "status_code", None)
                if status_code and status_code >= 500:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(f"Server error, retrying in {delay}s: {e}")
                    await asyncio.sleep(delay)
                else:
                    raise

        raise last_error or RuntimeError("Max retries exceeded")

    def get_usage_stats(self) -> dict[str, Any]:
        """Get usage statistics."""
        return {
            "total_input_tokens": self._total_input_tokens,
            "total_output_tokens": self._total_output_tokens,
            "request_count": self._request_count,
        }
