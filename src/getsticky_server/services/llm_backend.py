"""
Claude backend for board queries.

Two modes over the same request shape (a system prompt plus user/assistant
turns):

- batch:     ``complete()`` returns the whole reply
- streaming: ``stream()`` yields text chunks in the order Claude produces them

Every SDK failure surfaces as ``BackendError`` so callers never depend on
anthropic exception types.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol, runtime_checkable

import anthropic

from ..config import LLMSettings
from ..utils.errors import BackendError

logger = logging.getLogger(__name__)


@runtime_checkable
class LLMBackend(Protocol):
    """Protocol for pluggable LLM backends."""

    async def complete(self, system: str, messages: list[dict[str, str]]) -> str:
        """Return the full reply for one request."""

    def stream(self, system: str, messages: list[dict[str, str]]) -> AsyncIterator[str]:
        """Yield reply text incrementally."""


class AnthropicBackend:
    def __init__(self, client: Any, model: str, max_tokens: int = 4096):
        self._client = client
        self._model = model
        self._max_tokens = max_tokens

    @property
    def model(self) -> str:
        return self._model

    async def complete(self, system: str, messages: list[dict[str, str]]) -> str:
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                system=system,
                messages=messages,
            )
        except anthropic.AnthropicError as e:
            logger.warning(f"Claude request failed: {e}")
            raise BackendError(f"Claude API error: {e}") from e

        return "".join(block.text for block in response.content if getattr(block, "type", None) == "text")

    async def stream(self, system: str, messages: list[dict[str, str]]) -> AsyncIterator[str]:
        try:
            async with self._client.messages.stream(
                model=self._model,
                max_tokens=self._max_tokens,
                system=system,
                messages=messages,
            ) as stream:
                async for text in stream.text_stream:
                    yield text
        except anthropic.AnthropicError as e:
            logger.warning(f"Claude stream failed: {e}")
            raise BackendError(f"Claude API error: {e}") from e


def create_backend(api_key: str | None, config: LLMSettings) -> AnthropicBackend | None:
    """
    Build the Claude backend for an API key.

    Returns:
        AnthropicBackend, or None when no key is available (queries disabled)
    """
    if not api_key:
        logger.info("No Anthropic API key configured - Claude queries disabled")
        return None

    client = anthropic.AsyncAnthropic(api_key=api_key, base_url=config.base_url, timeout=config.timeout)
    logger.info(f"Claude backend configured with model {config.model}")
    return AnthropicBackend(client=client, model=config.model, max_tokens=config.max_tokens)
