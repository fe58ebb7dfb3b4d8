"""
Anthropic client for Claude API calls

Used by the query service to turn retrieved memories into an answer.
"""

import os
import logging
from typing import Optional

from anthropic import AsyncAnthropic, AnthropicError

from services.errors import LLMError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"

_client: Optional[AsyncAnthropic] = None


def get_anthropic_client() -> AsyncAnthropic:
    """Get Anthropic client with API key from environment."""
    global _client
    if _client is None:
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY must be set")
        _client = AsyncAnthropic(api_key=api_key)
    return _client


async def chat_completion(
    messages: list[dict],
    system: str,
    model: str = DEFAULT_MODEL,
    max_tokens: int = 4096,
    temperature: Optional[float] = None,
) -> str:
    """
    Non-streaming chat completion.

    Args:
        messages: List of {"role": "user"|"assistant", "content": str}
        system: System prompt
        model: Model ID
        max_tokens: Maximum response tokens
        temperature: Sampling temperature (provider default when None)

    Returns:
        Assistant response text ("" when the model returns no text block)

    Raises:
        LLMError: If the provider call fails
    """
    client = get_anthropic_client()

    kwargs = {}
    if temperature is not None:
        kwargs["temperature"] = temperature

    try:
        response = await client.messages.create(
            model=model,
            max_tokens=max_tokens,
            system=system,
            messages=messages,
            **kwargs,
        )
    except AnthropicError as e:
        logger.error(f"[LLM] Completion failed: {e}")
        raise LLMError(f"Completion provider failed: {type(e).__name__}") from e

    text_parts = [block.text for block in response.content if block.type == "text"]
    return "".join(text_parts)
