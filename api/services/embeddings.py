"""
Embedding Service

Generates vector embeddings for memory content using OpenAI's API.
The memories.content_vector column is fixed at 1536 dimensions.
"""

import os
import logging
from typing import Optional

from openai import AsyncOpenAI, OpenAIError

from services.errors import EmbeddingError

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIMENSIONS = 1536

# Initialize client
_client: Optional[AsyncOpenAI] = None


def get_client() -> AsyncOpenAI:
    """Get or create OpenAI client."""
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=os.environ.get("OPENAI_API_KEY"))
    return _client


async def get_embedding(text: str, model: str = EMBEDDING_MODEL) -> list[float]:
    """
    Generate embedding vector for text.

    Args:
        text: Text to embed (will be truncated if too long)
        model: OpenAI embedding model

    Returns:
        List of floats (1536 dimensions)

    Raises:
        EmbeddingError: If the provider call fails
    """
    client = get_client()

    # Truncate to ~8000 tokens worth of text (rough estimate)
    truncated = text[:32000] if len(text) > 32000 else text

    try:
        response = await client.embeddings.create(
            model=model,
            input=truncated,
            dimensions=EMBEDDING_DIMENSIONS
        )
    except OpenAIError as e:
        logger.error(f"[EMBEDDINGS] Embedding request failed: {e}")
        raise EmbeddingError(f"Embedding provider failed: {type(e).__name__}") from e

    return response.data[0].embedding
