"""OpenAI embeddings for knowledge-retrieval queries."""

import asyncio

from openai import OpenAI

from wafr_engine.core.config import get_settings
from wafr_engine.core.logging import get_logger

logger = get_logger(__name__)


def _get_client() -> OpenAI:
    """Get OpenAI client instance."""
    settings = get_settings()
    return OpenAI(api_key=settings.OPENAI_API_KEY)


def embed_query(text: str) -> list[float]:
    """
    Embed a single retrieval query.

    Args:
        text: Query text

    Returns:
        Embedding vector

    Raises:
        ValueError: If the embedding dimension doesn't match EMBEDDING_DIM
        Exception: If the OpenAI API call fails
    """
    settings = get_settings()
    client = _get_client()

    response = client.embeddings.create(
        model=settings.EMBEDDING_MODEL,
        input=[text],
    )
    embedding = response.data[0].embedding

    if len(embedding) != settings.EMBEDDING_DIM:
        raise ValueError(
            f"Embedding dimension mismatch: "
            f"expected {settings.EMBEDDING_DIM}, got {len(embedding)}"
        )

    logger.debug(f"Embedded retrieval query using {settings.EMBEDDING_MODEL}")
    return embedding


async def embed_query_async(text: str) -> list[float]:
    """Async wrapper around embed_query using thread pool."""
    return await asyncio.to_thread(embed_query, text)
