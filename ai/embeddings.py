"""Embedding service for transcript and query text.

Wraps the hosted Together embedding endpoint with retries and dimension checks.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Iterable

from openai import AsyncOpenAI, OpenAIError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from voicenotes.config import settings

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when embedding computation fails."""
    pass


@lru_cache(maxsize=1)
def _load_client() -> AsyncOpenAI:
    """Create and cache the embeddings client.

    Raises:
        EmbeddingError: If no API key is configured
    """
    if not settings.together.api_key:
        raise EmbeddingError("Together API key is not configured. Set TOGETHER_API_KEY.")
    logger.info(f"Embedding client ready for model {settings.embeddings.model_name}")
    return AsyncOpenAI(
        api_key=settings.together.api_key,
        base_url=settings.together.base_url,
        timeout=settings.together.timeout,
    )


def prepare_query(text: str) -> str:
    """Flatten newlines; the embedding model treats the input as one passage."""
    return " ".join(text.replace("\r", " ").replace("\n", " ").split())


@retry(
    retry=retry_if_exception_type(OpenAIError),
    stop=stop_after_attempt(settings.embeddings.max_attempts),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)
async def _create_embeddings(texts: list[str]) -> list[list[float]]:
    client = _load_client()
    response = await client.embeddings.create(model=settings.embeddings.model_name, input=texts)
    return [item.embedding for item in response.data]


async def embed_texts(texts: list[str] | Iterable[str]) -> list[list[float]]:
    """Compute embeddings for a batch of texts with retry logic.

    Args:
        texts: List or iterable of text strings to embed

    Returns:
        List of embedding vectors (each is a list of floats)

    Raises:
        EmbeddingError: If embedding computation fails after retries
        ValueError: If texts contains non-string or blank items
    """
    text_list = list(texts)
    if not text_list:
        logger.warning("Empty text list provided to embed_texts")
        return []

    if not all(isinstance(t, str) and t.strip() for t in text_list):
        raise ValueError("All items in texts must be non-empty strings")

    try:
        logger.debug(f"Encoding {len(text_list)} texts")
        embeddings = await _create_embeddings(text_list)
    except OpenAIError as e:
        logger.error(f"Embedding computation failed: {e}")
        raise EmbeddingError(f"Failed to compute embeddings: {e}") from e

    if len(embeddings) != len(text_list):
        raise EmbeddingError(f"Expected {len(text_list)} embeddings, got {len(embeddings)}")
    for embedding in embeddings:
        if not embedding:
            raise EmbeddingError("Embedding generation returned empty or invalid data.")
        if len(embedding) != settings.embeddings.dim:
            raise EmbeddingError(
                f"Model returned {len(embedding)} dimensions, expected {settings.embeddings.dim}"
            )

    logger.debug(f"Successfully encoded {len(embeddings)} embeddings")
    return embeddings


async def embed_single(text: str) -> list[float]:
    """Convenience function to embed a single text."""
    embeddings = await embed_texts([text])
    return embeddings[0]
