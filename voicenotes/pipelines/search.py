"""Semantic search over a user's notes using pgvector cosine distance."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ai.embeddings import EmbeddingError, embed_single, prepare_query
from voicenotes import models
from voicenotes.config import settings

logger = logging.getLogger(__name__)


@dataclass
class SearchHit:
    """A note and how close it is to the query (1.0 = identical direction)."""
    note_id: int
    score: float


class SearchError(Exception):
    """Raised when similarity search fails."""
    pass


async def similar_notes(
    session: AsyncSession,
    *,
    user_id: str,
    query: str,
    limit: int | None = None,
) -> list[SearchHit]:
    """Top ``limit`` notes of ``user_id`` by cosine similarity to ``query``.

    Returns:
        Hits sorted by score DESC; notes without an embedding are never returned
    """
    limit = limit or settings.search.limit
    text = prepare_query(query)
    if not text:
        return []

    try:
        query_embedding = await embed_single(text)
    except EmbeddingError as e:
        logger.error(f"Query embedding failed: {e}")
        raise SearchError(f"Failed to embed query: {e}") from e

    distance = models.Note.embedding.cosine_distance(query_embedding)
    stmt = (
        select(models.Note.id, (1 - distance).label("score"))
        .where(
            models.Note.user_id == user_id,
            models.Note.embedding.is_not(None),
        )
        .order_by(distance)
        .limit(limit)
    )

    try:
        result = await session.execute(stmt)
    except Exception as e:
        logger.error(f"Similarity query failed: {e}")
        raise SearchError(f"Failed to search notes: {e}") from e

    hits = [SearchHit(note_id=row.id, score=float(row.score)) for row in result]
    logger.info(f"Search for user {user_id} returned {len(hits)} notes (limit={limit})")
    return hits
