"""Embedding stage: transcript -> vector stored on the note."""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ai.embeddings import EmbeddingError, embed_single
from voicenotes import models
from voicenotes.config import settings
from voicenotes.scheduler import Scheduler

logger = logging.getLogger(__name__)


async def embed_note(session: AsyncSession, scheduler: Scheduler, *, note_id: int) -> None:
    """Embed the note's transcript. Skips (with an error) when there is nothing useful to embed."""
    note = await session.get(models.Note, note_id)
    transcript = note.transcription if note is not None else None

    if not transcript:
        logger.info(f"No transcript found for note {note_id}, skipping embedding")
        await save_embedding(session, note_id=note_id, embedding=None, error="Transcript not found for embedding")
        return

    if len(transcript) < settings.embeddings.min_transcript_length:
        logger.info(f"Transcript for note {note_id} is too short ({len(transcript)} chars), skipping embedding")
        await save_embedding(
            session,
            note_id=note_id,
            embedding=None,
            error="Transcript too short to generate a useful embedding.",
        )
        return

    try:
        embedding = await embed_single(transcript)
    except EmbeddingError as e:
        logger.error(f"Error generating embedding for note {note_id}: {e}")
        await save_embedding(session, note_id=note_id, embedding=None, error=f"Embedding generation failed: {e}")
        return

    logger.info(f"Embedding generated for note {note_id}, dimensions: {len(embedding)}")
    await save_embedding(session, note_id=note_id, embedding=embedding)


async def save_embedding(
    session: AsyncSession,
    *,
    note_id: int,
    embedding: list[float] | None,
    error: str | None = None,
) -> models.Note | None:
    """Store the vector (or the reason there is none) and clear the generating flag."""
    note = await session.get(models.Note, note_id)
    if note is None:
        logger.error(f"Note {note_id} not found while saving embedding")
        return None

    note.embedding = embedding
    note.embedding_error = error
    note.generating_embedding = False
    await session.commit()

    if error:
        logger.error(f"Embedding generation for note {note_id} had an error: {error}")
    else:
        logger.info(f"Embedding saved for note {note_id}")
    return note
