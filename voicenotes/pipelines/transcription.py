"""Transcription stage: audio URL -> transcript, then fan out to extraction and embedding."""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ai.transcription import TranscriptionError, transcribe
from voicenotes import models
from voicenotes.pipelines.embedding import embed_note
from voicenotes.pipelines.extraction import process_note_with_llm
from voicenotes.scheduler import Scheduler

logger = logging.getLogger(__name__)


async def transcribe_note(
    session: AsyncSession,
    scheduler: Scheduler,
    *,
    note_id: int,
    file_url: str,
    model_identifier: str | None = None,
) -> None:
    """Run the hosted speech model and save whatever comes back.

    A failed transcription still saves a fixed error transcript so the note
    never stays in the generating state.
    """
    logger.info(f"Transcribing note {note_id} ({model_identifier}) from {file_url}")
    try:
        transcript = await transcribe(model_identifier, file_url)
    except TranscriptionError as e:
        logger.error(f"Failed to transcribe audio for note {note_id}: {e}")
        await save_transcript(
            session,
            scheduler,
            note_id=note_id,
            transcript=e.variant.error_transcript(e.detail),
            model_name=e.variant.error_model_name,
            failed=True,
        )
        return

    await save_transcript(
        session,
        scheduler,
        note_id=note_id,
        transcript=transcript.text,
        model_name=transcript.model_name,
    )


async def save_transcript(
    session: AsyncSession,
    scheduler: Scheduler,
    *,
    note_id: int,
    transcript: str,
    model_name: str,
    failed: bool = False,
) -> models.Note | None:
    """Write the transcript and schedule the downstream stages.

    On failure the downstream flags are cleared instead and nothing is scheduled.
    """
    note = await session.get(models.Note, note_id)
    if note is None:
        logger.error(f"Note {note_id} not found while saving transcript; it was probably deleted")
        return None

    note.transcription = transcript
    note.transcription_model = model_name
    note.generating_transcript = False

    if failed:
        note.title = "Transcription Failed"
        note.generating_title = False
        note.generating_summary = False
        note.generating_action_items = False
        note.generating_embedding = False
        note.embedding_error = "Transcription failed; no embedding generated."
        await session.commit()
        logger.warning(f"Saved error transcript for note {note_id} ({model_name})")
        return note

    note.generating_title = True
    note.generating_summary = True
    note.generating_action_items = True
    note.generating_embedding = True
    await session.commit()
    logger.info(f"Saved transcript for note {note_id} ({len(transcript)} chars, {model_name})")

    scheduler.run_after(
        0,
        process_note_with_llm,
        note_id=note_id,
        transcript=transcript,
        user_id=note.user_id,
    )
    scheduler.run_after(0, embed_note, note_id=note_id)
    return note
