"""Upload handler: store the audio, create the note, start transcription."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from voicenotes import models
from voicenotes.pipelines.transcription import transcribe_note
from voicenotes.scheduler import Scheduler
from voicenotes.storage import ObjectStorage, StorageError
from voicenotes.user_settings import get_user_settings

logger = logging.getLogger(__name__)


class NoteCreationError(Exception):
    """Raised when a note cannot be created from an upload."""
    pass


@dataclass
class CreatedNote:
    """A freshly inserted note and the transcription variant scheduled for it."""
    note: models.Note
    transcription_model_identifier: str


async def create_note(
    session: AsyncSession,
    scheduler: Scheduler,
    storage: ObjectStorage,
    *,
    user_id: str,
    data: bytes,
    filename: str | None = None,
) -> CreatedNote:
    """Persist an uploaded recording and schedule its transcription.

    Steps:
    1. Store audio blob
    2. Read the user's transcription preference
    3. Insert the note with every generating flag set
    4. Schedule the transcription stage

    Raises:
        NoteCreationError: If storage or the database insert fails
    """
    if not data:
        raise NoteCreationError("Uploaded audio is empty")

    try:
        stored = storage.save(data, filename)
    except StorageError as e:
        raise NoteCreationError(str(e)) from e

    file_url = storage.get_url(stored.storage_id)

    try:
        preferences = await get_user_settings(session, user_id)
        note = models.Note(
            user_id=user_id,
            audio_file_id=stored.storage_id,
            audio_file_url=file_url,
            generating_transcript=True,
            generating_title=True,
            generating_summary=True,
            generating_action_items=True,
            generating_embedding=True,
        )
        session.add(note)
        await session.commit()
    except Exception as e:
        logger.error(f"Note creation failed for user {user_id}: {e}", exc_info=True)
        await session.rollback()
        storage.delete(stored.storage_id)
        raise NoteCreationError(f"Failed to create note: {e}") from e

    model_identifier = preferences.transcription_model_identifier
    logger.info(f"Created note {note.id} for user {user_id}; scheduling {model_identifier} transcription")
    scheduler.run_after(
        0,
        transcribe_note,
        note_id=note.id,
        file_url=file_url,
        model_identifier=model_identifier,
    )
    return CreatedNote(note=note, transcription_model_identifier=model_identifier)
