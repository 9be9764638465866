"""Read and delete operations behind the dashboard, detail view and note cards.

Every operation is scoped to the calling user; touching someone else's note
or action item raises ``NoteOwnershipError``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from voicenotes import models
from voicenotes.storage import ObjectStorage

logger = logging.getLogger(__name__)


class NoteNotFoundError(Exception):
    """Raised when a note or action item does not exist."""
    pass


class NoteOwnershipError(Exception):
    """Raised when a user touches another user's note or action item."""
    pass


@dataclass
class NoteWithCount:
    note: models.Note
    action_item_count: int


@dataclass
class ActionItemWithTitle:
    item: models.ActionItem
    title: str | None


async def list_notes(session: AsyncSession, user_id: str) -> list[NoteWithCount]:
    """User's notes, newest first, each with its action-item count."""
    counts = (
        select(models.ActionItem.note_id, func.count(models.ActionItem.id).label("count"))
        .group_by(models.ActionItem.note_id)
        .subquery()
    )
    stmt = (
        select(models.Note, func.coalesce(counts.c.count, 0))
        .outerjoin(counts, counts.c.note_id == models.Note.id)
        .where(models.Note.user_id == user_id)
        .order_by(models.Note.created_at.desc(), models.Note.id.desc())
    )
    result = await session.execute(stmt)
    return [NoteWithCount(note=note, action_item_count=count) for note, count in result.all()]


async def get_note(
    session: AsyncSession, user_id: str, note_id: int
) -> tuple[models.Note, list[models.ActionItem]]:
    note = await session.get(models.Note, note_id)
    if note is None:
        raise NoteNotFoundError(f"Note {note_id} not found")
    if note.user_id != user_id:
        raise NoteOwnershipError("Not your note.")

    result = await session.execute(
        select(models.ActionItem)
        .where(models.ActionItem.note_id == note_id)
        .order_by(models.ActionItem.id)
    )
    return note, list(result.scalars().all())


async def list_action_items(session: AsyncSession, user_id: str) -> list[ActionItemWithTitle]:
    """All of the user's action items with the title of their note."""
    stmt = (
        select(models.ActionItem, models.Note.title)
        .join(models.Note, models.Note.id == models.ActionItem.note_id)
        .where(models.ActionItem.user_id == user_id)
        .order_by(models.ActionItem.id)
    )
    result = await session.execute(stmt)
    return [ActionItemWithTitle(item=item, title=title) for item, title in result.all()]


async def count_action_items(session: AsyncSession, user_id: str, note_id: int) -> int:
    result = await session.execute(
        select(models.ActionItem.user_id).where(models.ActionItem.note_id == note_id)
    )
    owners = list(result.scalars().all())
    if any(owner != user_id for owner in owners):
        raise NoteOwnershipError("Not your action items")
    return len(owners)


async def remove_action_item(session: AsyncSession, user_id: str, item_id: int) -> bool:
    """Delete an action item. Returns False if it did not exist."""
    item = await session.get(models.ActionItem, item_id)
    if item is None:
        return False
    if item.user_id != user_id:
        raise NoteOwnershipError("Not your action item")
    await session.delete(item)
    await session.commit()
    logger.info(f"Removed action item {item_id} for user {user_id}")
    return True


async def remove_note(
    session: AsyncSession,
    user_id: str,
    note_id: int,
    storage: ObjectStorage | None = None,
) -> bool:
    """Delete a note together with its action items and audio blob.

    Returns False if the note did not exist.
    """
    note = await session.get(models.Note, note_id)
    if note is None:
        return False
    if note.user_id != user_id:
        raise NoteOwnershipError("Not your note")

    audio_file_id = note.audio_file_id
    await session.execute(delete(models.ActionItem).where(models.ActionItem.note_id == note_id))
    await session.delete(note)
    await session.commit()

    if storage is not None:
        storage.delete(audio_file_id)
    logger.info(f"Removed note {note_id} for user {user_id}")
    return True
