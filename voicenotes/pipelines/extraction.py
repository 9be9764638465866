"""Extraction stage: transcript -> title, summary and action items via the user's LLM provider."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from ai.llm import (
    ExtractionResult,
    LLMError,
    LLMProvider,
    extract_with_gemini,
    extract_with_openai,
    extract_with_together,
    normalize_gemini_model,
)
from voicenotes import models
from voicenotes.config import settings
from voicenotes.scheduler import Scheduler
from voicenotes.user_settings import EffectiveSettings, get_user_settings

logger = logging.getLogger(__name__)

COMMON_EMPTY_PHRASES = {"thank you.", "thanks."}

CAPTURE_ISSUE = ExtractionResult(
    title="Audio Capture Issue",
    summary="No significant audio was detected. Please ensure your microphone is enabled and try recording again.",
    action_items=[],
)

Extractor = Callable[[str, str], Awaitable[ExtractionResult]]

EXTRACTORS: dict[LLMProvider, Extractor] = {
    LLMProvider.OPENAI: extract_with_openai,
    LLMProvider.TOGETHER: extract_with_together,
    LLMProvider.GEMINI: extract_with_gemini,
}


@dataclass
class LLMChoice:
    """Provider and model that will run for a note."""
    provider: LLMProvider
    model: str

    def note_fields(self) -> dict[str, str | None]:
        return {
            "llm_provider": self.provider.value,
            "openai_model": self.model if self.provider is LLMProvider.OPENAI else None,
            "together_model": self.model if self.provider is LLMProvider.TOGETHER else None,
            "gemini_model": self.model if self.provider is LLMProvider.GEMINI else None,
        }


def is_capture_issue(transcript: str) -> bool:
    """True for transcripts too short or too generic to be worth an LLM call."""
    return (
        len(transcript) < settings.llm.min_transcript_length
        or transcript.strip().lower() in COMMON_EMPTY_PHRASES
    )


def resolve_llm_choice(preferences: EffectiveSettings) -> LLMChoice:
    """Pick provider and model from user settings; unknown providers fall back to Together."""
    try:
        provider = LLMProvider(preferences.llm_provider)
    except ValueError:
        logger.warning(
            f"Unknown provider {preferences.llm_provider!r} for user {preferences.user_id}; "
            f"falling back to Together"
        )
        return LLMChoice(LLMProvider.TOGETHER, settings.together.default_model)

    if provider is LLMProvider.OPENAI:
        return LLMChoice(provider, preferences.openai_model or settings.openai.default_model)
    if provider is LLMProvider.GEMINI:
        model = preferences.gemini_model or settings.gemini.default_model
        return LLMChoice(provider, normalize_gemini_model(model))
    return LLMChoice(provider, preferences.together_model or settings.together.default_model)


async def process_note_with_llm(
    session: AsyncSession,
    scheduler: Scheduler,
    *,
    note_id: int,
    transcript: str,
    user_id: str,
) -> None:
    """Run the extraction for one note and persist the outcome.

    Every path ends in ``save_processed_note_details`` so the note's
    title/summary/action-item flags are always cleared.
    """
    logger.info(f"Starting LLM processing for note {note_id}, user {user_id}")

    if is_capture_issue(transcript):
        logger.info(f"Transcript for note {note_id} is too short or empty; skipping LLM processing")
        await save_processed_note_details(
            session, note_id=note_id, user_id=user_id, result=CAPTURE_ISSUE, is_error=True
        )
        return

    choice: LLMChoice | None = None
    try:
        preferences = await get_user_settings(session, user_id)
        choice = resolve_llm_choice(preferences)
        logger.info(f"Calling {choice.provider.label} extract for note {note_id} with model {choice.model}")
        result = await EXTRACTORS[choice.provider](transcript, choice.model)
    except LLMError as e:
        provider_label = choice.provider.label if choice else "LLM"
        logger.error(f"Extraction failed for note {note_id} using {provider_label}: {e}")
        result = ExtractionResult(
            title=f"Error Processing Note ({provider_label})",
            summary=f"Details: {e}"[:150],
            action_items=[],
        )
        await save_processed_note_details(
            session, note_id=note_id, user_id=user_id, result=result, is_error=True, choice=choice
        )
        return
    except Exception as e:
        logger.error(f"Error processing note {note_id} with LLM: {e}", exc_info=True)
        await session.rollback()
        result = ExtractionResult(
            title="Error Processing Note",
            summary="LLM processing failed. Please check logs.",
            action_items=[],
        )
        await save_processed_note_details(
            session, note_id=note_id, user_id=user_id, result=result, is_error=True, choice=choice
        )
        return

    logger.info(f"Extraction successful for note {note_id}. Title: {result.title}")
    await save_processed_note_details(
        session, note_id=note_id, user_id=user_id, result=result, is_error=False, choice=choice
    )


async def save_processed_note_details(
    session: AsyncSession,
    *,
    note_id: int,
    user_id: str,
    result: ExtractionResult,
    is_error: bool,
    choice: LLMChoice | None = None,
) -> models.Note | None:
    """Write title, summary and provider details; replace action items on success."""
    note = await session.get(models.Note, note_id)
    if note is None:
        logger.error(f"Note {note_id} not found while saving LLM results; it was probably deleted")
        return None

    note.title = result.title
    note.summary = result.summary
    note.generating_title = False
    note.generating_summary = False
    note.generating_action_items = False
    if choice is not None:
        for field, value in choice.note_fields().items():
            setattr(note, field, value)

    if not is_error:
        removed = await session.execute(
            delete(models.ActionItem).where(models.ActionItem.note_id == note_id)
        )
        for task in result.action_items:
            session.add(models.ActionItem(note_id=note_id, user_id=user_id, task=task))
        logger.info(
            f"Replaced {removed.rowcount} action items with {len(result.action_items)} for note {note_id}"
        )

    await session.commit()
    logger.info(f"Saved details for note {note_id}. Title: {result.title}. IsError: {is_error}")
    return note
