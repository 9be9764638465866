"""Per-user preference document: LLM provider, model ids, transcription variant."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ai.transcription import TranscriptionModel
from voicenotes import models
from voicenotes.config import settings

logger = logging.getLogger(__name__)

DEFAULT_TRANSCRIPTION_MODEL = TranscriptionModel.DEFAULT_WHISPER.value


@dataclass
class EffectiveSettings:
    """Stored preferences with defaults filled in."""
    user_id: str
    llm_provider: str
    openai_model: str | None
    together_model: str
    gemini_model: str | None
    transcription_model_identifier: str


def default_settings(user_id: str) -> EffectiveSettings:
    return EffectiveSettings(
        user_id=user_id,
        llm_provider=settings.llm.default_provider,
        openai_model=None,
        together_model=settings.together.default_model,
        gemini_model=None,
        transcription_model_identifier=DEFAULT_TRANSCRIPTION_MODEL,
    )


async def _load(session: AsyncSession, user_id: str) -> models.UserSettings | None:
    result = await session.execute(
        select(models.UserSettings).where(models.UserSettings.user_id == user_id)
    )
    return result.scalar_one_or_none()


def _effective(record: models.UserSettings) -> EffectiveSettings:
    defaults = default_settings(record.user_id)
    return EffectiveSettings(
        user_id=record.user_id,
        llm_provider=record.llm_provider or defaults.llm_provider,
        openai_model=record.openai_model,
        together_model=record.together_model or defaults.together_model,
        gemini_model=record.gemini_model,
        transcription_model_identifier=(
            record.transcription_model_identifier or defaults.transcription_model_identifier
        ),
    )


async def get_user_settings(session: AsyncSession, user_id: str) -> EffectiveSettings:
    """Effective settings for ``user_id``; defaults when nothing is stored."""
    record = await _load(session, user_id)
    if record is None:
        return default_settings(user_id)
    return _effective(record)


async def set_user_settings(
    session: AsyncSession,
    user_id: str,
    *,
    llm_provider: str,
    openai_model: str | None = None,
    together_model: str | None = None,
    gemini_model: str | None = None,
    transcription_model_identifier: str | None = None,
) -> EffectiveSettings:
    """Create or update the user's settings.

    The provider is always written. Model ids and the transcription variant
    keep their stored value when passed as None.
    """
    record = await _load(session, user_id)
    if record is None:
        record = models.UserSettings(
            user_id=user_id,
            llm_provider=llm_provider,
            openai_model=openai_model,
            together_model=together_model,
            gemini_model=gemini_model,
            transcription_model_identifier=transcription_model_identifier or DEFAULT_TRANSCRIPTION_MODEL,
        )
        session.add(record)
        logger.info(f"Created settings for user {user_id}: provider={llm_provider}")
    else:
        record.llm_provider = llm_provider
        if openai_model is not None:
            record.openai_model = openai_model
        if together_model is not None:
            record.together_model = together_model
        if gemini_model is not None:
            record.gemini_model = gemini_model
        if transcription_model_identifier is not None:
            record.transcription_model_identifier = transcription_model_identifier
        logger.info(f"Updated settings for user {user_id}: provider={llm_provider}")

    await session.commit()
    return _effective(record)
