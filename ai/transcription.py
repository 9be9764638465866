"""Hosted speech-to-text via Replicate.

Two Whisper variants are available, selected per user:
``default_whisper`` (Whisper large-v3) and ``fast_whisper``
(Incredibly Fast Whisper).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Callable

import httpx
import replicate
from replicate.exceptions import ReplicateException

from voicenotes.config import settings

logger = logging.getLogger(__name__)


class TranscriptionModel(str, Enum):
    """User-selectable transcription variants."""
    DEFAULT_WHISPER = "default_whisper"
    FAST_WHISPER = "fast_whisper"


@dataclass(frozen=True)
class TranscriptionVariant:
    """How to call one hosted model and read its output."""
    identifier: TranscriptionModel
    display_name: str
    error_model_name: str
    output_key: str
    model_ref: Callable[[], str]
    build_input: Callable[[str], dict[str, Any]]

    def error_transcript(self, detail: str) -> str:
        if self.identifier is TranscriptionModel.FAST_WHISPER:
            return f"Error transcribing audio with Incredibly Fast Whisper. Details: {detail}"
        return "Error transcribing audio. Please check the logs for details."


@dataclass
class Transcript:
    """Text produced by a transcription model."""
    text: str
    model_name: str


class TranscriptionError(Exception):
    """Raised when the hosted model fails or returns nothing."""

    def __init__(self, variant: TranscriptionVariant, detail: str):
        super().__init__(f"{variant.display_name}: {detail}")
        self.variant = variant
        self.detail = detail


def _whisper_input(audio_url: str) -> dict[str, Any]:
    return {
        "audio": audio_url,
        "model": "large-v3",
        "translate": False,
        "temperature": 0,
        "transcription": "plain text",
        "suppress_tokens": "-1",
        "logprob_threshold": -1,
        "no_speech_threshold": 0.6,
        "condition_on_previous_text": True,
        "compression_ratio_threshold": 2.4,
        "temperature_increment_on_fallback": 0.2,
    }


def _fast_whisper_input(audio_url: str) -> dict[str, Any]:
    return {
        "audio": audio_url,
        "task": "transcribe",
        "language": "None",
        "timestamp": "chunk",
        "batch_size": 64,
        "diarise_audio": False,
    }


VARIANTS: dict[TranscriptionModel, TranscriptionVariant] = {
    TranscriptionModel.DEFAULT_WHISPER: TranscriptionVariant(
        identifier=TranscriptionModel.DEFAULT_WHISPER,
        display_name="Whisper large-v3 (Replicate)",
        error_model_name="Error",
        output_key="transcription",
        model_ref=lambda: settings.replicate.whisper_model,
        build_input=_whisper_input,
    ),
    TranscriptionModel.FAST_WHISPER: TranscriptionVariant(
        identifier=TranscriptionModel.FAST_WHISPER,
        display_name="Incredibly Fast Whisper (Replicate)",
        error_model_name="Error Incredibly Fast Whisper",
        output_key="text",
        model_ref=lambda: settings.replicate.fast_whisper_model,
        build_input=_fast_whisper_input,
    ),
}


def resolve_variant(identifier: str | None) -> TranscriptionVariant:
    """Unknown or unset identifiers use the default Whisper model."""
    try:
        return VARIANTS[TranscriptionModel(identifier)]
    except ValueError:
        return VARIANTS[TranscriptionModel.DEFAULT_WHISPER]


@lru_cache(maxsize=1)
def _client() -> replicate.Client:
    return replicate.Client(api_token=settings.replicate.api_key)


def read_output_text(variant: TranscriptionVariant, output: Any) -> str:
    """Pull the transcript out of a model's output payload."""
    if not isinstance(output, dict):
        raise TranscriptionError(variant, f"unexpected output type {type(output).__name__}")
    text = output.get(variant.output_key)
    if not isinstance(text, str) or not text.strip():
        raise TranscriptionError(variant, "empty transcript")
    return text.strip()


async def transcribe(identifier: str | None, audio_url: str) -> Transcript:
    """Transcribe the audio at ``audio_url`` with the chosen variant.

    Raises:
        TranscriptionError: on API failure, missing credentials or empty output
    """
    variant = resolve_variant(identifier)
    if not settings.replicate.api_key:
        raise TranscriptionError(variant, "Replicate API key is not configured. Set REPLICATE_API_KEY.")

    logger.info(f"Starting {variant.display_name} transcription for {audio_url}")
    try:
        output = await _client().async_run(variant.model_ref(), input=variant.build_input(audio_url))
    except (ReplicateException, httpx.HTTPError) as e:
        logger.error(f"{variant.display_name} failed: {e}")
        raise TranscriptionError(variant, str(e)) from e

    text = read_output_text(variant, output)
    logger.info(f"{variant.display_name} finished, transcript length {len(text)} chars")
    return Transcript(text=text, model_name=variant.display_name)
