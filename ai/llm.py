"""Hosted chat-completion providers for note extraction.

Each provider turns a transcript into an ``ExtractionResult`` (title, summary,
action items). Provider replies are parsed and shape-checked here; the note
pipeline only ever sees validated results or an ``LLMError``.
"""
from __future__ import annotations

import json
import logging
import re
from enum import Enum
from functools import lru_cache

from google import genai
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ai.prompts import (
    GEMINI_NO_ACTION_ITEMS,
    OPENAI_SYSTEM_PROMPT,
    TOGETHER_SYSTEM_PROMPT,
    build_gemini_prompt,
)
from voicenotes.config import settings

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    """Supported chat-completion providers."""
    OPENAI = "openai"
    TOGETHER = "together"
    GEMINI = "gemini"

    @property
    def label(self) -> str:
        return {"openai": "OpenAI", "together": "Together", "gemini": "Gemini"}[self.value]


class LLMError(Exception):
    """Raised when a provider call fails or its reply has the wrong shape."""
    pass


class ProviderNotConfiguredError(LLMError):
    """Raised when a provider is selected but its API key is missing."""
    pass


class ExtractionResult(BaseModel):
    """Title, summary and action items extracted from a transcript."""
    model_config = ConfigDict(populate_by_name=True)

    title: str
    summary: str
    action_items: list[str] = Field(default_factory=list, alias="actionItems")


class OpenAIExtraction(ExtractionResult):
    """Strict schema for OpenAI replies."""
    summary: str = Field(max_length=1000)
    action_items: list[str] = Field(alias="actionItems")


FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)
JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block, with or without a ``json`` tag."""
    stripped = text.strip()
    match = FENCE_RE.match(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def parse_openai_response(content: str | None) -> ExtractionResult:
    if not content:
        raise LLMError("OpenAI returned no content")
    try:
        parsed = OpenAIExtraction.model_validate_json(content)
    except ValidationError as e:
        raise LLMError(f"OpenAI reply failed validation: {e}") from e
    return ExtractionResult(title=parsed.title, summary=parsed.summary, action_items=parsed.action_items)


def parse_together_response(content: str | None) -> ExtractionResult:
    """Lenient parse: fall back to the first JSON object and default missing fields."""
    content = (content or "").strip()
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning(f"Together reply is not pure JSON ({e}); searching for an embedded object")
        match = JSON_OBJECT_RE.search(content)
        if not match:
            raise LLMError("Could not find JSON in response") from e
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as inner:
            raise LLMError(f"Embedded JSON is malformed: {inner}") from inner

    if not isinstance(data, dict):
        raise LLMError(f"Expected a JSON object, got {type(data).__name__}")

    title = data.get("title")
    summary = data.get("summary")
    items = data.get("actionItems")
    return ExtractionResult(
        title=title if isinstance(title, str) else "Untitled",
        summary=summary if isinstance(summary, str) else "No summary available",
        action_items=[str(i) for i in items] if isinstance(items, list) else [],
    )


def parse_gemini_response(content: str | None) -> ExtractionResult:
    """Strict shape check after removing markdown fences."""
    if content is None or not content.strip():
        raise LLMError("Gemini API returned no text content")

    try:
        data = json.loads(strip_code_fences(content))
    except json.JSONDecodeError as e:
        raise LLMError(f"Gemini reply is not valid JSON: {e}") from e

    if not (
        isinstance(data, dict)
        and isinstance(data.get("title"), str)
        and isinstance(data.get("summary"), str)
        and isinstance(data.get("actionItems"), list)
    ):
        raise LLMError(f"Gemini response had unexpected structure: {json.dumps(data)[:100]}...")

    items = [str(i) for i in data["actionItems"]]
    if items == [GEMINI_NO_ACTION_ITEMS]:
        items = []
    return ExtractionResult(title=data["title"], summary=data["summary"], action_items=items)


def normalize_gemini_model(model: str) -> str:
    """The SDK wants ``gemini-1.5-pro``, the models endpoint lists ``models/gemini-1.5-pro``."""
    return model.removeprefix("models/")


@lru_cache(maxsize=1)
def _openai_client() -> AsyncOpenAI:
    if not settings.openai.api_key:
        raise ProviderNotConfiguredError("OpenAI API key is not configured. Set OPENAI_API_KEY.")
    return AsyncOpenAI(api_key=settings.openai.api_key, timeout=settings.openai.timeout)


@lru_cache(maxsize=1)
def _together_client() -> AsyncOpenAI:
    if not settings.together.api_key:
        raise ProviderNotConfiguredError("Together API key is not configured. Set TOGETHER_API_KEY.")
    return AsyncOpenAI(
        api_key=settings.together.api_key,
        base_url=settings.together.base_url,
        timeout=settings.together.timeout,
    )


@lru_cache(maxsize=1)
def _gemini_client() -> genai.Client:
    if not settings.gemini.api_key:
        raise ProviderNotConfiguredError("Gemini API key is not configured. Set GEMINI_API_KEY.")
    return genai.Client(api_key=settings.gemini.api_key)


async def extract_with_openai(transcript: str, model: str) -> ExtractionResult:
    """Extract note details with OpenAI JSON mode."""
    client = _openai_client()
    logger.info(f"Calling OpenAI model {model} ({len(transcript)} chars)")
    try:
        response = await client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": OPENAI_SYSTEM_PROMPT},
                {"role": "user", "content": transcript},
            ],
            response_format={"type": "json_object"},
            temperature=0.3,
        )
    except OpenAIError as e:
        logger.error(f"OpenAI extraction with {model} failed: {e}")
        raise LLMError(f"OpenAI model {model} failed: {e}") from e

    content = response.choices[0].message.content if response.choices else None
    return parse_openai_response(content)


async def extract_with_together(transcript: str, model: str) -> ExtractionResult:
    """Extract note details through Together's OpenAI-compatible endpoint."""
    client = _together_client()
    logger.info(f"Calling Together model {model} ({len(transcript)} chars)")
    try:
        response = await client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": TOGETHER_SYSTEM_PROMPT},
                {"role": "user", "content": transcript},
            ],
            max_tokens=1000,
            temperature=0.6,
        )
    except OpenAIError as e:
        logger.error(f"Together extraction with {model} failed: {e}")
        raise LLMError(f"Together model {model} failed: {e}") from e

    content = response.choices[0].message.content if response.choices else None
    logger.debug(f"Together raw reply: {(content or '')[:100]}")
    return parse_together_response(content)


async def extract_with_gemini(transcript: str, model: str) -> ExtractionResult:
    """Extract note details with Gemini; the reply is free text expected to hold JSON."""
    client = _gemini_client()
    model = normalize_gemini_model(model)
    logger.info(f"Calling Gemini model {model} ({len(transcript)} chars)")
    try:
        response = await client.aio.models.generate_content(
            model=model,
            contents=build_gemini_prompt(transcript),
        )
    except Exception as e:
        logger.error(f"Gemini extraction with {model} failed: {e}")
        raise LLMError(f"Gemini model {model} failed: {e}") from e

    text = response.text
    if not text or not text.strip():
        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None)
        if block_reason:
            raise LLMError(f"Content generation blocked by Gemini. Reason: {block_reason}")
        raise LLMError("Gemini API returned no text content")
    return parse_gemini_response(text)
