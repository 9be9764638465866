"""Model catalogs for the settings page: which models each provider offers."""
from __future__ import annotations

import logging
from typing import Any

import httpx
from openai import OpenAIError

from ai.llm import LLMError, ProviderNotConfiguredError, _openai_client
from voicenotes.config import settings

logger = logging.getLogger(__name__)

PREFERRED_OPENAI_MODEL = "gpt-4o"


def rank_openai_models(models: list[tuple[str, int]]) -> list[str]:
    """Order ``(model_id, created)`` pairs for display.

    GPT models only; ``gpt-4o`` first, then ``gpt-4-turbo``, vision models
    last, everything else newest first. ``gpt-4o`` is always present.
    """
    def sort_key(item: tuple[str, int]) -> tuple[int, int]:
        model_id, created = item
        if model_id == PREFERRED_OPENAI_MODEL:
            return (0, 0)
        if model_id == "gpt-4-turbo":
            return (1, 0)
        if "vision" in model_id:
            return (3, -created)
        return (2, -created)

    gpt_models = sorted((m for m in models if "gpt" in m[0].lower()), key=sort_key)

    ranked = [PREFERRED_OPENAI_MODEL]
    for model_id, _ in gpt_models:
        if model_id not in ranked:
            ranked.append(model_id)
    return ranked


async def list_openai_models() -> list[str]:
    client = _openai_client()
    try:
        page = await client.models.list()
    except OpenAIError as e:
        logger.error(f"Error listing OpenAI models: {e}")
        raise LLMError("Failed to list OpenAI models.") from e
    return rank_openai_models([(m.id, m.created) for m in page.data])


async def list_together_models() -> list[dict[str, Any]]:
    if not settings.together.api_key:
        raise ProviderNotConfiguredError("Together API key is not configured. Set TOGETHER_API_KEY.")

    url = f"{settings.together.base_url.rstrip('/')}/models"
    headers = {"accept": "application/json", "authorization": f"Bearer {settings.together.api_key}"}
    try:
        async with httpx.AsyncClient(timeout=settings.together.timeout) as client:
            response = await client.get(url, headers=headers)
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Error fetching Together models: {e}")
        raise LLMError("Error fetching Together AI models.") from e

    models = response.json()
    if not isinstance(models, list):
        logger.warning(f"Unexpected Together models payload: {str(models)[:200]}")
        return []
    return [
        {"id": m["id"], "name": m.get("display_name") or m["id"], "type": m.get("type")}
        for m in models
        if isinstance(m, dict) and m.get("id")
    ]


async def list_gemini_models() -> list[dict[str, str]]:
    if not settings.gemini.api_key:
        raise ProviderNotConfiguredError("Gemini API key is not configured. Set GEMINI_API_KEY.")

    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.get(settings.gemini.models_url, params={"key": settings.gemini.api_key})
            response.raise_for_status()
    except httpx.HTTPError as e:
        # The key is part of the URL; keep it out of the log
        logger.error(f"Error fetching Gemini models: {type(e).__name__}")
        raise LLMError("Error fetching Gemini models.") from e

    models = response.json().get("models") or []
    return [
        {"id": m["name"], "name": m["displayName"]}
        for m in models
        if m.get("name")
        and m.get("displayName")
        and "generateContent" in (m.get("supportedGenerationMethods") or [])
    ]
