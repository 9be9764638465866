"""Tests for provider reply parsing and the provider call wrappers."""

import json
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from ai import llm
from ai.llm import (
    ExtractionResult,
    LLMError,
    LLMProvider,
    ProviderNotConfiguredError,
    normalize_gemini_model,
    parse_gemini_response,
    parse_openai_response,
    parse_together_response,
    strip_code_fences,
)
from ai.prompts import GEMINI_NO_ACTION_ITEMS, build_gemini_prompt
from voicenotes.config import settings


def _chat_client(content=None, error=None):
    """Minimal stand-in for AsyncOpenAI exposing chat.completions.create."""
    calls = []

    async def create(**kwargs):
        calls.append(kwargs)
        if error:
            raise error
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return client, calls


class TestProvider:
    def test_labels(self):
        assert LLMProvider.OPENAI.label == "OpenAI"
        assert LLMProvider.TOGETHER.label == "Together"
        assert LLMProvider("gemini").label == "Gemini"

    def test_normalize_gemini_model(self):
        assert normalize_gemini_model("models/gemini-1.5-pro") == "gemini-1.5-pro"
        assert normalize_gemini_model("gemini-1.5-pro") == "gemini-1.5-pro"


class TestStripCodeFences:
    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


class TestParseOpenAI:
    def test_valid_reply(self):
        content = json.dumps({"title": "Groceries", "summary": "I need food.", "actionItems": ["Buy milk"]})
        result = parse_openai_response(content)
        assert result == ExtractionResult(title="Groceries", summary="I need food.", action_items=["Buy milk"])

    def test_missing_action_items_rejected(self):
        with pytest.raises(LLMError):
            parse_openai_response(json.dumps({"title": "T", "summary": "S"}))

    def test_long_summary_rejected(self):
        content = json.dumps({"title": "T", "summary": "x" * 1001, "actionItems": []})
        with pytest.raises(LLMError):
            parse_openai_response(content)

    def test_empty_reply(self):
        with pytest.raises(LLMError, match="no content"):
            parse_openai_response(None)


class TestParseTogether:
    def test_pure_json(self):
        content = json.dumps({"title": "Call", "summary": "Call mom", "actionItems": ["Call mom"]})
        result = parse_together_response(content)
        assert result.title == "Call"
        assert result.action_items == ["Call mom"]

    def test_json_embedded_in_prose(self):
        content = 'Sure! Here you go:\n{"title": "Plan", "summary": "Trip", "actionItems": []}\nHope that helps.'
        result = parse_together_response(content)
        assert result.title == "Plan"
        assert result.summary == "Trip"

    def test_missing_fields_get_defaults(self):
        result = parse_together_response('{"actionItems": "not a list"}')
        assert result.title == "Untitled"
        assert result.summary == "No summary available"
        assert result.action_items == []

    def test_no_json_at_all(self):
        with pytest.raises(LLMError, match="Could not find JSON"):
            parse_together_response("I could not process this.")

    def test_array_reply_rejected(self):
        with pytest.raises(LLMError):
            parse_together_response('["a", "b"]')


class TestParseGemini:
    def test_fenced_reply(self):
        content = '```json\n{"title": "T", "summary": "S", "actionItems": ["Do it", 3]}\n```'
        result = parse_gemini_response(content)
        assert result.action_items == ["Do it", "3"]

    def test_no_items_sentinel_becomes_empty(self):
        content = json.dumps({"title": "T", "summary": "S", "actionItems": [GEMINI_NO_ACTION_ITEMS]})
        assert parse_gemini_response(content).action_items == []

    def test_wrong_shape(self):
        with pytest.raises(LLMError, match="unexpected structure"):
            parse_gemini_response(json.dumps({"title": "T", "summary": 5, "actionItems": []}))

    def test_invalid_json(self):
        with pytest.raises(LLMError):
            parse_gemini_response("```json\n{not json}\n```")

    def test_blank(self):
        with pytest.raises(LLMError, match="no text content"):
            parse_gemini_response("   ")

    def test_prompt_contains_transcript_and_sentinel(self):
        prompt = build_gemini_prompt("buy milk tomorrow")
        assert "buy milk tomorrow" in prompt
        assert f'["{GEMINI_NO_ACTION_ITEMS}"]' in prompt
        assert '"title": "Project Update and Next Steps"' in prompt


class TestProviderCalls:
    async def test_openai_uses_json_mode(self, monkeypatch):
        content = json.dumps({"title": "T", "summary": "S", "actionItems": ["A"]})
        client, calls = _chat_client(content=content)
        monkeypatch.setattr(llm, "_openai_client", lambda: client)

        result = await llm.extract_with_openai("a transcript", "gpt-4o")

        assert result.action_items == ["A"]
        assert calls[0]["model"] == "gpt-4o"
        assert calls[0]["response_format"] == {"type": "json_object"}
        assert calls[0]["messages"][1] == {"role": "user", "content": "a transcript"}

    async def test_together_sdk_error_wrapped(self, monkeypatch):
        client, _ = _chat_client(error=OpenAIError("rate limited"))
        monkeypatch.setattr(llm, "_together_client", lambda: client)

        with pytest.raises(LLMError, match="rate limited"):
            await llm.extract_with_together("a transcript", "some/model")

    async def test_gemini_strips_prefix_and_reports_block(self, monkeypatch):
        seen = {}

        async def generate_content(model, contents):
            seen["model"] = model
            return SimpleNamespace(text="", prompt_feedback=SimpleNamespace(block_reason="SAFETY"))

        client = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate_content)))
        monkeypatch.setattr(llm, "_gemini_client", lambda: client)

        with pytest.raises(LLMError, match="SAFETY"):
            await llm.extract_with_gemini("a transcript", "models/gemini-1.5-flash-latest")
        assert seen["model"] == "gemini-1.5-flash-latest"

    async def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(settings.openai, "api_key", None)
        llm._openai_client.cache_clear()

        with pytest.raises(ProviderNotConfiguredError):
            await llm.extract_with_openai("a transcript", "gpt-4o")
