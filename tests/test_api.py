"""HTTP tests for the voice notes API."""

import pytest

from ai.llm import ExtractionResult, LLMError, LLMProvider, ProviderNotConfiguredError
from ai.transcription import Transcript
from tests.conftest import AUTH, OTHER_AUTH, at
from voicenotes import api
from voicenotes.config import settings
from voicenotes.pipelines import embedding as embedding_stage
from voicenotes.pipelines import extraction as extraction_stage
from voicenotes.pipelines import transcription as transcription_stage
from voicenotes.pipelines.search import SearchError, SearchHit


def _audio(name="memo.webm", content=b"\x1aE\xdf\xa3 fake webm bytes", content_type="audio/webm"):
    return {"file": (name, content, content_type)}


class TestBasics:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": settings.version}

    async def test_root_lists_endpoints(self, client):
        response = await client.get("/")
        assert response.json()["app"] == settings.app_name
        assert "upload_note" in response.json()["endpoints"]

    async def test_identity_required(self, client):
        response = await client.get("/notes")
        assert response.status_code == 401


class TestUpload:
    async def test_full_pipeline(self, client, scheduler, session_factory, storage, monkeypatch):
        async def fake_transcribe(identifier, audio_url):
            assert identifier == "default_whisper"
            return Transcript(
                text="Tomorrow I need to email the landlord about the broken heater.",
                model_name="Whisper large-v3 (Replicate)",
            )

        async def fake_extract(transcript, model):
            return ExtractionResult(title="Broken heater", summary="I have to chase the landlord.",
                                    action_items=["Email the landlord"])

        async def fake_embed(text):
            return [0.2] * settings.embeddings.dim

        monkeypatch.setattr(transcription_stage, "transcribe", fake_transcribe)
        monkeypatch.setitem(extraction_stage.EXTRACTORS, LLMProvider.TOGETHER, fake_extract)
        monkeypatch.setattr(embedding_stage, "embed_single", fake_embed)

        response = await client.post("/notes", files=_audio(), headers=AUTH)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "accepted"
        assert body["transcription_model_identifier"] == "default_whisper"
        assert body["audio_file_url"].startswith("http://test/files/")
        assert scheduler.stage_names == ["transcribe_note"]

        pending = (await client.get(f"/notes/{body['note_id']}", headers=AUTH)).json()["note"]
        assert pending["generating_transcript"] and pending["generating_embedding"]

        await scheduler.run_pending(session_factory)

        detail = (await client.get(f"/notes/{body['note_id']}", headers=AUTH)).json()
        note = detail["note"]
        assert note["title"] == "Broken heater"
        assert note["transcription_model"] == "Whisper large-v3 (Replicate)"
        assert note["llm_provider"] == "together"
        assert note["has_embedding"]
        assert not any(note[flag] for flag in (
            "generating_transcript", "generating_title", "generating_summary",
            "generating_action_items", "generating_embedding",
        ))
        assert [item["task"] for item in detail["action_items"]] == ["Email the landlord"]
        assert storage.path_for(note["audio_file_id"]).read_bytes().endswith(b"fake webm bytes")

    async def test_uses_preferred_transcription_model(self, client, scheduler):
        await client.put("/settings", json={"llm_provider": "openai", "transcription_model_identifier": "fast_whisper"},
                         headers=AUTH)

        response = await client.post("/notes", files=_audio(), headers=AUTH)

        assert response.json()["transcription_model_identifier"] == "fast_whisper"
        assert scheduler.calls[0][1]["model_identifier"] == "fast_whisper"

    async def test_extension_accepted_without_audio_type(self, client):
        response = await client.post(
            "/notes", files=_audio(name="voice.m4a", content_type="application/octet-stream"), headers=AUTH
        )
        assert response.status_code == 201

    async def test_rejects_non_audio(self, client, scheduler):
        response = await client.post(
            "/notes", files=_audio(name="notes.txt", content=b"hello", content_type="text/plain"), headers=AUTH
        )
        assert response.status_code == 400
        assert scheduler.calls == []

    async def test_rejects_oversize(self, client, monkeypatch):
        monkeypatch.setattr(settings.storage, "max_upload_bytes", 16)
        response = await client.post("/notes", files=_audio(content=b"x" * 17), headers=AUTH)
        assert response.status_code == 413

    async def test_rejects_empty(self, client):
        response = await client.post("/notes", files=_audio(content=b""), headers=AUTH)
        assert response.status_code == 400


class TestNotes:
    async def test_list_newest_first_with_counts(self, client, make_note, make_action_item):
        older = await make_note(title="Older", created_at=at(1))
        newer = await make_note(title="Newer", created_at=at(2))
        await make_note(user_id="user-2", title="Someone else's")
        await make_action_item(older, "one")
        await make_action_item(older, "two")

        body = (await client.get("/notes", headers=AUTH)).json()

        assert body["total"] == 2
        assert [n["id"] for n in body["notes"]] == [newer.id, older.id]
        assert [n["action_item_count"] for n in body["notes"]] == [0, 2]

    async def test_get_missing(self, client):
        response = await client.get("/notes/12345", headers=AUTH)
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    async def test_get_other_users_note(self, client, make_note):
        note = await make_note(user_id="user-2")
        response = await client.get(f"/notes/{note.id}", headers=AUTH)
        assert response.status_code == 403
        assert response.json()["detail"] == "Not your note."

    async def test_delete_cascades(self, client, make_note, make_action_item, storage):
        stored = storage.save(b"audio", "memo.webm")
        note = await make_note(audio_file_id=stored.storage_id)
        await make_action_item(note, "task")

        response = await client.delete(f"/notes/{note.id}", headers=AUTH)

        assert response.status_code == 204
        assert (await client.get(f"/notes/{note.id}", headers=AUTH)).status_code == 404
        assert (await client.get("/action-items", headers=AUTH)).json() == []
        assert not storage.delete(stored.storage_id)

    async def test_delete_missing_is_noop(self, client):
        assert (await client.delete("/notes/999", headers=AUTH)).status_code == 204

    async def test_delete_other_users_note(self, client, make_note):
        note = await make_note(user_id="user-2")
        assert (await client.delete(f"/notes/{note.id}", headers=AUTH)).status_code == 403
        assert (await client.get(f"/notes/{note.id}", headers=OTHER_AUTH)).status_code == 200

    async def test_audio_playback(self, client, make_note, storage):
        stored = storage.save(b"RIFFdata", "memo.wav")
        note = await make_note(audio_file_id=stored.storage_id)

        response = await client.get(f"/notes/{note.id}/audio", headers=AUTH)

        assert response.status_code == 200
        assert response.content == b"RIFFdata"
        assert (await client.get(f"/notes/{note.id}/audio", headers=OTHER_AUTH)).status_code == 403


class TestActionItems:
    async def test_list_with_note_titles(self, client, make_note, make_action_item):
        note = await make_note(title="Groceries")
        await make_action_item(note, "Buy milk")
        other = await make_note(user_id="user-2", title="Theirs")
        await make_action_item(other, "Not mine")

        items = (await client.get("/action-items", headers=AUTH)).json()

        assert [(i["task"], i["title"], i["note_id"]) for i in items] == [("Buy milk", "Groceries", note.id)]

    async def test_count(self, client, make_note, make_action_item):
        note = await make_note()
        await make_action_item(note, "a")
        await make_action_item(note, "b")

        response = await client.get(f"/notes/{note.id}/action-items/count", headers=AUTH)

        assert response.json() == {"count": 2}
        assert (await client.get(f"/notes/{note.id}/action-items/count", headers=OTHER_AUTH)).status_code == 403

    async def test_delete(self, client, make_note, make_action_item):
        note = await make_note()
        item = await make_action_item(note, "done")

        assert (await client.delete(f"/action-items/{item.id}", headers=OTHER_AUTH)).status_code == 403
        assert (await client.delete(f"/action-items/{item.id}", headers=AUTH)).status_code == 204
        assert (await client.get(f"/notes/{note.id}/action-items/count", headers=AUTH)).json() == {"count": 0}


class TestSearch:
    async def test_empty_query_returns_all(self, client, make_note, monkeypatch):
        await make_note(title="A")
        await make_note(title="B")

        async def fail(*args, **kwargs):
            raise AssertionError("must not search")

        monkeypatch.setattr(api, "similar_notes", fail)

        body = (await client.get("/notes/search", params={"q": "   "}, headers=AUTH)).json()
        assert body["total"] == 2

    async def test_filters_by_score_and_orders(self, client, make_note, monkeypatch):
        weak = await make_note(title="Weak")
        best = await make_note(title="Best")
        good = await make_note(title="Good")
        seen = {}

        async def fake_search(session, *, user_id, query, limit):
            seen.update(user_id=user_id, query=query, limit=limit)
            return [
                SearchHit(note_id=best.id, score=0.93),
                SearchHit(note_id=good.id, score=0.71),
                SearchHit(note_id=weak.id, score=0.42),
            ]

        monkeypatch.setattr(api, "similar_notes", fake_search)

        body = (await client.get("/notes/search", params={"q": "heater repair"}, headers=AUTH)).json()

        assert [n["title"] for n in body["notes"]] == ["Best", "Good"]
        assert body["notes"][0]["score"] == pytest.approx(0.93)
        assert body["query"] == "heater repair"
        assert seen == {"user_id": "user-1", "query": "heater repair", "limit": settings.search.limit}

    async def test_search_failure(self, client, monkeypatch):
        async def broken(session, **kwargs):
            raise SearchError("Failed to embed query: quota")

        monkeypatch.setattr(api, "similar_notes", broken)

        response = await client.get("/notes/search", params={"q": "anything"}, headers=AUTH)
        assert response.status_code == 500
        assert response.json()["error"] == "search_error"


class TestSettings:
    async def test_defaults(self, client):
        body = (await client.get("/settings", headers=AUTH)).json()
        assert body["llm_provider"] == settings.llm.default_provider
        assert body["transcription_model_identifier"] == "default_whisper"

    async def test_update(self, client):
        response = await client.put(
            "/settings", json={"llm_provider": "gemini", "gemini_model": "models/gemini-1.5-pro"}, headers=AUTH
        )
        assert response.status_code == 200
        assert response.json()["gemini_model"] == "models/gemini-1.5-pro"

        body = (await client.get("/settings", headers=AUTH)).json()
        assert body["llm_provider"] == "gemini"

    @pytest.mark.parametrize(
        "payload",
        [
            {"llm_provider": "anthropic"},
            {"llm_provider": "openai", "transcription_model_identifier": "tiny_whisper"},
            {"llm_provider": "openai", "openai_model": ""},
        ],
    )
    async def test_invalid(self, client, payload):
        response = await client.put("/settings", json=payload, headers=AUTH)
        assert response.status_code == 422


class TestModels:
    async def test_together(self, client, monkeypatch):
        async def fake_list():
            return [{"id": "meta/llama-3", "name": "Llama 3", "type": "chat"}]

        monkeypatch.setattr(api, "list_together_models", fake_list)

        body = (await client.get("/models/together", headers=AUTH)).json()
        assert body == {"provider": "together", "models": [{"id": "meta/llama-3", "name": "Llama 3", "type": "chat"}]}

    async def test_openai(self, client, monkeypatch):
        async def fake_list():
            return ["gpt-4o", "gpt-4-turbo"]

        monkeypatch.setattr(api, "list_openai_models", fake_list)

        body = (await client.get("/models/openai", headers=AUTH)).json()
        assert [m["id"] for m in body["models"]] == ["gpt-4o", "gpt-4-turbo"]

    async def test_not_configured(self, client, monkeypatch):
        async def missing():
            raise ProviderNotConfiguredError("Gemini API key is not configured. Set GEMINI_API_KEY.")

        monkeypatch.setattr(api, "list_gemini_models", missing)

        response = await client.get("/models/gemini", headers=AUTH)
        assert response.status_code == 503
        assert response.json()["error"] == "provider_not_configured"

    async def test_upstream_failure(self, client, monkeypatch):
        async def broken():
            raise LLMError("Error fetching Together AI models.")

        monkeypatch.setattr(api, "list_together_models", broken)

        assert (await client.get("/models/together", headers=AUTH)).status_code == 502

    async def test_unknown_provider(self, client):
        assert (await client.get("/models/cohere", headers=AUTH)).status_code == 422


class TestFiles:
    async def test_serves_blob(self, client, storage):
        stored = storage.save(b"ID3 mp3 data", "song.mp3")

        response = await client.get(f"/files/{stored.storage_id}")

        assert response.status_code == 200
        assert response.content == b"ID3 mp3 data"

    async def test_unknown_blob(self, client):
        assert (await client.get("/files/not-a-real-id")).status_code == 404
