"""Shared fixtures: a throwaway SQLite database, local storage and a manual scheduler."""

import os
import uuid

# The engine in voicenotes.db is built at import time
os.environ.setdefault("DB_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from voicenotes import models
from voicenotes.storage import ObjectStorage

AUTH = {"X-User-Id": "user-1"}
OTHER_AUTH = {"X-User-Id": "user-2"}


class RecordingScheduler:
    """Records scheduled stages instead of running them; ``run_pending`` runs them in order."""

    def __init__(self):
        self.calls = []

    def run_after(self, delay, stage, /, **kwargs):
        self.calls.append((stage, kwargs))

    @property
    def stage_names(self):
        return [stage.__name__ for stage, _ in self.calls]

    async def run_pending(self, session_factory):
        while self.calls:
            stage, kwargs = self.calls.pop(0)
            async with session_factory() as session:
                await stage(session, self, **kwargs)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'notes.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def storage(tmp_path):
    return ObjectStorage(tmp_path / "audio", "http://test")


@pytest.fixture
def make_note(session_factory):
    """Insert a note directly; flags default to finished."""

    async def _make(user_id="user-1", **fields):
        values = {
            "audio_file_id": f"{uuid.uuid4().hex}.webm",
            "audio_file_url": "http://test/files/x",
            "generating_transcript": False,
            "generating_title": False,
            "generating_summary": False,
            "generating_action_items": False,
            "generating_embedding": False,
        }
        values.update(fields)
        async with session_factory() as session:
            note = models.Note(user_id=user_id, **values)
            session.add(note)
            await session.commit()
            return note

    return _make


@pytest.fixture
def make_action_item(session_factory):
    async def _make(note, task, user_id=None):
        async with session_factory() as session:
            item = models.ActionItem(note_id=note.id, user_id=user_id or note.user_id, task=task)
            session.add(item)
            await session.commit()
            return item

    return _make


@pytest.fixture
async def client(session_factory, scheduler, storage):
    from voicenotes.api import app, get_scheduler, get_storage
    from voicenotes.db import get_session

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    app.dependency_overrides[get_storage] = lambda: storage

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


def at(day: int) -> datetime:
    """Fixed creation timestamps for ordering tests."""
    return datetime(2024, 5, day, 12, 0, 0)
