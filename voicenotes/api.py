"""FastAPI app with health, upload, notes, search, settings and model-catalog endpoints.

Uploads are accepted immediately; transcription, extraction and embedding
run in the background and report progress through the note's generating flags.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Literal

from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ai.catalog import list_gemini_models, list_openai_models, list_together_models
from ai.llm import LLMError, LLMProvider, ProviderNotConfiguredError
from ai.transcription import TranscriptionModel

from . import models
from .config import settings
from .db import AsyncSessionMaker, dispose_engine, get_session
from .logging_config import setup_logging
from .notes import (
    NoteNotFoundError,
    NoteOwnershipError,
    count_action_items,
    get_note,
    list_action_items,
    list_notes,
    remove_action_item,
    remove_note,
)
from .pipelines.search import SearchError, similar_notes
from .pipelines.upload import NoteCreationError, create_note
from .scheduler import Scheduler
from .storage import ObjectStorage, StorageError
from .storage import get_storage as build_storage
from .user_settings import EffectiveSettings, get_user_settings, set_user_settings

logger = logging.getLogger(__name__)

ALLOWED_AUDIO_EXTENSIONS = {".mp3", ".wav", ".m4a", ".webm", ".ogg", ".oga", ".flac", ".mp4", ".aac"}


# Pydantic response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


class NoteDTO(BaseModel):
    """Note data transfer object."""
    id: int
    title: str | None
    summary: str | None
    transcription: str | None
    audio_file_id: str
    audio_file_url: str
    has_embedding: bool
    embedding_error: str | None
    generating_transcript: bool
    generating_title: bool
    generating_summary: bool
    generating_action_items: bool
    generating_embedding: bool
    llm_provider: str | None
    openai_model: str | None
    together_model: str | None
    gemini_model: str | None
    transcription_model: str | None
    created_at: datetime

    @classmethod
    def from_model(cls, note: models.Note) -> NoteDTO:
        return cls(
            id=note.id,
            title=note.title,
            summary=note.summary,
            transcription=note.transcription,
            audio_file_id=note.audio_file_id,
            audio_file_url=note.audio_file_url,
            has_embedding=note.embedding is not None,
            embedding_error=note.embedding_error,
            generating_transcript=note.generating_transcript,
            generating_title=note.generating_title,
            generating_summary=note.generating_summary,
            generating_action_items=note.generating_action_items,
            generating_embedding=note.generating_embedding,
            llm_provider=note.llm_provider,
            openai_model=note.openai_model,
            together_model=note.together_model,
            gemini_model=note.gemini_model,
            transcription_model=note.transcription_model,
            created_at=note.created_at,
        )


class NoteListItemDTO(NoteDTO):
    """Note with its action-item count, as shown on dashboard cards."""
    action_item_count: int
    score: float | None = None


class ActionItemDTO(BaseModel):
    """Action item data transfer object."""
    id: int
    note_id: int
    task: str
    created_at: datetime
    title: str | None = None


class NoteDetailResponse(BaseModel):
    """Single note with its action items."""
    note: NoteDTO
    action_items: list[ActionItemDTO]


class NoteListResponse(BaseModel):
    """Dashboard listing or search result."""
    notes: list[NoteListItemDTO]
    total: int
    query: str | None = None


class CreateNoteResponse(BaseModel):
    """Upload response."""
    status: str
    note_id: int
    audio_file_url: str
    transcription_model_identifier: str
    message: str


class CountResponse(BaseModel):
    count: int


class UserSettingsDTO(BaseModel):
    """Effective user settings."""
    llm_provider: str
    openai_model: str | None
    together_model: str | None
    gemini_model: str | None
    transcription_model_identifier: str

    @classmethod
    def from_settings(cls, effective: EffectiveSettings) -> UserSettingsDTO:
        return cls(
            llm_provider=effective.llm_provider,
            openai_model=effective.openai_model,
            together_model=effective.together_model,
            gemini_model=effective.gemini_model,
            transcription_model_identifier=effective.transcription_model_identifier,
        )


class UpdateSettingsRequest(BaseModel):
    """Settings update; omitted model fields keep their stored value."""
    llm_provider: LLMProvider
    openai_model: str | None = Field(default=None, min_length=1, max_length=255)
    together_model: str | None = Field(default=None, min_length=1, max_length=255)
    gemini_model: str | None = Field(default=None, min_length=1, max_length=255)
    transcription_model_identifier: TranscriptionModel | None = None


class ModelListResponse(BaseModel):
    provider: str
    models: list[dict]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    app.state.storage = build_storage()
    app.state.scheduler = Scheduler(AsyncSessionMaker)
    logger.info("Application starting up")

    yield

    # Shutdown
    await app.state.scheduler.shutdown()
    await dispose_engine()
    logger.info("Application shutting down")


app = FastAPI(
    title="Voice Notes",
    version=settings.version,
    description="Audio notes with transcription, LLM extraction and semantic search",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependencies
async def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, set by the authenticating proxy in front of this service."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()


def get_scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


# Exception handlers
def _error(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=str(exc)).model_dump(),
    )


@app.exception_handler(NoteNotFoundError)
async def not_found_handler(request, exc: NoteNotFoundError):
    """Handle missing notes."""
    return _error(status.HTTP_404_NOT_FOUND, "not_found", exc)


@app.exception_handler(NoteOwnershipError)
async def ownership_error_handler(request, exc: NoteOwnershipError):
    """Handle access to another user's notes."""
    logger.warning(f"Ownership check failed: {exc}")
    return _error(status.HTTP_403_FORBIDDEN, "forbidden", exc)


@app.exception_handler(NoteCreationError)
async def note_creation_error_handler(request, exc: NoteCreationError):
    """Handle upload processing errors."""
    logger.error(f"Note creation error: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "note_creation_error", exc)


@app.exception_handler(SearchError)
async def search_error_handler(request, exc: SearchError):
    """Handle similarity search errors."""
    logger.error(f"Search error: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "search_error", exc)


@app.exception_handler(ProviderNotConfiguredError)
async def provider_not_configured_handler(request, exc: ProviderNotConfiguredError):
    """Handle providers with no API key."""
    logger.error(f"Provider not configured: {exc}")
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "provider_not_configured", exc)


@app.exception_handler(LLMError)
async def llm_error_handler(request, exc: LLMError):
    """Handle upstream provider failures."""
    logger.error(f"Provider error: {exc}")
    return _error(status.HTTP_502_BAD_GATEWAY, "provider_error", exc)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=settings.version,
    )


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "upload_note": "POST /notes",
            "list_notes": "/notes",
            "search_notes": "/notes/search?q=",
            "get_note": "/notes/{note_id}",
            "action_items": "/action-items",
            "settings": "/settings",
            "models": "/models/{provider}",
            "files": "/files/{storage_id}",
            "docs": "/docs",
        },
    }


@app.post(
    "/notes",
    response_model=CreateNoteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_note(
    file: UploadFile = File(..., description="Audio recording"),
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    scheduler: Scheduler = Depends(get_scheduler),
    storage: ObjectStorage = Depends(get_storage),
) -> CreateNoteResponse:
    """Upload a recording and start processing it.

    This endpoint:
    1. Stores the audio
    2. Creates the note with all generating flags set
    3. Schedules transcription, which in turn schedules extraction and embedding
    """
    filename = file.filename or "recording"
    extension = "." + filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    content_type = file.content_type or ""

    if not content_type.startswith("audio/") and extension not in ALLOWED_AUDIO_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported file type. Allowed: {', '.join(sorted(ALLOWED_AUDIO_EXTENSIONS))}",
        )

    logger.info(f"Received audio upload from user {user_id}: {filename} ({content_type})")

    try:
        content = await file.read(settings.storage.max_upload_bytes + 1)
    finally:
        await file.close()

    if len(content) > settings.storage.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Audio exceeds {settings.storage.max_upload_bytes} bytes",
        )
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded audio is empty")

    created = await create_note(
        session,
        scheduler,
        storage,
        user_id=user_id,
        data=content,
        filename=filename,
    )
    return CreateNoteResponse(
        status="accepted",
        note_id=created.note.id,
        audio_file_url=created.note.audio_file_url,
        transcription_model_identifier=created.transcription_model_identifier,
        message="Note created; transcription scheduled",
    )


@app.get("/notes", response_model=NoteListResponse)
async def get_notes(
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> NoteListResponse:
    """List the caller's notes, newest first."""
    rows = await list_notes(session, user_id)
    items = [
        NoteListItemDTO(**NoteDTO.from_model(r.note).model_dump(), action_item_count=r.action_item_count)
        for r in rows
    ]
    return NoteListResponse(notes=items, total=len(items))


@app.get("/notes/search", response_model=NoteListResponse)
async def search_notes(
    q: str = "",
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> NoteListResponse:
    """Semantic search over the caller's notes.

    An empty query returns every note; otherwise only notes scoring above
    the configured threshold are returned, best match first.
    """
    rows = await list_notes(session, user_id)
    if not q.strip():
        items = [
            NoteListItemDTO(**NoteDTO.from_model(r.note).model_dump(), action_item_count=r.action_item_count)
            for r in rows
        ]
        return NoteListResponse(notes=items, total=len(items), query=q)

    hits = await similar_notes(session, user_id=user_id, query=q, limit=settings.search.limit)
    scores = {hit.note_id: hit.score for hit in hits if hit.score > settings.search.min_score}
    items = [
        NoteListItemDTO(
            **NoteDTO.from_model(r.note).model_dump(),
            action_item_count=r.action_item_count,
            score=scores[r.note.id],
        )
        for r in rows
        if r.note.id in scores
    ]
    items.sort(key=lambda item: item.score, reverse=True)
    return NoteListResponse(notes=items, total=len(items), query=q)


@app.get("/notes/{note_id}", response_model=NoteDetailResponse)
async def read_note(
    note_id: int,
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> NoteDetailResponse:
    """Note detail with its action items."""
    note, items = await get_note(session, user_id, note_id)
    return NoteDetailResponse(
        note=NoteDTO.from_model(note),
        action_items=[
            ActionItemDTO(id=i.id, note_id=i.note_id, task=i.task, created_at=i.created_at, title=note.title)
            for i in items
        ],
    )


@app.delete("/notes/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(
    note_id: int,
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
) -> Response:
    """Delete a note, its action items and its audio."""
    await remove_note(session, user_id, note_id, storage=storage)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/notes/{note_id}/action-items/count", response_model=CountResponse)
async def note_action_item_count(
    note_id: int,
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> CountResponse:
    return CountResponse(count=await count_action_items(session, user_id, note_id))


@app.get("/action-items", response_model=list[ActionItemDTO])
async def get_action_items(
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> list[ActionItemDTO]:
    """All of the caller's action items with their note titles."""
    rows = await list_action_items(session, user_id)
    return [
        ActionItemDTO(
            id=r.item.id,
            note_id=r.item.note_id,
            task=r.item.task,
            created_at=r.item.created_at,
            title=r.title,
        )
        for r in rows
    ]


@app.delete("/action-items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_action_item(
    item_id: int,
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Response:
    await remove_action_item(session, user_id, item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/settings", response_model=UserSettingsDTO)
async def read_settings(
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> UserSettingsDTO:
    return UserSettingsDTO.from_settings(await get_user_settings(session, user_id))


@app.put("/settings", response_model=UserSettingsDTO)
async def update_settings(
    request: UpdateSettingsRequest,
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> UserSettingsDTO:
    """Save provider preferences."""
    effective = await set_user_settings(
        session,
        user_id,
        llm_provider=request.llm_provider.value,
        openai_model=request.openai_model,
        together_model=request.together_model,
        gemini_model=request.gemini_model,
        transcription_model_identifier=(
            request.transcription_model_identifier.value
            if request.transcription_model_identifier
            else None
        ),
    )
    return UserSettingsDTO.from_settings(effective)


@app.get("/models/{provider}", response_model=ModelListResponse)
async def get_models(
    provider: Literal["openai", "together", "gemini"],
    user_id: str = Depends(get_current_user),
) -> ModelListResponse:
    """Models a provider offers, for the settings page."""
    if provider == "openai":
        items = [{"id": model_id, "name": model_id} for model_id in await list_openai_models()]
    elif provider == "together":
        items = await list_together_models()
    else:
        items = await list_gemini_models()
    return ModelListResponse(provider=provider, models=items)


@app.get("/files/{storage_id}")
async def get_file(
    storage_id: str,
    storage: ObjectStorage = Depends(get_storage),
) -> FileResponse:
    """Serve stored audio. Unauthenticated: hosted transcription models fetch it by URL."""
    try:
        path = storage.path_for(storage_id)
    except StorageError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return FileResponse(path)


@app.get("/notes/{note_id}/audio")
async def get_note_audio(
    note_id: int,
    user_id: str = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
) -> FileResponse:
    """The recording behind a note, for playback in the detail view."""
    result = await session.execute(
        select(models.Note.user_id, models.Note.audio_file_id).where(models.Note.id == note_id)
    )
    row = result.first()
    if row is None:
        raise NoteNotFoundError(f"Note {note_id} not found")
    if row.user_id != user_id:
        raise NoteOwnershipError("Not your note.")
    try:
        path = storage.path_for(row.audio_file_id)
    except StorageError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audio no longer available")
    return FileResponse(path)
