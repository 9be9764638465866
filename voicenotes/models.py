"""Core SQLAlchemy models (2.x style) for notes, action items and user settings.

Using PostgreSQL with pgvector for transcript embeddings.
"""

from __future__ import annotations

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .config import settings


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Note(Base):
    """A single uploaded voice note and everything derived from it."""
    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    audio_file_id: Mapped[str] = mapped_column(String(255), nullable=False)
    audio_file_url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str | None] = mapped_column(String(500))
    transcription: Mapped[str | None] = mapped_column(Text)
    summary: Mapped[str | None] = mapped_column(Text)
    embedding: Mapped[list[float] | None] = mapped_column(Vector(settings.embeddings.dim), nullable=True)
    embedding_error: Mapped[str | None] = mapped_column(Text)

    # Pipeline progress flags
    generating_transcript: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    generating_title: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    generating_summary: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    generating_action_items: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    generating_embedding: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # What actually ran for this note, denormalized so later settings changes don't rewrite history
    llm_provider: Mapped[str | None] = mapped_column(String(50))
    openai_model: Mapped[str | None] = mapped_column(String(255))
    together_model: Mapped[str | None] = mapped_column(String(255))
    gemini_model: Mapped[str | None] = mapped_column(String(255))
    transcription_model: Mapped[str | None] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    action_items: Mapped[list[ActionItem]] = relationship(
        "ActionItem",
        back_populates="note",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_notes_user_created_at", "user_id", "created_at"),
    )

    @property
    def is_processing(self) -> bool:
        return (
            self.generating_transcript
            or self.generating_title
            or self.generating_summary
            or self.generating_action_items
            or self.generating_embedding
        )


class ActionItem(Base):
    """A task extracted from a note's transcript."""
    __tablename__ = "action_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    note_id: Mapped[int] = mapped_column(ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    task: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)

    # Relationship
    note: Mapped[Note] = relationship("Note", back_populates="action_items")


class UserSettings(Base):
    """Per-user provider preferences."""
    __tablename__ = "user_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    llm_provider: Mapped[str | None] = mapped_column(String(50))
    openai_model: Mapped[str | None] = mapped_column(String(255))
    together_model: Mapped[str | None] = mapped_column(String(255))
    gemini_model: Mapped[str | None] = mapped_column(String(255))
    transcription_model_identifier: Mapped[str | None] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )
