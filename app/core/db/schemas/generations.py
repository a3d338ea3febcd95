from __future__ import annotations

from datetime import datetime
import uuid
from typing import TYPE_CHECKING, Optional
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Uuid,
    func,
    text as sa_text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.core.db.base import Base

if TYPE_CHECKING:
    from .auth import User


class GenerationStatus(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_GENERATION_STATUSES = (GenerationStatus.PENDING, GenerationStatus.RUNNING)
ACTIVE_STATUS_CLAUSE = "status IN ('pending', 'running')"


class CandidateStatus(enum.Enum):
    PROPOSED = "proposed"
    EDITED = "edited"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


EDITABLE_CANDIDATE_STATUSES = (CandidateStatus.PROPOSED, CandidateStatus.EDITED)


class CardOrigin(enum.Enum):
    MANUAL = "manual"
    AI_FULL = "ai-full"
    AI_EDITED = "ai-edited"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


card_tags = Table(
    "card_tags",
    Base.metadata,
    Column("card_id", ForeignKey("flashcards.id"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id"), primary_key=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class Generation(Base):
    __tablename__ = "generations"
    __table_args__ = (
        # One pending or running generation per user
        Index(
            "generations_active_per_user_unique",
            "user_id",
            unique=True,
            postgresql_where=sa_text(ACTIVE_STATUS_CLAUSE),
            sqlite_where=sa_text(ACTIVE_STATUS_CLAUSE),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    model: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[GenerationStatus] = mapped_column(
        Enum(
            GenerationStatus,
            name="generation_status",
            values_callable=_enum_values,
        ),
        default=GenerationStatus.PENDING,
        nullable=False,
        index=True,
    )
    sanitized_input_text: Mapped[str] = mapped_column(Text, nullable=False)
    sanitized_input_length: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )
    sanitized_input_sha256: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    prompt_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    error_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="generations")
    candidates: Mapped[list["GenerationCandidate"]] = relationship(
        "GenerationCandidate",
        back_populates="generation",
        cascade="all, delete-orphan",
    )


class GenerationCandidate(Base):
    __tablename__ = "generation_candidates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    generation_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("generations.id"), nullable=False, index=True
    )
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    front: Mapped[str] = mapped_column(String(200), nullable=False)
    back: Mapped[str] = mapped_column(String(500), nullable=False)
    front_back_fingerprint: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    status: Mapped[CandidateStatus] = mapped_column(
        Enum(CandidateStatus, name="candidate_status", values_callable=_enum_values),
        default=CandidateStatus.PROPOSED,
        nullable=False,
    )
    accepted_card_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("flashcards.id"), nullable=True, unique=True
    )
    suggested_category_id: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )
    suggested_tags: Mapped[list[int]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        server_default=sa_text("'[]'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    generation: Mapped["Generation"] = relationship(
        "Generation", back_populates="candidates"
    )


class Flashcard(Base):
    __tablename__ = "flashcards"
    __table_args__ = (
        Index(
            "flashcards_owner_fingerprint_unique",
            "owner_id",
            "front_back_fingerprint",
            unique=True,
            postgresql_where=sa_text("deleted_at IS NULL"),
            sqlite_where=sa_text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    front: Mapped[str] = mapped_column(String(200), nullable=False)
    back: Mapped[str] = mapped_column(String(500), nullable=False)
    origin: Mapped[CardOrigin] = mapped_column(
        Enum(CardOrigin, name="card_origin", values_callable=_enum_values),
        nullable=False,
    )
    front_back_fingerprint: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    # "metadata" is reserved on declarative classes
    card_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSON, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    user: Mapped["User"] = relationship("User", back_populates="flashcards")
    tags: Mapped[list["Tag"]] = relationship("Tag", secondary=card_tags)


class GenerationErrorLog(Base):
    __tablename__ = "generation_error_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    model: Mapped[str] = mapped_column(String, nullable=False)
    error_code: Mapped[str] = mapped_column(String(64), nullable=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    source_text_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    source_text_length: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )


__all__ = [
    "ACTIVE_GENERATION_STATUSES",
    "EDITABLE_CANDIDATE_STATUSES",
    "CandidateStatus",
    "CardOrigin",
    "Flashcard",
    "Generation",
    "GenerationCandidate",
    "GenerationErrorLog",
    "GenerationStatus",
    "Tag",
    "card_tags",
]
