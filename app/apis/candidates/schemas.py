from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.core.db.schemas.generations import CandidateStatus, CardOrigin
from app.modules.generation.validator import MAX_BACK_LENGTH, MAX_FRONT_LENGTH


class CandidateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    generation_id: uuid.UUID
    front: str
    back: str
    status: CandidateStatus
    accepted_card_id: Optional[uuid.UUID] = None
    suggested_category_id: Optional[int] = None
    suggested_tags: list[int] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None


class CandidateList(BaseModel):
    items: list[CandidateRead] = Field(default_factory=list)
    next_cursor: Optional[uuid.UUID] = None


class UpdateCandidateRequest(BaseModel):
    front: Optional[str] = Field(default=None, max_length=MAX_FRONT_LENGTH)
    back: Optional[str] = Field(default=None, max_length=MAX_BACK_LENGTH)

    @field_validator("front", "back")
    @classmethod
    def _not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @model_validator(mode="after")
    def _something_to_update(self) -> "UpdateCandidateRequest":
        if self.front is None and self.back is None:
            raise ValueError("front or back is required")
        return self


class AcceptCandidateRequest(BaseModel):
    tag_ids: Optional[list[int]] = None
    origin: Optional[Literal["ai-full", "ai-edited"]] = None

    @field_validator("tag_ids")
    @classmethod
    def _positive_ids(cls, value: Optional[list[int]]) -> Optional[list[int]]:
        if value is None:
            return value
        if any(tag_id <= 0 for tag_id in value):
            raise ValueError("tag ids must be positive integers")
        return list(dict.fromkeys(value))

    def card_origin(self) -> Optional[CardOrigin]:
        return CardOrigin(self.origin) if self.origin else None


class FlashcardRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    front: str
    back: str
    origin: CardOrigin
    tag_ids: list[int] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class AcceptCandidateResponse(BaseModel):
    candidate: CandidateRead
    flashcard: FlashcardRead
