from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.db.schemas.generations import GenerationStatus


class CreateGenerationRequest(BaseModel):
    model: str = Field(..., min_length=1, max_length=200)
    sanitized_input_text: str = Field(..., description="Source text to learn from")
    temperature: Optional[float] = Field(default=None, ge=0, le=2)

    @field_validator("model")
    @classmethod
    def _strip_model(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("model must not be blank")
        return value

    @field_validator("temperature")
    @classmethod
    def _round_temperature(cls, value: Optional[float]) -> Optional[float]:
        return None if value is None else round(value, 2)


class GenerationEnqueued(BaseModel):
    id: uuid.UUID
    status: GenerationStatus
    enqueued_at: datetime


class GenerationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    model: str
    status: GenerationStatus
    sanitized_input_length: Optional[int] = None
    temperature: Optional[float] = None
    prompt_tokens: Optional[int] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class GenerationDetail(GenerationRead):
    candidates_summary: dict[str, int] = Field(default_factory=dict)


class GenerationList(BaseModel):
    items: list[GenerationRead] = Field(default_factory=list)


class CancelGenerationRequest(BaseModel):
    status: Literal["cancelled"]
