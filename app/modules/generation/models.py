"""Pydantic models shared by the generation pipeline."""

from pydantic import BaseModel, ConfigDict, Field


class AvailableTag(BaseModel):
    """Read-only tag projection offered to the model as a catalog."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str


class ValidatedFlashcard(BaseModel):
    """A generated card after trimming, truncation and tag sanitizing."""

    front: str
    back: str
    tag_ids: list[int] = Field(default_factory=list)


class ProcessGenerationResult(BaseModel):
    success: bool
    candidates_created: int = 0
    error: str | None = None


class BatchResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
