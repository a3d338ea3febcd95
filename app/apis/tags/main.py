from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.apis.deps import CurrentUser
from app.core.config import settings
from app.core.db.base import get_session
from app.core.db_services import TagService


router = APIRouter()


class TagRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    description: Optional[str] = None


class TagList(BaseModel):
    items: list[TagRead] = Field(default_factory=list)


@router.get(f"/{settings.app.version}/tags", response_model=TagList, tags=["tags"])
async def list_tags(
    _: CurrentUser,
    search: Optional[str] = Query(default=None, max_length=64),
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
) -> TagList:
    rows = await TagService(session).list_tags(search=search, limit=limit)
    return TagList(items=[TagRead.model_validate(r) for r in rows])
