from __future__ import annotations

from typing import Annotated, NoReturn

from fastapi import Depends, HTTPException, Request

from app.core.db.schemas.auth import User
from app.core.task_queue import BackgroundQueue
from app.modules.auth import current_active_user
from app.modules.generation.processor import GenerationProcessor
from app.modules.openrouter.health import ServiceHealth


CurrentUser = Annotated[User, Depends(current_active_user)]


def get_processor(request: Request) -> GenerationProcessor:
    processor = getattr(request.app.state, "processor", None)
    if processor is None:
        raise HTTPException(
            status_code=503,
            detail={
                "code": "unexpected_error",
                "message": "Generation processor is not available",
            },
        )
    return processor


def get_health(request: Request) -> ServiceHealth:
    return request.app.state.health


def get_queue(request: Request) -> BackgroundQueue:
    return request.app.state.queue


def raise_api_error(status_code: int, code: str, message: str) -> NoReturn:
    """Raise an ``HTTPException`` with the ``{code, message}`` error body."""
    raise HTTPException(status_code=status_code, detail={"code": code, "message": message})
