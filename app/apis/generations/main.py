from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.apis.deps import (
    CurrentUser,
    get_health,
    get_processor,
    get_queue,
    raise_api_error,
)
from app.core.config import settings
from app.core.db.base import get_session
from app.core.db.schemas.auth import User
from app.core.db_services import (
    ActiveGenerationExistsError,
    ErrorLogService,
    GenerationService,
    utcnow,
)
from app.core.logging import generation_context, get_logger
from app.core.task_queue import BackgroundQueue, enqueue_generation_processing
from app.modules.auth import current_superuser
from app.modules.generation.models import BatchResult
from app.modules.generation.processor import GenerationProcessor
from app.modules.generation.sanitizer import describe_source_text
from app.modules.openrouter.health import HealthSnapshot, ServiceHealth
from .schemas import (
    CancelGenerationRequest,
    CreateGenerationRequest,
    GenerationDetail,
    GenerationEnqueued,
    GenerationList,
    GenerationRead,
)


router = APIRouter()
logger = get_logger(__name__)

SuperUser = Annotated[User, Depends(current_superuser)]


@router.post(
    f"/{settings.app.version}/generations",
    response_model=GenerationEnqueued,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["generations"],
)
async def create_generation(
    req: CreateGenerationRequest,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
    processor: GenerationProcessor = Depends(get_processor),
    queue: BackgroundQueue = Depends(get_queue),
) -> GenerationEnqueued:
    sanitized, length, sha256 = describe_source_text(req.sanitized_input_text)
    min_length = settings.generation.min_text_length
    max_length = settings.generation.max_text_length
    if not min_length <= length <= max_length:
        raise_api_error(
            status.HTTP_400_BAD_REQUEST,
            "length_out_of_range",
            f"Sanitized text must be between {min_length} and {max_length} "
            f"characters, got {length}",
        )

    errors = ErrorLogService(session)

    async def reject(status_code: int, code: str, message: str) -> NoReturn:
        await errors.log_generation_error(
            user_id=user.id,
            model=req.model,
            error_code=code,
            error_message=message,
            source_text_hash=sha256,
            source_text_length=length,
        )
        raise_api_error(status_code, code, message)

    db = GenerationService(session)
    if await db.has_active_generation(user.id):
        await reject(
            status.HTTP_409_CONFLICT,
            "active_request_exists",
            "An active generation already exists for this user",
        )

    quota = settings.generation.hourly_quota
    recent = await db.count_created_since(user.id, utcnow() - timedelta(hours=1))
    if recent >= quota:
        await reject(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "hourly_quota_reached",
            f"Hourly generation limit ({quota} requests) has been exceeded",
        )

    try:
        generation = await db.create_pending(
            user_id=user.id,
            model=req.model,
            sanitized_input_text=sanitized,
            sanitized_input_length=length,
            sanitized_input_sha256=sha256,
            temperature=req.temperature,
        )
    except ActiveGenerationExistsError as e:
        await reject(status.HTTP_409_CONFLICT, "active_request_exists", str(e))
    except SQLAlchemyError as e:
        logger.error(f"Failed to create generation: {e}")
        raise_api_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "db_error", "Failed to create generation"
        )

    enqueue_generation_processing(
        generation_id=generation.id, processor=processor, target=queue
    )
    logger.info(
        "Generation enqueued", extra=generation_context(generation.id, user.id)
    )
    return GenerationEnqueued(
        id=generation.id, status=generation.status, enqueued_at=generation.created_at
    )


@router.get(
    f"/{settings.app.version}/generations",
    response_model=GenerationList,
    tags=["generations"],
)
async def list_generations(
    user: CurrentUser,
    include_all: bool = Query(
        default=False, alias="all", description="Include finished generations"
    ),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> GenerationList:
    rows = await GenerationService(session).list_for_owner(
        user.id, active_only=not include_all, limit=limit
    )
    return GenerationList(items=[GenerationRead.model_validate(r) for r in rows])


@router.post(
    f"/{settings.app.version}/generations/process",
    response_model=BatchResult,
    tags=["generations"],
)
async def process_pending(
    _: SuperUser,
    processor: GenerationProcessor = Depends(get_processor),
) -> BatchResult:
    try:
        return await processor.process_pending_generations()
    except Exception as e:
        logger.exception("Batch processing failed")
        raise_api_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "processing_error",
            f"Failed to process pending generations: {e}",
        )


@router.get(
    f"/{settings.app.version}/generations/health",
    response_model=HealthSnapshot,
    tags=["generations"],
)
async def generation_health(
    health: ServiceHealth = Depends(get_health),
) -> HealthSnapshot:
    return health.snapshot()


@router.get(
    f"/{settings.app.version}/generations/{{generation_id}}",
    response_model=GenerationDetail,
    tags=["generations"],
)
async def get_generation(
    generation_id: uuid.UUID,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> GenerationDetail:
    db = GenerationService(session)
    generation = await db.get_for_owner(generation_id, user.id)
    if generation is None:
        raise_api_error(
            status.HTTP_404_NOT_FOUND, "generation_not_found", "Generation not found"
        )
    summary = await db.candidates_summary(generation.id)
    return GenerationDetail(
        **GenerationRead.model_validate(generation).model_dump(),
        candidates_summary=summary,
    )


@router.patch(
    f"/{settings.app.version}/generations/{{generation_id}}",
    response_model=GenerationRead,
    tags=["generations"],
)
async def cancel_generation(
    generation_id: uuid.UUID,
    req: CancelGenerationRequest,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> GenerationRead:
    db = GenerationService(session)
    generation = await db.get_for_owner(generation_id, user.id)
    if generation is None:
        raise_api_error(
            status.HTTP_404_NOT_FOUND, "generation_not_found", "Generation not found"
        )

    if not await db.cancel(generation_id, user.id):
        raise_api_error(
            status.HTTP_409_CONFLICT,
            "invalid_transition",
            f"Generation in status '{generation.status.value}' cannot be cancelled",
        )

    await session.refresh(generation)
    logger.info("Generation cancelled", extra=generation_context(generation_id, user.id))
    return GenerationRead.model_validate(generation)
