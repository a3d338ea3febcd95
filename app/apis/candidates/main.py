from __future__ import annotations

import uuid
from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.apis.deps import CurrentUser, raise_api_error
from app.core.config import settings
from app.core.db.base import get_session
from app.core.db.schemas.generations import CandidateStatus
from app.core.db_services import (
    CandidateService,
    CandidateStateError,
    FingerprintConflictError,
)
from app.core.logging import get_logger
from .schemas import (
    AcceptCandidateRequest,
    AcceptCandidateResponse,
    CandidateList,
    CandidateRead,
    FlashcardRead,
    UpdateCandidateRequest,
)


router = APIRouter()
logger = get_logger(__name__)


def _not_found() -> NoReturn:
    raise_api_error(
        status.HTTP_404_NOT_FOUND, "candidate_not_found", "Generation candidate not found"
    )


@router.get(
    f"/{settings.app.version}/generation-candidates",
    response_model=CandidateList,
    tags=["generation-candidates"],
)
async def list_candidates(
    user: CurrentUser,
    generation_id: Optional[uuid.UUID] = Query(default=None),
    status_filter: Optional[list[CandidateStatus]] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=100),
    cursor: Optional[uuid.UUID] = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> CandidateList:
    rows = await CandidateService(session).list_for_generation(
        user.id,
        generation_id=generation_id,
        statuses=status_filter,
        limit=limit,
        cursor=cursor,
    )
    next_cursor = rows[-1].id if len(rows) == limit else None
    return CandidateList(
        items=[CandidateRead.model_validate(r) for r in rows], next_cursor=next_cursor
    )


@router.patch(
    f"/{settings.app.version}/generation-candidates/{{candidate_id}}",
    response_model=CandidateRead,
    tags=["generation-candidates"],
)
async def update_candidate(
    candidate_id: uuid.UUID,
    req: UpdateCandidateRequest,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> CandidateRead:
    try:
        candidate = await CandidateService(session).update_for_owner(
            candidate_id, user.id, front=req.front, back=req.back
        )
    except CandidateStateError as e:
        raise_api_error(status.HTTP_409_CONFLICT, "invalid_transition", str(e))
    if candidate is None:
        _not_found()
    return CandidateRead.model_validate(candidate)


@router.post(
    f"/{settings.app.version}/generation-candidates/{{candidate_id}}/accept",
    response_model=AcceptCandidateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["generation-candidates"],
)
async def accept_candidate(
    candidate_id: uuid.UUID,
    user: CurrentUser,
    req: Optional[AcceptCandidateRequest] = None,
    session: AsyncSession = Depends(get_session),
) -> AcceptCandidateResponse:
    req = req or AcceptCandidateRequest()
    try:
        accepted = await CandidateService(session).accept_for_owner(
            candidate_id, user.id, tag_ids=req.tag_ids, origin=req.card_origin()
        )
    except CandidateStateError as e:
        raise_api_error(status.HTTP_422_UNPROCESSABLE_ENTITY, "invalid_transition", str(e))
    except FingerprintConflictError as e:
        logger.info(f"Accept blocked by duplicate flashcard {e.flashcard_id}")
        raise_api_error(status.HTTP_409_CONFLICT, "fingerprint_conflict", str(e))
    if accepted is None:
        _not_found()

    candidate, card = accepted
    return AcceptCandidateResponse(
        candidate=CandidateRead.model_validate(candidate),
        flashcard=FlashcardRead(
            id=card.id,
            front=card.front,
            back=card.back,
            origin=card.origin,
            tag_ids=[tag.id for tag in card.tags],
            created_at=card.created_at,
        ),
    )


@router.post(
    f"/{settings.app.version}/generation-candidates/{{candidate_id}}/reject",
    response_model=CandidateRead,
    tags=["generation-candidates"],
)
async def reject_candidate(
    candidate_id: uuid.UUID,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> CandidateRead:
    try:
        candidate = await CandidateService(session).reject_for_owner(candidate_id, user.id)
    except CandidateStateError as e:
        raise_api_error(status.HTTP_409_CONFLICT, "invalid_transition", str(e))
    if candidate is None:
        _not_found()
    return CandidateRead.model_validate(candidate)
