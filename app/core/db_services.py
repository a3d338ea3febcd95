"""Database service classes for generations, candidates, tags and error logs."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
import uuid
from typing import Iterable, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError

from app.core.db.schemas.generations import (
    ACTIVE_GENERATION_STATUSES,
    EDITABLE_CANDIDATE_STATUSES,
    CandidateStatus,
    CardOrigin,
    Flashcard,
    Generation,
    GenerationCandidate,
    GenerationErrorLog,
    GenerationStatus,
    Tag,
)
from app.modules.generation.models import AvailableTag, ValidatedFlashcard
from app.modules.generation.validator import compute_fingerprint


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CandidateStateError(Exception):
    """The candidate is not in a state that allows the requested change."""

    def __init__(self, status: CandidateStatus, action: str):
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} a candidate in status '{status.value}'")


class ActiveGenerationExistsError(Exception):
    """The user already has a pending or running generation."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__("An active generation already exists for this user")


class FingerprintConflictError(Exception):
    """A live flashcard with the same content already exists for the owner."""

    def __init__(self, fingerprint: str, flashcard_id: uuid.UUID):
        self.fingerprint = fingerprint
        self.flashcard_id = flashcard_id
        super().__init__("A flashcard with the same front and back already exists")


class GenerationService:
    """Generation rows and their guarded status transitions.

    Every status write is conditional on the expected prior status, so a write
    that lost a race matches no row and reports ``False``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_pending(
        self,
        *,
        user_id: int,
        model: str,
        sanitized_input_text: str,
        sanitized_input_length: int,
        sanitized_input_sha256: str,
        temperature: Optional[float] = None,
    ) -> Generation:
        generation = Generation(
            user_id=user_id,
            model=model,
            status=GenerationStatus.PENDING,
            sanitized_input_text=sanitized_input_text,
            sanitized_input_length=sanitized_input_length,
            sanitized_input_sha256=sanitized_input_sha256,
            temperature=temperature,
        )
        self.session.add(generation)
        try:
            await self.session.commit()
        except IntegrityError as e:
            # generations_active_per_user_unique
            await self.session.rollback()
            raise ActiveGenerationExistsError(user_id) from e
        await self.session.refresh(generation)
        return generation

    async def get(self, generation_id: uuid.UUID) -> Optional[Generation]:
        result = await self.session.execute(
            select(Generation).where(Generation.id == generation_id)
        )
        return result.scalar_one_or_none()

    async def get_for_owner(
        self, generation_id: uuid.UUID, user_id: int
    ) -> Optional[Generation]:
        result = await self.session.execute(
            select(Generation).where(
                Generation.id == generation_id, Generation.user_id == user_id
            )
        )
        return result.scalar_one_or_none()

    async def list_for_owner(
        self, user_id: int, *, active_only: bool = True, limit: int = 20
    ) -> list[Generation]:
        stmt = select(Generation).where(Generation.user_id == user_id)
        if active_only:
            stmt = stmt.where(Generation.status.in_(ACTIVE_GENERATION_STATUSES))
        stmt = stmt.order_by(Generation.created_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def has_active_generation(self, user_id: int) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(Generation)
            .where(
                Generation.user_id == user_id,
                Generation.status.in_(ACTIVE_GENERATION_STATUSES),
            )
        )
        return (result.scalar_one() or 0) > 0

    async def count_created_since(self, user_id: int, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Generation)
            .where(Generation.user_id == user_id, Generation.created_at >= since)
        )
        return result.scalar_one() or 0

    async def list_pending(self) -> list[Generation]:
        result = await self.session.execute(
            select(Generation)
            .where(Generation.status == GenerationStatus.PENDING)
            .order_by(Generation.created_at.asc())
        )
        return list(result.scalars().all())

    async def _transition(
        self,
        generation_id: uuid.UUID,
        expected: Iterable[GenerationStatus],
        **values,
    ) -> bool:
        result = await self.session.execute(
            update(Generation)
            .where(
                Generation.id == generation_id,
                Generation.status.in_(list(expected)),
            )
            .values(updated_at=utcnow(), **values)
        )
        return result.rowcount == 1

    async def mark_running(self, generation_id: uuid.UUID) -> bool:
        """``pending -> running``, stamping ``started_at``."""
        moved = await self._transition(
            generation_id,
            (GenerationStatus.PENDING,),
            status=GenerationStatus.RUNNING,
            started_at=utcnow(),
        )
        await self.session.commit()
        return moved

    async def complete_with_candidates(
        self,
        generation: Generation,
        cards: Sequence[ValidatedFlashcard],
        *,
        prompt_tokens: Optional[int] = None,
    ) -> bool:
        """Insert ``proposed`` candidates and move ``running -> succeeded`` atomically.

        Nothing is written when the generation is no longer running.
        """
        self.session.add_all(
            [
                GenerationCandidate(
                    generation_id=generation.id,
                    owner_id=generation.user_id,
                    front=card.front,
                    back=card.back,
                    front_back_fingerprint=compute_fingerprint(card.front, card.back),
                    status=CandidateStatus.PROPOSED,
                    suggested_tags=list(card.tag_ids),
                )
                for card in cards
            ]
        )
        await self.session.flush()

        moved = await self._transition(
            generation.id,
            (GenerationStatus.RUNNING,),
            status=GenerationStatus.SUCCEEDED,
            completed_at=utcnow(),
            prompt_tokens=prompt_tokens,
            error_code=None,
            error_message=None,
        )
        if not moved:
            await self.session.rollback()
            return False

        await self.session.commit()
        return True

    async def mark_failed(
        self, generation_id: uuid.UUID, error_code: str, error_message: str
    ) -> bool:
        """``running -> failed``; a row that never started stays ``pending``."""
        moved = await self._transition(
            generation_id,
            (GenerationStatus.RUNNING,),
            status=GenerationStatus.FAILED,
            completed_at=utcnow(),
            error_code=error_code,
            error_message=error_message,
        )
        await self.session.commit()
        return moved

    async def cancel(self, generation_id: uuid.UUID, user_id: int) -> bool:
        """``pending|running -> cancelled`` for the owner; ``False`` if not active."""
        result = await self.session.execute(
            update(Generation)
            .where(
                Generation.id == generation_id,
                Generation.user_id == user_id,
                Generation.status.in_(ACTIVE_GENERATION_STATUSES),
            )
            .values(
                status=GenerationStatus.CANCELLED,
                completed_at=utcnow(),
                updated_at=utcnow(),
            )
        )
        await self.session.commit()
        return result.rowcount == 1

    async def candidates_summary(self, generation_id: uuid.UUID) -> dict[str, int]:
        result = await self.session.execute(
            select(GenerationCandidate.status, func.count())
            .where(GenerationCandidate.generation_id == generation_id)
            .group_by(GenerationCandidate.status)
        )
        counts = Counter({status.value: 0 for status in CandidateStatus})
        for status, count in result.all():
            counts[status.value] = count
        summary = dict(counts)
        summary["total"] = sum(counts.values())
        return summary


class TagService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_available_tags(self) -> list[AvailableTag]:
        result = await self.session.execute(select(Tag).order_by(Tag.name.asc()))
        return [AvailableTag.model_validate(tag) for tag in result.scalars().all()]

    async def list_tags(
        self, *, search: Optional[str] = None, limit: int = 50
    ) -> list[Tag]:
        stmt = select(Tag)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(Tag.name.ilike(pattern), Tag.slug.ilike(pattern)))
        stmt = stmt.order_by(Tag.name.asc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class CandidateService:
    """Curation of AI-proposed cards by their owner."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_generation(
        self,
        owner_id: int,
        *,
        generation_id: Optional[uuid.UUID] = None,
        statuses: Optional[Sequence[CandidateStatus]] = None,
        limit: int = 50,
        cursor: Optional[uuid.UUID] = None,
    ) -> list[GenerationCandidate]:
        stmt = select(GenerationCandidate).where(
            GenerationCandidate.owner_id == owner_id
        )
        if generation_id is not None:
            stmt = stmt.where(GenerationCandidate.generation_id == generation_id)
        if statuses:
            stmt = stmt.where(GenerationCandidate.status.in_(list(statuses)))
        if cursor is not None:
            stmt = stmt.where(GenerationCandidate.id > cursor)
        stmt = stmt.order_by(GenerationCandidate.id.asc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_for_owner(
        self, candidate_id: uuid.UUID, owner_id: int
    ) -> Optional[GenerationCandidate]:
        result = await self.session.execute(
            select(GenerationCandidate).where(
                GenerationCandidate.id == candidate_id,
                GenerationCandidate.owner_id == owner_id,
            )
        )
        return result.scalar_one_or_none()

    async def update_for_owner(
        self,
        candidate_id: uuid.UUID,
        owner_id: int,
        *,
        front: Optional[str] = None,
        back: Optional[str] = None,
    ) -> Optional[GenerationCandidate]:
        candidate = await self.get_for_owner(candidate_id, owner_id)
        if candidate is None:
            return None
        if candidate.status not in EDITABLE_CANDIDATE_STATUSES:
            raise CandidateStateError(candidate.status, "edit")

        if front is not None:
            candidate.front = front
        if back is not None:
            candidate.back = back
        candidate.front_back_fingerprint = compute_fingerprint(
            candidate.front, candidate.back
        )
        candidate.status = CandidateStatus.EDITED
        candidate.updated_at = utcnow()
        await self.session.commit()
        await self.session.refresh(candidate)
        return candidate

    async def reject_for_owner(
        self, candidate_id: uuid.UUID, owner_id: int
    ) -> Optional[GenerationCandidate]:
        candidate = await self.get_for_owner(candidate_id, owner_id)
        if candidate is None:
            return None
        if candidate.status not in EDITABLE_CANDIDATE_STATUSES:
            raise CandidateStateError(candidate.status, "reject")

        candidate.status = CandidateStatus.REJECTED
        candidate.updated_at = utcnow()
        await self.session.commit()
        await self.session.refresh(candidate)
        return candidate

    async def _live_card_with(
        self, owner_id: int, fingerprint: str
    ) -> Optional[uuid.UUID]:
        result = await self.session.execute(
            select(Flashcard.id).where(
                Flashcard.owner_id == owner_id,
                Flashcard.front_back_fingerprint == fingerprint,
                Flashcard.deleted_at.is_(None),
            )
        )
        return result.scalars().first()

    async def accept_for_owner(
        self,
        candidate_id: uuid.UUID,
        owner_id: int,
        *,
        tag_ids: Optional[Sequence[int]] = None,
        origin: Optional[CardOrigin] = None,
    ) -> Optional[tuple[GenerationCandidate, Flashcard]]:
        """Turn a candidate into a real flashcard owned by the same user."""
        candidate = await self.get_for_owner(candidate_id, owner_id)
        if candidate is None:
            return None
        if candidate.status not in EDITABLE_CANDIDATE_STATUSES:
            raise CandidateStateError(candidate.status, "accept")

        fingerprint = candidate.front_back_fingerprint or compute_fingerprint(
            candidate.front, candidate.back
        )
        duplicate_id = await self._live_card_with(owner_id, fingerprint)
        if duplicate_id is not None:
            raise FingerprintConflictError(fingerprint, duplicate_id)

        if origin is None:
            origin = (
                CardOrigin.AI_EDITED
                if candidate.status == CandidateStatus.EDITED
                else CardOrigin.AI_FULL
            )

        wanted = list(tag_ids) if tag_ids is not None else list(candidate.suggested_tags or [])
        tags: list[Tag] = []
        if wanted:
            result = await self.session.execute(select(Tag).where(Tag.id.in_(wanted)))
            tags = list(result.scalars().all())

        card = Flashcard(
            owner_id=owner_id,
            front=candidate.front,
            back=candidate.back,
            origin=origin,
            front_back_fingerprint=fingerprint,
            card_metadata={
                "generation_id": str(candidate.generation_id),
                "candidate_id": str(candidate.id),
            },
            tags=tags,
        )
        self.session.add(card)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # flashcards_owner_fingerprint_unique, lost to a concurrent accept
            await self.session.rollback()
            duplicate_id = await self._live_card_with(owner_id, fingerprint)
            if duplicate_id is None:
                raise
            raise FingerprintConflictError(fingerprint, duplicate_id) from e

        candidate.accepted_card_id = card.id
        candidate.status = CandidateStatus.ACCEPTED
        candidate.updated_at = utcnow()
        await self.session.commit()
        await self.session.refresh(candidate)
        # Leave the in-memory tag list alone; only pull server defaults.
        await self.session.refresh(card, attribute_names=["created_at", "updated_at"])
        return candidate, card


class ErrorLogService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def log_generation_error(
        self,
        *,
        user_id: int,
        model: str,
        error_code: str,
        error_message: str,
        source_text_hash: str,
        source_text_length: int,
    ) -> GenerationErrorLog:
        entry = GenerationErrorLog(
            user_id=user_id,
            model=model,
            error_code=error_code,
            error_message=error_message,
            source_text_hash=source_text_hash,
            source_text_length=source_text_length,
        )
        self.session.add(entry)
        await self.session.commit()
        await self.session.refresh(entry)
        return entry

    async def list_recent(
        self, *, user_id: Optional[int] = None, limit: int = 50
    ) -> list[GenerationErrorLog]:
        stmt = select(GenerationErrorLog)
        if user_id is not None:
            stmt = stmt.where(GenerationErrorLog.user_id == user_id)
        stmt = stmt.order_by(GenerationErrorLog.created_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
