"""Drives generation rows through ``pending -> running -> succeeded|failed``.

``process_generation`` never raises: every failure ends as a
``generation_error_logs`` entry and an unsuccessful result, and a running row
moves to ``failed``.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.db.schemas.generations import Generation
from app.core.db_services import ErrorLogService, GenerationService, TagService
from app.core.logging import generation_context, get_logger
from app.modules.generation.models import (
    AvailableTag,
    BatchResult,
    ProcessGenerationResult,
    ValidatedFlashcard,
)
from app.modules.generation.prompts import (
    build_flashcards_response_format,
    build_user_prompt,
    get_system_prompt,
)
from app.modules.generation.validator import validate_flashcard
from app.modules.openrouter.errors import OpenRouterError, OpenRouterRateLimitError

if TYPE_CHECKING:
    from app.modules.openrouter.client import OpenRouterClient, StructuredCompletion

logger = get_logger(__name__)

CANCELLED_WHILE_PROCESSING = "Generation was cancelled while processing"
NO_LONGER_PENDING = "Generation is no longer pending"


class GenerationProcessingError(Exception):
    def __init__(self, message: str, code: str = "PROCESSING_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class TagCatalogError(GenerationProcessingError):
    def __init__(self, message: str):
        super().__init__(message, "TAG_FETCH_FAILED")


class NoValidCandidatesError(GenerationProcessingError):
    def __init__(self, message: str = "No valid flashcards were generated"):
        super().__init__(message, "NO_VALID_CANDIDATES")


def error_code_for(error: Exception) -> str:
    if isinstance(error, (OpenRouterError, GenerationProcessingError)):
        return error.code
    return "UNEXPECTED_ERROR"


class GenerationProcessor:
    def __init__(
        self,
        client: "OpenRouterClient",
        *,
        session_maker: async_sessionmaker[AsyncSession],
        concurrency: int = 4,
        default_temperature: float = 0.3,
        rate_limit_max_delay: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.session_maker = session_maker
        self.concurrency = max(1, int(concurrency))
        self.default_temperature = default_temperature
        self.rate_limit_max_delay = rate_limit_max_delay
        self._sleep = sleep

    async def process_generation(self, generation: Generation) -> ProcessGenerationResult:
        """Run one generation end to end.

        Database work happens in short sessions; none is held open across the
        completion call.
        """
        log_extra = generation_context(generation.id, generation.user_id)

        try:
            async with self.session_maker() as session:
                started = await GenerationService(session).mark_running(generation.id)
            if not started:
                logger.warning(
                    "Skipping generation that is no longer pending", extra=log_extra
                )
                return ProcessGenerationResult(success=False, error=NO_LONGER_PENDING)
            logger.info("Generation running", extra=log_extra)

            async with self.session_maker() as session:
                tags = await self._fetch_tags(session)

            completion = await self._complete(generation, tags, log_extra)
            if completion.repaired:
                logger.warning("Model response needed JSON repair", extra=log_extra)

            cards = self._collect_cards(completion.data, tags)
            if not cards:
                raise NoValidCandidatesError()

            async with self.session_maker() as session:
                stored = await GenerationService(session).complete_with_candidates(
                    generation,
                    cards,
                    prompt_tokens=completion.usage.prompt_tokens or None,
                )
            if not stored:
                logger.warning(
                    "Generation was cancelled mid-flight, discarding candidates",
                    extra=log_extra,
                )
                return ProcessGenerationResult(
                    success=False, error=CANCELLED_WHILE_PROCESSING
                )

            logger.info(
                f"Generation succeeded with {len(cards)} candidate(s)",
                extra=log_extra,
            )
            return ProcessGenerationResult(success=True, candidates_created=len(cards))
        except Exception as e:
            message = str(e) or e.__class__.__name__
            code = error_code_for(e)
            logger.error(f"Generation failed [{code}]: {message}", extra=log_extra)
            await self._record_failure(generation, code, message, log_extra)
            return ProcessGenerationResult(success=False, error=message)

    async def process_pending_generations(self) -> BatchResult:
        """Process every pending generation through a bounded worker pool.

        A failure to load the pending set propagates to the caller.
        """
        async with self.session_maker() as session:
            pending = await GenerationService(session).list_pending()

        if not pending:
            return BatchResult()

        logger.info(
            f"Processing {len(pending)} pending generation(s) "
            f"with concurrency {self.concurrency}"
        )
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(generation: Generation) -> ProcessGenerationResult:
            async with semaphore:
                return await self.process_generation(generation)

        results = await asyncio.gather(
            *(run(generation) for generation in pending), return_exceptions=True
        )

        succeeded = 0
        for generation, result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Generation task crashed: {result!r}",
                    extra=generation_context(generation.id, generation.user_id),
                )
            elif result.success:
                succeeded += 1

        return BatchResult(
            processed=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
        )

    async def _fetch_tags(self, session: AsyncSession) -> list[AvailableTag]:
        try:
            return await TagService(session).list_available_tags()
        except Exception as e:
            raise TagCatalogError(f"Failed to fetch available tags: {e}") from e

    async def _complete(
        self,
        generation: Generation,
        tags: Sequence[AvailableTag],
        log_extra: dict,
    ) -> "StructuredCompletion":
        temperature = (
            generation.temperature
            if generation.temperature is not None
            else self.default_temperature
        )
        request = dict(
            system_prompt=get_system_prompt(),
            user_prompt=build_user_prompt(generation.sanitized_input_text, tags),
            response_format=build_flashcards_response_format(generation.model),
            model=generation.model,
            params={"temperature": temperature},
        )

        try:
            return await self.client.complete_structured_chat(**request)
        except OpenRouterRateLimitError as e:
            delay = self._retry_delay(e.retry_after)
            logger.warning(
                f"Rate limited by OpenRouter, retrying once in {delay:.1f}s",
                extra=log_extra,
            )
            if delay > 0:
                await self._sleep(delay)
            # A second rate limit propagates as terminal.
            return await self.client.complete_structured_chat(**request)

    def _retry_delay(self, retry_after: Optional[float]) -> float:
        if retry_after is None:
            return 0.0
        return max(0.0, min(retry_after, self.rate_limit_max_delay))

    @staticmethod
    def _collect_cards(
        data: dict, tags: Sequence[AvailableTag]
    ) -> list[ValidatedFlashcard]:
        raw_cards = data.get("cards")
        if not isinstance(raw_cards, list):
            return []

        known_ids = {tag.id for tag in tags}
        cards = []
        for raw in raw_cards:
            card = validate_flashcard(raw)
            if card is None:
                continue
            cards.append(
                card.model_copy(
                    update={"tag_ids": [i for i in card.tag_ids if i in known_ids]}
                )
            )
        return cards

    async def _record_failure(
        self,
        generation: Generation,
        code: str,
        message: str,
        log_extra: dict,
    ) -> None:
        try:
            async with self.session_maker() as session:
                moved = await GenerationService(session).mark_failed(
                    generation.id, code, message
                )
                if not moved:
                    logger.info(
                        "Generation left unchanged, it is no longer running",
                        extra=log_extra,
                    )
                await ErrorLogService(session).log_generation_error(
                    user_id=generation.user_id,
                    model=generation.model,
                    error_code=code,
                    error_message=message,
                    source_text_hash=generation.sanitized_input_sha256 or "",
                    source_text_length=generation.sanitized_input_length
                    or len(generation.sanitized_input_text),
                )
        except Exception:
            logger.exception("Could not record generation failure", extra=log_extra)
