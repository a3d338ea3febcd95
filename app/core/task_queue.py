from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.db_services import GenerationService
from app.core.logging import generation_context, get_logger

if TYPE_CHECKING:
    from app.modules.generation.processor import GenerationProcessor


logger = get_logger(__name__)

JobCallable = Callable[[], Awaitable[None]]


class BackgroundQueue:
    """Simple in-process async job queue with fixed concurrency."""

    def __init__(self, *, concurrency: int = 2) -> None:
        self.concurrency = max(1, int(concurrency))
        self._queue: asyncio.Queue[JobCallable] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._started = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _worker(self, idx: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await job()
            except Exception:  # noqa: BLE001
                # A failed job must not take the worker down with it
                logger.exception(f"Queue worker {idx} job failed")
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        for i in range(self.concurrency):
            self._workers.append(asyncio.create_task(self._worker(i)))

    async def stop(self) -> None:
        # Drain queue and cancel workers
        await self._queue.join()
        for t in self._workers:
            t.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        self._started = False

    async def join(self) -> None:
        await self._queue.join()

    def enqueue(self, fn: JobCallable) -> None:
        self._queue.put_nowait(fn)


queue = BackgroundQueue(concurrency=settings.generation.queue_concurrency)


def enqueue_generation_processing(
    *,
    generation_id: uuid.UUID,
    processor: "GenerationProcessor",
    session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    target: Optional[BackgroundQueue] = None,
) -> None:
    """Enqueue a job that runs an existing pending generation through the processor."""
    maker = session_maker or processor.session_maker

    async def _job() -> None:
        async with maker() as session:
            generation = await GenerationService(session).get(generation_id)
        if generation is None:
            logger.warning(
                "Queued generation not found", extra=generation_context(generation_id)
            )
            return
        await processor.process_generation(generation)

    (target or queue).enqueue(_job)
