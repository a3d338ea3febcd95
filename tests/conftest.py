import os

# Settings are read at import time, so the environment comes first.
os.environ.setdefault("POSTGRES_HOST", "localhost")
os.environ.setdefault("POSTGRES_DB_PORT", "5432")
os.environ.setdefault("POSTGRES_DB_NAME", "flashcards_test")
os.environ.setdefault("POSTGRES_DB_USER", "postgres")
os.environ.setdefault("POSTGRES_DB_PASSWORD", "postgres")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("OPENROUTER_API_KEY", "test-key")
os.environ.setdefault("MODE", "dev")

from typing import Any, Callable, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

import app.core.db.schemas  # noqa: E402,F401
from app.core.db.base import Base  # noqa: E402
from app.core.db.schemas.auth import User  # noqa: E402
from app.core.db.schemas.generations import Generation, GenerationStatus, Tag  # noqa: E402
from app.modules.generation.processor import GenerationProcessor  # noqa: E402
from app.modules.generation.sanitizer import describe_source_text  # noqa: E402
from app.modules.openrouter.client import StructuredCompletion, Usage  # noqa: E402


SOURCE_TEXT = (
    "PostgreSQL uses multiversion concurrency control so readers never block "
    "writers. Each transaction sees a snapshot of the data as of its start. "
) * 12


def cards_payload(*cards: tuple[str, str], tag_ids: Optional[list] = None) -> dict:
    return {
        "cards": [
            {"front": front, "back": back, "tag_ids": list(tag_ids or [])}
            for front, back in cards
        ]
    }


class FakeCompletionClient:
    """Completion client double that replays scripted outcomes in order.

    Each script entry is a dict (returned as the structured data), a
    ``StructuredCompletion``, an exception instance (raised) or a callable
    taking the call kwargs.
    """

    def __init__(self, *script: Any):
        self.script = list(script)
        self.calls: list[dict] = []

    async def complete_structured_chat(self, **kwargs: Any) -> StructuredCompletion:
        self.calls.append(kwargs)
        if not self.script:
            raise AssertionError("FakeCompletionClient called more often than scripted")
        outcome = self.script.pop(0)
        if callable(outcome) and not isinstance(outcome, BaseException):
            outcome = outcome(**kwargs)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, StructuredCompletion):
            return outcome
        return StructuredCompletion(
            data=outcome, model=kwargs.get("model"), usage=Usage(prompt_tokens=42)
        )


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


async def _create_user(session_maker, email: str, superuser: bool = False) -> User:
    async with session_maker() as session:
        user = User(
            email=email,
            hashed_password="not-a-real-hash",
            is_active=True,
            is_superuser=superuser,
            is_verified=True,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest_asyncio.fixture
async def user(session_maker) -> User:
    return await _create_user(session_maker, "learner@example.com")


@pytest_asyncio.fixture
async def other_user(session_maker) -> User:
    return await _create_user(session_maker, "someone@example.com")


@pytest_asyncio.fixture
async def admin(session_maker) -> User:
    return await _create_user(session_maker, "admin@example.com", superuser=True)


@pytest_asyncio.fixture
async def tags(session_maker) -> list[Tag]:
    async with session_maker() as session:
        rows = [
            Tag(name="Databases", slug="databases"),
            Tag(name="Python", slug="python"),
        ]
        session.add_all(rows)
        await session.commit()
        for row in rows:
            await session.refresh(row)
        return rows


@pytest.fixture
def make_generation(session_maker) -> Callable:
    async def _make(
        owner: User,
        *,
        status: GenerationStatus = GenerationStatus.PENDING,
        text: str = SOURCE_TEXT,
        model: str = "openai/gpt-4o-mini",
        temperature: Optional[float] = None,
    ) -> Generation:
        sanitized, length, sha256 = describe_source_text(text)
        async with session_maker() as session:
            generation = Generation(
                user_id=owner.id,
                model=model,
                status=status,
                sanitized_input_text=sanitized,
                sanitized_input_length=length,
                sanitized_input_sha256=sha256,
                temperature=temperature,
            )
            session.add(generation)
            await session.commit()
            await session.refresh(generation)
            return generation

    return _make


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_processor(session_maker, sleeps) -> Callable:
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    def _make(client: Any, **kwargs: Any) -> GenerationProcessor:
        kwargs.setdefault("concurrency", 2)
        kwargs.setdefault("rate_limit_max_delay", 10.0)
        return GenerationProcessor(
            client, session_maker=session_maker, sleep=_sleep, **kwargs
        )

    return _make
