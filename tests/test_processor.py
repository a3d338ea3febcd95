"""Tests for the generation orchestrator and the batch runner."""

import asyncio
from contextlib import asynccontextmanager

import pytest
from sqlalchemy import select

from app.core.db.schemas.generations import (
    CandidateStatus,
    Generation,
    GenerationCandidate,
    GenerationErrorLog,
    GenerationStatus,
)
from app.core.db_services import GenerationService, TagService
from app.modules.generation.processor import (
    CANCELLED_WHILE_PROCESSING,
    GenerationProcessor,
)
from app.modules.openrouter import (
    OpenRouterAuthError,
    OpenRouterNetworkError,
    OpenRouterRateLimitError,
    StructuredCompletion,
)
from app.modules.generation.repair import recover_structured_json

from .conftest import FakeCompletionClient, _create_user, cards_payload


async def _reload(session_maker, generation_id) -> Generation:
    async with session_maker() as session:
        result = await session.execute(select(Generation).where(Generation.id == generation_id))
        return result.scalar_one()


async def _candidates(session_maker, generation_id) -> list[GenerationCandidate]:
    async with session_maker() as session:
        result = await session.execute(
            select(GenerationCandidate).where(
                GenerationCandidate.generation_id == generation_id
            )
        )
        return list(result.scalars().all())


async def _error_logs(session_maker) -> list[GenerationErrorLog]:
    async with session_maker() as session:
        result = await session.execute(select(GenerationErrorLog))
        return list(result.scalars().all())


class TestProcessGeneration:
    @pytest.mark.asyncio
    async def test_success_creates_proposed_candidates(
        self, session_maker, user, tags, make_generation, make_processor
    ) -> None:
        generation = await make_generation(user, temperature=0.55)
        client = FakeCompletionClient(
            cards_payload(
                ("What is MVCC?", "Snapshot based concurrency control."),
                ("What is a snapshot?", "The data visible to a transaction."),
                tag_ids=[tags[0].id, 999],
            )
        )

        result = await make_processor(client).process_generation(generation)

        assert result.success is True
        assert result.candidates_created == 2
        assert result.error is None

        row = await _reload(session_maker, generation.id)
        assert row.status == GenerationStatus.SUCCEEDED
        assert row.started_at is not None
        assert row.completed_at is not None
        assert row.prompt_tokens == 42

        candidates = await _candidates(session_maker, generation.id)
        assert len(candidates) == 2
        assert {c.status for c in candidates} == {CandidateStatus.PROPOSED}
        assert all(c.owner_id == user.id for c in candidates)
        # Unknown ids are dropped against the catalog
        assert all(c.suggested_tags == [tags[0].id] for c in candidates)
        assert all(c.front_back_fingerprint for c in candidates)

        call = client.calls[0]
        assert call["model"] == generation.model
        assert call["params"] == {"temperature": 0.55}
        assert "- [%d] Databases (slug: databases)" % tags[0].id in call["user_prompt"]
        assert generation.sanitized_input_text in call["user_prompt"]

    @pytest.mark.asyncio
    async def test_default_temperature_when_unset(
        self, user, make_generation, make_processor
    ) -> None:
        generation = await make_generation(user)
        client = FakeCompletionClient(cards_payload(("q", "a")))

        await make_processor(client, default_temperature=0.3).process_generation(generation)

        assert client.calls[0]["params"] == {"temperature": 0.3}

    @pytest.mark.asyncio
    async def test_truncated_response_still_succeeds(
        self, session_maker, user, make_generation, make_processor
    ) -> None:
        generation = await make_generation(user)
        truncated = (
            '{"cards": [{"front": "What is WAL?", "back": "Write-ahead logging.", '
            '"tag_ids": []}, {"front": "What is VAC'
        )
        recovered = recover_structured_json(truncated)
        client = FakeCompletionClient(
            StructuredCompletion(data=recovered, repaired=True)
        )

        result = await make_processor(client).process_generation(generation)

        assert result.success is True
        assert result.candidates_created >= 1
        candidates = await _candidates(session_maker, generation.id)
        assert [c.front for c in candidates] == ["What is WAL?"]

    @pytest.mark.asyncio
    async def test_rate_limit_then_success_retries_once(
        self, user, make_generation, make_processor, sleeps
    ) -> None:
        generation = await make_generation(user)
        client = FakeCompletionClient(
            OpenRouterRateLimitError(retry_after=3),
            cards_payload(("q", "a")),
        )

        result = await make_processor(client).process_generation(generation)

        assert result.success is True
        assert len(client.calls) == 2
        assert sleeps == [3]

    @pytest.mark.asyncio
    async def test_retry_delay_is_capped(
        self, user, make_generation, make_processor, sleeps
    ) -> None:
        generation = await make_generation(user)
        client = FakeCompletionClient(
            OpenRouterRateLimitError(retry_after=3600),
            cards_payload(("q", "a")),
        )

        await make_processor(client, rate_limit_max_delay=5).process_generation(generation)

        assert sleeps == [5]

    @pytest.mark.asyncio
    async def test_no_sleep_without_retry_after(
        self, user, make_generation, make_processor, sleeps
    ) -> None:
        generation = await make_generation(user)
        client = FakeCompletionClient(
            OpenRouterRateLimitError(), cards_payload(("q", "a"))
        )

        result = await make_processor(client).process_generation(generation)

        assert result.success is True
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_second_rate_limit_is_terminal(
        self, session_maker, user, make_generation, make_processor
    ) -> None:
        generation = await make_generation(user)
        client = FakeCompletionClient(
            OpenRouterRateLimitError(), OpenRouterRateLimitError("still limited")
        )

        result = await make_processor(client).process_generation(generation)

        assert result.success is False
        assert len(client.calls) == 2
        row = await _reload(session_maker, generation.id)
        assert row.status == GenerationStatus.FAILED
        assert row.error_code == "RATE_LIMIT"
        assert row.error_message == "still limited"

    @pytest.mark.asyncio
    async def test_no_valid_cards_fails(
        self, session_maker, user, make_generation, make_processor
    ) -> None:
        generation = await make_generation(user)
        client = FakeCompletionClient(
            {"cards": [{"front": "", "back": "x"}, {"front": "q"}, "junk"]}
        )

        result = await make_processor(client).process_generation(generation)

        assert result.success is False
        assert result.candidates_created == 0
        assert "No valid flashcards" in result.error
        row = await _reload(session_maker, generation.id)
        assert row.status == GenerationStatus.FAILED
        assert row.error_code == "NO_VALID_CANDIDATES"
        assert await _candidates(session_maker, generation.id) == []

    @pytest.mark.asyncio
    async def test_missing_cards_key_counts_as_no_cards(
        self, user, make_generation, make_processor
    ) -> None:
        generation = await make_generation(user)
        client = FakeCompletionClient({"flashcards": []})

        result = await make_processor(client).process_generation(generation)

        assert result.success is False
        assert "No valid flashcards" in result.error

    @pytest.mark.asyncio
    async def test_terminal_client_error_is_recorded(
        self, session_maker, user, make_generation, make_processor
    ) -> None:
        generation = await make_generation(user)
        client = FakeCompletionClient(OpenRouterAuthError("bad key"))

        result = await make_processor(client).process_generation(generation)

        assert result.success is False
        assert result.error == "bad key"
        assert len(client.calls) == 1
        row = await _reload(session_maker, generation.id)
        assert row.status == GenerationStatus.FAILED
        assert row.error_code == "AUTH_ERROR"

        logs = await _error_logs(session_maker)
        assert len(logs) == 1
        assert logs[0].error_code == "AUTH_ERROR"
        assert logs[0].user_id == user.id
        assert logs[0].source_text_hash == generation.sanitized_input_sha256

    @pytest.mark.asyncio
    async def test_unexpected_exception_never_escapes(
        self, session_maker, user, make_generation, make_processor
    ) -> None:
        generation = await make_generation(user)
        client = FakeCompletionClient(RuntimeError("boom"))

        result = await make_processor(client).process_generation(generation)

        assert result.success is False
        assert result.error == "boom"
        row = await _reload(session_maker, generation.id)
        assert row.error_code == "UNEXPECTED_ERROR"

    @pytest.mark.asyncio
    async def test_tag_catalog_failure_is_fatal(
        self, session_maker, user, make_generation, make_processor, monkeypatch
    ) -> None:
        async def broken(self):
            raise RuntimeError("tags table unavailable")

        monkeypatch.setattr(TagService, "list_available_tags", broken)
        generation = await make_generation(user)
        client = FakeCompletionClient(cards_payload(("q", "a")))

        result = await make_processor(client).process_generation(generation)

        assert result.success is False
        assert result.error.startswith("Failed to fetch available tags:")
        assert client.calls == []
        row = await _reload(session_maker, generation.id)
        assert row.status == GenerationStatus.FAILED
        assert row.error_code == "TAG_FETCH_FAILED"

    @pytest.mark.asyncio
    async def test_empty_catalog_prompt(
        self, user, make_generation, make_processor
    ) -> None:
        generation = await make_generation(user)
        client = FakeCompletionClient(cards_payload(("q", "a"), tag_ids=[1, 2]))

        result = await make_processor(client).process_generation(generation)

        assert result.success is True
        assert "No tags are configured" in client.calls[0]["user_prompt"]

    @pytest.mark.asyncio
    async def test_only_pending_generations_are_started(
        self, session_maker, user, make_generation, make_processor
    ) -> None:
        generation = await make_generation(user, status=GenerationStatus.CANCELLED)
        client = FakeCompletionClient(cards_payload(("q", "a")))

        result = await make_processor(client).process_generation(generation)

        assert result.success is False
        assert client.calls == []
        row = await _reload(session_maker, generation.id)
        assert row.status == GenerationStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_no_session_is_held_during_completion(
        self, session_maker, user, make_generation, tags
    ) -> None:
        open_sessions = []

        @asynccontextmanager
        async def tracked_sessions():
            async with session_maker() as session:
                open_sessions.append(session)
                try:
                    yield session
                finally:
                    open_sessions.remove(session)

        def reply(**kwargs):
            assert open_sessions == []
            return cards_payload(("q", "a"))

        generation = await make_generation(user)
        processor = GenerationProcessor(
            FakeCompletionClient(reply), session_maker=tracked_sessions
        )

        result = await processor.process_generation(generation)

        assert result.success is True
        assert open_sessions == []

    @pytest.mark.asyncio
    async def test_cancel_during_completion_wins(
        self, session_maker, user, make_generation, make_processor
    ) -> None:
        generation = await make_generation(user)

        async def cancel_then_answer(**kwargs):
            async with session_maker() as session:
                assert await GenerationService(session).cancel(generation.id, user.id)
            return StructuredCompletion(data=cards_payload(("q", "a")))

        class CancellingClient(FakeCompletionClient):
            async def complete_structured_chat(self, **kwargs):
                self.calls.append(kwargs)
                return await cancel_then_answer(**kwargs)

        result = await make_processor(CancellingClient()).process_generation(generation)

        assert result.success is False
        assert result.error == CANCELLED_WHILE_PROCESSING
        row = await _reload(session_maker, generation.id)
        assert row.status == GenerationStatus.CANCELLED
        assert await _candidates(session_maker, generation.id) == []

    @pytest.mark.asyncio
    async def test_cancel_during_failing_completion_wins(
        self, session_maker, user, make_generation, make_processor
    ) -> None:
        generation = await make_generation(user)

        class CancellingClient(FakeCompletionClient):
            async def complete_structured_chat(self, **kwargs):
                async with session_maker() as session:
                    await GenerationService(session).cancel(generation.id, user.id)
                raise OpenRouterNetworkError("connection reset")

        result = await make_processor(CancellingClient()).process_generation(generation)

        assert result.success is False
        row = await _reload(session_maker, generation.id)
        assert row.status == GenerationStatus.CANCELLED


class TestProcessPendingGenerations:
    @pytest.mark.asyncio
    async def test_empty_pending_set(self, make_processor) -> None:
        client = FakeCompletionClient()

        result = await make_processor(client).process_pending_generations()

        assert result.model_dump() == {"processed": 0, "succeeded": 0, "failed": 0}
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_siblings(
        self, session_maker, user, other_user, make_generation, make_processor
    ) -> None:
        first = await make_generation(user)
        second = await make_generation(other_user)

        def by_owner(**kwargs):
            if "FAIL" in kwargs["user_prompt"]:
                return OpenRouterNetworkError("connection reset")
            return cards_payload(("q", "a"))

        # Mark one source so the scripted client can tell them apart
        async with session_maker() as session:
            row = await session.get(Generation, second.id)
            row.sanitized_input_text = "FAIL " + row.sanitized_input_text
            await session.commit()

        client = FakeCompletionClient(by_owner, by_owner)

        result = await make_processor(client).process_pending_generations()

        assert result.model_dump() == {"processed": 2, "succeeded": 1, "failed": 1}
        assert len(client.calls) == 2
        assert (await _reload(session_maker, first.id)).status == GenerationStatus.SUCCEEDED
        assert (await _reload(session_maker, second.id)).status == GenerationStatus.FAILED

    @pytest.mark.asyncio
    async def test_only_pending_rows_are_picked_up(
        self, user, other_user, make_generation, make_processor
    ) -> None:
        await make_generation(user, status=GenerationStatus.SUCCEEDED)
        await make_generation(other_user)
        client = FakeCompletionClient(cards_payload(("q", "a")))

        result = await make_processor(client).process_pending_generations()

        assert result.processed == 1
        assert result.succeeded == 1

    @pytest.mark.asyncio
    async def test_bounded_concurrency(
        self, session_maker, make_generation, make_processor
    ) -> None:
        owners = [await _create_user(session_maker, f"u{i}@example.com") for i in range(5)]
        for owner in owners:
            await make_generation(owner)

        in_flight = 0
        peak = 0

        class SlowClient(FakeCompletionClient):
            async def complete_structured_chat(self, **kwargs):
                nonlocal in_flight, peak
                self.calls.append(kwargs)
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return StructuredCompletion(data=cards_payload(("q", "a")))

        client = SlowClient()
        result = await make_processor(client, concurrency=2).process_pending_generations()

        assert result.processed == 5
        assert result.succeeded == 5
        assert peak <= 2

    @pytest.mark.asyncio
    async def test_pending_fetch_failure_propagates(
        self, make_processor, monkeypatch
    ) -> None:
        async def broken(self):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(GenerationService, "list_pending", broken)

        with pytest.raises(RuntimeError, match="database unavailable"):
            await make_processor(FakeCompletionClient()).process_pending_generations()
