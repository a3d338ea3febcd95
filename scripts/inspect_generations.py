"""Quick DB inspector for generation data.

Summarizes generations by status, candidate review progress and the most
recent generation errors.

Usage:
  uv run scripts/inspect_generations.py
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Ensure project root is on sys.path so `app` package imports resolve
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sqlalchemy import func, select

from app.core.db.base import async_session_maker
from app.core.db.schemas.generations import Generation, GenerationCandidate
from app.core.db_services import ErrorLogService


async def main() -> int:
    async with async_session_maker() as session:
        by_status = (
            await session.execute(
                select(Generation.status, func.count(Generation.id)).group_by(
                    Generation.status
                )
            )
        ).all()
        candidates = (
            await session.execute(
                select(GenerationCandidate.status, func.count(GenerationCandidate.id))
                .group_by(GenerationCandidate.status)
            )
        ).all()

        print("Generations DB summary:")
        if not by_status:
            print("- No generations found.")
            return 0
        for status, count in by_status:
            print(f"- {status.value}: {count}")

        print("\nCandidates:")
        for status, count in candidates:
            print(f"- {status.value}: {count}")

        recent = (
            (
                await session.execute(
                    select(Generation).order_by(Generation.created_at.desc()).limit(5)
                )
            )
            .scalars()
            .all()
        )
        print("\nRecent generations:")
        for g in recent:
            print(
                f"  • ID {g.id} | user={g.user_id} | model={g.model} | "
                f"status={g.status.value} | chars={g.sanitized_input_length} | "
                f"prompt_tokens={g.prompt_tokens}"
            )

        errors = await ErrorLogService(session).list_recent(limit=5)
        print("\nRecent errors:")
        if not errors:
            print("- None.")
        for e in errors:
            print(f"  • user={e.user_id} code={e.error_code} {e.error_message[:100]!r}")

        return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
