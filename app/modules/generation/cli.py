from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from app.core.config import settings
from app.modules.generation.sanitizer import describe_source_text


def _load_text(args: argparse.Namespace) -> str:
    if args.text and args.file:
        raise SystemExit("Provide either --text or --file, not both")
    if args.file:
        return Path(args.file).read_text(encoding="utf-8")
    if args.text:
        return args.text
    return sys.stdin.read()


async def _process_pending(concurrency: int) -> dict:
    from app.core.db.base import async_session_maker
    from app.modules.generation.processor import GenerationProcessor
    from app.modules.openrouter import OpenRouterClient, ServiceHealth

    client = OpenRouterClient.from_settings(settings.openrouter, health=ServiceHealth())
    try:
        processor = GenerationProcessor(
            client,
            session_maker=async_session_maker,
            concurrency=concurrency,
            default_temperature=settings.generation.default_temperature,
            rate_limit_max_delay=settings.generation.rate_limit_max_delay,
        )
        result = await processor.process_pending_generations()
    finally:
        await client.aclose()
    return result.model_dump()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="flashcards-generation", description="Flashcard generation CLI"
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser(
        "process-pending", help="Process every pending generation once and exit"
    )
    p.add_argument(
        "--concurrency",
        type=int,
        default=settings.generation.batch_concurrency,
        help="Generations processed at the same time",
    )

    s = sub.add_parser(
        "sanitize", help="Print sanitized source text with its length and SHA-256"
    )
    s.add_argument("--text", "-t", help="Source text")
    s.add_argument("--file", help="Path to a file with the source text (default: stdin)")

    args = parser.parse_args(argv)
    if args.cmd == "process-pending":
        print(json.dumps(asyncio.run(_process_pending(args.concurrency)), indent=2))
        return 0
    if args.cmd == "sanitize":
        sanitized, length, sha256 = describe_source_text(_load_text(args))
        print(
            json.dumps(
                {"sanitized": sanitized, "length": length, "sha256": sha256},
                indent=2,
                ensure_ascii=False,
            )
        )
        return 0

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
