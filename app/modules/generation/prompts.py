"""Prompts and the structured-output schema for flashcard generation."""

from __future__ import annotations

from typing import Any, Iterable

from app.modules.generation.models import AvailableTag
from app.modules.generation.validator import BACK_TRUNCATE_LENGTH, MAX_FRONT_LENGTH


SYSTEM_PROMPT = f"""You are an expert in creating high-quality educational flashcards.

Tasks:
- Generate flashcards that are clear, precise, and pedagogically valuable
- Each flashcard holds a question or problem on the front and its answer or explanation on the back
- Choose tag_ids only from the tag catalog supplied with the request; use an empty array when none fits
- Avoid creating duplicates or near-duplicates of other cards
- Adjust the difficulty level for IT professionals
- Answers should be concise but complete

Formatting requirements:
- Front: specific question or task (max {MAX_FRONT_LENGTH} characters)
- Back: clear, complete answer (max {BACK_TRUNCATE_LENGTH} characters)
- tag_ids: list of integer ids taken from the catalog
- Respond with a JSON object that matches the provided schema, without markdown fences"""


USER_PROMPT_TEMPLATE = """Analyze the following source text and generate up to 10 high-quality educational flashcards for IT professionals.

Source text:
{source_text}

Available tags (id, name, slug):
{available_tags}

Requirements:
- Cover the key concepts, best practices, and important details from the text
- Each flashcard should be self-contained and educationally valuable
- Select tag_ids only from the available tags listed above
- Focus on practical and technical aspects
- Generate flashcards in the same language as the source text
- Generate as many flashcards as needed to cover the content (up to 10 maximum)

Generate flashcards in JSON format according to the schema."""


NO_TAGS_MESSAGE = (
    "No tags are configured. Return an empty tag_ids array for every card."
)


def get_system_prompt() -> str:
    return SYSTEM_PROMPT


def format_available_tags(tags: Iterable[AvailableTag]) -> str:
    lines = [f"- [{tag.id}] {tag.name} (slug: {tag.slug})" for tag in tags]
    if not lines:
        return NO_TAGS_MESSAGE
    return "\n".join(lines)


def build_user_prompt(source_text: str, available_tags: Iterable[AvailableTag]) -> str:
    # str.format would choke on braces inside the source text
    return USER_PROMPT_TEMPLATE.replace(
        "{available_tags}", format_available_tags(available_tags)
    ).replace("{source_text}", source_text)


# Models known to accept `strict: true` JSON schema mode on OpenRouter.
MODELS_WITH_STRICT_SCHEMA_SUPPORT = (
    "anthropic/claude-3.5-sonnet",
    "anthropic/claude-3-opus",
    "anthropic/claude-3-sonnet",
    "anthropic/claude-sonnet-4.5",
    "openai/gpt-4o",
    "openai/gpt-4o-mini",
    "openai/o1",
    "openai/o1-mini",
    "google/gemini-2.0-flash-exp",
    "google/gemini-exp-1206",
)


def supports_strict_json_schema(model: str) -> bool:
    return any(supported in model for supported in MODELS_WITH_STRICT_SCHEMA_SUPPORT)


FLASHCARDS_GENERATION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "cards": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "front": {
                        "type": "string",
                        "description": "Content of the front side (question/task).",
                    },
                    "back": {
                        "type": "string",
                        "description": "Content of the back side (answer/explanation).",
                    },
                    "tag_ids": {
                        "type": "array",
                        "items": {"type": "integer", "minimum": 1},
                        "description": "List of tag IDs chosen from the provided catalog.",
                    },
                },
                "required": ["front", "back", "tag_ids"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["cards"],
    "additionalProperties": False,
}


def build_flashcards_response_format(model: str) -> dict[str, Any]:
    return {
        "type": "json_schema",
        "json_schema": {
            "name": "flashcards_generation_result",
            "strict": supports_strict_json_schema(model),
            "schema": FLASHCARDS_GENERATION_SCHEMA,
        },
    }
