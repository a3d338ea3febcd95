"""Async client for OpenRouter chat completions.

Each call performs exactly one HTTP request. Failures are classified into the
``OpenRouterError`` hierarchy; retrying is left to the caller.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from app.core.config import OpenRouterSettings
from app.core.logging import get_logger
from app.modules.generation.repair import recover_structured_json, strip_code_fences
from app.modules.openrouter.errors import (
    OpenRouterAuthError,
    OpenRouterBadRequestError,
    OpenRouterConfigError,
    OpenRouterError,
    OpenRouterNetworkError,
    OpenRouterParseError,
    OpenRouterRateLimitError,
    OpenRouterServerError,
)
from app.modules.openrouter.health import ServiceHealth

logger = get_logger(__name__)

SERVER_ERROR_STATUSES = frozenset({500, 502, 503, 504})


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class TextCompletion(BaseModel):
    text: str
    model: Optional[str] = None
    usage: Usage = Field(default_factory=Usage)


class StructuredCompletion(BaseModel):
    data: dict[str, Any]
    model: Optional[str] = None
    usage: Usage = Field(default_factory=Usage)
    # True when the payload only parsed after repair
    repaired: bool = False


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds to wait from a ``Retry-After`` header, or ``None``."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()
    return max(seconds, 0.0)


def _error_payload(response: httpx.Response) -> tuple[str, Any]:
    """Message and details out of an OpenRouter error body."""
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text or response.reason_phrase, text or None

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or response.reason_phrase), error
    if isinstance(error, str):
        return error, body
    return response.reason_phrase, body


class OpenRouterClient:
    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str,
        default_model: str,
        default_params: Optional[dict[str, Any]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        health: Optional[ServiceHealth] = None,
        timeout: Optional[float] = None,
        referer: Optional[str] = None,
        title: Optional[str] = None,
    ):
        if not api_key or not api_key.strip():
            raise OpenRouterConfigError("OPENROUTER_API_KEY is not configured")

        self.base_url = base_url
        self.default_model = default_model
        self.default_params = dict(default_params or {})
        self.health = health or ServiceHealth()

        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if referer:
            self._headers["HTTP-Referer"] = referer
        if title:
            self._headers["X-Title"] = title

        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @classmethod
    def from_settings(
        cls,
        config: OpenRouterSettings,
        *,
        health: Optional[ServiceHealth] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "OpenRouterClient":
        return cls(
            config.api_key,
            base_url=config.base_url,
            default_model=config.default_model,
            default_params={
                "temperature": config.temperature,
                "max_tokens": config.max_tokens,
            },
            http_client=http_client,
            health=health,
            timeout=config.timeout_seconds,
            referer=config.referer,
            title=config.title,
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def complete_chat(
        self,
        *,
        user_prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        params: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> TextCompletion:
        body = await self._post(
            self._build_payload(user_prompt, system_prompt, model, params, metadata)
        )
        return TextCompletion(
            text=self._extract_content(body),
            model=body.get("model"),
            usage=self._extract_usage(body),
        )

    async def complete_structured_chat(
        self,
        *,
        user_prompt: str,
        response_format: dict[str, Any],
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        params: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> StructuredCompletion:
        payload = self._build_payload(user_prompt, system_prompt, model, params, metadata)
        payload["response_format"] = response_format

        body = await self._post(payload)
        content = strip_code_fences(self._extract_content(body))

        repaired = False
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            data = None

        if not isinstance(data, dict):
            data = recover_structured_json(content)
            repaired = True

        if data is None:
            raise OpenRouterParseError(
                "Failed to parse structured response as JSON",
                raw_response=content,
            )

        return StructuredCompletion(
            data=data,
            model=body.get("model"),
            usage=self._extract_usage(body),
            repaired=repaired,
        )

    def _build_payload(
        self,
        user_prompt: str,
        system_prompt: Optional[str],
        model: Optional[str],
        params: Optional[dict[str, Any]],
        metadata: Optional[dict[str, Any]],
    ) -> dict[str, Any]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        payload: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": messages,
            **self.default_params,
            **{k: v for k, v in (params or {}).items() if v is not None},
        }
        if metadata:
            payload["metadata"] = metadata
        return payload

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._http.post(
                self.base_url, headers=self._headers, json=payload
            )
        except httpx.HTTPError as e:
            self.health.record_failure()
            raise OpenRouterNetworkError(f"Network error calling OpenRouter: {e}") from e

        if not response.is_success:
            self._raise_for_status(response)

        self.health.record_success()
        try:
            body = response.json()
        except ValueError as e:
            raise OpenRouterParseError(
                "OpenRouter returned a non-JSON body", raw_response=response.text
            ) from e
        if not isinstance(body, dict):
            raise OpenRouterParseError(
                "OpenRouter returned an unexpected body", raw_response=response.text
            )
        return body

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        message, details = _error_payload(response)
        logger.warning(f"OpenRouter responded {status}: {message}")

        if status == 401:
            raise OpenRouterAuthError(f"OpenRouter authentication failed: {message}")
        if status == 400:
            raise OpenRouterBadRequestError(
                f"OpenRouter rejected the request: {message}", details=details
            )

        # Caller-side defects above do not reflect on upstream health.
        self.health.record_failure()
        if status == 429:
            raise OpenRouterRateLimitError(
                f"OpenRouter rate limit exceeded: {message}",
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if status in SERVER_ERROR_STATUSES:
            raise OpenRouterServerError(
                f"OpenRouter server error ({status}): {message}", status_code=status
            )
        raise OpenRouterError(f"OpenRouter request failed ({status}): {message}", str(status))

    @staticmethod
    def _extract_content(body: dict[str, Any]) -> str:
        choices = body.get("choices")
        if not isinstance(choices, list) or not choices:
            raise OpenRouterParseError(
                "OpenRouter response has no choices", raw_response=json.dumps(body)
            )
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise OpenRouterParseError(
                "OpenRouter response has no message content",
                raw_response=json.dumps(body),
            )
        return content

    @staticmethod
    def _extract_usage(body: dict[str, Any]) -> Usage:
        usage = body.get("usage")
        if not isinstance(usage, dict):
            return Usage()
        return Usage(
            **{
                key: int(usage.get(key) or 0)
                for key in ("prompt_tokens", "completion_tokens", "total_tokens")
            }
        )
