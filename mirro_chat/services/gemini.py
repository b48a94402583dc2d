from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from mirro_chat.services.errors import (
    LLMConfigError,
    LLMEmptyResponseError,
    LLMNetworkError,
    LLMStatusError,
    LLMTimeoutError,
    LLMTransportError,
)


logger = logging.getLogger("mirro-chat.gemini")

DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


@dataclass(frozen=True)
class CallOptions:
    model: str
    timeout_s: float = 8.0
    temperature: float = 0.7
    max_retries: int = 1
    max_output_tokens: int = 2048


def build_request_body(prompt: str, options: CallOptions) -> dict[str, Any]:
    return {
        "model": options.model,
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {
            "temperature": options.temperature,
            "maxOutputTokens": options.max_output_tokens,
        },
    }


def _extract_text(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return ""
    text = parts[0].get("text")
    return text if isinstance(text, str) else ""


def _error_message(data: Any, fallback: str) -> str:
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        message = data["error"].get("message")
        if isinstance(message, str) and message:
            return message
    return fallback


class GeminiClient:
    """Thin async client for the Gemini ``generateContent`` endpoint.

    Every attempt is bounded by ``options.timeout_s``. 4xx responses fail
    immediately; 5xx responses, network errors, timeouts and empty completions
    are retried ``options.max_retries`` times with exponential backoff
    (``backoff_base_s * 2**attempt``). The last observed error is raised once
    the budget is spent.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_API_BASE,
        backoff_base_s: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._backoff_base_s = backoff_base_s
        self._transport = transport

    async def generate(self, prompt: str, options: CallOptions) -> str:
        if not self._api_key:
            raise LLMConfigError("GEMINI_API_KEY not configured")

        url = f"{self._base_url}/models/{options.model}:generateContent"
        payload = build_request_body(prompt, options)
        attempts = options.max_retries + 1

        last_exc: Optional[LLMTransportError] = None
        for attempt in range(attempts):
            try:
                return await asyncio.wait_for(
                    self._attempt(url, payload, timeout_s=options.timeout_s),
                    timeout=options.timeout_s,
                )
            except asyncio.TimeoutError:
                last_exc = LLMTimeoutError(f"Gemini API call timed out after {options.timeout_s}s")
            except LLMTransportError as exc:
                if not exc.retryable:
                    raise
                last_exc = exc

            if attempt < options.max_retries:
                backoff_s = self._backoff_base_s * (2**attempt)
                logger.warning(
                    "gemini_call_failed model=%s attempt=%s/%s retry_in_s=%s err=%s",
                    options.model,
                    attempt + 1,
                    attempts,
                    backoff_s,
                    last_exc,
                )
                await asyncio.sleep(backoff_s)

        assert last_exc is not None
        raise last_exc

    async def _attempt(self, url: str, payload: dict[str, Any], *, timeout_s: float) -> str:
        try:
            async with httpx.AsyncClient(timeout=timeout_s, transport=self._transport) as client:
                res = await client.post(
                    url,
                    params={"key": self._api_key},
                    headers={"Content-Type": "application/json"},
                    json=payload,
                )
        except httpx.TimeoutException as exc:
            raise LLMTimeoutError(f"Gemini API call timed out: {exc.__class__.__name__}") from exc
        except httpx.TransportError as exc:
            raise LLMNetworkError(f"Gemini API network error: {exc.__class__.__name__}") from exc

        try:
            data = res.json()
        except Exception:
            data = {"raw": res.text}

        if res.status_code >= 400:
            message = _error_message(data, res.reason_phrase or "request failed")
            raise LLMStatusError(f"Gemini API error ({res.status_code}): {message}", status_code=res.status_code)

        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            raise LLMStatusError(f"Gemini API error: {_error_message(data, 'unknown error')}")

        text = _extract_text(data)
        if not text:
            raise LLMEmptyResponseError("Empty response from Gemini API")
        return text
