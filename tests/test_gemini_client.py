from __future__ import annotations

import asyncio
import json
from pathlib import Path
import sys
import unittest
from unittest.mock import patch

import httpx

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from mirro_chat.services.errors import (
    LLMConfigError,
    LLMEmptyResponseError,
    LLMNetworkError,
    LLMStatusError,
    LLMTimeoutError,
)
from mirro_chat.services.gemini import CallOptions, GeminiClient


def _ok(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _client(handler, *, backoff_base_s: float = 0.0) -> GeminiClient:
    return GeminiClient(
        api_key="test-key",
        base_url="http://gemini.local/v1beta",
        backoff_base_s=backoff_base_s,
        transport=httpx.MockTransport(handler),
    )


OPTIONS = CallOptions(model="gemini-2.5-flash-lite", timeout_s=2.0, temperature=0.3, max_retries=2)


class TestGeminiClient(unittest.IsolatedAsyncioTestCase):
    async def test_success_sends_generate_content_body(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_ok('{"intent": "general_chat"}'))

        text = await _client(handler).generate("classify me", OPTIONS)

        self.assertEqual(text, '{"intent": "general_chat"}')
        self.assertEqual(len(seen), 1)
        request = seen[0]
        self.assertEqual(request.url.path, "/v1beta/models/gemini-2.5-flash-lite:generateContent")
        self.assertEqual(request.url.params["key"], "test-key")
        body = json.loads(request.content)
        self.assertEqual(body["model"], "gemini-2.5-flash-lite")
        self.assertEqual(body["contents"], [{"parts": [{"text": "classify me"}]}])
        self.assertEqual(body["generationConfig"], {"temperature": 0.3, "maxOutputTokens": 2048})

    async def test_4xx_fails_fast_with_remote_message(self) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(
                400,
                json={"error": {"code": 400, "message": "API key not valid", "status": "INVALID_ARGUMENT"}},
            )

        with self.assertRaises(LLMStatusError) as ctx:
            await _client(handler).generate("hi", OPTIONS)

        self.assertEqual(calls["count"], 1)
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIn("API key not valid", str(ctx.exception))

    async def test_5xx_is_retried_until_success(self) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            if calls["count"] < 3:
                return httpx.Response(503, json={"error": {"code": 503, "message": "overloaded"}})
            return httpx.Response(200, json=_ok("finally"))

        text = await _client(handler).generate("hi", OPTIONS)
        self.assertEqual(text, "finally")
        self.assertEqual(calls["count"], 3)

    async def test_exhausted_retries_raise_last_error(self) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            raise httpx.ConnectError("connection refused", request=request)

        with self.assertRaises(LLMNetworkError):
            await _client(handler).generate("hi", OPTIONS)
        self.assertEqual(calls["count"], 3)

    async def test_backoff_doubles_per_attempt(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": {"code": 500, "message": "internal"}})

        sleeps: list[float] = []
        real_sleep = asyncio.sleep

        async def fake_sleep(delay: float) -> None:
            sleeps.append(delay)
            await real_sleep(0)

        client = _client(handler, backoff_base_s=1.0)
        with patch("mirro_chat.services.gemini.asyncio.sleep", side_effect=fake_sleep):
            with self.assertRaises(LLMStatusError) as ctx:
                await client.generate("hi", OPTIONS)

        self.assertEqual(sleeps, [1.0, 2.0])
        self.assertEqual(ctx.exception.status_code, 500)

    async def test_attempt_timeout_is_retryable(self) -> None:
        calls = {"count": 0}

        async def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            if calls["count"] == 1:
                await asyncio.sleep(1.0)
            return httpx.Response(200, json=_ok("second try"))

        options = CallOptions(model="m", timeout_s=0.05, max_retries=1)
        text = await _client(handler).generate("hi", options)
        self.assertEqual(text, "second try")
        self.assertEqual(calls["count"], 2)

    async def test_timeout_on_every_attempt_raises_timeout_error(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1.0)
            return httpx.Response(200, json=_ok("too late"))

        options = CallOptions(model="m", timeout_s=0.05, max_retries=1)
        with self.assertRaises(LLMTimeoutError):
            await _client(handler).generate("hi", options)

    async def test_empty_completion_raises_after_budget(self) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": ""}]}}]})

        options = CallOptions(model="m", timeout_s=2.0, max_retries=1)
        with self.assertRaises(LLMEmptyResponseError):
            await _client(handler).generate("hi", options)
        self.assertEqual(calls["count"], 2)

    async def test_error_body_on_200_is_retried(self) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            if calls["count"] == 1:
                return httpx.Response(200, json={"error": {"message": "model is overloaded"}})
            return httpx.Response(200, json=_ok("recovered"))

        options = CallOptions(model="m", timeout_s=2.0, max_retries=1)
        text = await _client(handler).generate("hi", options)
        self.assertEqual(text, "recovered")
        self.assertEqual(calls["count"], 2)

    async def test_error_body_on_200_raises_after_budget(self) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(200, json={"error": {"message": "model is overloaded"}})

        options = CallOptions(model="m", timeout_s=2.0, max_retries=1)
        with self.assertRaises(LLMStatusError) as ctx:
            await _client(handler).generate("hi", options)

        self.assertEqual(calls["count"], 2)
        self.assertIsNone(ctx.exception.status_code)
        self.assertTrue(ctx.exception.retryable)
        self.assertIn("model is overloaded", str(ctx.exception))

    async def test_missing_api_key(self) -> None:
        client = GeminiClient(api_key="", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with self.assertRaises(LLMConfigError):
            await client.generate("hi", OPTIONS)
