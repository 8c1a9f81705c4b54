"""Tests for the provider adapter families and error mapping."""

from __future__ import annotations

import json
import unittest

import httpx

from feature_governance.errors import (
    ConfigurationError,
    ProviderError,
    QuotaExceeded,
    RateLimited,
    TransportError,
)
from feature_governance.llm import get_adapter_class, map_http_error
from feature_governance.llm.anthropic import AnthropicAdapter
from feature_governance.llm.chat_completions import OpenAIAdapter
from feature_governance.llm.google import GoogleAdapter
from feature_governance.llm.ollama import OllamaAdapter
from feature_governance.schemas import LLMMessage


MESSAGES = [
    LLMMessage(role="system", content="You are terse."),
    LLMMessage(role="user", content="Say hi"),
]


class _Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, response: httpx.Response | Exception) -> None:
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


class AdapterFamilyTests(unittest.IsolatedAsyncioTestCase):
    async def _client(self, recorder: _Recorder) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
        self.addAsyncCleanup(client.aclose)
        return client

    async def test_chat_completions_shape(self) -> None:
        recorder = _Recorder(
            httpx.Response(
                200,
                json={
                    "model": "gpt-4o",
                    "choices": [{"message": {"content": "hi"}, "finish_reason": "stop"}],
                    "usage": {"total_tokens": 3},
                },
            )
        )
        adapter = OpenAIAdapter(await self._client(recorder), api_key="sk-test-key")

        response = await adapter.chat_completion(MESSAGES, temperature=0.3)

        request = recorder.requests[0]
        self.assertEqual(str(request.url), "https://api.openai.com/v1/chat/completions")
        self.assertEqual(request.headers["authorization"], "Bearer sk-test-key")
        self.assertEqual(recorder.body["messages"][0], {"role": "system", "content": "You are terse."})
        self.assertEqual(recorder.body["temperature"], 0.3)
        self.assertFalse(recorder.body["stream"])
        self.assertEqual(response.content, "hi")
        self.assertEqual(response.provider, "openai")
        self.assertEqual(response.finish_reason, "stop")
        self.assertEqual(response.usage, {"total_tokens": 3})

    async def test_anthropic_moves_system_prompt_to_its_own_field(self) -> None:
        recorder = _Recorder(
            httpx.Response(200, json={"content": [{"type": "text", "text": "hello"}], "stop_reason": "end_turn"})
        )
        adapter = AnthropicAdapter(await self._client(recorder), api_key="ak-test")

        response = await adapter.chat_completion(MESSAGES)

        request = recorder.requests[0]
        self.assertTrue(str(request.url).endswith("/v1/messages"))
        self.assertEqual(request.headers["x-api-key"], "ak-test")
        self.assertIn("anthropic-version", request.headers)
        self.assertEqual(recorder.body["system"], "You are terse.")
        self.assertEqual([m["role"] for m in recorder.body["messages"]], ["user"])
        self.assertEqual(response.content, "hello")

    async def test_google_key_in_url_and_never_streams(self) -> None:
        recorder = _Recorder(
            httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "hola"}]}}]})
        )
        adapter = GoogleAdapter(await self._client(recorder), api_key="g-key")

        response = await adapter.chat_completion(
            MESSAGES + [LLMMessage(role="assistant", content="prior")],
            model="gemini-1.5-pro",
            stream=True,
        )

        request = recorder.requests[0]
        self.assertIn("/gemini-1.5-pro:generateContent", request.url.path)
        self.assertEqual(request.url.params["key"], "g-key")
        self.assertEqual([c["role"] for c in recorder.body["contents"]], ["user", "user", "model"])
        self.assertFalse(response.is_stream)
        self.assertEqual(response.content, "hola")

    async def test_ollama_needs_no_key(self) -> None:
        recorder = _Recorder(httpx.Response(200, json={"message": {"content": "local"}}))
        adapter = OllamaAdapter(await self._client(recorder), base_url="http://gpu-box:11434")

        response = await adapter.chat_completion(MESSAGES, stream=True)

        self.assertEqual(str(recorder.requests[0].url), "http://gpu-box:11434/api/chat")
        self.assertFalse(recorder.body["stream"])
        self.assertEqual(response.content, "local")

    async def test_missing_key_is_configuration_error(self) -> None:
        client = httpx.AsyncClient()
        self.addAsyncCleanup(client.aclose)
        with self.assertRaises(ConfigurationError):
            OpenAIAdapter(client, api_key=None)

    async def test_stream_is_passed_through_untouched(self) -> None:
        raw = b'data: {"choices":[{"delta":{"content":"h"}}]}\n\ndata: [DONE]\n\n'
        recorder = _Recorder(
            httpx.Response(200, stream=httpx.ByteStream(raw), headers={"content-type": "text/event-stream"})
        )
        adapter = OpenAIAdapter(await self._client(recorder), api_key="sk-test-key")

        response = await adapter.chat_completion(MESSAGES, stream=True)

        self.assertTrue(response.is_stream)
        self.assertIsNone(response.content)
        self.assertTrue(recorder.body["stream"])
        chunks = [chunk async for chunk in response.stream]
        self.assertEqual(b"".join(chunks), raw)


class ErrorMappingTests(unittest.IsolatedAsyncioTestCase):
    async def _call(self, response: httpx.Response | Exception):
        client = httpx.AsyncClient(transport=httpx.MockTransport(_Recorder(response)))
        self.addAsyncCleanup(client.aclose)
        return await OpenAIAdapter(client, api_key="sk-test-key").chat_completion(MESSAGES)

    async def test_429_is_rate_limited_with_retry_after(self) -> None:
        with self.assertRaises(RateLimited) as ctx:
            await self._call(httpx.Response(429, headers={"Retry-After": "12"}, text="slow down"))
        self.assertEqual(ctx.exception.retry_after, 12.0)
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(ctx.exception.to_dict()["retry_after"], 12.0)

    async def test_402_is_quota_exceeded(self) -> None:
        with self.assertRaises(QuotaExceeded):
            await self._call(httpx.Response(402, text="payment required"))

    async def test_insufficient_quota_429_is_quota_exceeded(self) -> None:
        with self.assertRaises(QuotaExceeded):
            await self._call(httpx.Response(429, json={"error": {"code": "insufficient_quota"}}))

    async def test_other_status_is_provider_error_with_truncated_body(self) -> None:
        with self.assertRaises(ProviderError) as ctx:
            await self._call(httpx.Response(500, text="x" * 2000))
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(len(ctx.exception.body), ProviderError.MAX_BODY_CHARS)
        self.assertNotIn("x" * 10, ctx.exception.message)

    async def test_network_failure_is_transport_error(self) -> None:
        with self.assertRaises(TransportError):
            await self._call(httpx.ConnectError("connection refused"))

    async def test_timeout_is_transport_error(self) -> None:
        with self.assertRaises(TransportError):
            await self._call(httpx.ReadTimeout("too slow"))

    async def test_malformed_success_body_is_provider_error(self) -> None:
        for body in ({"choices": [None]}, [1, 2], {"choices": [{"message": {"content": 5}}]}):
            with self.assertRaises(ProviderError) as ctx:
                await self._call(httpx.Response(200, json=body))
            self.assertEqual(ctx.exception.status_code, 200)
            self.assertIn("unexpected response shape", ctx.exception.message)

    async def test_malformed_anthropic_content_blocks_are_provider_error(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(_Recorder(httpx.Response(200, json={"content": ["x"]}))))
        self.addAsyncCleanup(client.aclose)

        with self.assertRaises(ProviderError):
            await AnthropicAdapter(client, api_key="sk-ant-key").chat_completion(MESSAGES)

    def test_insufficient_balance_body_maps_to_quota(self) -> None:
        error = map_http_error("deepseek", 400, '{"error": "Insufficient Balance"}')
        self.assertIsInstance(error, QuotaExceeded)

    def test_unknown_provider_is_not_supported(self) -> None:
        with self.assertRaises(ConfigurationError) as ctx:
            get_adapter_class("nope")
        self.assertIn("not supported", ctx.exception.message)


if __name__ == "__main__":
    unittest.main()
