"""Tests for the OpenAI and Gemini completion providers."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any, cast

import httpx
import pytest
from openai import AsyncOpenAI, RateLimitError

from syngrafi.ai.providers import (
    GeminiCompletionProvider,
    OpenAICompletionProvider,
    ProviderError,
    ProviderSettings,
    QuotaExceededError,
    build_provider,
    call_provider,
)
from syngrafi.services.settings import Settings


class _FakeCompletions:
    def __init__(self, outcomes: list[Any]) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _fake_openai(outcomes: list[Any]) -> tuple[AsyncOpenAI, _FakeCompletions]:
    completions = _FakeCompletions(outcomes)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return cast(AsyncOpenAI, client), completions


def _chat_response(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _settings(**overrides: Any) -> ProviderSettings:
    values: dict[str, Any] = {"model": "test-model", "api_key": "key", "retry_min_seconds": 0.0}
    values.update(overrides)
    return ProviderSettings(**values)


@pytest.mark.asyncio
async def test_openai_provider_sends_single_user_message() -> None:
    client, completions = _fake_openai([_chat_response("next words")])
    provider = OpenAICompletionProvider(_settings(), client=client)

    assert await provider.generate_completion("prompt text") == "next words"

    call = completions.calls[0]
    assert call["model"] == "test-model"
    assert call["messages"] == [{"role": "user", "content": "prompt text"}]
    assert call["max_tokens"] == 50
    assert call["temperature"] == 0.7


@pytest.mark.asyncio
async def test_openai_rate_limit_becomes_quota_error() -> None:
    request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
    error = RateLimitError(
        "You exceeded your current quota", response=httpx.Response(429, request=request), body=None
    )
    client, _ = _fake_openai([error])
    provider = OpenAICompletionProvider(_settings(), client=client)

    with pytest.raises(QuotaExceededError):
        await provider.generate_completion("prompt")


@pytest.mark.asyncio
async def test_openai_empty_choices_raise_provider_error() -> None:
    client, _ = _fake_openai([SimpleNamespace(choices=[])])
    provider = OpenAICompletionProvider(_settings(), client=client)

    with pytest.raises(ProviderError):
        await provider.generate_completion("prompt")


def _gemini(handler: Any, **overrides: Any) -> GeminiCompletionProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiCompletionProvider(_settings(model="gemini-2.0-flash", **overrides), client=client)


@pytest.mark.asyncio
async def test_gemini_provider_posts_generate_content() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = {"candidates": [{"content": {"parts": [{"text": "a gentle "}, {"text": "breeze"}]}}]}
        return httpx.Response(200, json=body)

    provider = _gemini(handler)

    assert await provider.generate_completion("Once") == "a gentle breeze"
    await provider.aclose()

    request = seen[0]
    assert request.url.path.endswith("/models/gemini-2.0-flash:generateContent")
    assert request.url.params["key"] == "key"
    payload = json.loads(request.content)
    assert payload["contents"][0]["parts"][0]["text"] == "Once"
    assert payload["generationConfig"]["maxOutputTokens"] == 150


@pytest.mark.asyncio
async def test_gemini_error_payload_is_returned_as_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "Resource has been exhausted"}})

    provider = _gemini(handler)

    assert await provider.generate_completion("x") == "API Error: Resource has been exhausted"


@pytest.mark.asyncio
async def test_gemini_retries_transport_errors() -> None:
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "ok"}]}}]})

    provider = _gemini(handler, max_retries=2)

    assert await provider.generate_completion("x") == "ok"
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_gemini_without_text_raises() -> None:
    provider = _gemini(lambda request: httpx.Response(200, json={"candidates": []}))

    with pytest.raises(ProviderError):
        await provider.generate_completion("x")


@pytest.mark.asyncio
async def test_build_provider_follows_settings() -> None:
    assert build_provider(Settings()) is None

    gemini = build_provider(Settings(provider="gemini", gemini_api_key="g"))
    assert isinstance(gemini, GeminiCompletionProvider)
    assert gemini.endpoint.endswith("/models/gemini-2.0-flash:generateContent")
    await gemini.aclose()

    openai_provider = build_provider(Settings(api_key="sk"))
    assert isinstance(openai_provider, OpenAICompletionProvider)
    assert openai_provider.settings.model == "gpt-4o"


@pytest.mark.asyncio
async def test_call_provider_supports_sync_callables_and_timeouts() -> None:
    class _Sync:
        def generate_completion(self, prompt: str) -> str:
            return prompt.upper()

    class _Slow:
        async def generate_completion(self, prompt: str) -> str:
            await asyncio.sleep(1)
            return prompt

    assert await call_provider(_Sync(), "abc") == "ABC"
    with pytest.raises(asyncio.TimeoutError):
        await call_provider(_Slow(), "abc", timeout=0.01)


@pytest.mark.asyncio
async def test_call_provider_awaits_awaitables_from_plain_methods() -> None:
    class _Deferred:
        def generate_completion(self, prompt: str) -> Any:
            async def _inner() -> str:
                return f"later {prompt}"

            return _inner()

    assert await call_provider(_Deferred(), "words") == "later words"


def test_build_provider_rejects_unknown_provider() -> None:
    with pytest.raises(ProviderError):
        build_provider(Settings(provider="llama", api_key="sk"))
