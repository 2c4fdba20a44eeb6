"""Completion providers for OpenAI-compatible and Gemini endpoints.

A provider exposes one operation, ``generate_completion(prompt) -> str``. The
pipeline accepts both coroutine and plain implementations; plain ones run on
the default executor so they never block the event loop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Protocol, Union, runtime_checkable

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI, InternalServerError, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..services.settings import PROVIDER_CHOICES

__all__ = [
    "CompletionProvider",
    "ProviderError",
    "QuotaExceededError",
    "ProviderSettings",
    "OpenAICompletionProvider",
    "GeminiCompletionProvider",
    "build_provider",
    "call_provider",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"


class ProviderError(RuntimeError):
    """Raised when a provider is misconfigured or returns an unusable response."""


class QuotaExceededError(ProviderError):
    """Raised when the endpoint reports an exhausted quota or rate limit."""


@runtime_checkable
class CompletionProvider(Protocol):
    def generate_completion(self, prompt: str) -> Union[str, Awaitable[str]]:
        ...


@dataclass(slots=True)
class ProviderSettings:
    """Subset of settings required to configure a provider."""

    model: str
    api_key: str
    base_url: str | None = None
    organization: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    request_timeout: float | None = 30.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0

    @classmethod
    def from_settings(cls, settings: Any) -> ProviderSettings:
        gemini = getattr(settings, "provider", "openai") == "gemini"
        model = getattr(settings, "model", "") or ""
        if gemini and (not model or model.startswith("gpt")):
            model = DEFAULT_GEMINI_MODEL
        return cls(
            model=model,
            api_key=getattr(settings, "gemini_api_key" if gemini else "api_key", "") or "",
            base_url=getattr(settings, "gemini_base_url" if gemini else "base_url", None),
            organization=None if gemini else getattr(settings, "organization", None),
            temperature=getattr(settings, "temperature", None),
            max_output_tokens=getattr(settings, "max_output_tokens", None),
            request_timeout=getattr(settings, "request_timeout", 30.0),
            max_retries=getattr(settings, "max_retries", 3),
            retry_min_seconds=getattr(settings, "retry_min_seconds", 0.5),
            retry_max_seconds=getattr(settings, "retry_max_seconds", 6.0),
        )


def _retrying(settings: ProviderSettings, *errors: type[BaseException]) -> AsyncRetrying:
    return AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(max(1, settings.max_retries)),
        wait=wait_exponential(multiplier=settings.retry_min_seconds, max=settings.retry_max_seconds),
        retry=retry_if_exception_type(errors),
    )


async def _close(client: Any) -> None:
    close = getattr(client, "aclose", None) or getattr(client, "close", None)
    if close is None:
        return
    result = close()
    if inspect.isawaitable(result):
        await result


class OpenAICompletionProvider:
    """Single-message chat completions against an OpenAI-compatible endpoint."""

    DEFAULT_MAX_TOKENS = 50
    DEFAULT_TEMPERATURE = 0.7

    def __init__(self, settings: ProviderSettings, *, client: AsyncOpenAI | None = None) -> None:
        if not settings.api_key and client is None:
            raise ProviderError("An API key is required for the OpenAI provider")
        self._settings = settings
        self._client = client or AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
        )

    @property
    def settings(self) -> ProviderSettings:
        return self._settings

    async def generate_completion(self, prompt: str) -> str:
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self._settings.max_output_tokens or self.DEFAULT_MAX_TOKENS,
            "temperature": (
                self.DEFAULT_TEMPERATURE if self._settings.temperature is None else self._settings.temperature
            ),
        }
        LOGGER.debug("Requesting completion from %s (%s chars)", self._settings.model, len(prompt))
        try:
            async for attempt in _retrying(
                self._settings, APIConnectionError, APITimeoutError, InternalServerError, httpx.TimeoutException
            ):
                with attempt:
                    response = await self._client.chat.completions.create(**payload)
        except RateLimitError as exc:
            raise QuotaExceededError(str(exc)) from exc
        except APIStatusError as exc:
            raise ProviderError(f"OpenAI request failed with status {exc.status_code}: {exc}") from exc

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise ProviderError("OpenAI response contained no choices")
        message = getattr(choices[0], "message", None)
        return str(getattr(message, "content", None) or "")

    async def aclose(self) -> None:
        await _close(self._client)


class GeminiCompletionProvider:
    """``generateContent`` calls against the Gemini JSON endpoint.

    Error payloads are returned as ``"API Error: <message>"`` text rather than
    raised, so quota signatures in them can be classified downstream.
    """

    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    DEFAULT_MAX_TOKENS = 150
    DEFAULT_TEMPERATURE = 0.4

    def __init__(self, settings: ProviderSettings, *, client: httpx.AsyncClient | None = None) -> None:
        if not settings.api_key:
            raise ProviderError("An API key is required for the Gemini provider")
        self._settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)

    @property
    def endpoint(self) -> str:
        base = (self._settings.base_url or self.DEFAULT_BASE_URL).rstrip("/")
        return f"{base}/models/{self._settings.model}:generateContent"

    def _payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": (
                    self.DEFAULT_TEMPERATURE if self._settings.temperature is None else self._settings.temperature
                ),
                "maxOutputTokens": self._settings.max_output_tokens or self.DEFAULT_MAX_TOKENS,
                "topP": 0.95,
            },
        }

    async def generate_completion(self, prompt: str) -> str:
        LOGGER.debug("Requesting completion from %s (%s chars)", self._settings.model, len(prompt))
        async for attempt in _retrying(self._settings, httpx.TransportError):
            with attempt:
                response = await self._client.post(
                    self.endpoint,
                    params={"key": self._settings.api_key},
                    json=self._payload(prompt),
                )
        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(f"Gemini returned a non-JSON response (status {response.status_code})") from exc
        return self._extract_text(body)

    @staticmethod
    def _extract_text(body: Any) -> str:
        if not isinstance(body, dict):
            raise ProviderError("Gemini response was not a JSON object")
        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else None
            return f"API Error: {message}" if message else "Unknown API Error"
        for candidate in body.get("candidates") or []:
            parts = (candidate.get("content") or {}).get("parts") or []
            text = "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))
            if text:
                return text
        raise ProviderError("Gemini response contained no text")

    async def aclose(self) -> None:
        await _close(self._client)


def build_provider(settings: Any) -> CompletionProvider | None:
    """Create the configured provider, or ``None`` when no API key is available."""

    name = getattr(settings, "provider", "openai")
    if name not in PROVIDER_CHOICES:
        raise ProviderError(f"Unknown completion provider: {name!r}")
    provider_settings = ProviderSettings.from_settings(settings)
    if not provider_settings.api_key:
        LOGGER.info("No API key configured; completions are disabled")
        return None
    if name == "gemini":
        return GeminiCompletionProvider(provider_settings)
    return OpenAICompletionProvider(provider_settings)


async def call_provider(provider: CompletionProvider, prompt: str, *, timeout: float | None = None) -> str:
    """Await ``provider`` for ``prompt``; plain callables run on the default executor."""

    call = _invoke(provider.generate_completion, prompt)
    if timeout:
        return await asyncio.wait_for(call, timeout)
    return await call


async def _invoke(method: Callable[[str], Any], prompt: str) -> str:
    if inspect.iscoroutinefunction(method):
        return await method(prompt)
    result = await asyncio.get_running_loop().run_in_executor(None, method, prompt)
    # Plain methods may still hand back an awaitable.
    if inspect.isawaitable(result):
        result = await result
    return result
