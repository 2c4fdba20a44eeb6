"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Callable, Sequence, Union

import pytest

from syngrafi.ai.prompts import DEFAULT_VARIATION_PROMPTS
from syngrafi.editor.session import DocumentEditorCore

Reply = Union[str, BaseException]


class ScriptedProvider:
    """Async provider answering each variation prompt with a canned reply.

    Replies are keyed by variation index, recovered from the ``Continuation:``
    instruction in the prompt. Exceptions are raised instead of returned.
    """

    def __init__(self, replies: Sequence[Reply], *, delay: float = 0.0) -> None:
        self.replies = list(replies)
        self.delay = delay
        self.prompts: list[str] = []
        self.gate: asyncio.Event | None = None

    def _index(self, prompt: str) -> int:
        for index, instruction in enumerate(DEFAULT_VARIATION_PROMPTS):
            if prompt.endswith(f"Continuation: {instruction}"):
                return index
        return len(self.prompts) - 1

    async def generate_completion(self, prompt: str) -> str:
        self.prompts.append(prompt)
        index = self._index(prompt)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies[index % len(self.replies)]
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeClock:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith("SYNGRAFI_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SYNGRAFI_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def scripted_provider() -> Callable[..., ScriptedProvider]:
    return ScriptedProvider


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def core() -> DocumentEditorCore:
    return DocumentEditorCore()


@pytest.fixture
def sample_markup() -> str:
    return (
        "<html><body>"
        "<h1>Title</h1>"
        "<p>Hello <b>bold</b> world</p>"
        "<ul><li>one</li><li>two</li></ul>"
        "<!-- AI_CHARS=10 HUMAN_CHARS=5 -->"
        "</body></html>"
    )
