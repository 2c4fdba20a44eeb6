"""Rewrite the current selection through the completion provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from ..editor.provenance import EditOrigin
from ..editor.session import DocumentEditorCore
from .postprocess import is_error_output, is_quota_error
from .prompts import CompletionConfig, rewrite_prompt
from .providers import CompletionProvider, call_provider

__all__ = ["RewriteResult", "RewriteService"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RewriteResult:
    ok: bool
    text: str = ""
    error: str | None = None
    quota_exceeded: bool = False


class RewriteService:
    """Replaces the selection with provider output as one AI-attributed undo record."""

    def __init__(
        self,
        core: DocumentEditorCore,
        provider: CompletionProvider | None = None,
        *,
        preferences: Mapping[str, Any] | None = None,
        config: CompletionConfig | None = None,
    ) -> None:
        self._core = core
        self._provider = provider
        self._config = config or CompletionConfig.from_preferences(preferences)

    def set_provider(self, provider: CompletionProvider | None) -> None:
        self._provider = provider

    def build_prompt(self, instruction: str | None = None) -> str:
        start, end = self._core.selection
        return rewrite_prompt(self._core.text[start:end], instruction, self._config)

    async def rewrite_selection(self, instruction: str | None = None) -> RewriteResult:
        selection = self._core.selection
        selected = self._core.text[selection.start : selection.end]
        if self._provider is None:
            return RewriteResult(False, error="No completion provider configured")
        if not selected.strip():
            return RewriteResult(False, error="Select text to rewrite")

        version = self._core.version
        prompt = rewrite_prompt(selected, instruction, self._config)
        try:
            raw = await call_provider(self._provider, prompt, timeout=self._config.suggestion_timeout)
        except Exception as exc:
            LOGGER.warning("Rewrite request failed: %s", exc)
            return RewriteResult(False, error=f"API call failed. {exc}")

        text = (raw or "").strip()
        if is_quota_error(text):
            return RewriteResult(False, error=text, quota_exceeded=True)
        if not text or is_error_output(text):
            return RewriteResult(False, error=text or "Empty rewrite")
        if self._core.version != version or self._core.selection != selection:
            LOGGER.info("Document changed while rewriting; result not applied")
            return RewriteResult(False, text=text, error="Document changed during rewrite")

        applied = self._core.replace_selection(text, origin=EditOrigin.AI, label="rewrite")
        LOGGER.debug("Rewrite applied=%s (%s -> %s chars)", applied, len(selected), len(text))
        return RewriteResult(applied, text=text)
