"""Prompt templates and completion configuration.

Preferences arrive as an opaque mapping (camelCase keys, values that may be
strings, numbers or sequences). :class:`CompletionConfig` normalizes them once
so the pipeline never re-parses raw preference values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

LOGGER = logging.getLogger(__name__)

# Context windows (characters)
CONTEXT_BEFORE_CHARS = 400
CONTEXT_AFTER_CHARS = 200

DEFAULT_DELAY_MS = 600
DEFAULT_NUM_SUGGESTIONS = 3
MIN_SUGGESTIONS = 1
MAX_SUGGESTIONS = 10
DEFAULT_MAX_LENGTH = 200
DEFAULT_PAUSE_THRESHOLD_MS = 1000
DEFAULT_MIN_DOCUMENT_LENGTH = 20

DEFAULT_VARIATION_PROMPTS: tuple[str, ...] = (
    "Provide the most likely next phrase.",
    "Provide an alternative direction.",
    "Expand on this with additional detail.",
)
DEFAULT_REWRITE_PROMPT = "Rewrite the following text to improve clarity and flow while keeping its meaning."

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _coerce_int(value: Any, default: int, *, minimum: int | None = 0) -> int:
    try:
        number = int(str(value).strip()) if value is not None else default
    except (TypeError, ValueError):
        LOGGER.debug("Ignoring non-integer preference value %r", value)
        return default
    if minimum is not None and number < minimum:
        return default
    return number


def _coerce_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return default


def _coerce_timeout(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds > 0 else None


def _coerce_prompts(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = [line.strip() for line in value.splitlines()]
    elif isinstance(value, Sequence):
        items = [str(item).strip() for item in value]
    else:
        items = []
    prompts = tuple(item for item in items if item)
    return prompts or DEFAULT_VARIATION_PROMPTS


@dataclass(slots=True, frozen=True)
class CompletionConfig:
    """Normalized autocomplete settings."""

    delay_ms: int = DEFAULT_DELAY_MS
    num_suggestions: int = DEFAULT_NUM_SUGGESTIONS
    max_length: int = DEFAULT_MAX_LENGTH
    pause_threshold_ms: int = DEFAULT_PAUSE_THRESHOLD_MS
    min_document_length: int = DEFAULT_MIN_DOCUMENT_LENGTH
    variation_prompts: tuple[str, ...] = DEFAULT_VARIATION_PROMPTS
    style_prompt: str = ""
    references: str = ""
    rewrite_prompt: str = DEFAULT_REWRITE_PROMPT
    discard_stale: bool = False
    suggestion_timeout: float | None = None

    @classmethod
    def from_preferences(cls, preferences: Mapping[str, Any] | None) -> CompletionConfig:
        prefs = dict(preferences or {})
        count = _coerce_int(prefs.get("numSuggestions"), DEFAULT_NUM_SUGGESTIONS, minimum=None)
        return cls(
            delay_ms=_coerce_int(prefs.get("autocompleteDelay"), DEFAULT_DELAY_MS),
            num_suggestions=min(MAX_SUGGESTIONS, max(MIN_SUGGESTIONS, count)),
            max_length=_coerce_int(prefs.get("autocompleteMaxLength"), DEFAULT_MAX_LENGTH, minimum=1),
            pause_threshold_ms=_coerce_int(prefs.get("typingPauseThreshold"), DEFAULT_PAUSE_THRESHOLD_MS),
            min_document_length=_coerce_int(prefs.get("minDocumentLength"), DEFAULT_MIN_DOCUMENT_LENGTH),
            variation_prompts=_coerce_prompts(prefs.get("variationPrompts")),
            style_prompt=str(prefs.get("generalStylePrompt") or "").strip(),
            references=str(prefs.get("aiReferences") or "").strip(),
            rewrite_prompt=str(prefs.get("defaultRewritePrompt") or "").strip() or DEFAULT_REWRITE_PROMPT,
            discard_stale=_coerce_bool(prefs.get("discardStaleSuggestions")),
            suggestion_timeout=_coerce_timeout(prefs.get("suggestionTimeout")),
        )

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000.0

    @property
    def pause_threshold_seconds(self) -> float:
        return self.pause_threshold_ms / 1000.0

    def variation_instruction(self, index: int) -> str:
        """Return the instruction for zero-based variation ``index`` (cycled)."""

        return self.variation_prompts[index % len(self.variation_prompts)]


def context_window(text: str, caret: int) -> tuple[str, str]:
    """Return the text shortly before and after ``caret``."""

    caret = max(0, min(caret, len(text)))
    before = text[max(0, caret - CONTEXT_BEFORE_CHARS) : caret]
    after = text[caret : caret + CONTEXT_AFTER_CHARS]
    return before, after


def _guidance_section(config: CompletionConfig) -> str:
    parts: list[str] = []
    if config.style_prompt:
        parts.append(f"Apply the following style: {config.style_prompt}")
    if config.references:
        parts.append(f"Use the following reference examples:\n{config.references}")
    return "\n\n".join(parts)


def autocomplete_prompt(before: str, after: str, variation: int, config: CompletionConfig) -> str:
    """Build the prompt for zero-based ``variation`` around the caret."""

    sections = [
        "You are a professional writing autocomplete assistant called Syngrafi. "
        "Please continue the user's text carefully, ensuring that punctuation is followed by a space "
        "IF NOT ALREADY. Return up to 2 sentences, without repeating ANY text in the \"text so far\" "
        "portion (in the backticks). No ellipses."
    ]
    guidance = _guidance_section(config)
    if guidance:
        sections.append(guidance)
    sections.append(f"Text so far:\n```{before}\n```")
    if after.strip():
        sections.append(f"Text after the cursor (do not repeat it):\n```{after}\n```")
    sections.append(f"Continuation: {config.variation_instruction(variation)}")
    return "\n\n".join(sections)


def rewrite_prompt(selected_text: str, instruction: str | None, config: CompletionConfig) -> str:
    """Build the rewrite prompt; an empty ``instruction`` falls back to the default one."""

    final_instruction = (instruction or "").strip() or config.rewrite_prompt
    parts = [final_instruction]
    if config.style_prompt:
        parts.append(f"Apply the following style: {config.style_prompt}")
    if config.references:
        parts.append(f"Use the following reference examples:\n{config.references}")
    parts.append(
        "Do not provide multiple options and do not use unicode characters. "
        "The text will be inserted directly into the file. Rewrite the following text: \n\n" + selected_text
    )
    return "\n\n---\n".join(parts)
