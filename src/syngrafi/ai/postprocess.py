"""Cleanup applied to raw provider output before it is shown as a suggestion."""

from __future__ import annotations

import re

__all__ = [
    "OVERLAP_WINDOW",
    "trim_overlap",
    "cleanup_suggestion",
    "truncate_suggestion",
    "is_quota_error",
    "is_error_output",
    "matches_quota_signature",
    "postprocess",
]

OVERLAP_WINDOW = 40

_ELLIPSES = ("...", "\u2026")
_TERMINAL_PUNCTUATION = (".", "?", "!")
_ERROR_PREFIX = re.compile(r"^\s*(?:unknown\s+)?(?:api\s+)?error\b", re.IGNORECASE)
_QUOTA_TOKENS = ("insufficient_quota", "resource_exhausted", "rate_limit_exceeded")
_QUOTA_SIGNATURES = (
    "quota",
    "rate limit",
    "rate_limit",
    "resource has been exhausted",
    "too many requests",
    "429",
)


def _overlap_length(tail: str, suggestion: str) -> int:
    lowered = suggestion.lower()
    for length in range(len(tail), 0, -1):
        if lowered.startswith(tail[len(tail) - length :]):
            return length
    return 0


def trim_overlap(before_caret: str, suggestion: str, *, window: int = OVERLAP_WINDOW) -> str:
    """Strip the prefix of ``suggestion`` that echoes the text before the caret.

    Trimming repeats until no suffix of the tail prefixes the result, so
    applying it twice gives the same answer as applying it once.
    """

    tail = before_caret[len(before_caret) - min(window, len(before_caret)) :].lower()
    trimmed = suggestion.strip()
    while trimmed and tail:
        length = _overlap_length(tail, trimmed)
        if not length:
            break
        trimmed = trimmed[length:].strip()
    return trimmed


def _strip_ellipses(text: str) -> str:
    changed = True
    while changed:
        changed = False
        for marker in _ELLIPSES:
            if text.startswith(marker):
                text = text[len(marker) :].strip()
                changed = True
            if text.endswith(marker):
                text = text[: -len(marker)].strip()
                changed = True
    return text


def cleanup_suggestion(before_caret: str, suggestion: str) -> str:
    """Drop ellipses and start with a space after sentence-ending punctuation."""

    cleaned = _strip_ellipses(suggestion.strip())
    if cleaned and before_caret.endswith(_TERMINAL_PUNCTUATION):
        cleaned = " " + cleaned
    return cleaned


def truncate_suggestion(suggestion: str, max_length: int) -> str:
    """Cut ``suggestion`` to ``max_length`` characters at the last word boundary."""

    if max_length <= 0 or len(suggestion) <= max_length:
        return suggestion
    cut = suggestion[:max_length]
    boundary = cut.rfind(" ")
    if boundary > 0:
        cut = cut[:boundary]
    return cut.rstrip()


def matches_quota_signature(text: str) -> bool:
    lowered = text.lower()
    return any(signature in lowered for signature in _QUOTA_TOKENS + _QUOTA_SIGNATURES)


def is_error_output(raw: str) -> bool:
    """Return ``True`` when a provider returned an error message instead of text."""

    return bool(_ERROR_PREFIX.match(raw))


def is_quota_error(raw: str) -> bool:
    """Detect quota/rate-limit failures reported in raw provider output."""

    lowered = raw.lower()
    if any(token in lowered for token in _QUOTA_TOKENS):
        return True
    return is_error_output(raw) and matches_quota_signature(raw)


def postprocess(before_caret: str, raw: str, *, max_length: int = 0) -> str:
    """Overlap trim, cleanup and length cap in that order."""

    trimmed = trim_overlap(before_caret, raw)
    cleaned = cleanup_suggestion(before_caret, trimmed)
    return truncate_suggestion(cleaned, max_length)
