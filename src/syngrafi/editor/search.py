"""Plain-text find helpers over the flattened document text.

Matching runs on the original text; case-insensitive search uses the regex
engine's per-character folding, so match offsets are always document offsets.
"""

from __future__ import annotations

import re

from ..core.ranges import TextRange

__all__ = ["find_next", "find_all"]


def _pattern(query: str, match_case: bool) -> re.Pattern[str]:
    return re.compile(re.escape(query), 0 if match_case else re.IGNORECASE)


def find_next(
    text: str,
    query: str,
    start: int = 0,
    *,
    match_case: bool = False,
    wrap: bool = True,
) -> TextRange | None:
    """Return the first match at or after ``start``, wrapping to the top when allowed."""

    if not query:
        return None
    pattern = _pattern(query, match_case)
    match = pattern.search(text, max(0, start))
    if match is None and wrap and start > 0:
        match = pattern.search(text)
    if match is None:
        return None
    return TextRange(match.start(), match.end())


def find_all(text: str, query: str, *, match_case: bool = False) -> list[TextRange]:
    """Return every non-overlapping match from the top of ``text``."""

    if not query:
        return []
    return [TextRange(match.start(), match.end()) for match in _pattern(query, match_case).finditer(text)]
