"""Structured helpers for representing selections in the linear offset space."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Iterator


@dataclass(slots=True, frozen=True)
class TextRange(Sequence[int]):
    """Selection expressed as absolute offsets into the flattened document text.

    ``start`` never exceeds ``end``; reversed inputs are swapped and negative
    inputs clamp to zero. A collapsed range is a caret.
    """

    start: int
    end: int

    def __post_init__(self) -> None:
        start = self._coerce_index(self.start, "start")
        end = self._coerce_index(self.end, "end")
        if end < start:
            start, end = end, start
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @staticmethod
    def _coerce_index(value: Any, label: str) -> int:
        try:
            number = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"TextRange {label} must be an integer") from exc
        if number < 0:
            return 0
        return number

    def __len__(self) -> int:
        return 2

    def __getitem__(self, index: int) -> int:  # type: ignore[override]
        if index == 0:
            return self.start
        if index == 1:
            return self.end
        raise IndexError("TextRange index out of range")

    def __iter__(self) -> Iterator[int]:
        yield self.start
        yield self.end

    @property
    def length(self) -> int:
        """Return the width of the range."""

        return self.end - self.start

    def clamp(self, *, lower: int = 0, upper: int | None = None) -> TextRange:
        """Clamp the range to ``[lower, upper]`` bounds."""

        start = max(lower, self.start)
        end = max(lower, self.end)
        if upper is not None:
            start = min(start, upper)
            end = min(end, upper)
        return TextRange(start=start, end=end)

    @classmethod
    def caret(cls, offset: int) -> TextRange:
        return cls(offset, offset)

    @classmethod
    def zero(cls) -> TextRange:
        """Return a caret-aligned range at offset 0."""

        return cls(0, 0)


__all__ = ["TextRange"]
