"""Inline content: formatting attribute sets, runs and run-sequence helpers.

Every helper treats a run sequence as immutable and returns a new, normalized
tuple. Normalized sequences never contain empty runs and never hold two
adjacent runs with equal attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Iterable, Iterator

__all__ = [
    "DEFAULT_FONT_FAMILY",
    "DEFAULT_FONT_SIZE",
    "TOGGLE_FLAGS",
    "FormatSet",
    "Run",
    "Runs",
    "runs_text",
    "runs_length",
    "normalize_runs",
    "split_runs",
    "slice_runs",
    "insert_runs",
    "concat_runs",
    "map_runs",
    "attributes_at",
    "iter_spans",
]

DEFAULT_FONT_FAMILY = "Serif"
DEFAULT_FONT_SIZE = 12
TOGGLE_FLAGS: tuple[str, ...] = ("bold", "italic", "underline", "strikethrough")


@dataclass(slots=True, frozen=True)
class FormatSet:
    """Character-level formatting attributes."""

    bold: bool = False
    italic: bool = False
    underline: bool = False
    strikethrough: bool = False
    font_family: str = DEFAULT_FONT_FAMILY
    font_size_pt: int = DEFAULT_FONT_SIZE

    def flag(self, name: str) -> bool:
        if name not in TOGGLE_FLAGS:
            raise ValueError(f"Unknown formatting flag: {name}")
        return bool(getattr(self, name))

    def with_flag(self, name: str, value: bool) -> FormatSet:
        if name not in TOGGLE_FLAGS:
            raise ValueError(f"Unknown formatting flag: {name}")
        return replace(self, **{name: bool(value)})

    def with_font(self, *, family: str | None = None, size_pt: int | None = None) -> FormatSet:
        updates: dict[str, object] = {}
        if family is not None:
            updates["font_family"] = family
        if size_pt is not None:
            updates["font_size_pt"] = int(size_pt)
        return replace(self, **updates) if updates else self

    @property
    def is_default(self) -> bool:
        return self == FormatSet()


@dataclass(slots=True, frozen=True)
class Run:
    """A contiguous span of text sharing one attribute set."""

    text: str
    attributes: FormatSet = FormatSet()

    def __len__(self) -> int:
        return len(self.text)


Runs = tuple[Run, ...]


def runs_text(runs: Iterable[Run]) -> str:
    return "".join(run.text for run in runs)


def runs_length(runs: Iterable[Run]) -> int:
    return sum(len(run.text) for run in runs)


def normalize_runs(runs: Iterable[Run]) -> Runs:
    """Drop empty runs and merge neighbours that share attributes."""

    merged: list[Run] = []
    for run in runs:
        if not run.text:
            continue
        if merged and merged[-1].attributes == run.attributes:
            merged[-1] = Run(merged[-1].text + run.text, run.attributes)
        else:
            merged.append(run)
    return tuple(merged)


def split_runs(runs: Runs, offset: int) -> tuple[Runs, Runs]:
    """Split ``runs`` at character ``offset`` (clamped to the content)."""

    left: list[Run] = []
    right: list[Run] = []
    position = 0
    for run in runs:
        end = position + len(run.text)
        if end <= offset:
            left.append(run)
        elif position >= offset:
            right.append(run)
        else:
            cut = offset - position
            left.append(Run(run.text[:cut], run.attributes))
            right.append(Run(run.text[cut:], run.attributes))
        position = end
    return normalize_runs(left), normalize_runs(right)


def slice_runs(runs: Runs, start: int, end: int) -> Runs:
    _, tail = split_runs(runs, start)
    middle, _ = split_runs(tail, max(0, end - start))
    return middle


def concat_runs(*parts: Iterable[Run]) -> Runs:
    combined: list[Run] = []
    for part in parts:
        combined.extend(part)
    return normalize_runs(combined)


def insert_runs(runs: Runs, offset: int, inserted: Iterable[Run]) -> Runs:
    left, right = split_runs(runs, offset)
    return concat_runs(left, inserted, right)


def map_runs(
    runs: Runs,
    start: int,
    end: int,
    transform: Callable[[FormatSet], FormatSet],
) -> Runs:
    """Apply ``transform`` to the attributes of characters in ``[start, end)``."""

    left, tail = split_runs(runs, start)
    middle, right = split_runs(tail, max(0, end - start))
    changed = [Run(run.text, transform(run.attributes)) for run in middle]
    return concat_runs(left, changed, right)


def attributes_at(runs: Runs, index: int) -> FormatSet | None:
    """Return the attributes of the character at ``index`` or ``None``."""

    position = 0
    for run in runs:
        end = position + len(run.text)
        if position <= index < end:
            return run.attributes
        position = end
    return None


def iter_spans(runs: Runs, start: int, end: int) -> Iterator[Run]:
    """Yield the (possibly clipped) runs intersecting ``[start, end)``."""

    position = 0
    for run in runs:
        run_end = position + len(run.text)
        if run_end > start and position < end:
            lo = max(start, position) - position
            hi = min(end, run_end) - position
            yield Run(run.text[lo:hi], run.attributes)
        position = run_end
        if position >= end:
            break
