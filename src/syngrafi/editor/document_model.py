"""Immutable block/inline document model and its linear offset view.

A :class:`Document` is an ordered tuple of top-level blocks. For editing, the
block tree is flattened into :class:`Line` leaves (paragraphs, headings and
list items) joined by a single ``"\\n"`` separator; every caret offset used by
the editor lives in that flattened space. Edits operate on lines and rebuild
the block tree with :meth:`Document.from_lines`.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Sequence, Union

from .inline import (
    DEFAULT_FONT_SIZE,
    FormatSet,
    Run,
    Runs,
    attributes_at,
    iter_spans,
    normalize_runs,
    runs_length,
    runs_text,
)

__all__ = [
    "Alignment",
    "ListKind",
    "LineKind",
    "HEADING_FONT_SIZES",
    "Paragraph",
    "Heading",
    "ListItem",
    "ListBlock",
    "Block",
    "Line",
    "LinePosition",
    "Document",
    "FormatSet",
    "Run",
    "new_list_group",
    "heading_font_size",
]

HEADING_FONT_SIZES: dict[int, int] = {1: 24, 2: 18}
_GROUP_IDS = itertools.count(1)


class Alignment(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


class ListKind(str, Enum):
    ORDERED = "ordered"
    UNORDERED = "unordered"


class LineKind(str, Enum):
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    ITEM = "item"


def heading_font_size(level: int) -> int:
    return HEADING_FONT_SIZES.get(level, DEFAULT_FONT_SIZE)


def new_list_group() -> int:
    """Return a fresh identity used to keep list items of one list together."""

    return next(_GROUP_IDS)


def _check_level(level: int) -> None:
    if level not in HEADING_FONT_SIZES:
        raise ValueError(f"Heading level must be 1 or 2, got {level!r}")


@dataclass(slots=True, frozen=True)
class Paragraph:
    runs: Runs = ()
    alignment: Alignment = Alignment.LEFT

    @property
    def text(self) -> str:
        return runs_text(self.runs)


@dataclass(slots=True, frozen=True)
class Heading:
    level: int = 1
    runs: Runs = ()
    alignment: Alignment = Alignment.LEFT

    def __post_init__(self) -> None:
        _check_level(self.level)

    @property
    def text(self) -> str:
        return runs_text(self.runs)


@dataclass(slots=True, frozen=True)
class ListItem:
    runs: Runs = ()

    @property
    def text(self) -> str:
        return runs_text(self.runs)


@dataclass(slots=True, frozen=True)
class ListBlock:
    kind: ListKind = ListKind.UNORDERED
    items: tuple[ListItem, ...] = ()

    def __post_init__(self) -> None:
        if not self.items:
            raise ValueError("ListBlock requires at least one item")

    @property
    def text(self) -> str:
        return "\n".join(item.text for item in self.items)


Block = Union[Paragraph, Heading, ListBlock]


@dataclass(slots=True, frozen=True)
class Line:
    """One caret-addressable leaf of the block tree."""

    kind: LineKind
    runs: Runs = ()
    level: int = 0
    alignment: Alignment = Alignment.LEFT
    list_kind: ListKind | None = None
    group: int = 0

    @property
    def text(self) -> str:
        return runs_text(self.runs)

    @property
    def length(self) -> int:
        return runs_length(self.runs)

    @property
    def is_item(self) -> bool:
        return self.kind is LineKind.ITEM

    def with_runs(self, runs: Iterable[Run]) -> Line:
        return replace(self, runs=normalize_runs(runs))

    @classmethod
    def paragraph(cls, runs: Iterable[Run] = (), alignment: Alignment = Alignment.LEFT) -> Line:
        return cls(LineKind.PARAGRAPH, normalize_runs(runs), alignment=alignment)

    @classmethod
    def heading(
        cls, level: int, runs: Iterable[Run] = (), alignment: Alignment = Alignment.LEFT
    ) -> Line:
        _check_level(level)
        return cls(LineKind.HEADING, normalize_runs(runs), level=level, alignment=alignment)

    @classmethod
    def item(cls, kind: ListKind, group: int, runs: Iterable[Run] = ()) -> Line:
        return cls(LineKind.ITEM, normalize_runs(runs), list_kind=kind, group=group)


@dataclass(slots=True, frozen=True)
class LinePosition:
    index: int
    column: int


def _normalize_block(block: Block) -> Block:
    if isinstance(block, ListBlock):
        items = tuple(ListItem(normalize_runs(item.runs)) for item in block.items)
        return ListBlock(block.kind, items)
    if isinstance(block, (Paragraph, Heading)):
        return replace(block, runs=normalize_runs(block.runs))
    raise TypeError(f"Unsupported block type: {type(block).__name__}")


class Document:
    """Immutable, well-formed sequence of top-level blocks."""

    __slots__ = ("_blocks", "_lines", "_starts")

    def __init__(self, blocks: Iterable[Block] | None = None) -> None:
        normalized = tuple(_normalize_block(block) for block in (blocks or ()))
        self._blocks: tuple[Block, ...] = normalized or (Paragraph(),)
        self._lines: tuple[Line, ...] | None = None
        self._starts: tuple[int, ...] | None = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_lines(cls, lines: Sequence[Line]) -> Document:
        """Rebuild the block tree; consecutive items of one group form one list."""

        blocks: list[Block] = []
        pending: list[ListItem] = []
        pending_kind: ListKind | None = None
        pending_group: int | None = None

        def flush() -> None:
            nonlocal pending, pending_kind, pending_group
            if pending:
                blocks.append(ListBlock(pending_kind or ListKind.UNORDERED, tuple(pending)))
            pending, pending_kind, pending_group = [], None, None

        for line in lines:
            if line.kind is LineKind.ITEM:
                if pending and (line.group != pending_group or line.list_kind != pending_kind):
                    flush()
                pending.append(ListItem(line.runs))
                pending_kind = line.list_kind
                pending_group = line.group
                continue
            flush()
            if line.kind is LineKind.HEADING:
                blocks.append(Heading(line.level, line.runs, line.alignment))
            else:
                blocks.append(Paragraph(line.runs, line.alignment))
        flush()
        return cls(blocks)

    @classmethod
    def from_text(cls, text: str, attributes: FormatSet | None = None) -> Document:
        """Build a document with one paragraph per line of ``text``."""

        attrs = attributes or FormatSet()
        return cls(Paragraph((Run(part, attrs),)) for part in text.split("\n"))

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    @property
    def blocks(self) -> tuple[Block, ...]:
        return self._blocks

    def lines(self) -> tuple[Line, ...]:
        if self._lines is None:
            flattened: list[Line] = []
            for block in self._blocks:
                if isinstance(block, ListBlock):
                    group = new_list_group()
                    flattened.extend(Line.item(block.kind, group, item.runs) for item in block.items)
                elif isinstance(block, Heading):
                    flattened.append(Line.heading(block.level, block.runs, block.alignment))
                else:
                    flattened.append(Line.paragraph(block.runs, block.alignment))
            self._lines = tuple(flattened)
        return self._lines

    def line_starts(self) -> tuple[int, ...]:
        if self._starts is None:
            starts: list[int] = []
            position = 0
            for line in self.lines():
                starts.append(position)
                position += line.length + 1
            self._starts = tuple(starts)
        return self._starts

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines())

    def __len__(self) -> int:
        lines = self.lines()
        return self.line_starts()[-1] + lines[-1].length

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return self._blocks == other._blocks

    def __hash__(self) -> int:
        return hash(self._blocks)

    def __repr__(self) -> str:
        return f"Document(blocks={self._blocks!r})"

    # ------------------------------------------------------------------
    # Offset translation
    # ------------------------------------------------------------------
    def locate(self, offset: int) -> LinePosition:
        """Translate a linear ``offset`` into a line index and column."""

        if offset < 0 or offset > len(self):
            raise ValueError(f"Offset {offset} outside document of length {len(self)}")
        starts = self.line_starts()
        lines = self.lines()
        low, high = 0, len(starts) - 1
        while low < high:
            middle = (low + high + 1) // 2
            if starts[middle] <= offset:
                low = middle
            else:
                high = middle - 1
        column = offset - starts[low]
        if column > lines[low].length:  # pragma: no cover - guarded by separator arithmetic
            raise ValueError(f"Offset {offset} does not map onto a line")
        return LinePosition(low, column)

    def offset_of(self, index: int, column: int = 0) -> int:
        return self.line_starts()[index] + column

    def line_at(self, offset: int) -> Line:
        return self.lines()[self.locate(offset).index]

    def char_attributes(self, offset: int) -> FormatSet | None:
        """Return the attributes of the character at ``offset``.

        Separators report the attributes of the last character on their line.
        """

        if offset < 0 or offset >= len(self):
            return None
        position = self.locate(offset)
        line = self.lines()[position.index]
        if position.column < line.length:
            return attributes_at(line.runs, position.column)
        if line.runs:
            return line.runs[-1].attributes
        return None

    def runs_between(self, start: int, end: int) -> Runs:
        """Return the runs covering ``[start, end)`` with separators as ``"\\n"`` runs."""

        if end <= start:
            return ()
        first = self.locate(start)
        last = self.locate(end)
        lines = self.lines()
        collected: list[Run] = []
        for index in range(first.index, last.index + 1):
            line = lines[index]
            lo = first.column if index == first.index else 0
            hi = last.column if index == last.index else line.length
            collected.extend(iter_spans(line.runs, lo, hi))
            if index != last.index:
                separator_attrs = line.runs[-1].attributes if line.runs else FormatSet()
                collected.append(Run("\n", separator_attrs))
        return normalize_runs(collected)

    def summary(self) -> dict[str, int]:
        """Count blocks by kind for status reporting."""

        counts = {"paragraphs": 0, "headings": 0, "lists": 0, "list_items": 0}
        for block in self._blocks:
            if isinstance(block, ListBlock):
                counts["lists"] += 1
                counts["list_items"] += len(block.items)
            elif isinstance(block, Heading):
                counts["headings"] += 1
            else:
                counts["paragraphs"] += 1
        return counts
