"""Structural edit operations over the flattened line view.

Each operation is a pure function: it reads a :class:`Document`, builds the
edited line sequence and returns an :class:`EditOutcome` holding the rebuilt
document and the resulting selection. Nothing is mutated in place, so an
operation that raises :class:`StructureError` leaves the caller's document
untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from ..core.ranges import TextRange
from .document_model import (
    Alignment,
    Document,
    Line,
    LineKind,
    LinePosition,
    ListKind,
    new_list_group,
)
from .inline import FormatSet, Run, concat_runs, iter_spans, map_runs, split_runs

__all__ = [
    "StructureError",
    "EditOutcome",
    "insert_text",
    "delete_range",
    "split_list_item",
    "merge_list_item_backward",
    "apply_heading",
    "revert_to_normal",
    "toggle_attribute",
    "selection_has_flag",
    "set_font",
    "set_alignment",
    "toggle_list",
]


class StructureError(RuntimeError):
    """Raised when a structural edit meets a layout it cannot resolve."""


@dataclass(slots=True, frozen=True)
class EditOutcome:
    """Rebuilt document plus the selection the caret should land on."""

    document: Document
    selection: TextRange
    changed: TextRange | None = None


def _position(document: Document, offset: int) -> LinePosition:
    try:
        return document.locate(offset)
    except ValueError as exc:
        raise StructureError(str(exc)) from exc


def _span(document: Document, start: int, end: int) -> tuple[LinePosition, LinePosition]:
    """Return the first/last positions touched by ``[start, end]``.

    A selection ending right after a separator does not touch the next line,
    and one starting right before a separator does not touch the previous one.
    """

    first = _position(document, start)
    last = _position(document, end)
    lines = document.lines()
    if end > start and last.column == 0 and last.index > first.index:
        last = LinePosition(last.index - 1, lines[last.index - 1].length)
    if end > start and first.column == lines[first.index].length and first.index < last.index:
        first = LinePosition(first.index + 1, 0)
    return first, last


def _isolate(document: Document, start: int, end: int) -> tuple[list[Line], int, int]:
    """Split the boundary lines so ``[start, end)`` covers whole lines."""

    first, last = _span(document, start, end)
    lines = list(document.lines())
    tail = lines[last.index]
    if last.column < tail.length:
        left, right = split_runs(tail.runs, last.column)
        lines[last.index : last.index + 1] = [tail.with_runs(left), tail.with_runs(right)]
    first_index, last_index = first.index, last.index
    if first.column > 0:
        head = lines[first.index]
        left, right = split_runs(head.runs, first.column)
        lines[first.index : first.index + 1] = [head.with_runs(left), head.with_runs(right)]
        first_index += 1
        last_index += 1
    return lines, first_index, last_index


def _covering(document: Document, first: int, last: int) -> TextRange:
    lines = document.lines()
    return TextRange(document.offset_of(first), document.offset_of(last, lines[last].length))


def _continuation(line: Line, *, remainder_empty: bool) -> Line:
    if line.kind is LineKind.ITEM:
        return Line.item(line.list_kind or ListKind.UNORDERED, line.group)
    if line.kind is LineKind.HEADING and not remainder_empty:
        return Line.heading(line.level, alignment=line.alignment)
    if line.kind is LineKind.HEADING:
        return Line.paragraph()
    return Line.paragraph(alignment=line.alignment)


# ----------------------------------------------------------------------
# Text path
# ----------------------------------------------------------------------
def insert_text(document: Document, offset: int, text: str, attributes: FormatSet) -> EditOutcome:
    """Insert ``text`` as one run at ``offset``; newlines split the current line."""

    position = _position(document, offset)
    lines = list(document.lines())
    line = lines[position.index]
    left, right = split_runs(line.runs, position.column)
    parts = text.split("\n")
    if len(parts) == 1:
        lines[position.index] = line.with_runs(concat_runs(left, [Run(text, attributes)], right))
    else:
        template = _continuation(line, remainder_empty=not right)
        replacement = [line.with_runs(concat_runs(left, [Run(parts[0], attributes)]))]
        replacement.extend(template.with_runs([Run(part, attributes)]) for part in parts[1:-1])
        replacement.append(template.with_runs(concat_runs([Run(parts[-1], attributes)], right)))
        lines[position.index : position.index + 1] = replacement
    return EditOutcome(Document.from_lines(lines), TextRange.caret(offset + len(text)))


def delete_range(document: Document, start: int, end: int) -> EditOutcome:
    """Remove ``[start, end)``; the first touched line absorbs the remainder of the last."""

    if end <= start:
        raise StructureError("Nothing to delete")
    first = _position(document, start)
    last = _position(document, end)
    lines = list(document.lines())
    head = lines[first.index]
    left, _ = split_runs(head.runs, first.column)
    _, right = split_runs(lines[last.index].runs, last.column)
    lines[first.index : last.index + 1] = [head.with_runs(concat_runs(left, right))]
    return EditOutcome(Document.from_lines(lines), TextRange.caret(start))


# ----------------------------------------------------------------------
# List boundaries
# ----------------------------------------------------------------------
def _list_extent(lines: list[Line], index: int) -> tuple[int, int]:
    group = lines[index].group
    first = index
    while first > 0 and lines[first - 1].is_item and lines[first - 1].group == group:
        first -= 1
    last = index
    while last + 1 < len(lines) and lines[last + 1].is_item and lines[last + 1].group == group:
        last += 1
    return first, last


def split_list_item(document: Document, caret: int) -> EditOutcome:
    """Handle Enter inside a list item.

    A blank item leaves the list: it is removed and an empty paragraph takes
    the list's place (or follows the list when other items remain). Otherwise
    the item splits at the caret and the caret moves to the second item.
    """

    position = _position(document, caret)
    lines = list(document.lines())
    line = lines[position.index]
    if not line.is_item:
        raise StructureError("Caret is not inside a list item")

    if not line.text.strip():
        first, last = _list_extent(lines, position.index)
        del lines[position.index]
        target = position.index if first == last else last
        lines.insert(target, Line.paragraph())
        rebuilt = Document.from_lines(lines)
        return EditOutcome(rebuilt, TextRange.caret(rebuilt.offset_of(target)))

    left, right = split_runs(line.runs, position.column)
    lines[position.index : position.index + 1] = [line.with_runs(left), line.with_runs(right)]
    rebuilt = Document.from_lines(lines)
    return EditOutcome(rebuilt, TextRange.caret(rebuilt.offset_of(position.index + 1)))


def merge_list_item_backward(document: Document, caret: int) -> EditOutcome:
    """Handle Backspace at the first content offset of a list item.

    The first item of a list dissolves into a paragraph placed where the list
    began; any other item joins the end of its previous sibling.
    """

    position = _position(document, caret)
    lines = list(document.lines())
    line = lines[position.index]
    if not line.is_item:
        raise StructureError("Caret is not inside a list item")
    if position.column != 0:
        raise StructureError("Caret is not at the start of the list item")

    index = position.index
    previous = lines[index - 1] if index > 0 else None
    if previous is None or not previous.is_item or previous.group != line.group:
        lines[index] = Line.paragraph(line.runs)
        return EditOutcome(Document.from_lines(lines), TextRange.caret(caret))

    lines[index - 1 : index + 1] = [previous.with_runs(concat_runs(previous.runs, line.runs))]
    return EditOutcome(Document.from_lines(lines), TextRange.caret(caret - 1))


# ----------------------------------------------------------------------
# Block kind changes
# ----------------------------------------------------------------------
def apply_heading(document: Document, start: int, end: int, level: int) -> EditOutcome:
    """Turn exactly the selected range into heading lines of ``level``."""

    if end <= start:
        raise StructureError("Heading apply requires a selection")
    lines, first, last = _isolate(document, start, end)
    for index in range(first, last + 1):
        source = lines[index]
        alignment = Alignment.LEFT if source.is_item else source.alignment
        lines[index] = Line.heading(level, source.runs, alignment)
    rebuilt = Document.from_lines(lines)
    return EditOutcome(rebuilt, _covering(rebuilt, first, last))


def revert_to_normal(document: Document, start: int, end: int) -> EditOutcome:
    """Strip heading/list semantics and formatting from the selection or current line."""

    if end > start:
        lines, first, last = _isolate(document, start, end)
    else:
        lines = list(document.lines())
        first = last = _position(document, start).index
    for index in range(first, last + 1):
        text = lines[index].text
        lines[index] = Line.paragraph([Run(text, FormatSet())])
    rebuilt = Document.from_lines(lines)
    if end > start:
        return EditOutcome(rebuilt, _covering(rebuilt, first, last))
    return EditOutcome(rebuilt, TextRange.caret(start))


def toggle_list(document: Document, start: int, end: int, kind: ListKind) -> EditOutcome:
    """Make the touched lines one list of ``kind``; dissolve them if they already are."""

    first, last = _span(document, start, end)
    lines = list(document.lines())
    touched = lines[first.index : last.index + 1]
    if all(line.is_item and line.list_kind is kind for line in touched):
        converted = [Line.paragraph(line.runs) for line in touched]
    else:
        group = new_list_group()
        converted = [Line.item(kind, group, line.runs) for line in touched]
    lines[first.index : last.index + 1] = converted
    return EditOutcome(Document.from_lines(lines), TextRange(start, end))


def set_alignment(document: Document, start: int, end: int, alignment: Alignment) -> EditOutcome:
    """Align paragraph and heading lines touched by the selection; items are skipped."""

    first, last = _span(document, start, end)
    lines = list(document.lines())
    for index in range(first.index, last.index + 1):
        line = lines[index]
        if line.is_item:
            continue
        if line.kind is LineKind.HEADING:
            lines[index] = Line.heading(line.level, line.runs, alignment)
        else:
            lines[index] = Line.paragraph(line.runs, alignment)
    return EditOutcome(Document.from_lines(lines), TextRange(start, end))


# ----------------------------------------------------------------------
# Character attributes
# ----------------------------------------------------------------------
def _map_range(
    document: Document,
    start: int,
    end: int,
    transform: Callable[[FormatSet], FormatSet],
) -> EditOutcome:
    first = _position(document, start)
    last = _position(document, end)
    lines = list(document.lines())
    for index in range(first.index, last.index + 1):
        line = lines[index]
        lo = first.column if index == first.index else 0
        hi = last.column if index == last.index else line.length
        lines[index] = line.with_runs(map_runs(line.runs, lo, hi, transform))
    selection = TextRange(start, end)
    return EditOutcome(Document.from_lines(lines), selection, changed=selection)


def selection_has_flag(document: Document, start: int, end: int, flag: str) -> bool:
    """Return ``True`` when every run intersecting ``[start, end)`` carries ``flag``."""

    first = _position(document, start)
    last = _position(document, end)
    lines = document.lines()
    seen = False
    for index in range(first.index, last.index + 1):
        line = lines[index]
        lo = first.column if index == first.index else 0
        hi = last.column if index == last.index else line.length
        for run in iter_spans(line.runs, lo, hi):
            seen = True
            if not run.attributes.flag(flag):
                return False
    return seen


def toggle_attribute(document: Document, start: int, end: int, flag: str) -> EditOutcome:
    """Clear ``flag`` when the whole selection has it, otherwise set it everywhere."""

    if end <= start:
        raise StructureError("Attribute toggle requires a selection")
    value = not selection_has_flag(document, start, end, flag)
    return _map_range(document, start, end, lambda attrs: attrs.with_flag(flag, value))


def set_font(
    document: Document,
    start: int,
    end: int,
    *,
    family: str | None = None,
    size_pt: int | None = None,
) -> EditOutcome:
    if end <= start:
        raise StructureError("Font change requires a selection")
    return _map_range(document, start, end, lambda attrs: attrs.with_font(family=family, size_pt=size_pt))
