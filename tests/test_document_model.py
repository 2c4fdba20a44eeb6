"""Tests for the block model and its flattened offset view."""

from __future__ import annotations

import pytest

from syngrafi.editor.document_model import (
    Alignment,
    Document,
    Heading,
    LineKind,
    LinePosition,
    ListBlock,
    ListItem,
    ListKind,
    Paragraph,
)
from syngrafi.editor.inline import FormatSet, Run, normalize_runs, slice_runs, split_runs

BOLD = FormatSet(bold=True)


def _mixed_document() -> Document:
    return Document(
        [
            Heading(1, (Run("Title"),)),
            Paragraph((Run("Hello "), Run("bold", BOLD))),
            ListBlock(ListKind.ORDERED, (ListItem((Run("one"),)), ListItem((Run("two"),)))),
        ]
    )


def test_empty_document_has_single_empty_paragraph() -> None:
    document = Document()

    assert document.blocks == (Paragraph(),)
    assert len(document) == 0
    assert document.text == ""


def test_from_text_creates_one_paragraph_per_line() -> None:
    document = Document.from_text("ab\ncd")

    assert len(document.blocks) == 2
    assert document.text == "ab\ncd"
    assert len(document) == 5


def test_list_items_flatten_into_lines() -> None:
    document = _mixed_document()

    assert document.text == "Title\nHello bold\none\ntwo"
    kinds = [line.kind for line in document.lines()]
    assert kinds == [LineKind.HEADING, LineKind.PARAGRAPH, LineKind.ITEM, LineKind.ITEM]
    assert document.summary() == {"paragraphs": 1, "headings": 1, "lists": 1, "list_items": 2}


def test_locate_maps_offsets_across_separators() -> None:
    document = Document.from_text("ab\ncd")

    assert document.locate(0) == LinePosition(0, 0)
    assert document.locate(2) == LinePosition(0, 2)
    assert document.locate(3) == LinePosition(1, 0)
    assert document.locate(5) == LinePosition(1, 2)
    with pytest.raises(ValueError):
        document.locate(6)
    assert document.offset_of(1, 1) == 4


def test_from_lines_round_trips_blocks() -> None:
    document = _mixed_document()

    assert Document.from_lines(document.lines()) == document


def test_adjacent_lists_of_different_kinds_stay_separate() -> None:
    document = Document(
        [
            ListBlock(ListKind.ORDERED, (ListItem((Run("a"),)),)),
            ListBlock(ListKind.UNORDERED, (ListItem((Run("b"),)),)),
        ]
    )

    rebuilt = Document.from_lines(document.lines())

    assert len(rebuilt.blocks) == 2
    assert rebuilt == document


def test_char_attributes_and_runs_between() -> None:
    document = _mixed_document()
    bold_offset = document.text.index("bold")

    assert document.char_attributes(bold_offset) == BOLD
    assert document.char_attributes(0) == FormatSet()
    assert document.char_attributes(len(document)) is None

    runs = document.runs_between(bold_offset, bold_offset + 7)
    assert "".join(run.text for run in runs) == "bold\non"
    assert runs[0].attributes == BOLD


def test_heading_levels_and_empty_lists_are_rejected() -> None:
    with pytest.raises(ValueError):
        Heading(3, (Run("x"),))
    with pytest.raises(ValueError):
        ListBlock(ListKind.UNORDERED, ())


def test_blocks_are_normalized_on_construction() -> None:
    document = Document([Paragraph((Run("a"), Run(""), Run("b")), Alignment.CENTER)])

    paragraph = document.blocks[0]
    assert isinstance(paragraph, Paragraph)
    assert paragraph.runs == (Run("ab"),)
    assert paragraph.alignment is Alignment.CENTER


def test_run_helpers_split_and_merge() -> None:
    runs = normalize_runs([Run("ab"), Run("cd", BOLD), Run("ef", BOLD)])

    assert runs == (Run("ab"), Run("cdef", BOLD))
    left, right = split_runs(runs, 3)
    assert left == (Run("ab"), Run("c", BOLD))
    assert right == (Run("def", BOLD),)
    assert slice_runs(runs, 1, 4) == (Run("b"), Run("cd", BOLD))
