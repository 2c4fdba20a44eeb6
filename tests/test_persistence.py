"""Tests for HTML persistence and the provenance marker."""

from __future__ import annotations

from pathlib import Path

import pytest

from syngrafi.editor.document_model import (
    Alignment,
    Document,
    Heading,
    ListBlock,
    ListItem,
    ListKind,
    Paragraph,
)
from syngrafi.editor.inline import FormatSet, Run
from syngrafi.editor.persistence import (
    MARKER_PATTERN,
    DocumentFormatError,
    dump_document,
    load_document,
    open_document,
    parse_html,
    save_document,
)
from syngrafi.editor.provenance import ProvenanceCounters

BOLD = FormatSet(bold=True)


def _rich_document() -> Document:
    return Document(
        [
            Heading(1, (Run("Chapter", FormatSet(font_size_pt=24)),), Alignment.CENTER),
            Heading(2, (Run("Scene"),)),
            Paragraph(
                (
                    Run("Plain "),
                    Run("bold", BOLD),
                    Run(" and ", FormatSet(italic=True, underline=True)),
                    Run("struck", FormatSet(strikethrough=True)),
                    Run(" in ", FormatSet(font_family="Arial", font_size_pt=14)),
                    Run("<tags> & more"),
                ),
                Alignment.RIGHT,
            ),
            ListBlock(ListKind.ORDERED, (ListItem((Run("first"),)), ListItem((Run("second", BOLD),)))),
            ListBlock(ListKind.UNORDERED, (ListItem((Run("bullet"),)),)),
            Paragraph(),
        ]
    )


def test_counters_survive_round_trip_without_leaking_marker() -> None:
    document = Document.from_text("Hello world")

    markup = dump_document(document, ProvenanceCounters(ai_chars=10, human_chars=5))
    loaded = load_document(markup)

    assert loaded.counters == ProvenanceCounters(10, 5)
    assert loaded.document == document
    assert "AI_CHARS" not in loaded.document.text
    assert MARKER_PATTERN.search(markup)


def test_rich_document_round_trips() -> None:
    document = _rich_document()

    loaded = load_document(dump_document(document, ProvenanceCounters(1, 2)))

    assert loaded.document == document


def test_repeated_spaces_round_trip() -> None:
    document = Document.from_text("  a  b ")

    assert load_document(dump_document(document)).document == document


def test_tabs_round_trip_as_character_references() -> None:
    document = Document.from_text("name\tvalue\n\tindented")

    markup = dump_document(document)

    assert "&#9;" in markup
    assert load_document(markup).document == document
    assert parse_html("<p>a\tb</p>").text == "a b"


def test_parse_sample_markup(sample_markup: str) -> None:
    loaded = load_document(sample_markup)

    assert loaded.counters == ProvenanceCounters(10, 5)
    assert loaded.document.blocks == (
        Heading(1, (Run("Title"),)),
        Paragraph((Run("Hello "), Run("bold", BOLD), Run(" world"))),
        ListBlock(ListKind.UNORDERED, (ListItem((Run("one"),)), ListItem((Run("two"),)))),
    )


def test_missing_marker_means_zero_counters() -> None:
    loaded = load_document("<p>no marker</p>")

    assert loaded.counters == ProvenanceCounters()
    assert loaded.document.text == "no marker"


def test_last_marker_wins_and_all_markers_are_stripped() -> None:
    markup = "<p>x</p><!-- AI_CHARS=1 HUMAN_CHARS=1 --><!-- AI_CHARS=7 HUMAN_CHARS=3 -->"

    loaded = load_document(markup)

    assert loaded.counters == ProvenanceCounters(7, 3)
    assert loaded.document.text == "x"


def test_plain_text_input_becomes_paragraphs() -> None:
    loaded = load_document("line one\nline two\n<!-- AI_CHARS=1 HUMAN_CHARS=2 -->\n")

    assert loaded.document.text == "line one\nline two"
    assert len(loaded.document.blocks) == 2
    assert loaded.counters == ProvenanceCounters(1, 2)


def test_line_breaks_and_nested_lists() -> None:
    document = parse_html("<p>a<br>b</p><ul><li>top<ul><li>inner</li></ul></li></ul><h3>deep</h3>")

    assert document.blocks == (
        Paragraph((Run("a"),)),
        Paragraph((Run("b"),)),
        ListBlock(ListKind.UNORDERED, (ListItem((Run("top"),)), ListItem((Run("inner"),)))),
        Heading(2, (Run("deep"),)),
    )


def test_legacy_font_and_css_styles() -> None:
    document = parse_html(
        '<p><font face="Arial, sans-serif" size="5">x</font>'
        '<span style="font-weight: 700; text-decoration: underline; font-size: 16px">y</span></p>'
    )

    paragraph = document.blocks[0]
    assert isinstance(paragraph, Paragraph)
    assert paragraph.runs == (
        Run("x", FormatSet(font_family="Arial", font_size_pt=18)),
        Run("y", FormatSet(bold=True, underline=True)),
    )


def test_save_and_open_file(tmp_path: Path) -> None:
    target = tmp_path / "draft.html"
    document = _rich_document()

    save_document(target, document, ProvenanceCounters(4, 9))
    loaded = open_document(target)

    assert loaded.document == document
    assert loaded.counters == ProvenanceCounters(4, 9)


def test_open_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(DocumentFormatError):
        open_document(tmp_path / "missing.html")
