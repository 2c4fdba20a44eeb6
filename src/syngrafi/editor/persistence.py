"""HTML-subset serialization of documents and the provenance marker.

Documents are written as a small HTML subset (paragraphs, two heading levels,
ordered/unordered lists and inline character formatting). Provenance counters
travel with the file as a trailing comment::

    <!-- AI_CHARS=10 HUMAN_CHARS=5 -->

which is stripped from the visible content again on load.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, NavigableString, PageElement, ProcessingInstruction, Tag

from ..utils.file_io import read_text, write_text
from .document_model import (
    Alignment,
    Block,
    Document,
    Heading,
    Line,
    ListBlock,
    ListKind,
    new_list_group,
)
from .inline import DEFAULT_FONT_FAMILY, DEFAULT_FONT_SIZE, FormatSet, Run, Runs, normalize_runs, runs_text
from .provenance import ProvenanceCounters

__all__ = [
    "MARKER_PATTERN",
    "DocumentFormatError",
    "PersistedDocument",
    "format_marker",
    "render_html",
    "parse_html",
    "dump_document",
    "load_document",
    "save_document",
    "open_document",
]

LOGGER = logging.getLogger(__name__)

MARKER_PATTERN = re.compile(r"<!--\s*AI_CHARS=(\d+)\s+HUMAN_CHARS=(\d+)\s*-->")

_WHITESPACE = re.compile(r"[ \t\n\r\f]+")
_TAG_HINT = re.compile(r"<\s*[A-Za-z!/]")
_NBSP = "\xa0"
# Tabs are written as character references; parsing swaps them for a
# private-use mark so whitespace collapsing leaves them alone.
_TAB_REFERENCE = re.compile(r"&#0*9;|&#x0*9;|&Tab;", re.IGNORECASE)
_TAB_MARK = "\ue009"
_SKIPPED_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)
_IGNORED_TAGS = {"head", "title", "meta", "link", "script", "style", "noscript"}
_HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
_LIST_TAGS = {"ul": ListKind.UNORDERED, "ol": ListKind.ORDERED}
_ALWAYS_CONTAINER = {"html", "body", "table", "tbody", "thead", "tfoot", "tr"}
_MAYBE_CONTAINER = {
    "div",
    "section",
    "article",
    "main",
    "header",
    "footer",
    "nav",
    "aside",
    "blockquote",
    "center",
    "td",
    "th",
    "form",
}
_BLOCK_TAGS = {"p", "pre"} | _HEADING_TAGS | set(_LIST_TAGS) | _ALWAYS_CONTAINER | _MAYBE_CONTAINER
# Legacy <font size="1..7"> steps.
_FONT_SIZE_STEPS = {1: 8, 2: 10, 3: 12, 4: 14, 5: 18, 6: 24, 7: 36}


class DocumentFormatError(RuntimeError):
    """Raised when a persisted document cannot be read."""


@dataclass(slots=True, frozen=True)
class PersistedDocument:
    document: Document
    counters: ProvenanceCounters


# ----------------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------------
def format_marker(counters: ProvenanceCounters) -> str:
    return f"<!-- AI_CHARS={counters.ai_chars} HUMAN_CHARS={counters.human_chars} -->"


def render_html(document: Document) -> str:
    """Render the block content of ``document`` without a page wrapper."""

    return "\n".join(_render_block(block) for block in document.blocks)


def dump_document(document: Document, counters: ProvenanceCounters | None = None) -> str:
    """Serialize ``document`` as a full page with the provenance marker before ``</body>``."""

    marker = format_marker(counters or ProvenanceCounters())
    return "\n".join(
        [
            "<html>",
            "<head>",
            '<meta charset="utf-8">',
            "</head>",
            "<body>",
            render_html(document),
            marker,
            "</body>",
            "</html>",
            "",
        ]
    )


def _alignment_attribute(alignment: Alignment) -> str:
    if alignment is Alignment.LEFT:
        return ""
    return f' style="text-align: {alignment.value}"'


def _render_block(block: Block) -> str:
    if isinstance(block, ListBlock):
        tag = "ol" if block.kind is ListKind.ORDERED else "ul"
        items = "\n".join(f"<li>{_render_runs(item.runs)}</li>" for item in block.items)
        return f"<{tag}>\n{items}\n</{tag}>"
    if isinstance(block, Heading):
        tag = f"h{block.level}"
        return f"<{tag}{_alignment_attribute(block.alignment)}>{_render_runs(block.runs)}</{tag}>"
    return f"<p{_alignment_attribute(block.alignment)}>{_render_runs(block.runs)}</p>"


def _render_runs(runs: Runs) -> str:
    text = runs_text(runs)
    pieces: list[str] = []
    position = 0
    for run in runs:
        end = position + len(run.text)
        pieces.append(_wrap(_escape_span(text, position, end), run.attributes))
        position = end
    return "".join(pieces)


def _escape_span(text: str, start: int, end: int) -> str:
    """Escape ``text[start:end]``, protecting whitespace that HTML would collapse."""

    out: list[str] = []
    last = len(text) - 1
    for index in range(start, end):
        char = text[index]
        if char == " " and (index == 0 or index == last or text[index - 1] == " "):
            out.append("&nbsp;")
        elif char == "\t":
            out.append("&#9;")
        else:
            out.append(html.escape(char, quote=False))
    return "".join(out)


def _wrap(chunk: str, attributes: FormatSet) -> str:
    if attributes.strikethrough:
        chunk = f"<s>{chunk}</s>"
    if attributes.underline:
        chunk = f"<u>{chunk}</u>"
    if attributes.italic:
        chunk = f"<i>{chunk}</i>"
    if attributes.bold:
        chunk = f"<b>{chunk}</b>"
    styles: list[str] = []
    if attributes.font_family != DEFAULT_FONT_FAMILY:
        styles.append(f"font-family: {html.escape(attributes.font_family)}")
    if attributes.font_size_pt != DEFAULT_FONT_SIZE:
        styles.append(f"font-size: {attributes.font_size_pt}pt")
    if styles:
        chunk = f'<span style="{"; ".join(styles)}">{chunk}</span>'
    return chunk


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------
def load_document(markup: str) -> PersistedDocument:
    """Parse persisted markup, restoring the provenance counters from the marker.

    A missing marker yields zero counters. Input without any markup is read as
    plain text, one paragraph per line.
    """

    matches = list(MARKER_PATTERN.finditer(markup))
    if matches:
        last = matches[-1]
        counters = ProvenanceCounters(int(last.group(1)), int(last.group(2)))
        markup = MARKER_PATTERN.sub("", markup)
    else:
        counters = ProvenanceCounters()
    if not _TAG_HINT.search(markup):
        return PersistedDocument(Document.from_text(markup.rstrip("\n")), counters)
    return PersistedDocument(parse_html(markup), counters)


def parse_html(markup: str) -> Document:
    soup = BeautifulSoup(_TAB_REFERENCE.sub(_TAB_MARK, markup), "html.parser")
    root = soup.body or soup
    lines: list[Line] = []
    _read_blocks(root, lines)
    return Document.from_lines(lines)


def _read_blocks(container: Tag, lines: list[Line]) -> None:
    loose: list[PageElement] = []

    def flush() -> None:
        if loose and _has_content(loose):
            lines.extend(Line.paragraph(runs) for runs in _inline_segments(loose, FormatSet()))
        loose.clear()

    for child in container.children:
        if isinstance(child, _SKIPPED_STRINGS):
            continue
        if isinstance(child, Tag) and child.name in _IGNORED_TAGS:
            continue
        if isinstance(child, Tag) and child.name in _BLOCK_TAGS:
            flush()
            _read_block(child, lines)
        else:
            loose.append(child)
    flush()


def _read_block(tag: Tag, lines: list[Line]) -> None:
    name = tag.name
    if name in _ALWAYS_CONTAINER:
        _read_blocks(tag, lines)
        return
    if name in _MAYBE_CONTAINER and any(
        isinstance(child, Tag) and child.name in _BLOCK_TAGS for child in tag.children
    ):
        _read_blocks(tag, lines)
        return
    if name in _LIST_TAGS:
        _read_list(tag, _LIST_TAGS[name], new_list_group(), lines)
        return
    alignment = _alignment(tag)
    segments = _inline_segments(tag.children, FormatSet())
    if name in _HEADING_TAGS:
        level = min(int(name[1]), 2)
        lines.extend(Line.heading(level, runs, alignment) for runs in segments)
    else:
        lines.extend(Line.paragraph(runs, alignment) for runs in segments)


def _read_list(tag: Tag, kind: ListKind, group: int, lines: list[Line]) -> None:
    """Flatten ``tag`` into items of one list; nested lists join the outer one."""

    for child in tag.children:
        if not isinstance(child, Tag):
            continue
        if child.name in _LIST_TAGS:
            _read_list(child, kind, group, lines)
            continue
        if child.name != "li":
            continue
        inline = [node for node in child.children if not (isinstance(node, Tag) and node.name in _LIST_TAGS)]
        lines.extend(Line.item(kind, group, runs) for runs in _inline_segments(inline, FormatSet()))
        for nested in child.children:
            if isinstance(nested, Tag) and nested.name in _LIST_TAGS:
                _read_list(nested, kind, group, lines)


def _has_content(nodes: Iterable[PageElement]) -> bool:
    for node in nodes:
        if isinstance(node, _SKIPPED_STRINGS):
            continue
        if isinstance(node, NavigableString):
            if _WHITESPACE.sub("", str(node)):
                return True
        elif isinstance(node, Tag):
            return True
    return False


def _inline_segments(nodes: Iterable[PageElement], base: FormatSet) -> list[Runs]:
    """Collect inline runs, starting a new segment at every ``<br>``."""

    segments: list[list[Run]] = [[]]

    def walk(node: PageElement, attributes: FormatSet) -> None:
        if isinstance(node, _SKIPPED_STRINGS):
            return
        if isinstance(node, NavigableString):
            text = _WHITESPACE.sub(" ", str(node))
            if text:
                segments[-1].append(Run(text, attributes))
            return
        if not isinstance(node, Tag) or node.name in _IGNORED_TAGS:
            return
        if node.name == "br":
            segments.append([])
            return
        nested = _inline_attributes(node, attributes)
        for child in node.children:
            walk(child, nested)

    for node in nodes:
        walk(node, base)
    return [_collapse(segment) for segment in segments]


def _collapse(runs: list[Run]) -> Runs:
    """Apply HTML whitespace collapsing, then restore protected spaces and tabs."""

    pieces: list[list[str]] = []
    previous_space = True
    for run in runs:
        kept: list[str] = []
        for char in run.text:
            if char == " ":
                if previous_space:
                    continue
                previous_space = True
            else:
                previous_space = False
            kept.append(char)
        pieces.append(kept)
    for kept in reversed(pieces):
        if not kept:
            continue
        if kept[-1] == " ":
            kept.pop()
        break
    collapsed = [
        Run("".join(kept).replace(_NBSP, " ").replace(_TAB_MARK, "\t"), run.attributes)
        for kept, run in zip(pieces, runs)
    ]
    return normalize_runs(collapsed)


def _parse_style(value: str | None) -> dict[str, str]:
    declarations: dict[str, str] = {}
    for part in (value or "").split(";"):
        if ":" not in part:
            continue
        key, _, raw = part.partition(":")
        declarations[key.strip().lower()] = raw.strip()
    return declarations


def _alignment(tag: Tag) -> Alignment:
    value = _parse_style(tag.get("style")).get("text-align") or tag.get("align") or ""
    try:
        return Alignment(str(value).strip().lower())
    except ValueError:
        return Alignment.LEFT


def _font_size(value: str) -> int | None:
    match = re.match(r"\s*(\d+(?:\.\d+)?)\s*(pt|px)?", value)
    if not match:
        return None
    size = float(match.group(1))
    if match.group(2) == "px":
        size *= 0.75
    return max(1, round(size))


def _inline_attributes(tag: Tag, attributes: FormatSet) -> FormatSet:
    name = tag.name
    if name in {"b", "strong"}:
        attributes = attributes.with_flag("bold", True)
    elif name in {"i", "em"}:
        attributes = attributes.with_flag("italic", True)
    elif name == "u":
        attributes = attributes.with_flag("underline", True)
    elif name in {"s", "strike", "del"}:
        attributes = attributes.with_flag("strikethrough", True)
    elif name == "font":
        face = tag.get("face")
        if face:
            attributes = attributes.with_font(family=str(face).split(",")[0].strip())
        size = str(tag.get("size") or "").strip()
        if size.isdigit() and int(size) in _FONT_SIZE_STEPS:
            attributes = attributes.with_font(size_pt=_FONT_SIZE_STEPS[int(size)])

    style = _parse_style(tag.get("style"))
    family = style.get("font-family")
    if family:
        attributes = attributes.with_font(family=family.split(",")[0].strip().strip("'\""))
    size_value = style.get("font-size")
    if size_value:
        size = _font_size(size_value)
        if size is not None:
            attributes = attributes.with_font(size_pt=size)
    weight = style.get("font-weight", "").lower()
    if weight == "bold" or (weight.isdigit() and int(weight) >= 600):
        attributes = attributes.with_flag("bold", True)
    if style.get("font-style", "").lower() == "italic":
        attributes = attributes.with_flag("italic", True)
    decoration = style.get("text-decoration", "").lower()
    if "underline" in decoration:
        attributes = attributes.with_flag("underline", True)
    if "line-through" in decoration:
        attributes = attributes.with_flag("strikethrough", True)
    return attributes


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------
def save_document(path: Path | str, document: Document, counters: ProvenanceCounters) -> Path:
    target = write_text(path, dump_document(document, counters))
    LOGGER.info(
        "Saved %s (ai=%s, human=%s)", target, counters.ai_chars, counters.human_chars
    )
    return target


def open_document(path: Path | str) -> PersistedDocument:
    """Read and parse a document file, raising :class:`DocumentFormatError` on failure."""

    try:
        markup = read_text(path)
    except (OSError, UnicodeDecodeError) as exc:
        raise DocumentFormatError(f"Unable to read {path}: {exc}") from exc
    loaded = load_document(markup)
    LOGGER.info(
        "Opened %s (ai=%s, human=%s)", path, loaded.counters.ai_chars, loaded.counters.human_chars
    )
    return loaded
