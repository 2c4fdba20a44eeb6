"""Editing session owning the document, selection, undo log and provenance.

:class:`DocumentEditorCore` is the single owner of all mutable editing state.
UI bindings forward input events to it and render :attr:`document`; the
completion pipeline listens to its change events and re-enters through
:meth:`DocumentEditorCore.insert_suggestion`, the same insertion path typing
uses, so accepted suggestions participate in undo and provenance tracking.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from ..core.ranges import TextRange
from .document_model import Alignment, Document, LineKind, ListKind
from .history import UndoLog, UndoRecord
from .inline import TOGGLE_FLAGS, FormatSet
from .modes import FormatMode, FormatModeMachine
from .provenance import EditOrigin, ProvenanceCounters
from .search import find_all, find_next
from .structure import (
    EditOutcome,
    StructureError,
    apply_heading,
    delete_range,
    insert_text,
    merge_list_item_backward,
    revert_to_normal,
    set_alignment,
    set_font,
    split_list_item,
    toggle_attribute,
    toggle_list,
)

__all__ = [
    "ChangeKind",
    "DocumentChange",
    "ChangeListener",
    "SelectionListener",
    "DocumentEditorCore",
]

LOGGER = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    INSERT = "insert"
    DELETE = "delete"
    REPLACE = "replace"
    FORMAT = "format"
    STRUCTURE = "structure"
    UNDO = "undo"
    REDO = "redo"
    RESET = "reset"


@dataclass(slots=True, frozen=True)
class DocumentChange:
    """Notification published after every document mutation."""

    kind: ChangeKind
    offset: int
    removed_text: str
    inserted_text: str
    origin: EditOrigin
    version: int

    @property
    def is_single_character_insert(self) -> bool:
        return self.kind is ChangeKind.INSERT and len(self.inserted_text) == 1 and not self.removed_text


class ChangeListener(Protocol):
    def __call__(self, change: DocumentChange) -> None:
        ...


class SelectionListener(Protocol):
    def __call__(self, selection: TextRange) -> None:
        ...


def _count_typed(text: str) -> int:
    return sum(1 for char in text if char.isprintable())


class DocumentEditorCore:
    """Headless editor core exposing the structural editing operations."""

    def __init__(
        self,
        document: Document | None = None,
        *,
        counters: ProvenanceCounters | None = None,
        history_limit: int = UndoLog.DEFAULT_LIMIT,
    ) -> None:
        self._document = document or Document()
        self._counters = counters.copy() if counters is not None else ProvenanceCounters()
        self._selection = TextRange.zero()
        self._history = UndoLog(limit=history_limit)
        self._modes = FormatModeMachine()
        self._input_override: FormatSet | None = None
        self._version = 0
        self._dirty = False
        self._change_listeners: list[ChangeListener] = []
        self._selection_listeners: list[SelectionListener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def document(self) -> Document:
        return self._document

    @property
    def text(self) -> str:
        return self._document.text

    @property
    def selection(self) -> TextRange:
        return self._selection

    @property
    def caret(self) -> int:
        return self._selection.end

    @property
    def counters(self) -> ProvenanceCounters:
        """Snapshot of the tallies; mutating it never touches the session."""

        return self._counters.copy()

    @property
    def mode(self) -> FormatMode:
        return self._modes.state

    @property
    def version(self) -> int:
        return self._version

    @property
    def dirty(self) -> bool:
        return self._dirty

    def mark_clean(self) -> None:
        self._dirty = False

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def add_change_listener(self, listener: ChangeListener) -> None:
        self._change_listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        if listener in self._change_listeners:
            self._change_listeners.remove(listener)

    def add_selection_listener(self, listener: SelectionListener) -> None:
        self._selection_listeners.append(listener)

    def _emit_change(self, change: DocumentChange) -> None:
        for listener in list(self._change_listeners):
            try:
                listener(change)
            except Exception:  # pragma: no cover - listener bugs must not break editing
                LOGGER.exception("Change listener %r failed", listener)

    def _emit_selection(self) -> None:
        for listener in list(self._selection_listeners):
            try:
                listener(self._selection)
            except Exception:  # pragma: no cover - listener bugs must not break editing
                LOGGER.exception("Selection listener %r failed", listener)

    # ------------------------------------------------------------------
    # Selection & input attributes
    # ------------------------------------------------------------------
    def set_selection(self, start: int, end: int | None = None) -> TextRange:
        """Move the selection; moving the caret drops pending input attributes."""

        target = TextRange(start, start if end is None else end).clamp(upper=len(self._document))
        if target != self._selection:
            self._selection = target
            self._input_override = None
            self._emit_selection()
        return self._selection

    def set_caret(self, offset: int) -> TextRange:
        return self.set_selection(offset, offset)

    def input_attributes(self) -> FormatSet:
        """Attributes the next typed character receives."""

        base = self._input_override or self._attributes_before(self.caret) or FormatSet()
        size = self._modes.state.font_size_pt
        return base.with_font(size_pt=size) if size else base

    def _attributes_before(self, offset: int) -> FormatSet | None:
        if offset <= 0:
            return None
        return self._document.char_attributes(offset - 1)

    # ------------------------------------------------------------------
    # Commit machinery
    # ------------------------------------------------------------------
    def _describe(
        self,
        before: Document,
        after: Document,
        outcome: EditOutcome,
        span: tuple[int, int, int] | None,
    ) -> tuple[int, int, int]:
        if span is not None:
            return span
        if outcome.changed is not None:
            return outcome.changed.start, outcome.changed.length, outcome.changed.length
        old_text, new_text = before.text, after.text
        if old_text == new_text:
            selection = outcome.selection
            return selection.start, selection.length, selection.length
        prefix = len(os.path.commonprefix([old_text, new_text]))
        suffix = 0
        limit = min(len(old_text), len(new_text)) - prefix
        while suffix < limit and old_text[-1 - suffix] == new_text[-1 - suffix]:
            suffix += 1
        return prefix, len(old_text) - prefix - suffix, len(new_text) - prefix - suffix

    def _commit(
        self,
        outcome: EditOutcome,
        *,
        label: str,
        kind: ChangeKind,
        origin: EditOrigin = EditOrigin.HUMAN,
        counted: int = 0,
        span: tuple[int, int, int] | None = None,
    ) -> bool:
        before = self._document
        after = outcome.document
        selection_after = outcome.selection.clamp(upper=len(after))
        if after == before:
            self.set_selection(selection_after.start, selection_after.end)
            return False

        offset, removed, inserted = self._describe(before, after, outcome, span)
        record = UndoRecord(
            offset=offset,
            removed_text=before.text[offset : offset + removed],
            removed_attributes=before.runs_between(offset, offset + removed),
            inserted_text=after.text[offset : offset + inserted],
            inserted_attributes=after.runs_between(offset, offset + inserted),
            before=before,
            after=after,
            selection_before=self._selection,
            selection_after=selection_after,
            label=label,
        )
        self._document = after
        self._history.push(record)
        self._counters.record(origin, counted)
        self._selection = selection_after
        self._input_override = None
        self._version += 1
        self._dirty = True
        LOGGER.debug("Applied %s at %s (-%s/+%s)", label, offset, removed, inserted)
        self._emit_change(
            DocumentChange(kind, offset, record.removed_text, record.inserted_text, origin, self._version)
        )
        self._emit_selection()
        return True

    def _attempt(self, label: str, build, **commit_kwargs) -> bool:  # type: ignore[no-untyped-def]
        try:
            outcome = build()
        except StructureError as exc:
            LOGGER.debug("Aborted %s: %s", label, exc)
            return False
        return self._commit(outcome, label=label, **commit_kwargs)

    # ------------------------------------------------------------------
    # Text path
    # ------------------------------------------------------------------
    def _replace_range(
        self,
        start: int,
        end: int,
        text: str,
        attributes: FormatSet,
        *,
        label: str,
        origin: EditOrigin,
        counted: int,
    ) -> bool:
        def build() -> EditOutcome:
            document = self._document
            if end > start:
                document = delete_range(document, start, end).document
            if not text:
                return EditOutcome(document, TextRange.caret(start))
            return insert_text(document, start, text, attributes)

        if start == end:
            kind = ChangeKind.INSERT
        elif text:
            kind = ChangeKind.REPLACE
        else:
            kind = ChangeKind.DELETE
        return self._attempt(
            label,
            build,
            kind=kind,
            origin=origin,
            counted=counted,
            span=(start, end - start, len(text)),
        )

    def type_text(self, text: str) -> bool:
        """Insert keystroke text at the caret, replacing any selection."""

        if not text:
            return False
        start, end = self._selection
        return self._replace_range(
            start,
            end,
            text,
            self.input_attributes(),
            label="typing",
            origin=EditOrigin.HUMAN,
            counted=_count_typed(text),
        )

    def paste(self, text: str) -> bool:
        """Paste plain text matching the style at the caret."""

        if not text:
            return False
        start, end = self._selection
        return self._replace_range(
            start,
            end,
            text,
            self.input_attributes(),
            label="paste",
            origin=EditOrigin.HUMAN,
            counted=len(text),
        )

    def replace_selection(
        self,
        text: str,
        *,
        origin: EditOrigin = EditOrigin.HUMAN,
        label: str = "replace",
    ) -> bool:
        """Replace the selection with ``text`` as one undo record."""

        start, end = self._selection
        if start == end and not text:
            return False
        attributes = self._document.char_attributes(start) if end > start else None
        return self._replace_range(
            start,
            end,
            text,
            attributes or self.input_attributes(),
            label=label,
            origin=origin,
            counted=len(text),
        )

    def delete_selection(self) -> bool:
        start, end = self._selection
        if start == end:
            return False
        return self._replace_range(
            start, end, "", FormatSet(), label="delete", origin=EditOrigin.HUMAN, counted=0
        )

    def insert_suggestion(self, text: str) -> bool:
        """Insert an accepted suggestion at the caret with AI provenance."""

        if not text:
            return False
        caret = self.caret
        attributes = self._attributes_before(caret) if caret > 0 else None
        return self._replace_range(
            caret,
            caret,
            text,
            attributes or self.input_attributes(),
            label="suggestion",
            origin=EditOrigin.AI,
            counted=len(text),
        )

    def press_enter(self) -> bool:
        leaving_heading = self._modes.state.is_heading_pending
        if leaving_heading:
            self._leave_heading_mode()
        start, end = self._selection
        from_heading = self._document.line_at(start).kind is LineKind.HEADING
        if start == end and self._document.line_at(start).is_item:
            changed = self._attempt(
                "list-split",
                lambda: split_list_item(self._document, start),
                kind=ChangeKind.STRUCTURE,
            )
        else:
            changed = self._replace_range(
                start, end, "\n", self.input_attributes(), label="newline", origin=EditOrigin.HUMAN, counted=0
            )
        ends_heading = from_heading and self._document.line_at(self.caret).kind is LineKind.PARAGRAPH
        if leaving_heading or (changed and ends_heading):
            # The new line must not inherit the heading-sized run before it.
            self._input_override = FormatSet()
        return changed

    def press_backspace(self) -> bool:
        start, end = self._selection
        if end > start:
            return self.delete_selection()
        position = self._document.locate(start)
        if position.column == 0 and self._document.lines()[position.index].is_item:
            return self._attempt(
                "list-merge",
                lambda: merge_list_item_backward(self._document, start),
                kind=ChangeKind.STRUCTURE,
            )
        if start == 0:
            return False
        return self._replace_range(
            start - 1, start, "", FormatSet(), label="backspace", origin=EditOrigin.HUMAN, counted=0
        )

    def press_delete(self) -> bool:
        start, end = self._selection
        if end > start:
            return self.delete_selection()
        if start >= len(self._document):
            return False
        return self._replace_range(
            start, start + 1, "", FormatSet(), label="delete", origin=EditOrigin.HUMAN, counted=0
        )

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------
    def toggle_attribute(self, flag: str) -> bool:
        """Toggle ``flag`` uniformly over the selection or on the pending input attributes."""

        if flag not in TOGGLE_FLAGS:
            raise ValueError(f"Unknown formatting flag: {flag}")
        start, end = self._selection
        if start == end:
            current = self.input_attributes()
            self._input_override = current.with_flag(flag, not current.flag(flag))
            return False
        return self._attempt(
            f"toggle-{flag}",
            lambda: toggle_attribute(self._document, start, end, flag),
            kind=ChangeKind.FORMAT,
        )

    def toggle_bold(self) -> bool:
        return self.toggle_attribute("bold")

    def toggle_italic(self) -> bool:
        return self.toggle_attribute("italic")

    def toggle_underline(self) -> bool:
        return self.toggle_attribute("underline")

    def toggle_strikethrough(self) -> bool:
        return self.toggle_attribute("strikethrough")

    def set_font_family(self, family: str) -> bool:
        start, end = self._selection
        if start == end:
            self._input_override = self.input_attributes().with_font(family=family)
            return False
        return self._attempt(
            "font-family",
            lambda: set_font(self._document, start, end, family=family),
            kind=ChangeKind.FORMAT,
        )

    def set_font_size(self, size_pt: int) -> bool:
        start, end = self._selection
        if start == end:
            self._input_override = self.input_attributes().with_font(size_pt=size_pt)
            return False
        return self._attempt(
            "font-size",
            lambda: set_font(self._document, start, end, size_pt=size_pt),
            kind=ChangeKind.FORMAT,
        )

    def set_heading(self, level: int) -> bool:
        """Apply a heading to the selection, or toggle ``HeadingPending`` at the caret."""

        start, end = self._selection
        if start == end:
            state = self._modes.toggle_heading(level)
            if not state.is_heading_pending:
                self._input_override = FormatSet()
            return False
        self._modes.reset()
        return self._attempt(
            f"heading-{level}",
            lambda: apply_heading(self._document, start, end, level),
            kind=ChangeKind.STRUCTURE,
        )

    def set_normal_text(self) -> bool:
        start, end = self._selection
        self._leave_heading_mode()
        changed = self._attempt(
            "normal-text",
            lambda: revert_to_normal(self._document, start, end),
            kind=ChangeKind.STRUCTURE,
        )
        self._input_override = FormatSet()
        return changed

    def set_alignment(self, alignment: Alignment) -> bool:
        start, end = self._selection
        return self._attempt(
            f"align-{alignment.value}",
            lambda: set_alignment(self._document, start, end, alignment),
            kind=ChangeKind.FORMAT,
        )

    def toggle_list(self, kind: ListKind) -> bool:
        start, end = self._selection
        return self._attempt(
            f"list-{kind.value}",
            lambda: toggle_list(self._document, start, end, kind),
            kind=ChangeKind.STRUCTURE,
        )

    def _leave_heading_mode(self) -> None:
        if self._modes.state.is_heading_pending:
            self._modes.reset()
            self._input_override = FormatSet()

    # ------------------------------------------------------------------
    # Undo / redo
    # ------------------------------------------------------------------
    def _restore(self, record: UndoRecord, *, forward: bool) -> None:
        self._document = record.after if forward else record.before
        target = record.selection_after if forward else record.selection_before
        self._selection = target.clamp(upper=len(self._document))
        self._input_override = None
        self._version += 1
        self._dirty = True
        if forward:
            change = DocumentChange(
                ChangeKind.REDO,
                record.offset,
                record.removed_text,
                record.inserted_text,
                EditOrigin.HUMAN,
                self._version,
            )
        else:
            change = DocumentChange(
                ChangeKind.UNDO,
                record.offset,
                record.inserted_text,
                record.removed_text,
                EditOrigin.HUMAN,
                self._version,
            )
        self._emit_change(change)
        self._emit_selection()

    def undo(self) -> bool:
        record = self._history.undo()
        if record is None:
            return False
        self._restore(record, forward=False)
        LOGGER.debug("Undid %s", record.label)
        return True

    def redo(self) -> bool:
        record = self._history.redo()
        if record is None:
            return False
        self._restore(record, forward=True)
        LOGGER.debug("Redid %s", record.label)
        return True

    # ------------------------------------------------------------------
    # Find / replace
    # ------------------------------------------------------------------
    def find(self, query: str, *, match_case: bool = False, wrap: bool = True) -> TextRange | None:
        """Select the next match after the current selection."""

        match = find_next(self.text, query, self._selection.end, match_case=match_case, wrap=wrap)
        if match is not None:
            self.set_selection(match.start, match.end)
        return match

    def replace_all(self, query: str, replacement: str, *, match_case: bool = False) -> int:
        """Replace every match as a single undo record and return the match count."""

        matches = find_all(self.text, query, match_case=match_case)
        if not matches:
            return 0

        def build() -> EditOutcome:
            document = self._document
            for match in reversed(matches):
                attributes = document.char_attributes(match.start) or FormatSet()
                document = delete_range(document, match.start, match.end).document
                if replacement:
                    document = insert_text(document, match.start, replacement, attributes).document
            return EditOutcome(document, TextRange.caret(0))

        changed = self._attempt(
            "replace-all",
            build,
            kind=ChangeKind.REPLACE,
            origin=EditOrigin.HUMAN,
            counted=len(replacement) * len(matches),
        )
        return len(matches) if changed else 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def load(self, document: Document, counters: ProvenanceCounters | None = None) -> None:
        """Replace the whole document, e.g. after a successful open."""

        self._document = document
        self._counters = counters.copy() if counters is not None else ProvenanceCounters()
        self._history.clear()
        self._modes.reset()
        self._input_override = None
        self._selection = TextRange.zero()
        self._version += 1
        self._dirty = False
        LOGGER.debug(
            "Loaded document (%s chars, ai=%s, human=%s)",
            len(document),
            self._counters.ai_chars,
            self._counters.human_chars,
        )
        self._emit_change(
            DocumentChange(ChangeKind.RESET, 0, "", document.text, EditOrigin.HUMAN, self._version)
        )
        self._emit_selection()

    def new_document(self) -> None:
        self.load(Document(), ProvenanceCounters())
