"""Linear undo/redo log of atomic edit records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from ..core.ranges import TextRange
from .document_model import Document
from .inline import Runs

__all__ = ["UndoRecord", "UndoLog"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class UndoRecord:
    """One logical user action.

    ``offset``/``removed_*``/``inserted_*`` describe the change in the linear
    text; the before/after documents make the inversion exact for structural
    edits that the text alone cannot express.
    """

    offset: int
    removed_text: str
    removed_attributes: Runs
    inserted_text: str
    inserted_attributes: Runs
    before: Document
    after: Document
    selection_before: TextRange
    selection_after: TextRange
    label: str = "edit"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class UndoLog:
    """Stack of records with a cursor; records past the cursor form the redo tail."""

    DEFAULT_LIMIT = 500

    def __init__(self, *, limit: int = DEFAULT_LIMIT) -> None:
        self._records: list[UndoRecord] = []
        self._cursor = 0
        self._limit = max(1, int(limit))

    def __len__(self) -> int:
        return len(self._records)

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._records)

    def push(self, record: UndoRecord) -> None:
        """Append ``record``, discarding any redo tail."""

        if self._cursor < len(self._records):
            LOGGER.debug("Discarding %s redo record(s)", len(self._records) - self._cursor)
            del self._records[self._cursor :]
        self._records.append(record)
        overflow = len(self._records) - self._limit
        if overflow > 0:
            del self._records[:overflow]
        self._cursor = len(self._records)

    def undo(self) -> UndoRecord | None:
        """Step back and return the record to invert, or ``None`` when exhausted."""

        if not self.can_undo:
            return None
        self._cursor -= 1
        return self._records[self._cursor]

    def redo(self) -> UndoRecord | None:
        """Step forward and return the record to reapply, or ``None`` when exhausted."""

        if not self.can_redo:
            return None
        record = self._records[self._cursor]
        self._cursor += 1
        return record

    def peek(self) -> UndoRecord | None:
        return self._records[self._cursor - 1] if self._cursor else None

    def clear(self) -> None:
        self._records.clear()
        self._cursor = 0
