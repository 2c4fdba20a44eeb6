"""Caret-local formatting mode kept outside the persisted document."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .document_model import HEADING_FONT_SIZES, heading_font_size

__all__ = ["FormatMode", "FormatModeMachine"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class FormatMode:
    """``Normal`` when ``heading_level`` is 0, ``HeadingPending(level)`` otherwise."""

    heading_level: int = 0

    @property
    def is_heading_pending(self) -> bool:
        return self.heading_level != 0

    @property
    def font_size_pt(self) -> int | None:
        return heading_font_size(self.heading_level) if self.heading_level else None

    def __str__(self) -> str:
        return f"HeadingPending({self.heading_level})" if self.heading_level else "Normal"


NORMAL = FormatMode()


class FormatModeMachine:
    """Two-state machine: ``Normal`` <-> ``HeadingPending(level)``.

    Toggling a level enters ``HeadingPending(level)``; toggling the active level
    again returns to ``Normal``. Selection-based heading apply and normal-text
    revert always return to ``Normal``.
    """

    def __init__(self) -> None:
        self._state = NORMAL

    @property
    def state(self) -> FormatMode:
        return self._state

    def toggle_heading(self, level: int) -> FormatMode:
        if level not in HEADING_FONT_SIZES:
            raise ValueError(f"Heading level must be 1 or 2, got {level!r}")
        if self._state.heading_level == level:
            return self.reset()
        self._state = FormatMode(level)
        LOGGER.debug("Format mode -> %s", self._state)
        return self._state

    def reset(self) -> FormatMode:
        if self._state is not NORMAL:
            LOGGER.debug("Format mode -> Normal")
        self._state = NORMAL
        return self._state
