"""AI- versus human-originated character tallies."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

__all__ = ["EditOrigin", "ProvenanceCounters"]


class EditOrigin(str, Enum):
    HUMAN = "human"
    AI = "ai"


@dataclass(slots=True)
class ProvenanceCounters:
    """Coarse insertion tallies.

    Counters only grow: deletions and undo never decrement them.
    """

    ai_chars: int = 0
    human_chars: int = 0

    def __post_init__(self) -> None:
        if self.ai_chars < 0 or self.human_chars < 0:
            raise ValueError("Provenance counters must be non-negative")

    def record(self, origin: EditOrigin, count: int) -> None:
        if count <= 0:
            return
        if origin is EditOrigin.AI:
            self.ai_chars += count
        else:
            self.human_chars += count

    @property
    def total(self) -> int:
        return self.ai_chars + self.human_chars

    @property
    def ai_ratio(self) -> float:
        total = self.total
        return self.ai_chars / total if total else 0.0

    def copy(self) -> ProvenanceCounters:
        return ProvenanceCounters(self.ai_chars, self.human_chars)
