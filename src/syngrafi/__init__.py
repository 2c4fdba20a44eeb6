"""Syngrafi: a rich-text document core with AI inline completions."""

from .editor import Document, DocumentEditorCore, EditOrigin, ProvenanceCounters

__all__ = ["Document", "DocumentEditorCore", "EditOrigin", "ProvenanceCounters", "__version__"]

__version__ = "0.1.0"
