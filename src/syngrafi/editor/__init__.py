"""Headless document editing core."""

from .document_model import Alignment, Document, Heading, ListBlock, ListItem, ListKind, Paragraph
from .inline import FormatSet, Run
from .provenance import EditOrigin, ProvenanceCounters
from .session import ChangeKind, DocumentChange, DocumentEditorCore
from .structure import StructureError

__all__ = [
    "Alignment",
    "ChangeKind",
    "Document",
    "DocumentChange",
    "DocumentEditorCore",
    "EditOrigin",
    "FormatSet",
    "Heading",
    "ListBlock",
    "ListItem",
    "ListKind",
    "Paragraph",
    "ProvenanceCounters",
    "Run",
    "StructureError",
]
