"""Core value types shared by the editor and completion layers."""

from .ranges import TextRange

__all__ = ["TextRange"]
