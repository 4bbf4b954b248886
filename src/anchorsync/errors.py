"""Exceptions raised at the edges of the anchor index.

Nothing inside the save-time synchronization path raises these to the
caller; they surface only from lookups and boundary validation.
"""
from __future__ import annotations


class AnchorSyncError(Exception):
    """Base class for anchorsync errors."""


class UnknownAnchorKindError(AnchorSyncError, ValueError):
    """Raised when a kind name or reference tag is not recognised."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Unknown anchor kind: {kind!r}")
        self.kind = kind


class DocumentNotFoundError(AnchorSyncError, LookupError):
    """Raised by document lookups that require an existing document."""

    def __init__(self, document_ref: str) -> None:
        super().__init__(f"Document not found: {document_ref}")
        self.document_ref = document_ref
