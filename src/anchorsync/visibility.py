"""Draft/published visibility for documents and, through them, anchors."""
from __future__ import annotations

from dataclasses import dataclass

from anchorsync.anchor_store import DocumentRecord


@dataclass(frozen=True, slots=True)
class Requester:
    """An authenticated caller. Anonymous callers are ``None``."""

    id: str


def requester_from_id(user_id: str | None) -> Requester | None:
    user_id = (user_id or "").strip()
    return Requester(user_id) if user_id else None


def can_view(requester: Requester | None, document: DocumentRecord) -> bool:
    """Published documents are public; drafts are visible to their owner only."""
    if document.published:
        return True
    return (
        requester is not None
        and document.owner_id is not None
        and requester.id == document.owner_id
    )


def can_edit(requester: Requester | None, document: DocumentRecord) -> bool:
    return requester is not None and requester.id == document.owner_id
