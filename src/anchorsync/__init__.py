"""Anchor synchronization and cross-reference resolution."""

from anchorsync.anchor_kinds import ANCHOR_KINDS, AnchorKind, KindDescriptor, get_descriptor
from anchorsync.anchor_store import AnchorRecord, AnchorStore, DocumentRecord
from anchorsync.errors import AnchorSyncError, DocumentNotFoundError, UnknownAnchorKindError
from anchorsync.extractor import (
    ExtractedAnchor,
    ExtractionWarning,
    RawAnchorMatch,
    extract_all,
    extract_anchors,
    extract_kind,
    iter_anchor_matches,
)
from anchorsync.normalize import normalize_anchor_id
from anchorsync.reconcile import KindSyncResult, reconcile_kind
from anchorsync.references import (
    Forbidden,
    NotFound,
    ReferenceResolver,
    ReferenceToken,
    Resolved,
    iter_reference_tokens,
)
from anchorsync.settings import Settings, load_settings
from anchorsync.sync import AnchorIndex, SyncReport
from anchorsync.visibility import Requester, can_view

__all__ = [
    "ANCHOR_KINDS",
    "AnchorIndex",
    "AnchorKind",
    "AnchorRecord",
    "AnchorStore",
    "AnchorSyncError",
    "DocumentNotFoundError",
    "DocumentRecord",
    "ExtractedAnchor",
    "ExtractionWarning",
    "Forbidden",
    "KindDescriptor",
    "KindSyncResult",
    "NotFound",
    "RawAnchorMatch",
    "ReferenceResolver",
    "ReferenceToken",
    "Requester",
    "Resolved",
    "Settings",
    "SyncReport",
    "UnknownAnchorKindError",
    "can_view",
    "extract_all",
    "extract_anchors",
    "extract_kind",
    "get_descriptor",
    "iter_anchor_matches",
    "iter_reference_tokens",
    "load_settings",
    "normalize_anchor_id",
    "reconcile_kind",
]
