"""Sequence numbers for anchors.

Numbers are ranks, not identities: after every save the surviving anchors
of a (document, kind) are ranked by the offset of their first opening
delimiter, giving the dense range ``1..N``. Deleting an anchor shifts every
later anchor down by one.

Equations are the exception, selected by ``Settings.equation_numbering``:

* ``creation_order`` (default): equations carry no stored number; readers
  derive an ordinal from row creation order (``created_at``, then insertion
  sequence), which can differ from content order once equations are
  reordered in the source.
* ``content_order``: equations are numbered like every other kind.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace

from anchorsync.anchor_kinds import AnchorKind, get_descriptor
from anchorsync.anchor_store import AnchorRecord, AnchorStore
from anchorsync.extractor import ExtractedAnchor
from anchorsync.settings import EquationNumbering


def stores_sequence_numbers(
    kind: AnchorKind | str,
    equation_numbering: EquationNumbering = "creation_order",
) -> bool:
    """Whether reconciliation persists ``sequence_number`` for *kind*."""
    descriptor = get_descriptor(kind)
    if not descriptor.numbered:
        return False
    if descriptor.kind == "equation":
        return equation_numbering == "content_order"
    return True


def assign_sequence_numbers(anchors: Iterable[ExtractedAnchor]) -> dict[str, int]:
    """Map anchor id -> 1-based rank by ascending first offset."""
    ordered = sorted(anchors, key=lambda a: (a.first_offset, a.anchor_id))
    return {a.anchor_id: rank for rank, a in enumerate(ordered, start=1)}


def renumber(
    store: AnchorStore,
    kind: AnchorKind | str,
    survivors: Sequence[AnchorRecord],
    numbers: dict[str, int],
    *,
    persist: bool = True,
) -> int:
    """Bring stored numbers of *survivors* in line with *numbers*.

    Only rows whose number actually differs are written. With
    ``persist=False`` any stale stored number is cleared instead.
    """
    changes: dict[str, int | None] = {}
    for record in survivors:
        target = numbers.get(record.anchor_id) if persist else None
        if record.sequence_number != target:
            changes[record.id] = target
    if not changes:
        return 0
    return store.update_sequence_numbers(kind, changes)


def creation_order_ordinals(records: Iterable[AnchorRecord]) -> dict[str, int]:
    """Ordinals computed from row creation order (equation read path)."""
    ordered = sorted(
        records,
        key=lambda r: (r.created_at is None, r.created_at, r.insert_seq, r.id),
    )
    return {r.anchor_id: rank for rank, r in enumerate(ordered, start=1)}


def with_display_numbers(
    records: Sequence[AnchorRecord],
    kind: AnchorKind | str,
    equation_numbering: EquationNumbering = "creation_order",
) -> list[AnchorRecord]:
    """Return *records* with ``display_number`` filled for readers."""
    descriptor = get_descriptor(kind)
    if descriptor.kind == "equation" and equation_numbering == "creation_order":
        ordinals = creation_order_ordinals(records)
        return [replace(r, display_number=ordinals[r.anchor_id]) for r in records]
    return [replace(r, display_number=r.sequence_number) for r in records]
