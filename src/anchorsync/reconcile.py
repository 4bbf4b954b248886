"""Reconcile persisted anchors of one (document, kind) with extracted ones.

A pass is a pure convergence step::

    persisted(document, kind) = reconcile(extract(content))

* extracted anchor with no row      -> insert
* extracted anchor with a row       -> update body/description if changed
* row with no extracted anchor      -> delete (owned kinds) or detach
                                       anchor columns (images)
* then renumber survivors by content order

Re-running a pass on unchanged content performs no writes. The whole pass
runs in one store transaction; if it fails nothing from it is kept, and
the next save recomputes the full diff from scratch.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass

from anchorsync.anchor_kinds import AnchorKind, KindDescriptor
from anchorsync.anchor_store import AnchorRecord, AnchorStore
from anchorsync.extractor import ExtractedAnchor
from anchorsync.numbering import assign_sequence_numbers, renumber


@dataclass(slots=True)
class KindSyncResult:
    """Outcome of one reconciliation pass."""

    kind: AnchorKind
    extracted: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    attached: int = 0
    detached: int = 0
    renumbered: int = 0
    skipped: int = 0      # image anchors with no uploaded image to attach to
    error: str | None = None

    @property
    def writes(self) -> int:
        return (
            self.created + self.updated + self.deleted
            + self.attached + self.detached + self.renumbered
        )

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = asdict(self)
        out["writes"] = self.writes
        return out


def reconcile_kind(
    store: AnchorStore,
    document_id: str,
    descriptor: KindDescriptor,
    anchors: Sequence[ExtractedAnchor],
    *,
    persist_numbers: bool = True,
) -> KindSyncResult:
    """Converge stored anchors of *descriptor.kind* onto *anchors*.

    *anchors* must be distinct by ``anchor_id`` (see ``extract_kind``).
    Raises whatever the store raises; the save hook is responsible for
    containing failures.
    """
    result = KindSyncResult(kind=descriptor.kind, extracted=len(anchors))
    with store.transaction():
        if descriptor.owns_rows:
            _reconcile_owned(store, document_id, descriptor, anchors, result, persist_numbers)
        else:
            _reconcile_images(store, document_id, descriptor, anchors, result)
    return result


def _reconcile_owned(
    store: AnchorStore,
    document_id: str,
    descriptor: KindDescriptor,
    anchors: Sequence[ExtractedAnchor],
    result: KindSyncResult,
    persist_numbers: bool,
) -> None:
    existing: dict[str, AnchorRecord] = {
        r.anchor_id: r for r in store.find_anchors(document_id, descriptor.kind)
    }
    numbers = assign_sequence_numbers(anchors)

    for anchor in anchors:
        row = existing.get(anchor.anchor_id)
        if row is None:
            store.insert_anchor(
                document_id,
                descriptor.kind,
                anchor.anchor_id,
                body=anchor.body,
                description=anchor.description,
                sequence_number=numbers[anchor.anchor_id] if persist_numbers else None,
            )
            result.created += 1
        elif row.body != anchor.body or row.description != anchor.description:
            store.update_anchor(
                descriptor.kind,
                row.id,
                body=anchor.body,
                description=anchor.description,
            )
            result.updated += 1
        else:
            result.unchanged += 1

    current = {a.anchor_id for a in anchors}
    stale = [r.id for anchor_id, r in existing.items() if anchor_id not in current]
    result.deleted = store.delete_anchors(descriptor.kind, stale)

    # Renumber survivors that predate this pass; rows inserted above
    # already carry their number.
    survivors = [r for anchor_id, r in existing.items() if anchor_id in current]
    result.renumbered = renumber(
        store, descriptor.kind, survivors, numbers, persist=persist_numbers,
    )


def _reconcile_images(
    store: AnchorStore,
    document_id: str,
    descriptor: KindDescriptor,
    anchors: Sequence[ExtractedAnchor],
    result: KindSyncResult,
) -> None:
    wanted = {a.anchor_id: a for a in anchors}
    existing: dict[str, AnchorRecord] = {}
    stale: list[str] = []
    # At most one image per anchor id: the first uploaded wins unless a
    # later one is the image the content points at. Every other holder of
    # the id is detached.
    for record in store.find_anchors(document_id, descriptor.kind):
        anchor = wanted.get(record.anchor_id)
        if anchor is None:
            stale.append(record.id)
            continue
        kept = existing.get(record.anchor_id)
        if kept is None:
            existing[record.anchor_id] = record
        elif kept.url != anchor.url and record.url == anchor.url:
            stale.append(kept.id)
            existing[record.anchor_id] = record
        else:
            stale.append(record.id)
    result.detached = store.detach_image_anchors(stale)

    # Images without an anchor (including the ones just detached) can take
    # one, matched by URL in upload order.
    free_by_url: dict[str, list[str]] = {}
    for image in store.get_images(document_id):
        if image.get("anchor_id") is None:
            free_by_url.setdefault(str(image.get("url") or "").strip(), []).append(image["id"])

    for anchor in anchors:
        row = existing.get(anchor.anchor_id)
        if row is not None:
            if row.description != anchor.description or row.alt != anchor.alt:
                store.update_image_anchor(row.id, description=anchor.description, alt=anchor.alt)
                result.updated += 1
            else:
                result.unchanged += 1
            continue
        candidates = free_by_url.get(anchor.url or "")
        if not candidates:
            result.skipped += 1
            continue
        store.attach_image_anchor(
            candidates.pop(0),
            anchor.anchor_id,
            description=anchor.description,
            alt=anchor.alt,
        )
        result.attached += 1
