"""Anchor block extractor.

One generic engine runs every kind's delimiter grammar (see
``anchorsync.anchor_kinds``) over document source:

1. ``iter_anchor_matches`` lazily yields raw regex matches in source order.
2. ``extract_kind`` normalizes ids and collapses repeated ids into one
   anchor. The body comes from the *last* occurrence, the ordering offset
   from the *first*.
3. ``extract_all`` runs step 2 for every kind.

Matching is non-greedy: a block closes at the nearest closing delimiter.
An unterminated opener therefore swallows text up to some unrelated later
closer, and a block that never closes is simply not matched. Neither case
is reported as an error.
"""
from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from anchorsync.anchor_kinds import ANCHOR_KINDS, AnchorKind, get_descriptor
from anchorsync.normalize import normalize_anchor_id


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class RawAnchorMatch:
    """A single block match, before id normalization."""

    kind: AnchorKind
    raw_anchor_id: str       # As typed: "Fermat Pequeño"
    body: str                # LaTeX or markdown body, trimmed ("" for images)
    match_offset: int        # Offset of the opening delimiter
    match_end: int
    description: str | None = None
    alt: str | None = None   # imageAnchor only
    url: str | None = None   # imageAnchor only


@dataclass(frozen=True, slots=True)
class ExtractedAnchor:
    """One distinct anchor of a kind, keyed by its canonical id."""

    kind: AnchorKind
    anchor_id: str
    body: str
    description: str | None
    first_offset: int
    occurrences: int = 1
    raw_ids: tuple[str, ...] = ()
    alt: str | None = None
    url: str | None = None


@dataclass(frozen=True, slots=True)
class ExtractionWarning:
    """Non-fatal observation about the authored anchors."""

    kind: AnchorKind
    code: str                # duplicate_anchor_id | anchor_id_collision | empty_anchor_id
    anchor_id: str
    offsets: tuple[int, ...]
    message: str


@dataclass(frozen=True, slots=True)
class KindExtraction:
    kind: AnchorKind
    anchors: tuple[ExtractedAnchor, ...] = ()
    warnings: tuple[ExtractionWarning, ...] = ()


# ---------------------------------------------------------------------------
# Raw matching
# ---------------------------------------------------------------------------

def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def iter_anchor_matches(text: str, kind: AnchorKind | str) -> Iterator[RawAnchorMatch]:
    """Yield every well-formed block of *kind* in ascending offset order."""
    descriptor = get_descriptor(kind)
    if not text:
        return
    for m in descriptor.pattern.finditer(text):
        groups = m.groupdict()
        yield RawAnchorMatch(
            kind=descriptor.kind,
            raw_anchor_id=groups["id"],
            body=(groups.get("body") or "").strip(),
            match_offset=m.start(),
            match_end=m.end(),
            description=_clean(groups.get("description")),
            alt=_clean(groups.get("alt")),
            url=_clean(groups.get("url")),
        )


# ---------------------------------------------------------------------------
# Normalization + collapse
# ---------------------------------------------------------------------------

def extract_kind(text: str, kind: AnchorKind | str) -> KindExtraction:
    """Extract the distinct anchors of *kind*, with authoring warnings.

    Repeated ids are collapsed: the stored body is the one scanned last,
    while the anchor keeps the position of its first occurrence for
    numbering. Blocks whose id normalizes to ``""`` are dropped.
    """
    descriptor = get_descriptor(kind)
    first_seen: dict[str, RawAnchorMatch] = {}
    last_seen: dict[str, RawAnchorMatch] = {}
    offsets: dict[str, list[int]] = {}
    raw_ids: dict[str, list[str]] = {}
    warnings: list[ExtractionWarning] = []

    for match in iter_anchor_matches(text, descriptor.kind):
        anchor_id = normalize_anchor_id(match.raw_anchor_id)
        if not anchor_id:
            warnings.append(ExtractionWarning(
                kind=descriptor.kind,
                code="empty_anchor_id",
                anchor_id="",
                offsets=(match.match_offset,),
                message=(
                    f"{descriptor.kind} id {match.raw_anchor_id!r} has no "
                    "usable characters; block ignored"
                ),
            ))
            continue
        first_seen.setdefault(anchor_id, match)
        last_seen[anchor_id] = match
        offsets.setdefault(anchor_id, []).append(match.match_offset)
        spellings = raw_ids.setdefault(anchor_id, [])
        raw = match.raw_anchor_id.strip()
        if raw not in spellings:
            spellings.append(raw)

    anchors: list[ExtractedAnchor] = []
    for anchor_id, first in first_seen.items():
        last = last_seen[anchor_id]
        seen_at = tuple(offsets[anchor_id])
        anchors.append(ExtractedAnchor(
            kind=descriptor.kind,
            anchor_id=anchor_id,
            body=last.body,
            description=last.description,
            first_offset=first.match_offset,
            occurrences=len(seen_at),
            raw_ids=tuple(raw_ids[anchor_id]),
            alt=last.alt,
            url=last.url,
        ))
        if len(seen_at) > 1:
            warnings.append(ExtractionWarning(
                kind=descriptor.kind,
                code="duplicate_anchor_id",
                anchor_id=anchor_id,
                offsets=seen_at,
                message=(
                    f"{descriptor.kind} id {anchor_id!r} appears {len(seen_at)} "
                    "times; the last block wins"
                ),
            ))
        if len(raw_ids[anchor_id]) > 1:
            warnings.append(ExtractionWarning(
                kind=descriptor.kind,
                code="anchor_id_collision",
                anchor_id=anchor_id,
                offsets=seen_at,
                message=(
                    "ids "
                    + ", ".join(repr(r) for r in raw_ids[anchor_id])
                    + f" all normalize to {anchor_id!r}"
                ),
            ))

    anchors.sort(key=lambda a: a.first_offset)
    warnings.sort(key=lambda w: (w.offsets[0] if w.offsets else 0, w.code))
    return KindExtraction(
        kind=descriptor.kind,
        anchors=tuple(anchors),
        warnings=tuple(warnings),
    )


def extract_anchors(text: str, kind: AnchorKind | str) -> list[ExtractedAnchor]:
    """Distinct anchors of *kind* ordered by first occurrence."""
    return list(extract_kind(text, kind).anchors)


def extract_all(text: str) -> dict[AnchorKind, KindExtraction]:
    """Run every kind's grammar over *text*."""
    return {kind: extract_kind(text, kind) for kind in ANCHOR_KINDS}
