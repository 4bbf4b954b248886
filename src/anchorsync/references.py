"""Reference token parsing and resolution.

Tokens look like ``{{thm:other-doc/fermat|ver teorema|embed}}``:

* ``thm``: kind tag (eq, thm, prf, def, img)
* ``other-doc/``: optional target document slug; omitted means "this document"
* ``fermat``: anchor id, normalized before lookup
* ``ver teorema``: link text
* ``embed``: optional; inlines the anchor body for theorems, proofs and
  definitions. Equation and image references are always links.

Resolution never raises. Every token yields ``Resolved``, ``NotFound`` or
``Forbidden``, and the rendering layer decides how to present each.
"""
from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Literal

from anchorsync.anchor_kinds import (
    EMBED_FLAG,
    KIND_BY_TAG,
    REFERENCE_TOKEN_RE,
    AnchorKind,
    get_descriptor,
    split_reference_path,
)
from anchorsync.anchor_store import AnchorRecord, AnchorStore, DocumentRecord
from anchorsync.normalize import normalize_anchor_id
from anchorsync.numbering import with_display_numbers
from anchorsync.settings import DEFAULT_DOCUMENT_ROUTE, EquationNumbering
from anchorsync.visibility import Requester, can_view


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ReferenceToken:
    """One ``{{tag:...}}`` occurrence in document source."""

    kind: AnchorKind
    document_slug: str | None     # None -> the referencing document
    raw_anchor_id: str
    anchor_id: str                # normalized
    link_text: str
    embed: bool                   # embed flag present (whether honored depends on kind)
    char_start: int
    char_end: int
    full_match: str


@dataclass(frozen=True, slots=True)
class Resolved:
    kind: AnchorKind
    anchor_id: str
    document_slug: str
    link_text: str
    href: str
    embed: bool
    payload: dict[str, Any] = field(default_factory=dict)
    status: Literal["resolved"] = "resolved"


@dataclass(frozen=True, slots=True)
class NotFound:
    kind: AnchorKind
    anchor_id: str
    document_slug: str | None
    reason: Literal["document", "anchor"]
    status: Literal["not_found"] = "not_found"


@dataclass(frozen=True, slots=True)
class Forbidden:
    kind: AnchorKind
    anchor_id: str
    document_slug: str
    status: Literal["forbidden"] = "forbidden"


type Resolution = Resolved | NotFound | Forbidden


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def iter_reference_tokens(content: str) -> Iterator[ReferenceToken]:
    """Yield reference tokens in source order."""
    if not content:
        return
    for m in REFERENCE_TOKEN_RE.finditer(content):
        slug, raw_anchor_id = split_reference_path(m.group("path"))
        flag = (m.group("flag") or "").strip().lower()
        yield ReferenceToken(
            kind=KIND_BY_TAG[m.group("tag")],
            document_slug=slug,
            raw_anchor_id=raw_anchor_id,
            anchor_id=normalize_anchor_id(raw_anchor_id),
            link_text=m.group("link_text").strip(),
            embed=flag == EMBED_FLAG,
            char_start=m.start(),
            char_end=m.end(),
            full_match=m.group(0),
        )


def anchor_href(document_route: str, slug: str, kind: AnchorKind | str, anchor_id: str) -> str:
    """``/<route>/<slug>#<tag>-<anchor_id>``"""
    descriptor = get_descriptor(kind)
    return f"/{document_route.strip('/')}/{slug}#{descriptor.html_id(anchor_id)}"


def anchor_payload(record: AnchorRecord, document: DocumentRecord) -> dict[str, Any]:
    """Public view of an anchor, as served to readers and embeds."""
    payload: dict[str, Any] = {
        "kind": record.kind,
        "anchor_id": record.anchor_id,
        "description": record.description,
        "number": record.display_number,
        "document_slug": document.slug,
        "document_title": document.title,
    }
    if record.kind == "imageAnchor":
        payload["url"] = record.url
        payload["alt"] = record.alt
    elif record.kind == "equation":
        payload["equation"] = record.body
    else:
        payload["content"] = record.body
    return payload


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

class ReferenceResolver:
    """Resolves anchors across documents through the visibility gate."""

    def __init__(
        self,
        store: AnchorStore,
        *,
        document_route: str = DEFAULT_DOCUMENT_ROUTE,
        equation_numbering: EquationNumbering = "creation_order",
    ) -> None:
        self._store = store
        self._document_route = document_route
        self._equation_numbering = equation_numbering

    def _lookup(self, document: DocumentRecord, kind: AnchorKind, anchor_id: str) -> AnchorRecord | None:
        if kind == "equation" and self._equation_numbering == "creation_order":
            # Ordinal depends on the document's other equations.
            records = with_display_numbers(
                self._store.find_anchors(document.document_id, kind),
                kind,
                self._equation_numbering,
            )
            return next((r for r in records if r.anchor_id == anchor_id), None)
        record = self._store.get_anchor(document.document_id, kind, anchor_id)
        if record is None:
            return None
        return with_display_numbers([record], kind, self._equation_numbering)[0]

    def resolve_anchor(
        self,
        requester: Requester | None,
        target_slug: str | None,
        kind: AnchorKind | str,
        anchor_id: str,
        *,
        current_document: DocumentRecord | None = None,
        link_text: str = "",
        embed: bool = False,
    ) -> Resolution:
        """Resolve one anchor reference.

        *target_slug* ``None`` targets *current_document*. The anchor id is
        normalized here, so any spelling of it resolves.
        """
        descriptor = get_descriptor(kind)
        canonical = normalize_anchor_id(anchor_id)

        if target_slug:
            document = self._store.get_document_by_slug(target_slug)
        else:
            document = current_document
        if document is None:
            return NotFound(descriptor.kind, canonical, target_slug, reason="document")
        if not can_view(requester, document):
            return Forbidden(descriptor.kind, canonical, document.slug)
        if not canonical:
            return NotFound(descriptor.kind, canonical, document.slug, reason="anchor")

        record = self._lookup(document, descriptor.kind, canonical)
        if record is None:
            return NotFound(descriptor.kind, canonical, document.slug, reason="anchor")

        return Resolved(
            kind=descriptor.kind,
            anchor_id=canonical,
            document_slug=document.slug,
            link_text=link_text,
            href=anchor_href(self._document_route, document.slug, descriptor.kind, canonical),
            embed=embed and descriptor.embeddable,
            payload=anchor_payload(record, document),
        )

    def resolve_token(
        self,
        token: ReferenceToken,
        *,
        current_document: DocumentRecord | None,
        requester: Requester | None,
    ) -> Resolution:
        return self.resolve_anchor(
            requester,
            token.document_slug,
            token.kind,
            token.raw_anchor_id,
            current_document=current_document,
            link_text=token.link_text,
            embed=token.embed,
        )

    def resolve_references(
        self,
        content: str,
        *,
        current_document: DocumentRecord | None,
        requester: Requester | None,
    ) -> list[tuple[ReferenceToken, Resolution]]:
        """Resolve every token in *content*, in source order."""
        return [
            (token, self.resolve_token(token, current_document=current_document, requester=requester))
            for token in iter_reference_tokens(content)
        ]


def resolution_to_dict(token: ReferenceToken | None, resolution: Resolution) -> dict[str, Any]:
    out: dict[str, Any] = {
        "status": resolution.status,
        "kind": resolution.kind,
        "anchor_id": resolution.anchor_id,
        "document_slug": resolution.document_slug,
    }
    if isinstance(resolution, Resolved):
        out.update(
            link_text=resolution.link_text,
            href=resolution.href,
            embed=resolution.embed,
            payload=resolution.payload,
        )
    elif isinstance(resolution, NotFound):
        out["reason"] = resolution.reason
    if token is not None:
        out["token"] = token.full_match
        out["char_start"] = token.char_start
        out["char_end"] = token.char_end
    return out
