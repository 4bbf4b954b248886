"""Document save hook and anchor queries.

``AnchorIndex`` is what the document store and the render layer talk to:

* ``on_document_saved(document_id, content)``: extract, reconcile and
  renumber every anchor kind. Best effort: a failing kind is logged and
  reported, never raised, and the next save repairs it.
* ``list_anchors(document_id, kind=None)``: persisted anchors with the
  numbers readers should display.
* ``resolve_anchor(...)`` / ``resolve_references(...)``: delegate to
  ``ReferenceResolver``.

Kind passes run one after another on the store's single DuckDB connection;
they share no state, so their order carries no meaning.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from anchorsync.anchor_kinds import ANCHOR_KINDS, AnchorKind, get_descriptor
from anchorsync.anchor_store import AnchorRecord, AnchorStore, DocumentRecord
from anchorsync.errors import DocumentNotFoundError
from anchorsync.extractor import ExtractionWarning, extract_kind
from anchorsync.numbering import stores_sequence_numbers, with_display_numbers
from anchorsync.reconcile import KindSyncResult, reconcile_kind
from anchorsync.references import ReferenceResolver, ReferenceToken, Resolution
from anchorsync.settings import Settings
from anchorsync.visibility import Requester

log = logging.getLogger("anchorsync.sync")


@dataclass(slots=True)
class SyncReport:
    """Per-kind outcome of one ``on_document_saved`` call."""

    document_id: str
    results: dict[AnchorKind, KindSyncResult] = field(default_factory=dict)
    warnings: list[ExtractionWarning] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results.values())

    @property
    def writes(self) -> int:
        return sum(r.writes for r in self.results.values())

    @property
    def failed_kinds(self) -> list[AnchorKind]:
        return [kind for kind, r in self.results.items() if not r.ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "ok": self.ok,
            "writes": self.writes,
            "elapsed_ms": round(self.elapsed_ms, 2),
            "results": {kind: r.to_dict() for kind, r in self.results.items()},
            "warnings": [
                {
                    "kind": w.kind,
                    "code": w.code,
                    "anchor_id": w.anchor_id,
                    "offsets": list(w.offsets),
                    "message": w.message,
                }
                for w in self.warnings
            ],
        }


class AnchorIndex:
    """Facade over the store, reconciler and resolver."""

    def __init__(self, store: AnchorStore, settings: Settings | None = None) -> None:
        self._store = store
        self._settings = settings or Settings(db_path=store.db_path)
        self._resolver = ReferenceResolver(
            store,
            document_route=self._settings.document_route,
            equation_numbering=self._settings.equation_numbering,
        )

    @property
    def store(self) -> AnchorStore:
        return self._store

    @property
    def settings(self) -> Settings:
        return self._settings

    # ─── Save path ────────────────────────────────────────────────

    def on_document_saved(self, document_id: str, content: str | None) -> SyncReport:
        """Re-derive every anchor kind of *document_id* from *content*."""
        started = time.perf_counter()
        report = SyncReport(document_id=document_id)
        text = content or ""

        for descriptor in ANCHOR_KINDS.values():
            try:
                extraction = extract_kind(text, descriptor.kind)
                report.warnings.extend(extraction.warnings)
                result = reconcile_kind(
                    self._store,
                    document_id,
                    descriptor,
                    extraction.anchors,
                    persist_numbers=stores_sequence_numbers(
                        descriptor.kind, self._settings.equation_numbering,
                    ),
                )
            except Exception as exc:  # noqa: BLE001 - one kind must not fail the save
                log.exception(
                    "Anchor sync failed: document=%s kind=%s", document_id, descriptor.kind,
                )
                result = KindSyncResult(kind=descriptor.kind, error=f"{type(exc).__name__}: {exc}")
            else:
                log.debug(
                    "Synced document=%s kind=%s extracted=%d created=%d updated=%d "
                    "deleted=%d attached=%d detached=%d renumbered=%d",
                    document_id, descriptor.kind, result.extracted, result.created,
                    result.updated, result.deleted, result.attached, result.detached,
                    result.renumbered,
                )
            report.results[descriptor.kind] = result

        report.elapsed_ms = (time.perf_counter() - started) * 1000
        log.info(
            "Anchor sync document=%s writes=%d warnings=%d failed=%s (%.1f ms)",
            document_id, report.writes, len(report.warnings),
            ",".join(report.failed_kinds) or "-", report.elapsed_ms,
        )
        return report

    def save_document(
        self,
        document_id: str,
        *,
        slug: str,
        content: str,
        title: str = "",
        published: bool = False,
        owner_id: str | None = None,
    ) -> tuple[DocumentRecord, SyncReport]:
        """Write a document through the bundled document store, then sync it."""
        document = self._store.save_document(
            document_id,
            slug=slug,
            content=content,
            title=title,
            published=published,
            owner_id=owner_id,
        )
        return document, self.on_document_saved(document_id, content)

    # ─── Queries ──────────────────────────────────────────────────

    def get_document(self, document_id: str) -> DocumentRecord:
        document = self._store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def list_anchors(
        self,
        document_id: str,
        kind: AnchorKind | str | None = None,
    ) -> list[AnchorRecord]:
        """Persisted anchors of a document, ordered by displayed number."""
        kinds = [get_descriptor(kind).kind] if kind is not None else list(ANCHOR_KINDS)
        out: list[AnchorRecord] = []
        for k in kinds:
            records = with_display_numbers(
                self._store.find_anchors(document_id, k),
                k,
                self._settings.equation_numbering,
            )
            records.sort(key=lambda r: (
                r.display_number is None,
                r.display_number or 0,
                r.insert_seq,
            ))
            out.extend(records)
        return out

    def resolve_anchor(
        self,
        requester: Requester | None,
        target_slug_or_self: str | None,
        kind: AnchorKind | str,
        anchor_id: str,
        *,
        current_document: DocumentRecord | None = None,
        link_text: str = "",
        embed: bool = False,
    ) -> Resolution:
        """Resolve one anchor; *embed* is honored only for embeddable kinds."""
        return self._resolver.resolve_anchor(
            requester,
            target_slug_or_self,
            kind,
            anchor_id,
            current_document=current_document,
            link_text=link_text,
            embed=embed,
        )

    def resolve_references(
        self,
        content: str,
        *,
        current_document: DocumentRecord | None,
        requester: Requester | None,
    ) -> list[tuple[ReferenceToken, Resolution]]:
        return self._resolver.resolve_references(
            content, current_document=current_document, requester=requester,
        )
