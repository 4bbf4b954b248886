"""Tests for anchorsync.sync — the save hook and anchor listing."""
from __future__ import annotations

import logging
from pathlib import Path

import pytest

from anchorsync import sync as sync_mod
from anchorsync.anchor_store import AnchorStore
from anchorsync.errors import DocumentNotFoundError, UnknownAnchorKindError
from anchorsync.references import Resolved
from anchorsync.settings import Settings
from anchorsync.sync import AnchorIndex


_CONTENT = """\
$${#eq:b}B$$
:::theorem{#thm:t1}T1:::
$${#eq:a}A$$
:::proof{#prf:p}P:::
:::definition{#def:d}D:::
![fig](/u/fig.png){#img:fig}
:::theorem{#thm:t1}T1 again:::
"""


@pytest.fixture()
def store(tmp_path: Path) -> AnchorStore:
    s = AnchorStore(tmp_path / "anchors.duckdb", create_if_missing=True)
    yield s  # type: ignore[misc]
    s.close()


@pytest.fixture()
def index(store: AnchorStore) -> AnchorIndex:
    return AnchorIndex(store)


class TestOnDocumentSaved:
    def test_syncs_every_kind(self, index: AnchorIndex) -> None:
        index.store.register_image("doc-1", "/u/fig.png")
        report = index.on_document_saved("doc-1", _CONTENT)
        assert report.ok
        assert set(report.results) == {"equation", "theorem", "proof", "definition", "imageAnchor"}
        assert report.results["equation"].created == 2
        assert report.results["imageAnchor"].attached == 1
        counts = index.store.count_anchors("doc-1")
        assert counts == {"equation": 2, "theorem": 1, "proof": 1, "definition": 1, "imageAnchor": 1}

    def test_warnings_reported(self, index: AnchorIndex) -> None:
        report = index.on_document_saved("doc-1", _CONTENT)
        assert [(w.kind, w.code) for w in report.warnings] == [("theorem", "duplicate_anchor_id")]
        assert report.to_dict()["warnings"][0]["anchor_id"] == "t1"

    def test_second_save_is_noop(self, index: AnchorIndex) -> None:
        index.on_document_saved("doc-1", _CONTENT)
        before = index.store.write_count
        report = index.on_document_saved("doc-1", _CONTENT)
        assert report.writes == 0
        assert index.store.write_count == before

    def test_none_content_clears(self, index: AnchorIndex) -> None:
        index.on_document_saved("doc-1", _CONTENT)
        report = index.on_document_saved("doc-1", None)
        assert report.ok
        assert sum(index.store.count_anchors("doc-1").values()) == 0

    def test_failing_kind_is_contained(
        self,
        index: AnchorIndex,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        real = sync_mod.reconcile_kind

        def _flaky(store, document_id, descriptor, anchors, **kw):
            if descriptor.kind == "proof":
                raise RuntimeError("disk on fire")
            return real(store, document_id, descriptor, anchors, **kw)

        monkeypatch.setattr(sync_mod, "reconcile_kind", _flaky)
        with caplog.at_level(logging.ERROR, logger="anchorsync.sync"):
            report = index.on_document_saved("doc-1", _CONTENT)

        assert not report.ok
        assert report.failed_kinds == ["proof"]
        assert "RuntimeError: disk on fire" in (report.results["proof"].error or "")
        assert index.store.count_anchors("doc-1")["theorem"] == 1
        assert index.store.find_anchors("doc-1", "proof") == []
        assert any("kind=proof" in rec.getMessage() for rec in caplog.records)

    def test_failed_pass_keeps_none_of_its_writes(
        self, index: AnchorIndex, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        index.on_document_saved("doc-1", ":::theorem{#thm:a}A:::")
        real = index.store.delete_anchors

        def _delete_fails(kind, row_ids):
            if kind == "theorem":
                raise RuntimeError("delete failed")
            return real(kind, row_ids)

        monkeypatch.setattr(index.store, "delete_anchors", _delete_fails)
        report = index.on_document_saved("doc-1", ":::theorem{#thm:b}B:::")

        assert report.failed_kinds == ["theorem"]
        assert "delete failed" in (report.results["theorem"].error or "")
        rows = index.store.find_anchors("doc-1", "theorem")
        assert [(r.anchor_id, r.body, r.sequence_number) for r in rows] == [("a", "A", 1)]

    def test_failed_pass_repaired_by_next_save(
        self, index: AnchorIndex, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        real = sync_mod.reconcile_kind

        def _broken(*args, **kw):
            raise RuntimeError("transient")

        monkeypatch.setattr(sync_mod, "reconcile_kind", _broken)
        index.on_document_saved("doc-1", _CONTENT)
        monkeypatch.setattr(sync_mod, "reconcile_kind", real)
        report = index.on_document_saved("doc-1", _CONTENT)
        assert report.ok
        assert index.store.count_anchors("doc-1")["proof"] == 1


class TestSaveDocument:
    def test_saves_then_syncs(self, index: AnchorIndex) -> None:
        doc, report = index.save_document(
            "doc-1", slug="intro", content=_CONTENT, published=True, owner_id="alice",
        )
        assert doc.slug == "intro"
        assert report.document_id == "doc-1"
        assert index.get_document("doc-1").content == _CONTENT

    def test_get_missing_document(self, index: AnchorIndex) -> None:
        with pytest.raises(DocumentNotFoundError):
            index.get_document("ghost")


class TestListAnchors:
    def test_equations_in_creation_order(self, index: AnchorIndex) -> None:
        index.on_document_saved("doc-1", "$${#eq:b}B$$ $${#eq:a}A$$")
        # Reorder in source: creation-order numbering keeps b first.
        index.on_document_saved("doc-1", "$${#eq:a}A$$ $${#eq:b}B$$")
        anchors = index.list_anchors("doc-1", "eq")
        assert [(a.anchor_id, a.display_number) for a in anchors] == [("b", 1), ("a", 2)]

    def test_equations_in_content_order(self, store: AnchorStore) -> None:
        index = AnchorIndex(store, Settings(db_path=store.db_path, equation_numbering="content_order"))
        index.on_document_saved("doc-1", "$${#eq:b}B$$ $${#eq:a}A$$")
        index.on_document_saved("doc-1", "$${#eq:a}A$$ $${#eq:b}B$$")
        anchors = index.list_anchors("doc-1", "equation")
        assert [(a.anchor_id, a.display_number) for a in anchors] == [("a", 1), ("b", 2)]

    def test_all_kinds(self, index: AnchorIndex) -> None:
        index.on_document_saved("doc-1", _CONTENT)
        kinds = {a.kind for a in index.list_anchors("doc-1")}
        assert kinds == {"equation", "theorem", "proof", "definition"}

    def test_unknown_kind(self, index: AnchorIndex) -> None:
        with pytest.raises(UnknownAnchorKindError):
            index.list_anchors("doc-1", "lemma")


class TestResolveAnchor:
    def test_link_form_by_default(self, index: AnchorIndex) -> None:
        index.save_document("doc-1", slug="intro", content=_CONTENT, published=True)
        result = index.resolve_anchor(None, "intro", "theorem", "t1")
        assert isinstance(result, Resolved)
        assert result.embed is False
        assert result.link_text == ""

    def test_embed_and_link_text_passed_through(self, index: AnchorIndex) -> None:
        index.save_document("doc-1", slug="intro", content=_CONTENT, published=True)
        thm = index.resolve_anchor(None, "intro", "thm", "t1", link_text="ver", embed=True)
        eq = index.resolve_anchor(None, "intro", "eq", "a", embed=True)
        assert isinstance(thm, Resolved) and (thm.embed, thm.link_text) == (True, "ver")
        assert isinstance(eq, Resolved) and eq.embed is False
