"""Tests for anchorsync.references — token parsing and gated resolution."""
from __future__ import annotations

from pathlib import Path

import pytest

from anchorsync.anchor_store import AnchorStore, DocumentRecord
from anchorsync.references import (
    Forbidden,
    NotFound,
    ReferenceResolver,
    Resolved,
    anchor_href,
    iter_reference_tokens,
    resolution_to_dict,
)
from anchorsync.sync import AnchorIndex
from anchorsync.visibility import Requester


_NUMEROS = """\
:::theorem{#thm:a|descripción: primero}Teorema A.:::
:::theorem{#thm:Fermat Pequeño}$a^p \\equiv a$:::
$${#eq:euler}e^{i\\pi}+1=0$$
:::definition{#def:primo}Entero sin divisores propios.:::
"""


@pytest.fixture()
def index(tmp_path: Path) -> AnchorIndex:
    store = AnchorStore(tmp_path / "anchors.duckdb", create_if_missing=True)
    idx = AnchorIndex(store)
    idx.save_document(
        "doc-pub", slug="numeros", content=_NUMEROS, title="Números",
        published=True, owner_id="alice",
    )
    idx.save_document(
        "doc-draft", slug="other-doc", content=":::theorem{#thm:a}Borrador.:::",
        published=False, owner_id="alice",
    )
    yield idx  # type: ignore[misc]
    store.close()


@pytest.fixture()
def resolver(index: AnchorIndex) -> ReferenceResolver:
    return ReferenceResolver(index.store)


def _doc(index: AnchorIndex, document_id: str) -> DocumentRecord:
    return index.get_document(document_id)


# ───────────────────── Parsing ───────────────────────────────────────


class TestIterReferenceTokens:
    def test_cross_document_embed(self) -> None:
        [token] = list(iter_reference_tokens("ver {{thm:other-doc/a|ver teorema|embed}} aquí"))
        assert token.kind == "theorem"
        assert token.document_slug == "other-doc"
        assert token.anchor_id == "a"
        assert token.link_text == "ver teorema"
        assert token.embed is True
        assert token.full_match == "{{thm:other-doc/a|ver teorema|embed}}"
        assert token.char_start == 4

    def test_same_document_normalizes_id(self) -> None:
        [token] = list(iter_reference_tokens("{{eq:Mass Energy|la ecuación}}"))
        assert token.document_slug is None
        assert token.raw_anchor_id == "Mass Energy"
        assert token.anchor_id == "mass-energy"
        assert token.embed is False

    def test_source_order_and_all_tags(self) -> None:
        text = "{{img:f|F}} {{def:d|D}} {{prf:p|P}} {{thm:t|T}} {{eq:e|E}}"
        kinds = [t.kind for t in iter_reference_tokens(text)]
        assert kinds == ["imageAnchor", "definition", "proof", "theorem", "equation"]

    def test_unknown_tag_and_missing_text_ignored(self) -> None:
        assert list(iter_reference_tokens("{{lem:a|x}} {{thm:a}}")) == []

    def test_flag_other_than_embed(self) -> None:
        [token] = list(iter_reference_tokens("{{thm:a|x|inline}}"))
        assert token.embed is False


class TestHref:
    def test_format(self) -> None:
        assert anchor_href("blog", "numeros", "theorem", "fermat") == "/blog/numeros#thm-fermat"
        assert anchor_href("/notes/", "n", "img", "fig") == "/notes/n#img-fig"


# ───────────────────── Resolution ────────────────────────────────────


class TestResolveAnchor:
    def test_draft_of_other_owner_forbidden(self, resolver: ReferenceResolver) -> None:
        result = resolver.resolve_anchor(Requester("bob"), "other-doc", "theorem", "a", embed=True)
        assert isinstance(result, Forbidden)
        assert result.document_slug == "other-doc"

    def test_draft_forbidden_for_anonymous(self, resolver: ReferenceResolver) -> None:
        assert isinstance(resolver.resolve_anchor(None, "other-doc", "thm", "a"), Forbidden)

    def test_owner_sees_draft(self, resolver: ReferenceResolver) -> None:
        result = resolver.resolve_anchor(Requester("alice"), "other-doc", "theorem", "a")
        assert isinstance(result, Resolved)
        assert result.payload["content"] == "Borrador."

    def test_forbidden_hides_missing_anchor(self, resolver: ReferenceResolver) -> None:
        result = resolver.resolve_anchor(Requester("bob"), "other-doc", "theorem", "nope")
        assert isinstance(result, Forbidden)

    def test_published_visible_to_anyone(self, resolver: ReferenceResolver) -> None:
        result = resolver.resolve_anchor(None, "numeros", "theorem", "Fermat Pequeño")
        assert isinstance(result, Resolved)
        assert result.anchor_id == "fermat-pequeno"
        assert result.href == "/blog/numeros#thm-fermat-pequeno"
        assert result.payload["number"] == 2
        assert result.payload["document_title"] == "Números"

    def test_missing_document(self, resolver: ReferenceResolver) -> None:
        result = resolver.resolve_anchor(None, "ghost", "theorem", "a")
        assert isinstance(result, NotFound)
        assert result.reason == "document"

    def test_missing_anchor(self, resolver: ReferenceResolver) -> None:
        result = resolver.resolve_anchor(None, "numeros", "proof", "a")
        assert isinstance(result, NotFound)
        assert result.reason == "anchor"

    def test_empty_anchor_id(self, resolver: ReferenceResolver) -> None:
        result = resolver.resolve_anchor(None, "numeros", "theorem", "!!!")
        assert isinstance(result, NotFound)
        assert result.reason == "anchor"

    def test_same_document_without_slug(self, index: AnchorIndex, resolver: ReferenceResolver) -> None:
        result = resolver.resolve_anchor(
            None, None, "definition", "primo", current_document=_doc(index, "doc-pub"),
        )
        assert isinstance(result, Resolved)
        assert result.document_slug == "numeros"

    def test_no_current_document(self, resolver: ReferenceResolver) -> None:
        result = resolver.resolve_anchor(None, None, "theorem", "a")
        assert isinstance(result, NotFound)
        assert result.reason == "document"

    def test_embed_only_for_block_kinds(self, resolver: ReferenceResolver) -> None:
        thm = resolver.resolve_anchor(None, "numeros", "theorem", "a", embed=True)
        eq = resolver.resolve_anchor(None, "numeros", "equation", "euler", embed=True)
        assert isinstance(thm, Resolved) and thm.embed is True
        assert isinstance(eq, Resolved) and eq.embed is False
        assert eq.payload["equation"] == "e^{i\\pi}+1=0"
        assert eq.payload["number"] == 1


class TestResolveReferences:
    def test_mixed_outcomes_in_source_order(self, index: AnchorIndex) -> None:
        content = (
            "{{thm:a|local}} {{thm:other-doc/a|ver teorema|embed}} "
            "{{def:numeros/primo|primo}} {{prf:zzz|nada}}"
        )
        resolved = index.resolve_references(
            content, current_document=_doc(index, "doc-pub"), requester=Requester("bob"),
        )
        statuses = [res.status for _, res in resolved]
        assert statuses == ["resolved", "forbidden", "resolved", "not_found"]
        local = resolved[0][1]
        assert isinstance(local, Resolved)
        assert local.link_text == "local"
        assert local.payload["content"] == "Teorema A."

    def test_resolution_to_dict(self, index: AnchorIndex) -> None:
        [(token, res)] = index.resolve_references(
            "{{thm:a|A|embed}}", current_document=_doc(index, "doc-pub"), requester=None,
        )
        out = resolution_to_dict(token, res)
        assert out["status"] == "resolved"
        assert out["href"] == "/blog/numeros#thm-a"
        assert out["embed"] is True
        assert out["token"] == "{{thm:a|A|embed}}"

    def test_not_found_dict_has_reason(self, index: AnchorIndex) -> None:
        [(token, res)] = index.resolve_references(
            "{{eq:ghost/x|x}}", current_document=None, requester=None,
        )
        out = resolution_to_dict(token, res)
        assert out["status"] == "not_found"
        assert out["reason"] == "document"
        assert "href" not in out
