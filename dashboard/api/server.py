"""FastAPI server for the anchor index.

Opens the anchors DuckDB (``ANCHORSYNC_DB``) via ``AnchorStore`` and exposes
JSON endpoints for the editor and the renderer.

Usage:
    cd dashboard
    PYTHONPATH=../src uvicorn api.server:app --reload --port 8000

The requester id is read from the ``x-anchors-user`` header (configurable
through ``ANCHORSYNC_REQUESTER_HEADER``). Authentication itself happens
upstream.
"""
from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

# Add src to path so we can import anchorsync without installing it
_anchorsync_src = Path(__file__).resolve().parents[2] / "src"
if str(_anchorsync_src) not in sys.path:
    sys.path.insert(0, str(_anchorsync_src))

from anchorsync.anchor_kinds import get_descriptor  # noqa: E402
from anchorsync.anchor_store import AnchorStore, DocumentRecord  # noqa: E402
from anchorsync.errors import DocumentNotFoundError, UnknownAnchorKindError  # noqa: E402
from anchorsync.references import Forbidden, NotFound, resolution_to_dict  # noqa: E402
from anchorsync.settings import Settings, load_settings  # noqa: E402
from anchorsync.sync import AnchorIndex  # noqa: E402
from anchorsync.visibility import Requester, can_edit, can_view, requester_from_id  # noqa: E402

log = logging.getLogger("anchorsync.server")

# ---------------------------------------------------------------------------
# Globals
#
# IMPORTANT: DuckDB connections are NOT thread-safe. This server MUST run with
# a single uvicorn worker (the default) and all endpoints MUST remain async def
# so they execute on the single event loop thread.
# ---------------------------------------------------------------------------
_settings: Settings = load_settings(dotenv_path=Path(__file__).resolve().parents[2] / ".env")
_index: AnchorIndex | None = None


def _get_index() -> AnchorIndex:
    """Get the anchor index, raising 503 if not available."""
    if _index is None:
        raise HTTPException(status_code=503, detail="Anchor store not available")
    return _index


def _requester(request: Request) -> Requester | None:
    return requester_from_id(request.headers.get(_settings.requester_header))


def _require_requester(request: Request) -> Requester:
    requester = _requester(request)
    if requester is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return requester


def _require_document(index: AnchorIndex, document_id: str) -> DocumentRecord:
    try:
        return index.get_document(document_id)
    except DocumentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _require_owner(requester: Requester, document: DocumentRecord) -> None:
    if not can_edit(requester, document):
        raise HTTPException(
            status_code=403,
            detail=f"Not allowed to modify document {document.document_id}",
        )


def _kind_or_400(kind: str) -> str:
    try:
        return get_descriptor(kind).kind
    except UnknownAnchorKindError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _anchor_to_dict(record: Any) -> dict[str, Any]:
    out = {
        "id": record.id,
        "kind": record.kind,
        "anchor_id": record.anchor_id,
        "description": record.description,
        "number": record.display_number,
        "created_at": record.created_at,
    }
    if record.kind == "imageAnchor":
        out["url"] = record.url
        out["alt"] = record.alt
    else:
        out["body"] = record.body
    return out


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    global _index  # noqa: PLW0603
    try:
        store = AnchorStore(_settings.db_path, create_if_missing=True)
        _index = AnchorIndex(store, _settings)
        log.info("Anchor store opened: %s", _settings.db_path)
    except Exception:
        log.exception("Could not open anchor store at %s", _settings.db_path)
        _index = None

    yield
    if _index is not None:
        _index.store.close()
        _index = None


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Anchor Index API",
    version="0.1.0",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
class SaveDocumentRequest(BaseModel):
    content: str
    slug: str | None = Field(default=None, min_length=1, max_length=200)
    title: str | None = None
    published: bool | None = None


class ResolveReferencesRequest(BaseModel):
    content: str | None = None  # None -> stored document content


# ---------------------------------------------------------------------------
# Routes: Health
# ---------------------------------------------------------------------------
@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "store_loaded": _index is not None,
        "equation_numbering": _settings.equation_numbering,
    }


# ---------------------------------------------------------------------------
# Routes: Save hook
# ---------------------------------------------------------------------------
@app.put("/api/documents/{document_id}")
async def save_document(document_id: str, req: SaveDocumentRequest, request: Request):
    """Store document content and re-sync its anchors.

    Anchor sync failures never fail the save; they show up in ``sync``.
    """
    index = _get_index()
    requester = _require_requester(request)
    existing = index.store.get_document(document_id)

    if existing is None:
        if not req.slug:
            raise HTTPException(status_code=400, detail="slug is required for a new document")
        owner_id = requester.id
    else:
        _require_owner(requester, existing)
        owner_id = existing.owner_id

    slug = req.slug or existing.slug  # type: ignore[union-attr]
    clash = index.store.get_document_by_slug(slug)
    if clash is not None and clash.document_id != document_id:
        raise HTTPException(status_code=409, detail=f"Slug already in use: {slug}")

    document, report = index.save_document(
        document_id,
        slug=slug,
        content=req.content,
        title=req.title if req.title is not None else (existing.title if existing else ""),
        published=req.published if req.published is not None else bool(existing and existing.published),
        owner_id=owner_id,
    )
    return {
        "document_id": document.document_id,
        "slug": document.slug,
        "published": document.published,
        "sync": report.to_dict(),
    }


@app.post("/api/documents/{document_id}/sync")
async def resync_document(document_id: str, request: Request):
    index = _get_index()
    requester = _require_requester(request)
    document = _require_document(index, document_id)
    _require_owner(requester, document)
    return index.on_document_saved(document.document_id, document.content).to_dict()


# ---------------------------------------------------------------------------
# Routes: Anchors
# ---------------------------------------------------------------------------
@app.get("/api/documents/{document_id}/anchors")
async def list_document_anchors(
    document_id: str,
    request: Request,
    kind: str | None = Query(None, description="equation, theorem, proof, definition, imageAnchor"),
):
    """Editor listing (autocomplete); owner only."""
    index = _get_index()
    requester = _require_requester(request)
    document = _require_document(index, document_id)
    _require_owner(requester, document)
    kind_name = _kind_or_400(kind) if kind else None
    anchors = index.list_anchors(document_id, kind_name)
    return {
        "document_id": document_id,
        "slug": document.slug,
        "anchors": [_anchor_to_dict(a) for a in anchors],
    }


@app.get("/api/public/{kind}/{slug}/{anchor_id}")
async def get_public_anchor(kind: str, slug: str, anchor_id: str, request: Request):
    """Fetch one anchor through the visibility gate."""
    index = _get_index()
    kind_name = _kind_or_400(kind)
    resolution = index.resolve_anchor(_requester(request), slug, kind_name, anchor_id)
    if isinstance(resolution, Forbidden):
        raise HTTPException(status_code=403, detail="Document is not visible")
    if isinstance(resolution, NotFound):
        what = "Document" if resolution.reason == "document" else "Anchor"
        raise HTTPException(status_code=404, detail=f"{what} not found")
    return {**resolution.payload, "href": resolution.href}


@app.post("/api/documents/{document_id}/references")
async def resolve_document_references(
    document_id: str,
    req: ResolveReferencesRequest,
    request: Request,
):
    """Resolve every reference token for rendering."""
    index = _get_index()
    requester = _requester(request)
    document = _require_document(index, document_id)
    if not can_view(requester, document):
        raise HTTPException(status_code=403, detail="Document is not visible")
    content = req.content if req.content is not None else document.content
    resolved = index.resolve_references(content, current_document=document, requester=requester)
    return {
        "document_id": document_id,
        "references": [resolution_to_dict(token, res) for token, res in resolved],
    }
