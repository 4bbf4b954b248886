"""DuckDB read/write store for documents and their anchors.

Manages ``anchors.duckdb``. Tables:

* ``documents``: minimal copy of the document collaborator's rows
  (id, slug, title, content, published, owner)
* ``equations``, ``theorems``, ``proofs``, ``definitions``: one row per
  anchor, UNIQUE on ``(document_id, anchor_id)``
* ``images``: uploaded images; anchor columns are attached/detached by
  the reconciler, rows are created only by the upload path

Anchor rows are mutated exclusively by ``anchorsync.reconcile``. Every
mutating statement bumps ``write_count`` so callers can tell a no-op pass
from one that touched the database.
"""
from __future__ import annotations

import contextlib
import importlib
import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from anchorsync.anchor_kinds import ANCHOR_KINDS, AnchorKind, get_descriptor

# Dynamic DuckDB import for pyright compatibility
_duckdb_mod = importlib.import_module("duckdb")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _to_dict(cols: list[str], row: tuple[Any, ...]) -> dict[str, Any]:
    """Zip column names with a row tuple into a dict (strict length check)."""
    return dict(zip(cols, row, strict=True))


SCHEMA_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_DDL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS _schema_version (
    table_name VARCHAR PRIMARY KEY,
    version VARCHAR NOT NULL
);

-- Creation order tie-breaker shared by all anchor tables
CREATE SEQUENCE IF NOT EXISTS anchor_insert_seq START 1;

-- ─── DOCUMENTS ────────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS documents (
    document_id VARCHAR PRIMARY KEY,
    slug VARCHAR NOT NULL UNIQUE,
    title VARCHAR NOT NULL DEFAULT '',
    content VARCHAR NOT NULL DEFAULT '',
    published BOOLEAN NOT NULL DEFAULT false,
    owner_id VARCHAR,
    created_at TIMESTAMP DEFAULT current_timestamp,
    updated_at TIMESTAMP DEFAULT current_timestamp
);

-- ─── IMAGES ───────────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS images (
    id VARCHAR PRIMARY KEY,
    document_id VARCHAR NOT NULL,
    url VARCHAR NOT NULL,
    filename VARCHAR NOT NULL DEFAULT '',
    alt VARCHAR,
    anchor_id VARCHAR,
    description VARCHAR,
    insert_seq BIGINT NOT NULL DEFAULT nextval('anchor_insert_seq'),
    created_at TIMESTAMP DEFAULT current_timestamp,
    updated_at TIMESTAMP DEFAULT current_timestamp
);
"""

_ANCHOR_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    id VARCHAR PRIMARY KEY,
    document_id VARCHAR NOT NULL,
    anchor_id VARCHAR NOT NULL,
    body VARCHAR NOT NULL DEFAULT '',
    description VARCHAR,
    sequence_number INTEGER,
    insert_seq BIGINT NOT NULL DEFAULT nextval('anchor_insert_seq'),
    created_at TIMESTAMP DEFAULT current_timestamp,
    updated_at TIMESTAMP DEFAULT current_timestamp,
    UNIQUE (document_id, anchor_id)
)
"""


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class DocumentRecord:
    """A document as seen by the anchor index."""

    document_id: str
    slug: str
    title: str
    content: str
    published: bool
    owner_id: str | None


@dataclass(frozen=True, slots=True)
class AnchorRecord:
    """A persisted anchor of any kind."""

    id: str
    kind: AnchorKind
    document_id: str
    anchor_id: str
    body: str
    description: str | None
    sequence_number: int | None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    insert_seq: int = 0
    alt: str | None = None          # imageAnchor only
    url: str | None = None          # imageAnchor only
    display_number: int | None = None


def _document_from_row(row: dict[str, Any]) -> DocumentRecord:
    return DocumentRecord(
        document_id=row["document_id"],
        slug=row["slug"],
        title=row.get("title") or "",
        content=row.get("content") or "",
        published=bool(row.get("published")),
        owner_id=row.get("owner_id"),
    )


def _anchor_from_row(kind: AnchorKind, row: dict[str, Any]) -> AnchorRecord:
    sequence_number = row.get("sequence_number")
    return AnchorRecord(
        id=row["id"],
        kind=kind,
        document_id=row["document_id"],
        anchor_id=row["anchor_id"],
        body=row.get("body") or "",
        description=row.get("description"),
        sequence_number=sequence_number,
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
        insert_seq=int(row.get("insert_seq") or 0),
        alt=row.get("alt"),
        url=row.get("url"),
        display_number=sequence_number,
    )


class AnchorStore:
    """Read/write interface to ``anchors.duckdb``."""

    def __init__(
        self,
        db_path: Path | str,
        *,
        create_if_missing: bool = False,
    ) -> None:
        self._db_path = Path(db_path)
        if not self._db_path.exists() and not create_if_missing:
            raise FileNotFoundError(f"Anchors database not found: {self._db_path}")

        self._conn: Any = _duckdb_mod.connect(str(self._db_path))
        self._in_transaction = False
        self.write_count = 0
        self._create_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _create_schema(self) -> None:
        """Create all tables if they don't exist."""
        ddl = _SCHEMA_DDL + ";".join(
            _ANCHOR_TABLE_DDL.format(table=d.table)
            for d in ANCHOR_KINDS.values()
            if d.owns_rows
        )
        for stmt in ddl.split(";"):
            stmt = stmt.strip()
            if stmt:
                self._conn.execute(stmt)

        self._conn.execute(
            "INSERT OR REPLACE INTO _schema_version (table_name, version) VALUES (?, ?)",
            ["anchors", SCHEMA_VERSION],
        )

    def _write(self, sql: str, params: list[Any] | None = None) -> None:
        self._conn.execute(sql, params or [])
        self.write_count += 1

    def _fetch_dicts(self, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        rows = self._conn.execute(sql, params).fetchall()
        cols = [d[0] for d in self._conn.description]
        return [_to_dict(cols, row) for row in rows]

    # ─── Transactions ─────────────────────────────────────────────

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed writes as one DuckDB transaction.

        Rolls back and re-raises on any exception. Nested use joins the
        outer transaction.
        """
        if self._in_transaction:
            yield
            return
        self._conn.execute("BEGIN TRANSACTION")
        self._in_transaction = True
        try:
            yield
        except BaseException:
            self._in_transaction = False
            self._conn.execute("ROLLBACK")
            raise
        self._in_transaction = False
        self._conn.execute("COMMIT")

    # ─── Documents ────────────────────────────────────────────────

    def get_document(self, document_id: str) -> DocumentRecord | None:
        rows = self._fetch_dicts(
            "SELECT * FROM documents WHERE document_id = ?", [document_id],
        )
        return _document_from_row(rows[0]) if rows else None

    def get_document_by_slug(self, slug: str) -> DocumentRecord | None:
        rows = self._fetch_dicts("SELECT * FROM documents WHERE slug = ?", [slug])
        return _document_from_row(rows[0]) if rows else None

    def save_document(
        self,
        document_id: str,
        *,
        slug: str,
        content: str = "",
        title: str = "",
        published: bool = False,
        owner_id: str | None = None,
    ) -> DocumentRecord:
        """Insert or update a document row (stand-in for the document store)."""
        existing = self.get_document(document_id)
        if existing is None:
            self._write(
                """
                INSERT INTO documents
                (document_id, slug, title, content, published, owner_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [document_id, slug, title, content, published, owner_id, _now(), _now()],
            )
        else:
            self._write(
                "UPDATE documents SET title = ?, content = ?, published = ?, "
                "owner_id = ?, updated_at = ? WHERE document_id = ?",
                [title, content, published, owner_id, _now(), document_id],
            )
            if existing.slug != slug:
                self._write(
                    "UPDATE documents SET slug = ? WHERE document_id = ?",
                    [slug, document_id],
                )
        return DocumentRecord(
            document_id=document_id,
            slug=slug,
            title=title,
            content=content,
            published=published,
            owner_id=owner_id,
        )

    # ─── Images (upload side) ─────────────────────────────────────

    def register_image(
        self,
        document_id: str,
        url: str,
        *,
        filename: str = "",
        image_id: str | None = None,
        anchor_id: str | None = None,
        description: str | None = None,
        alt: str | None = None,
    ) -> str:
        """Record an uploaded image. Only the upload path creates image rows."""
        image_id = image_id or _uuid()
        self._write(
            """
            INSERT INTO images
            (id, document_id, url, filename, alt, anchor_id, description, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [image_id, document_id, url, filename, alt, anchor_id, description, _now(), _now()],
        )
        return image_id

    def get_images(self, document_id: str) -> list[dict[str, Any]]:
        return self._fetch_dicts(
            "SELECT * FROM images WHERE document_id = ? ORDER BY created_at, insert_seq",
            [document_id],
        )

    def attach_image_anchor(
        self,
        image_id: str,
        anchor_id: str,
        *,
        description: str | None,
        alt: str | None,
    ) -> None:
        self._write(
            "UPDATE images SET anchor_id = ?, description = ?, alt = ?, updated_at = ? "
            "WHERE id = ?",
            [anchor_id, description, alt, _now(), image_id],
        )

    def update_image_anchor(
        self,
        image_id: str,
        *,
        description: str | None,
        alt: str | None,
    ) -> None:
        self._write(
            "UPDATE images SET description = ?, alt = ?, updated_at = ? WHERE id = ?",
            [description, alt, _now(), image_id],
        )

    def detach_image_anchors(self, image_ids: Iterable[str]) -> int:
        """Clear anchor columns on *image_ids*; the image rows stay."""
        ids = list(image_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        self._write(
            "UPDATE images SET anchor_id = NULL, description = NULL, alt = NULL, "
            f"updated_at = ? WHERE id IN ({placeholders})",
            [_now(), *ids],
        )
        return len(ids)

    # ─── Anchors ──────────────────────────────────────────────────

    def find_anchors(self, document_id: str, kind: AnchorKind | str) -> list[AnchorRecord]:
        """All anchors of *kind* in a document, number order then creation order."""
        descriptor = get_descriptor(kind)
        if descriptor.owns_rows:
            sql = (
                f"SELECT * FROM {descriptor.table} WHERE document_id = ? "
                "ORDER BY sequence_number NULLS LAST, created_at, insert_seq"
            )
        else:
            sql = (
                f"SELECT * FROM {descriptor.table} "
                "WHERE document_id = ? AND anchor_id IS NOT NULL "
                "ORDER BY created_at, insert_seq"
            )
        return [
            _anchor_from_row(descriptor.kind, row)
            for row in self._fetch_dicts(sql, [document_id])
        ]

    def get_anchor(
        self,
        document_id: str,
        kind: AnchorKind | str,
        anchor_id: str,
    ) -> AnchorRecord | None:
        descriptor = get_descriptor(kind)
        rows = self._fetch_dicts(
            f"SELECT * FROM {descriptor.table} WHERE document_id = ? AND anchor_id = ? "
            "ORDER BY created_at, insert_seq LIMIT 1",
            [document_id, anchor_id],
        )
        return _anchor_from_row(descriptor.kind, rows[0]) if rows else None

    def insert_anchor(
        self,
        document_id: str,
        kind: AnchorKind | str,
        anchor_id: str,
        *,
        body: str,
        description: str | None,
        sequence_number: int | None,
    ) -> str:
        descriptor = get_descriptor(kind)
        row_id = _uuid()
        self._write(
            f"""
            INSERT INTO {descriptor.table}
            (id, document_id, anchor_id, body, description, sequence_number,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [row_id, document_id, anchor_id, body, description, sequence_number, _now(), _now()],
        )
        return row_id

    def update_anchor(
        self,
        kind: AnchorKind | str,
        row_id: str,
        *,
        body: str,
        description: str | None,
    ) -> None:
        descriptor = get_descriptor(kind)
        self._write(
            f"UPDATE {descriptor.table} SET body = ?, description = ?, updated_at = ? "
            "WHERE id = ?",
            [body, description, _now(), row_id],
        )

    def _existing_ids(self, table: str, row_ids: list[str]) -> list[str]:
        """Return input row IDs that currently exist, preserving input order."""
        if not row_ids:
            return []
        placeholders = ", ".join("?" for _ in row_ids)
        rows = self._conn.execute(
            f"SELECT id FROM {table} WHERE id IN ({placeholders})", row_ids,
        ).fetchall()
        existing = {row[0] for row in rows}
        return [rid for rid in row_ids if rid in existing]

    def delete_anchors(self, kind: AnchorKind | str, row_ids: Iterable[str]) -> int:
        descriptor = get_descriptor(kind)
        existing = self._existing_ids(descriptor.table, list(row_ids))
        if not existing:
            return 0
        placeholders = ", ".join("?" for _ in existing)
        self._write(
            f"DELETE FROM {descriptor.table} WHERE id IN ({placeholders})", existing,
        )
        return len(existing)

    def update_sequence_numbers(
        self,
        kind: AnchorKind | str,
        numbers: dict[str, int | None],
    ) -> int:
        """Write ``{row_id: sequence_number}``; returns rows written."""
        descriptor = get_descriptor(kind)
        for row_id, number in numbers.items():
            self._write(
                f"UPDATE {descriptor.table} SET sequence_number = ? WHERE id = ?",
                [number, row_id],
            )
        return len(numbers)

    def count_anchors(self, document_id: str | None = None) -> dict[AnchorKind, int]:
        counts: dict[AnchorKind, int] = {}
        for descriptor in ANCHOR_KINDS.values():
            where = ["anchor_id IS NOT NULL"]
            params: list[Any] = []
            if document_id is not None:
                where.append("document_id = ?")
                params.append(document_id)
            row = self._conn.execute(
                f"SELECT COUNT(*) FROM {descriptor.table} WHERE {' AND '.join(where)}",
                params,
            ).fetchone()
            counts[descriptor.kind] = int(row[0]) if row else 0
        return counts

    # ─── Lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        """Close the DuckDB connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
