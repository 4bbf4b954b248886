#!/usr/bin/env python3
"""Anchor index command line: sync a document, list, resolve and export anchors.

Output is JSON on stdout; progress and errors go to stderr.

Usage:
    # Save a document from a markdown file and sync its anchors
    python3 scripts/anchor_sync.py sync --document-id doc-1 --slug intro \\
      --owner alice --file posts/intro.md

    # Re-sync the stored content of an existing document
    python3 scripts/anchor_sync.py sync --document-id doc-1

    # List anchors (optionally one kind)
    python3 scripts/anchor_sync.py list --document-id doc-1 --kind thm

    # Resolve every reference token as a given reader
    python3 scripts/anchor_sync.py resolve --document-id doc-1 --requester bob

    # Export anchors to JSONL
    python3 scripts/anchor_sync.py export --document-id doc-1 --out anchors.jsonl

The database defaults to ``ANCHORSYNC_DB`` (or ``anchors.duckdb``); pass
``--db`` to override.
"""
from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

# Add src to path so the script runs from a checkout
_anchorsync_src = Path(__file__).resolve().parents[1] / "src"
if str(_anchorsync_src) not in sys.path:
    sys.path.insert(0, str(_anchorsync_src))

from anchorsync.anchor_store import AnchorStore  # noqa: E402
from anchorsync.errors import DocumentNotFoundError, UnknownAnchorKindError  # noqa: E402
from anchorsync.io_utils import dumps_json, save_jsonl  # noqa: E402
from anchorsync.references import resolution_to_dict  # noqa: E402
from anchorsync.settings import Settings, load_settings  # noqa: E402
from anchorsync.sync import AnchorIndex  # noqa: E402
from anchorsync.visibility import requester_from_id  # noqa: E402

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2


def _log(msg: str) -> None:
    """Write log message to stderr with timestamp."""
    ts = datetime.now(UTC).strftime("%H:%M:%S")
    print(f"[anchors {ts}] {msg}", file=sys.stderr)


def _emit(obj: Any) -> None:
    print(dumps_json(obj, pretty=True))


def _read_content(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _open_index(settings: Settings, *, create: bool) -> AnchorIndex | None:
    try:
        store = AnchorStore(settings.db_path, create_if_missing=create)
    except FileNotFoundError:
        _log(f"Error: anchor database not found: {settings.db_path}")
        return None
    return AnchorIndex(store, settings)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_sync(index: AnchorIndex, args: argparse.Namespace) -> int:
    existing = index.store.get_document(args.document_id)

    if args.file is None:
        if existing is None:
            _log(f"Error: document {args.document_id} does not exist; pass --file and --slug")
            return EXIT_ERROR
        report = index.on_document_saved(existing.document_id, existing.content)
    else:
        slug = args.slug or (existing.slug if existing else None)
        if not slug:
            _log("Error: --slug is required for a new document")
            return EXIT_ERROR
        _, report = index.save_document(
            args.document_id,
            slug=slug,
            content=_read_content(args.file),
            title=args.title if args.title is not None else (existing.title if existing else ""),
            published=args.published if args.published is not None else bool(
                existing and existing.published
            ),
            owner_id=args.owner or (existing.owner_id if existing else None),
        )

    _log(
        f"Synced {args.document_id}: {report.writes} writes, "
        f"{len(report.warnings)} warnings ({report.elapsed_ms:.1f} ms)"
    )
    for warning in report.warnings:
        _log(f"  warning [{warning.kind}] {warning.message}")
    _emit(report.to_dict())
    return EXIT_OK if report.ok else EXIT_ERROR


def cmd_list(index: AnchorIndex, args: argparse.Namespace) -> int:
    index.get_document(args.document_id)
    anchors = index.list_anchors(args.document_id, args.kind)
    _emit([dataclasses.asdict(a) for a in anchors])
    return EXIT_OK


def cmd_resolve(index: AnchorIndex, args: argparse.Namespace) -> int:
    document = index.get_document(args.document_id)
    content = _read_content(args.file) if args.file else document.content
    resolved = index.resolve_references(
        content,
        current_document=document,
        requester=requester_from_id(args.requester),
    )
    _emit([resolution_to_dict(token, res) for token, res in resolved])
    unresolved = sum(1 for _, res in resolved if res.status != "resolved")
    if unresolved:
        _log(f"{unresolved}/{len(resolved)} references did not resolve")
    return EXIT_OK


def cmd_export(index: AnchorIndex, args: argparse.Namespace) -> int:
    index.get_document(args.document_id)
    anchors = index.list_anchors(args.document_id, args.kind)
    count = save_jsonl((dataclasses.asdict(a) for a in anchors), Path(args.out))
    _log(f"Wrote {count} anchors to {args.out}")
    return EXIT_OK


_COMMANDS = {
    "sync": cmd_sync,
    "list": cmd_list,
    "resolve": cmd_resolve,
    "export": cmd_export,
}


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Sync, list, resolve and export document anchors",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--db", default=None,
        help="Path to anchors DuckDB (default: $ANCHORSYNC_DB or anchors.duckdb)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_sync = sub.add_parser("sync", help="Save a document (optional) and sync its anchors")
    p_sync.add_argument("--document-id", required=True)
    p_sync.add_argument("--file", default=None, help="Markdown source ('-' for stdin)")
    p_sync.add_argument("--slug", default=None)
    p_sync.add_argument("--title", default=None)
    p_sync.add_argument("--owner", default=None, help="Owner user id")
    p_sync.add_argument(
        "--published", default=None, action=argparse.BooleanOptionalAction,
        help="Mark the document published (or --no-published)",
    )

    p_list = sub.add_parser("list", help="List anchors of a document")
    p_list.add_argument("--document-id", required=True)
    p_list.add_argument("--kind", default=None, help="Kind name or tag (eq, thm, prf, def, img)")

    p_resolve = sub.add_parser("resolve", help="Resolve reference tokens of a document")
    p_resolve.add_argument("--document-id", required=True)
    p_resolve.add_argument("--requester", default=None, help="Reader user id (default: anonymous)")
    p_resolve.add_argument("--file", default=None, help="Resolve this content instead of the stored one")

    p_export = sub.add_parser("export", help="Export anchors of a document to JSONL")
    p_export.add_argument("--document-id", required=True)
    p_export.add_argument("--kind", default=None)
    p_export.add_argument("--out", required=True, help="Output JSONL path")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        settings = load_settings()
    except ValueError as exc:
        _log(f"Error: invalid settings: {exc}")
        return EXIT_USAGE
    if args.db:
        settings = dataclasses.replace(settings, db_path=Path(args.db))

    index = _open_index(settings, create=args.command == "sync")
    if index is None:
        return EXIT_ERROR

    try:
        return _COMMANDS[args.command](index, args)
    except UnknownAnchorKindError as exc:
        _log(f"Error: {exc}")
        return EXIT_USAGE
    except DocumentNotFoundError as exc:
        _log(f"Error: {exc}")
        return EXIT_ERROR
    finally:
        index.store.close()


if __name__ == "__main__":
    sys.exit(main())
