"""JSON / JSONL output on top of orjson.

orjson serializes dataclasses, datetimes and UUIDs natively, so anchor
records and sync reports can be dumped without a conversion pass.
"""
from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import orjson


def dumps_json(obj: Any, *, pretty: bool = False) -> str:
    """Serialize to a JSON string (sorted keys; indented when *pretty*)."""
    opts = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS
    if pretty:
        opts |= orjson.OPT_INDENT_2
    return orjson.dumps(obj, option=opts).decode("utf-8")


def save_jsonl(records: Iterable[Any], path: Path) -> int:
    """Save records as JSON Lines; returns the number written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [orjson.dumps(r, option=orjson.OPT_SORT_KEYS) for r in records]
    path.write_bytes(b"\n".join(lines) + (b"\n" if lines else b""))
    return len(lines)
