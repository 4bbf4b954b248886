"""Tests for anchorsync.io_utils — orjson-backed JSON / JSONL output."""
from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import orjson

from anchorsync.anchor_store import AnchorRecord
from anchorsync.io_utils import dumps_json, save_jsonl


class TestDumpsJson:
    def test_sorted_keys(self) -> None:
        assert dumps_json({"b": 1, "a": 2}) == '{"a":2,"b":1}'

    def test_pretty(self) -> None:
        assert "\n  " in dumps_json({"a": 1}, pretty=True)

    def test_dataclass_and_datetime(self) -> None:
        record = AnchorRecord(
            id="r1", kind="theorem", document_id="d", anchor_id="a", body="x",
            description=None, sequence_number=1,
            created_at=datetime(2026, 1, 2, tzinfo=UTC),
        )
        out = dumps_json(record)
        assert '"anchor_id":"a"' in out
        assert '"created_at":"2026-01-02T00:00:00+00:00"' in out


class TestSaveJsonl:
    def test_one_object_per_line(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "out.jsonl"
        assert save_jsonl([{"n": 1}, {"n": 2}], path) == 2
        lines = path.read_bytes().splitlines()
        assert [orjson.loads(line) for line in lines] == [{"n": 1}, {"n": 2}]
        assert path.read_bytes().endswith(b"\n")

    def test_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.jsonl"
        assert save_jsonl([], path) == 0
        assert path.read_bytes() == b""
