"""Tests for idempotency keys and atomic file writes."""

import json
from datetime import date

import pytest

from fno_engine.core.errors import FileWriteFailed
from fno_engine.utils.files import atomic_write_json, dated_name
from fno_engine.utils.idempotency import generate_key, new_session_id, order_key

from conftest import ist


class TestIdempotency:
    def test_stable_keys(self):
        assert generate_key("a", 1, 2.5) == generate_key("a", 1, 2.5)
        assert generate_key("a", 1) != generate_key("a", 2)
        assert len(generate_key("x")) == 64

    def test_order_key(self):
        ts = ist(2025, 1, 6, 11)
        key = order_key("s1", "nifty", "CE", 20000, ts)
        assert key == order_key("s1", "NIFTY", "CE", 20000.0, ts)
        assert key != order_key("s2", "NIFTY", "CE", 20000.0, ts)
        assert key != order_key("s1", "NIFTY", "PE", 20000.0, ts)

    def test_session_ids_unique(self):
        assert new_session_id() != new_session_id()


class TestFiles:
    def test_dated_name(self):
        assert dated_name("trades", date(2025, 1, 6)) == "trades_20250106.json"
        assert dated_name("events", date(2025, 1, 6), ".jsonl") == "events_20250106.jsonl"

    def test_atomic_write(self, tmp_path):
        path = atomic_write_json(tmp_path / "nested" / "out.json", {"ts": date(2025, 1, 6)})
        assert json.loads(path.read_text()) == {"ts": "2025-01-06"}
        assert [p.name for p in path.parent.iterdir()] == ["out.json"]

    def test_write_failure(self, tmp_path):
        target = tmp_path / "out.json"
        target.mkdir()
        with pytest.raises(FileWriteFailed):
            atomic_write_json(target, {"a": 1})
