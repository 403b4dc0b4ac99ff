"""Tests for the JSONL run event log and atomic JSON documents."""

import json
import tempfile
from pathlib import Path

from pydantic import BaseModel, Field

from worktree_bench.documents import JsonDocument, write_json_atomic
from worktree_bench.logging.logger import RunEventLogger, read_events


def test_logger_writes_events():
    with tempfile.TemporaryDirectory() as tmpdir:
        logger = RunEventLogger("bench-op-1-abcd", Path(tmpdir) / "runs" / "bench-op-1-abcd")
        logger.log_run_start("operation", "abc123", {"concurrency": 2})
        logger.log_progress("start", "openai:gpt-4o", "Created worktree")
        logger.log_progress("error", "openai:gpt-4o", "x" * 5000, duration=120, error="boom")
        logger.log_run_end("partial", {"results": 1})

        events = read_events(logger.log_path)
        assert events == logger.events
        assert [e["event"] for e in events] == ["run_start", "progress", "progress", "run_end"]
        assert all(e["run_id"] == "bench-op-1-abcd" and "timestamp" in e for e in events)
        assert events[2]["error"] == "boom"
        assert events[2]["duration"] == 120
        assert len(events[2]["message"]) == 1000


def test_read_events_missing_file():
    assert read_events("/nonexistent/events.jsonl") == []


class Counter(BaseModel):
    values: list[int] = Field(default_factory=list)


def test_json_document_update():
    with tempfile.TemporaryDirectory() as tmpdir:
        doc = JsonDocument(Path(tmpdir) / "nested" / "counter.json", Counter)
        assert doc.load() == Counter()

        doc.update(lambda c: c.values.append(1))
        doc.update(lambda c: c.values.append(2))
        assert doc.load().values == [1, 2]
        assert json.loads(doc.path.read_text()) == {"values": [1, 2]}
        # No temp files left behind
        assert [p.name for p in doc.path.parent.iterdir()] == ["counter.json"]


def test_json_document_invalid_contents():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "counter.json"
        write_json_atomic(path, {"values": "not a list"})
        assert JsonDocument(path, Counter).load() == Counter()
