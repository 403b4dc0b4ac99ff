"""Structured JSON event log for a benchmark run."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

EVENTS_FILENAME = "events.jsonl"


class RunEventLogger:
    """Appends every event of one run as a JSON line to ``events.jsonl``."""

    def __init__(self, run_id: str, output_dir: str | Path):
        self.run_id = run_id
        self.output_dir = Path(output_dir)
        self.log_path = self.output_dir / EVENTS_FILENAME
        self._events: list[dict[str, Any]] = []

    @property
    def events(self) -> list[dict[str, Any]]:
        return list(self._events)

    def _write_event(self, event: dict[str, Any]) -> None:
        event["run_id"] = self.run_id
        event["timestamp"] = time.time()
        self._events.append(event)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        with open(self.log_path, "a") as f:
            f.write(json.dumps(event, default=str) + "\n")

    def log_run_start(self, benchmark_type: str, base_commit: str, config: dict[str, Any]) -> None:
        self._write_event({
            "event": "run_start",
            "type": benchmark_type,
            "base_commit": base_commit,
            "config": config,
        })

    def log_progress(
        self,
        event_type: str,
        model_id: str,
        message: str,
        duration: int | None = None,
        error: str | None = None,
    ) -> None:
        self._write_event({
            "event": "progress",
            "type": event_type,
            "model_id": model_id,
            "message": message[:1000],
            "duration": duration,
            "error": error,
        })

    def log_run_end(self, status: str, result: dict[str, Any]) -> None:
        self._write_event({
            "event": "run_end",
            "status": status,
            "result": result,
        })


def read_events(path: str | Path) -> list[dict[str, Any]]:
    """Read back an events.jsonl file; missing files have no events."""
    try:
        with open(path) as f:
            return [json.loads(line) for line in f if line.strip()]
    except FileNotFoundError:
        return []
