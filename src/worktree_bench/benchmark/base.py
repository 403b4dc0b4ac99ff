"""Benchmark run, result and score records."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from worktree_bench.config import BenchmarkRunConfig, BenchmarkType, ModelStatus, RunStatus
from worktree_bench.metrics.base import BenchmarkMetrics
from worktree_bench.workspace.manager import Workspace


def now_ms() -> int:
    return int(time.time() * 1000)


class ModelResult(BaseModel):
    """One model's outcome within a run."""
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    worktree: Workspace
    status: ModelStatus
    duration: int  # ms
    output: Any = None
    error: str | None = None
    metrics: BenchmarkMetrics
    timestamp: int = Field(default_factory=now_ms)


class ModelScore(BaseModel):
    """A human score for one model's result in a run."""
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    score: int = Field(ge=1, le=5)
    notes: str | None = None
    scored_at: int = Field(default_factory=now_ms)
    scored_by: str | None = None


class BenchmarkRun(BaseModel):
    """One benchmark submission covering every model for one work unit."""
    id: str
    type: BenchmarkType
    input: dict[str, Any] = Field(default_factory=dict)
    config: BenchmarkRunConfig
    base_commit: str
    results: list[ModelResult] = Field(default_factory=list)
    scores: list[ModelScore] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    completed_at: int | None = None
    status: RunStatus = RunStatus.RUNNING


class RunSummary(BaseModel):
    """Index entry for fast listing without reading every run."""
    model_config = ConfigDict(protected_namespaces=())

    id: str
    type: BenchmarkType
    status: RunStatus
    created_at: int
    completed_at: int | None = None
    model_count: int = 0

    @classmethod
    def from_run(cls, run: BenchmarkRun) -> RunSummary:
        return cls(
            id=run.id,
            type=run.type,
            status=run.status,
            created_at=run.created_at,
            completed_at=run.completed_at,
            model_count=len(run.results),
        )


class RunFilter(BaseModel):
    type: BenchmarkType | None = None
    status: RunStatus | None = None
    limit: int | None = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)
