"""Metric models collected for every model result."""

from __future__ import annotations

from pydantic import BaseModel, Field

from worktree_bench.verification.base import VerificationMetrics


class TimingMetrics(BaseModel):
    started_at: int  # epoch ms
    completed_at: int
    duration: int  # ms
    time_to_first_output: int | None = None  # ms after started_at


class TokenMetrics(BaseModel):
    prompt: int = 0
    completion: int = 0
    total: int = 0


class CodeMetrics(BaseModel):
    lines_added: int = 0
    lines_removed: int = 0
    files_changed: int = 0
    new_files: list[str] = Field(default_factory=list)
    modified_files: list[str] = Field(default_factory=list)


class BenchmarkMetrics(BaseModel):
    timing: TimingMetrics
    tokens: TokenMetrics | None = None
    code: CodeMetrics | None = None
    verification: VerificationMetrics | None = None
    cost: float | None = None  # estimated USD
