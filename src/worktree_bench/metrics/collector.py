"""Collects code-change, verification and cost metrics for a finished workspace."""

from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import Sequence

from worktree_bench.config import CostRates
from worktree_bench.llm.pricing import estimate_cost
from worktree_bench.process import ExecFn, describe_error, run_command
from worktree_bench.verification.base import VerificationMetrics
from worktree_bench.verification.runner import DEFAULT_TIMEOUT, VerificationRunner

from .base import BenchmarkMetrics, CodeMetrics, TimingMetrics, TokenMetrics

logger = logging.getLogger(__name__)


def _non_empty_lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


class MetricsCollector:
    """Gathers objective metrics by inspecting a workspace after a model ran in it.

    Code changes are measured against the base commit, including
    uncommitted and untracked work (untracked files are first marked
    intent-to-add). Collection problems never fail a benchmark; they
    degrade to empty metrics with a warning.
    """

    def __init__(
        self,
        exec_fn: ExecFn = run_command,
        cost_rates: CostRates | None = None,
        verification_timeout: float = DEFAULT_TIMEOUT,
        include_untracked: bool = True,
    ):
        self.exec_fn = exec_fn
        self.cost_rates = cost_rates or CostRates()
        self.verification_timeout = verification_timeout
        self.include_untracked = include_untracked
        self.verifier = VerificationRunner(exec_fn)

    async def _git(self, args: str, cwd: str | Path) -> str:
        output = await self.exec_fn(f"git {args}", cwd=str(cwd))
        return output.stdout

    async def collect_code_metrics(self, workspace_path: str | Path, base_commit: str) -> CodeMetrics:
        metrics = CodeMetrics()
        base = shlex.quote(base_commit)

        if self.include_untracked:
            try:
                await self._git("add --all --intent-to-add", workspace_path)
            except Exception as e:
                logger.warning("Could not mark untracked files in %s: %s", workspace_path, describe_error(e))

        try:
            numstat = await self._git(f"diff --numstat {base}", workspace_path)
            new_files = await self._git(f"diff --name-only --diff-filter=A {base}", workspace_path)
            modified_files = await self._git(f"diff --name-only --diff-filter=M {base}", workspace_path)
            all_changed = await self._git(f"diff --name-only {base}", workspace_path)
        except Exception as e:
            logger.warning("Failed to collect code metrics: %s", describe_error(e))
            return CodeMetrics()

        # additions<TAB>deletions<TAB>path; binary files report "-"
        for line in numstat.splitlines():
            parts = line.split("\t")
            if len(parts) < 3:
                continue
            if parts[0].isdigit():
                metrics.lines_added += int(parts[0])
            if parts[1].isdigit():
                metrics.lines_removed += int(parts[1])

        metrics.new_files = _non_empty_lines(new_files)
        metrics.modified_files = _non_empty_lines(modified_files)
        # Renames appear in neither filtered list, so count the unfiltered one.
        metrics.files_changed = len(_non_empty_lines(all_changed))

        logger.info(
            "Collected code metrics: +%d/-%d in %d files",
            metrics.lines_added, metrics.lines_removed, metrics.files_changed,
        )
        return metrics

    async def run_verification(
        self,
        commands: Sequence[str],
        cwd: str | Path,
        timeout: float | None = None,
        continue_on_error: bool = True,
    ) -> VerificationMetrics:
        return await self.verifier.run(
            commands,
            cwd,
            timeout=self.verification_timeout if timeout is None else timeout,
            continue_on_error=continue_on_error,
        )

    def estimate_cost(self, tokens: TokenMetrics | None) -> float | None:
        if tokens is None:
            return None
        return estimate_cost(tokens.prompt, tokens.completion, self.cost_rates)

    async def collect_all(
        self,
        workspace_path: str | Path,
        base_commit: str,
        timing: TimingMetrics,
        tokens: TokenMetrics | None = None,
        verification_commands: Sequence[str] | None = None,
    ) -> BenchmarkMetrics:
        code = await self.collect_code_metrics(workspace_path, base_commit)

        verification = None
        if verification_commands:
            verification = await self.run_verification(verification_commands, cwd=workspace_path)

        return BenchmarkMetrics(
            timing=timing,
            tokens=tokens,
            code=code,
            verification=verification,
            cost=self.estimate_cost(tokens),
        )

    @staticmethod
    def create_timing_metrics(
        started_at: int,
        completed_at: int,
        time_to_first_output: int | None = None,
    ) -> TimingMetrics:
        return TimingMetrics(
            started_at=started_at,
            completed_at=completed_at,
            duration=completed_at - started_at,
            time_to_first_output=time_to_first_output,
        )
