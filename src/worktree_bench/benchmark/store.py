"""Persistent storage for benchmark runs.

Layout under ``<data_dir>/benchmarks/``::

    index.json                   # summaries of every run, most recent first
    runs/
      {run-id}/
        run.json                 # run metadata, without results and scores
        scores.json              # user scores
        events.jsonl             # progress event log
        results/
          {model-id}.json        # one file per model result

Keeping results in their own files keeps ``run.json`` and the index small.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from worktree_bench.config import DEFAULT_DATA_DIR, RunStatus
from worktree_bench.documents import JsonDocument, read_json, write_json_atomic, write_text_atomic
from worktree_bench.errors import RunNotFoundError
from worktree_bench.workspace.manager import sanitize_model_id

from .base import BenchmarkRun, ModelResult, ModelScore, RunFilter, RunSummary

if TYPE_CHECKING:
    from worktree_bench.workspace.manager import WorkspaceManager

logger = logging.getLogger(__name__)

INDEX_VERSION = 1

_scores_adapter = TypeAdapter(list[ModelScore])


class BenchmarkIndex(BaseModel):
    version: int = INDEX_VERSION
    runs: list[RunSummary] = Field(default_factory=list)


def _apply_filter(runs: list[RunSummary], run_filter: RunFilter | None, paginate: bool = True) -> list[RunSummary]:
    if run_filter is None:
        return runs
    if run_filter.type is not None:
        runs = [r for r in runs if r.type == run_filter.type]
    if run_filter.status is not None:
        runs = [r for r in runs if r.status == run_filter.status]
    if paginate:
        end = None if run_filter.limit is None else run_filter.offset + run_filter.limit
        runs = runs[run_filter.offset:end]
    return runs


class BenchmarkStore:
    """Saves, loads and queries benchmark runs on disk."""

    def __init__(
        self,
        data_dir: str | Path = DEFAULT_DATA_DIR,
        workspace_manager: WorkspaceManager | None = None,
    ):
        self.benchmark_dir = Path(data_dir) / "benchmarks"
        self.runs_dir = self.benchmark_dir / "runs"
        self.index = JsonDocument(self.benchmark_dir / "index.json", BenchmarkIndex)
        self.workspace_manager = workspace_manager

    def run_dir(self, run_id: str) -> Path:
        return self.runs_dir / run_id

    def _results_dir(self, run_id: str) -> Path:
        return self.run_dir(run_id) / "results"

    def _result_path(self, run_id: str, model_id: str) -> Path:
        return self._results_dir(run_id) / f"{sanitize_model_id(model_id)}.json"

    def _scores_path(self, run_id: str) -> Path:
        return self.run_dir(run_id) / "scores.json"

    def _run_path(self, run_id: str) -> Path:
        return self.run_dir(run_id) / "run.json"

    def _write_scores(self, run_id: str, scores: list[ModelScore]) -> None:
        write_text_atomic(self._scores_path(run_id), _scores_adapter.dump_json(scores, indent=2).decode())

    def save(self, run: BenchmarkRun) -> None:
        """Save or update a run and refresh its index entry."""
        for result in run.results:
            write_text_atomic(self._result_path(run.id, result.model_id), result.model_dump_json(indent=2))
        self._write_scores(run.id, run.scores)

        run_data = run.model_dump(mode="json", exclude={"results", "scores"})
        run_data["result_ids"] = [r.model_id for r in run.results]
        write_json_atomic(self._run_path(run.id), run_data)

        summary = RunSummary.from_run(run)

        def _upsert(index: BenchmarkIndex) -> None:
            for i, entry in enumerate(index.runs):
                if entry.id == run.id:
                    index.runs[i] = summary
                    return
            index.runs.insert(0, summary)

        self.index.update(_upsert)
        logger.info("Saved benchmark run: %s", run.id)

    def get(self, run_id: str) -> BenchmarkRun | None:
        """Rebuild a full run from its metadata, result files and scores."""
        try:
            run_data: dict[str, Any] = read_json(self._run_path(run_id))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Failed to read benchmark run %s: %s", run_id, e)
            return None

        results = []
        for model_id in run_data.pop("result_ids", []):
            try:
                results.append(ModelResult.model_validate(read_json(self._result_path(run_id, model_id))))
            except (OSError, ValueError) as e:
                logger.warning("Failed to load result for model %s: %s", model_id, e)

        scores: list[ModelScore] = []
        try:
            scores = _scores_adapter.validate_python(read_json(self._scores_path(run_id)))
        except FileNotFoundError:
            pass
        except (OSError, ValueError) as e:
            logger.warning("Failed to load scores for run %s: %s", run_id, e)

        try:
            return BenchmarkRun.model_validate({**run_data, "results": results, "scores": scores})
        except ValidationError as e:
            logger.warning("Corrupt benchmark run %s: %s", run_id, e)
            return None

    def list(self, run_filter: RunFilter | None = None) -> list[BenchmarkRun]:
        runs = []
        for entry in self.list_summaries(run_filter):
            run = self.get(entry.id)
            if run is not None:
                runs.append(run)
        return runs

    def list_summaries(self, run_filter: RunFilter | None = None) -> list[RunSummary]:
        return _apply_filter(self.index.load().runs, run_filter)

    def count(self, run_filter: RunFilter | None = None) -> int:
        return len(_apply_filter(self.index.load().runs, run_filter, paginate=False))

    def exists(self, run_id: str) -> bool:
        return any(r.id == run_id for r in self.index.load().runs)

    def add_score(self, run_id: str, score: ModelScore) -> None:
        """Add a score, replacing any existing score for the same model."""
        run = self.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)

        for i, existing in enumerate(run.scores):
            if existing.model_id == score.model_id:
                run.scores[i] = score
                break
        else:
            run.scores.append(score)
        self._write_scores(run_id, run.scores)
        logger.info("Added score for %s in run %s: %d/5", score.model_id, run_id, score.score)

    def add_result(self, run_id: str, result: ModelResult) -> None:
        """Attach one more model result to an existing run."""
        run_path = self._run_path(run_id)
        try:
            run_data = read_json(run_path)
        except FileNotFoundError:
            raise RunNotFoundError(run_id) from None

        write_text_atomic(self._result_path(run_id, result.model_id), result.model_dump_json(indent=2))

        result_ids = run_data.setdefault("result_ids", [])
        if result.model_id in result_ids:
            return
        result_ids.append(result.model_id)
        write_json_atomic(run_path, run_data)

        def _bump(index: BenchmarkIndex) -> None:
            for entry in index.runs:
                if entry.id == run_id:
                    entry.model_count = len(result_ids)

        self.index.update(_bump)
        logger.info("Added result for %s to run %s", result.model_id, run_id)

    def update_status(self, run_id: str, status: RunStatus, completed_at: int | None = None) -> None:
        run = self.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        run.status = status
        if completed_at is not None:
            run.completed_at = completed_at
        self.save(run)

    async def delete(self, run_id: str, cascade: bool = False) -> None:
        """Delete a run; with ``cascade`` also remove its worktrees."""
        self.index.update(lambda index: setattr(index, "runs", [r for r in index.runs if r.id != run_id]))

        try:
            shutil.rmtree(self.run_dir(run_id))
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to delete run directory %s: %s", self.run_dir(run_id), e)

        if cascade:
            if self.workspace_manager is None:
                logger.warning("No workspace manager configured; worktrees for %s were kept", run_id)
            else:
                await self.workspace_manager.cleanup_run(run_id)

        logger.info("Deleted benchmark run: %s", run_id)

