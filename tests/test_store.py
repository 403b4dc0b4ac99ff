"""Tests for benchmark run persistence."""

import asyncio
import json

import pytest

from fakes import FakeExec
from worktree_bench.benchmark.base import BenchmarkRun, ModelResult, ModelScore, RunFilter
from worktree_bench.benchmark.store import BenchmarkStore
from worktree_bench.config import BenchmarkRunConfig, BenchmarkType, ModelConfig, ModelStatus, RunStatus
from worktree_bench.errors import RunNotFoundError
from worktree_bench.metrics import BenchmarkMetrics, CodeMetrics, TimingMetrics
from worktree_bench.workspace import Workspace, WorkspaceManager


def _result(model_id: str, status: ModelStatus = ModelStatus.SUCCESS) -> ModelResult:
    return ModelResult(
        model_id=model_id,
        worktree=Workspace(name=f"w-{model_id}", path="/tmp/w", branch="b", run_id="r", model_id=model_id, created_at=1),
        status=status,
        duration=1500,
        output={"text": "done"},
        metrics=BenchmarkMetrics(
            timing=TimingMetrics(started_at=1000, completed_at=2500, duration=1500),
            code=CodeMetrics(lines_added=3, files_changed=1, new_files=["a.py"]),
        ),
    )


def _run(run_id: str = "bench-op-1-abcd", created_at: int = 1, **kwargs) -> BenchmarkRun:
    models = [ModelConfig(provider="openai", model="gpt-4o"), ModelConfig(provider="anthropic", model="claude")]
    return BenchmarkRun(
        id=run_id,
        type=kwargs.pop("type", BenchmarkType.OPERATION),
        input={"operation_id": "summarize"},
        config=BenchmarkRunConfig(models=models),
        base_commit="abc123",
        created_at=created_at,
        **kwargs,
    )


def test_save_and_get_round_trip(tmp_path):
    store = BenchmarkStore(tmp_path)
    run = _run(results=[_result("openai:gpt-4o"), _result("anthropic:claude", ModelStatus.FAILED)],
               status=RunStatus.PARTIAL, completed_at=9)
    store.save(run)

    loaded = store.get(run.id)
    assert loaded == run

    run_dir = tmp_path / "benchmarks" / "runs" / run.id
    assert (run_dir / "results" / "openai-gpt-4o.json").exists()
    assert (run_dir / "results" / "anthropic-claude.json").exists()
    run_doc = json.loads((run_dir / "run.json").read_text())
    assert "results" not in run_doc
    assert run_doc["result_ids"] == ["openai:gpt-4o", "anthropic:claude"]


def test_get_missing_run(tmp_path):
    assert BenchmarkStore(tmp_path).get("nope") is None


def test_get_corrupt_run(tmp_path):
    store = BenchmarkStore(tmp_path)
    store.save(_run())
    (tmp_path / "benchmarks" / "runs" / "bench-op-1-abcd" / "run.json").write_text("{")
    assert store.get("bench-op-1-abcd") is None


def test_missing_result_file_is_skipped(tmp_path):
    store = BenchmarkStore(tmp_path)
    store.save(_run(results=[_result("openai:gpt-4o"), _result("anthropic:claude")]))
    (tmp_path / "benchmarks" / "runs" / "bench-op-1-abcd" / "results" / "openai-gpt-4o.json").unlink()

    loaded = store.get("bench-op-1-abcd")
    assert [r.model_id for r in loaded.results] == ["anthropic:claude"]


def test_missing_scores_default_to_empty(tmp_path):
    store = BenchmarkStore(tmp_path)
    store.save(_run())
    (tmp_path / "benchmarks" / "runs" / "bench-op-1-abcd" / "scores.json").unlink()
    assert store.get("bench-op-1-abcd").scores == []


def test_index_order_and_upsert(tmp_path):
    store = BenchmarkStore(tmp_path)
    store.save(_run("run-a", created_at=1))
    store.save(_run("run-b", created_at=2))
    store.save(_run("run-a", created_at=1, status=RunStatus.COMPLETED))

    summaries = store.list_summaries()
    assert [s.id for s in summaries] == ["run-b", "run-a"]
    assert summaries[1].status == RunStatus.COMPLETED
    assert store.exists("run-a")
    assert not store.exists("run-c")


def test_list_filters_and_pagination(tmp_path):
    store = BenchmarkStore(tmp_path)
    store.save(_run("run-1", status=RunStatus.COMPLETED))
    store.save(_run("run-2", status=RunStatus.PARTIAL))
    store.save(_run("run-3", status=RunStatus.COMPLETED, type=BenchmarkType.WORKFLOW))
    store.save(_run("run-4", status=RunStatus.COMPLETED))

    completed = store.list(RunFilter(status=RunStatus.COMPLETED))
    assert [r.id for r in completed] == ["run-4", "run-3", "run-1"]
    assert all(r.status == RunStatus.COMPLETED for r in completed)

    workflows = store.list(RunFilter(type=BenchmarkType.WORKFLOW))
    assert [r.id for r in workflows] == ["run-3"]

    page = store.list(RunFilter(status=RunStatus.COMPLETED, limit=1, offset=1))
    assert [r.id for r in page] == ["run-3"]
    assert store.count(RunFilter(status=RunStatus.COMPLETED, limit=1)) == 3
    assert store.count() == 4


def test_corrupt_index_reads_as_empty(tmp_path):
    store = BenchmarkStore(tmp_path)
    store.save(_run())
    (tmp_path / "benchmarks" / "index.json").write_text("not json")
    assert store.list() == []


def test_add_score_replaces_existing(tmp_path):
    store = BenchmarkStore(tmp_path)
    store.save(_run())
    store.add_score("bench-op-1-abcd", ModelScore(model_id="openai:gpt-4o", score=2))
    store.add_score("bench-op-1-abcd", ModelScore(model_id="anthropic:claude", score=5))
    store.add_score("bench-op-1-abcd", ModelScore(model_id="openai:gpt-4o", score=4, notes="better on retry"))

    scores = store.get("bench-op-1-abcd").scores
    assert [(s.model_id, s.score) for s in scores] == [("openai:gpt-4o", 4), ("anthropic:claude", 5)]
    assert scores[0].notes == "better on retry"


def test_add_score_unknown_run(tmp_path):
    with pytest.raises(RunNotFoundError):
        BenchmarkStore(tmp_path).add_score("nope", ModelScore(model_id="a:b", score=3))


def test_add_result(tmp_path):
    store = BenchmarkStore(tmp_path)
    store.save(_run())
    store.add_result("bench-op-1-abcd", _result("openai:gpt-4o"))
    store.add_result("bench-op-1-abcd", _result("openai:gpt-4o", ModelStatus.FAILED))

    loaded = store.get("bench-op-1-abcd")
    assert len(loaded.results) == 1
    assert loaded.results[0].status == ModelStatus.FAILED
    assert store.list_summaries()[0].model_count == 1

    with pytest.raises(RunNotFoundError):
        store.add_result("nope", _result("a:b"))


def test_update_status(tmp_path):
    store = BenchmarkStore(tmp_path)
    store.save(_run())
    store.update_status("bench-op-1-abcd", RunStatus.FAILED, completed_at=42)

    loaded = store.get("bench-op-1-abcd")
    assert loaded.status == RunStatus.FAILED
    assert loaded.completed_at == 42
    assert store.list_summaries()[0].status == RunStatus.FAILED

    with pytest.raises(RunNotFoundError):
        store.update_status("nope", RunStatus.COMPLETED)


def test_delete(tmp_path):
    store = BenchmarkStore(tmp_path)
    store.save(_run("run-a"))
    store.save(_run("run-b"))
    asyncio.run(store.delete("run-a"))

    assert store.get("run-a") is None
    assert not (tmp_path / "benchmarks" / "runs" / "run-a").exists()
    assert [s.id for s in store.list_summaries()] == ["run-b"]
    # Deleting again is harmless
    asyncio.run(store.delete("run-a"))


def test_delete_cascades_to_worktrees(tmp_path):
    fake = FakeExec()
    manager = WorkspaceManager(tmp_path / "repo", tmp_path / "data", exec_fn=fake)
    store = BenchmarkStore(tmp_path / "data", workspace_manager=manager)

    asyncio.run(manager.create("run-a", "openai:gpt-4o"))
    asyncio.run(manager.create("run-b", "openai:gpt-4o"))
    store.save(_run("run-a"))
    asyncio.run(store.delete("run-a", cascade=True))

    assert [w.run_id for w in manager.list()] == ["run-b"]
    assert any(c.startswith("git worktree remove") for c in fake.commands)
