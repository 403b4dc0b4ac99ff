"""Tests for git worktree management."""

import asyncio
from pathlib import Path

import pytest

from fakes import HEAD, FakeExec
from worktree_bench.errors import WorkspaceError
from worktree_bench.workspace import WorkspaceManager, branch_name, sanitize_model_id, workspace_name


def _manager(tmp_path: Path, fake: FakeExec | None = None) -> tuple[WorkspaceManager, FakeExec]:
    fake = fake or FakeExec()
    return WorkspaceManager(tmp_path / "repo", tmp_path / "data", exec_fn=fake), fake


def test_sanitize_model_id():
    assert sanitize_model_id("openai:gpt-4o") == "openai-gpt-4o"
    assert sanitize_model_id("openrouter:meta/Llama-3.1 70B") == "openrouter-meta-llama-3.170b"
    assert sanitize_model_id("a_b.c") == "a_b.c"


def test_names_are_deterministic():
    assert workspace_name("bench-op-1-abcd", "openai:gpt-4o") == "bench-op-1-abcd-openai-gpt-4o"
    assert branch_name("bench-op-1-abcd", "openai:gpt-4o") == "bench/bench-op-1-abcd/openai-gpt-4o"
    assert branch_name("run-a", "openai:gpt-4o") != branch_name("run-b", "openai:gpt-4o")


def test_relative_data_dir_is_under_project(tmp_path):
    manager = WorkspaceManager(tmp_path, ".bench")
    assert manager.worktree_dir == tmp_path / ".bench" / "worktrees"


def test_create_records_manifest(tmp_path):
    manager, fake = _manager(tmp_path)
    workspace = asyncio.run(manager.create("run-1", "openai:gpt-4o", "abc123"))

    assert workspace.name == "run-1-openai-gpt-4o"
    assert workspace.branch == "bench/run-1/openai-gpt-4o"
    assert workspace.base_commit == "abc123"
    assert Path(workspace.path) == tmp_path / "data" / "worktrees" / workspace.name

    command, cwd = fake.calls[0]
    assert command.startswith("git worktree add -b bench/run-1/openai-gpt-4o ")
    assert command.endswith(" abc123")
    assert cwd == str(tmp_path / "repo")

    # A fresh manager sees the same manifest
    reloaded = WorkspaceManager(tmp_path / "repo", tmp_path / "data", exec_fn=fake)
    assert reloaded.get(workspace.name) == workspace
    assert (tmp_path / "data" / "worktrees" / "manifest.json").exists()


def test_create_recovers_from_existing_branch(tmp_path):
    fake = FakeExec().on(
        "worktree add", stderr="fatal: a branch named 'bench/run-1/x' already exists", returncode=128, times=1,
    )
    manager, _ = _manager(tmp_path, fake)
    workspace = asyncio.run(manager.create("run-1", "x"))

    assert [c.split()[1] for c in fake.commands] == ["worktree", "branch", "worktree"]
    assert fake.commands[1] == "git branch -D bench/run-1/x"
    assert manager.get(workspace.name) is not None


def test_create_failure_raises_and_records_nothing(tmp_path):
    fake = FakeExec().on("worktree add", stderr="fatal: invalid reference: nope", returncode=128)
    manager, _ = _manager(tmp_path, fake)
    with pytest.raises(WorkspaceError, match="invalid reference"):
        asyncio.run(manager.create("run-1", "openai:gpt-4o", "nope"))
    assert manager.list() == []


def test_create_retry_failure_raises(tmp_path):
    fake = FakeExec().on("worktree add", stderr="already exists", returncode=128)
    fake.on("branch -D", stderr="error: branch is checked out", returncode=1)
    manager, _ = _manager(tmp_path, fake)
    with pytest.raises(WorkspaceError):
        asyncio.run(manager.create("run-1", "m"))
    assert manager.list() == []


def test_remove_clean(tmp_path):
    manager, fake = _manager(tmp_path)
    workspace = asyncio.run(manager.create("run-1", "openai:gpt-4o"))
    report = asyncio.run(manager.remove(workspace.name))

    assert report.removed and report.clean
    assert f"git worktree remove {workspace.path} --force" in fake.commands
    assert f"git branch -D {workspace.branch}" in fake.commands
    assert manager.get(workspace.name) is None


def test_remove_falls_back_and_reports_warnings(tmp_path):
    fake = FakeExec()
    manager, _ = _manager(tmp_path, fake)
    workspace = asyncio.run(manager.create("run-1", "openai:gpt-4o"))
    Path(workspace.path).mkdir(parents=True)
    (Path(workspace.path) / "file.txt").write_text("changed")

    fake.on("worktree remove", stderr="fatal: not a working tree", returncode=128)
    fake.on("branch -D", stderr="error: branch not found", returncode=1)
    report = asyncio.run(manager.remove(workspace.name))

    assert report.removed
    assert not report.clean
    assert len(report.warnings) == 2
    assert not Path(workspace.path).exists()
    assert manager.list() == []


def test_remove_unknown(tmp_path):
    manager, fake = _manager(tmp_path)
    report = asyncio.run(manager.remove("missing"))
    assert not report.removed
    assert report.warnings
    assert fake.calls == []


def test_get_by_run_and_cleanup(tmp_path):
    manager, _ = _manager(tmp_path)

    async def scenario():
        await manager.create("run-1", "a")
        await manager.create("run-1", "b")
        await manager.create("run-2", "a")
        reports = await manager.cleanup_run("run-1")
        return reports

    reports = asyncio.run(scenario())
    assert sorted(r.name for r in reports) == ["run-1-a", "run-1-b"]
    assert [w.name for w in manager.list()] == ["run-2-a"]


def test_reset(tmp_path):
    manager, fake = _manager(tmp_path)
    workspace = asyncio.run(manager.create("run-1", "a", "abc123"))
    asyncio.run(manager.reset(workspace.name))

    assert fake.calls[-2] == ("git reset --hard abc123", workspace.path)
    assert fake.calls[-1] == ("git clean -fdx", workspace.path)


def test_reset_unknown_raises(tmp_path):
    manager, _ = _manager(tmp_path)
    with pytest.raises(WorkspaceError):
        asyncio.run(manager.reset("missing"))


def test_prune_drops_missing_directories(tmp_path):
    manager, fake = _manager(tmp_path)

    async def create_both():
        return await manager.create("run-1", "kept"), await manager.create("run-1", "gone")

    kept, gone = asyncio.run(create_both())
    Path(kept.path).mkdir(parents=True)

    stale = asyncio.run(manager.prune())
    assert stale == [gone.name]
    assert [w.name for w in manager.list()] == [kept.name]
    assert "git worktree prune" in fake.commands


def test_corrupt_manifest_reads_as_empty(tmp_path):
    manager, _ = _manager(tmp_path)
    manager.manifest.path.parent.mkdir(parents=True)
    manager.manifest.path.write_text("{not json")
    assert manager.list() == []

    asyncio.run(manager.create("run-1", "a"))
    assert len(manager.list()) == 1


def test_current_commit_and_clean(tmp_path):
    manager, fake = _manager(tmp_path)
    assert asyncio.run(manager.get_current_commit()) == HEAD
    assert asyncio.run(manager.is_clean()) is True

    fake.on("status --porcelain", stdout=" M src/app.py\n")
    assert asyncio.run(manager.is_clean()) is False
