"""Git worktree lifecycle for isolated per-model benchmark workspaces.

Every model in a run gets its own worktree on its own branch, created from
a shared base commit, so models can modify code in parallel without seeing
each other's changes. Live worktrees are recorded in a manifest under
``<data_dir>/worktrees/manifest.json``, independent of git's own state.
"""

from __future__ import annotations

import logging
import re
import shlex
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from worktree_bench.config import DEFAULT_DATA_DIR
from worktree_bench.documents import JsonDocument
from worktree_bench.errors import WorkspaceError
from worktree_bench.process import ExecFn, describe_error, run_command

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1


class Workspace(BaseModel):
    """One isolated worktree used by one model in one run."""
    model_config = ConfigDict(protected_namespaces=())

    name: str
    path: str
    branch: str
    run_id: str
    model_id: str
    created_at: int
    base_commit: str = "HEAD"


class WorkspaceManifest(BaseModel):
    version: int = MANIFEST_VERSION
    worktrees: dict[str, Workspace] = Field(default_factory=dict)


@dataclass
class RemovalReport:
    """Outcome of removing a workspace; warnings are non-fatal cleanup failures."""
    name: str
    removed: bool
    warnings: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return self.removed and not self.warnings


def sanitize_model_id(model_id: str) -> str:
    """Make a model id safe for file and branch names.

    "openai:gpt-4o" -> "openai-gpt-4o". Dots, dashes and underscores are kept.
    """
    safe = re.sub(r"[/:]", "-", model_id)
    safe = re.sub(r"[^a-zA-Z0-9.\-_]", "", safe)
    return safe.lower()


def workspace_name(run_id: str, model_id: str) -> str:
    return f"{run_id}-{sanitize_model_id(model_id)}"


def branch_name(run_id: str, model_id: str) -> str:
    return f"bench/{run_id}/{sanitize_model_id(model_id)}"


def _now_ms() -> int:
    return int(time.time() * 1000)


class WorkspaceManager:
    """Creates, tracks, resets and removes benchmark worktrees."""

    def __init__(
        self,
        project_root: str | Path,
        data_dir: str | Path | None = None,
        exec_fn: ExecFn = run_command,
    ):
        self.project_root = Path(project_root)
        data = Path(data_dir) if data_dir is not None else Path(DEFAULT_DATA_DIR)
        self.data_dir = data if data.is_absolute() else self.project_root / data
        self.worktree_dir = self.data_dir / "worktrees"
        self.manifest = JsonDocument(self.worktree_dir / "manifest.json", WorkspaceManifest)
        self.exec_fn = exec_fn

    async def _git(self, args: str, cwd: str | Path | None = None):
        return await self.exec_fn(f"git {args}", cwd=str(cwd or self.project_root))

    async def create(self, run_id: str, model_id: str, base_commit: str = "HEAD") -> Workspace:
        """Create a worktree on a fresh branch rooted at ``base_commit``.

        A stale branch with the same name is deleted and creation retried
        once; any other failure raises WorkspaceError.
        """
        self.worktree_dir.mkdir(parents=True, exist_ok=True)

        name = workspace_name(run_id, model_id)
        branch = branch_name(run_id, model_id)
        path = self.worktree_dir / name
        add_args = (
            f"worktree add -b {shlex.quote(branch)} "
            f"{shlex.quote(str(path))} {shlex.quote(base_commit)}"
        )

        logger.info("Creating worktree: %s", name)
        try:
            await self._git(add_args)
        except Exception as e:
            message = describe_error(e)
            if "already exists" not in message:
                raise WorkspaceError(f"Failed to create worktree {name}: {message}") from e

            logger.warning("Branch %s exists, attempting recovery...", branch)
            try:
                await self._git(f"branch -D {shlex.quote(branch)}")
            except Exception as branch_error:
                logger.warning("Failed to delete branch %s: %s", branch, describe_error(branch_error))
            try:
                await self._git(add_args)
            except Exception as retry_error:
                raise WorkspaceError(
                    f"Failed to create worktree {name}: {describe_error(retry_error)}"
                ) from retry_error

        workspace = Workspace(
            name=name,
            path=str(path),
            branch=branch,
            run_id=run_id,
            model_id=model_id,
            created_at=_now_ms(),
            base_commit=base_commit,
        )
        self.manifest.update(lambda m: m.worktrees.__setitem__(name, workspace))
        logger.info("Created worktree: %s", name)
        return workspace

    async def remove(self, name: str) -> RemovalReport:
        """Remove a worktree and its branch.

        Directory and branch deletion are best effort; failures end up as
        warnings on the report and the manifest entry is always dropped.
        """
        workspace = self.manifest.load().worktrees.get(name)
        if workspace is None:
            logger.warning("Worktree %s not found in manifest", name)
            return RemovalReport(name=name, removed=False, warnings=[f"Worktree {name} not found in manifest"])

        report = RemovalReport(name=name, removed=False)
        logger.info("Removing worktree: %s", name)

        try:
            await self._git(f"worktree remove {shlex.quote(workspace.path)} --force")
        except Exception as e:
            report.warnings.append(f"Failed to remove worktree: {describe_error(e)}")
            try:
                shutil.rmtree(workspace.path)
            except FileNotFoundError:
                pass
            except OSError as rm_error:
                report.warnings.append(f"Failed to manually remove worktree {workspace.path}: {rm_error}")

        try:
            await self._git(f"branch -D {shlex.quote(workspace.branch)}")
        except Exception as e:
            report.warnings.append(f"Failed to delete branch {workspace.branch}: {describe_error(e)}")

        self.manifest.update(lambda m: m.worktrees.pop(name, None))
        report.removed = True

        for warning in report.warnings:
            logger.warning(warning)
        logger.info("Removed worktree: %s", name)
        return report

    def list(self) -> list[Workspace]:
        return list(self.manifest.load().worktrees.values())

    def get(self, name: str) -> Workspace | None:
        return self.manifest.load().worktrees.get(name)

    def get_by_run(self, run_id: str) -> list[Workspace]:
        return [w for w in self.list() if w.run_id == run_id]

    async def reset(self, name: str) -> None:
        """Restore a worktree to its pristine base state."""
        workspace = self.get(name)
        if workspace is None:
            raise WorkspaceError(f"Worktree {name} not found")

        logger.info("Resetting worktree: %s", name)
        await self._git(f"reset --hard {shlex.quote(workspace.base_commit)}", cwd=workspace.path)
        await self._git("clean -fdx", cwd=workspace.path)

    async def cleanup_run(self, run_id: str) -> list[RemovalReport]:
        workspaces = self.get_by_run(run_id)
        logger.info("Cleaning up %d worktrees for run: %s", len(workspaces), run_id)
        reports = []
        for workspace in workspaces:
            reports.append(await self.remove(workspace.name))
        return reports

    async def prune(self) -> list[str]:
        """Drop manifest entries whose worktree directory no longer exists."""
        try:
            await self._git("worktree prune")
        except Exception as e:
            logger.warning("Failed to prune git worktrees: %s", describe_error(e))

        stale: list[str] = []

        def _drop_missing(manifest: WorkspaceManifest) -> None:
            for name, workspace in list(manifest.worktrees.items()):
                if not Path(workspace.path).exists():
                    del manifest.worktrees[name]
                    stale.append(name)

        manifest = self.manifest.load()
        _drop_missing(manifest)
        if stale:
            self.manifest.save(manifest)
            logger.info("Pruned %d stale worktree entries", len(stale))
        return stale

    async def get_current_commit(self) -> str:
        output = await self._git("rev-parse HEAD")
        return output.stdout.strip()

    async def is_clean(self) -> bool:
        output = await self._git("status --porcelain")
        return not output.stdout.strip()
