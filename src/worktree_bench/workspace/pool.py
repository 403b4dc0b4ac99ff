"""Concurrent execution of one work item per model, each in its own worktree."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from worktree_bench.config import ModelConfig
from worktree_bench.workspace.manager import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PoolEventType(str, Enum):
    WORKSPACE_CREATED = "workspace-created"
    EXECUTION_STARTED = "execution-started"
    EXECUTION_COMPLETED = "execution-completed"
    EXECUTION_FAILED = "execution-failed"


@dataclass
class PoolProgressEvent:
    type: PoolEventType
    model_id: str
    message: str
    worktree: Workspace | None = None
    duration: int | None = None  # ms
    error: str | None = None
    result: Any = None


@dataclass
class ExecutionResult(Generic[T]):
    """What happened to one model: a result, or the error that stopped it."""
    model_id: str
    result: T | None
    error: BaseException | None
    duration: int  # ms
    worktree: Workspace


ProgressCallback = Callable[[PoolProgressEvent], None]
Executor = Callable[[Workspace, ModelConfig], Awaitable[T]]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _placeholder_workspace(run_id: str, model_id: str) -> Workspace:
    return Workspace(name="", path="", branch="", run_id=run_id, model_id=model_id, created_at=_now_ms())


class ExecutionPool:
    """Runs an executor against every model's worktree under a concurrency ceiling.

    Worktrees are all created first, one at a time, because creation
    mutates the shared repository's branch namespace. Execution then uses
    a pull-based pool: ``max_concurrent`` workers each take the next
    pending model until none are left, so a slow model never holds up the
    ones queued behind it.
    """

    def __init__(self, manager: WorkspaceManager, max_concurrent: int = 0, delay_between_ms: int = 0):
        if max_concurrent < 0:
            raise ValueError("max_concurrent must be >= 0")
        self.manager = manager
        self.max_concurrent = max_concurrent  # 0 = unbounded
        self.delay_between_ms = delay_between_ms

    async def execute_parallel(
        self,
        run_id: str,
        models: Iterable[ModelConfig],
        executor: Executor[T],
        on_progress: ProgressCallback | None = None,
        base_commit: str | None = None,
        max_concurrent: int | None = None,
        delay_between_ms: int | None = None,
    ) -> dict[str, ExecutionResult[T]]:
        models = list(models)
        delay = self.delay_between_ms if delay_between_ms is None else delay_between_ms
        results: dict[str, ExecutionResult[T]] = {}

        logger.info("Starting parallel execution for %d models", len(models))

        def emit(event: PoolProgressEvent) -> None:
            if on_progress is None:
                return
            try:
                on_progress(event)
            except Exception as e:
                logger.warning("Progress callback failed on %s for %s: %s", event.type.value, event.model_id, e)

        # Phase 1: worktrees, strictly serial
        resolved_base = base_commit or await self.manager.get_current_commit()
        jobs: list[tuple[int, Workspace, ModelConfig]] = []
        for model in models:
            model_id = model.model_id
            try:
                workspace = await self.manager.create(run_id, model_id, resolved_base)
            except Exception as e:
                logger.error("Failed to create worktree for %s: %s", model_id, e)
                results[model_id] = ExecutionResult(
                    model_id=model_id,
                    result=None,
                    error=e,
                    duration=0,
                    worktree=_placeholder_workspace(run_id, model_id),
                )
                continue
            jobs.append((len(jobs), workspace, model))
            emit(PoolProgressEvent(
                type=PoolEventType.WORKSPACE_CREATED,
                model_id=model_id,
                worktree=workspace,
                message=f"Created worktree for {model_id}",
            ))

        # Phase 2: pull-based workers
        async def run_one(index: int, workspace: Workspace, model: ModelConfig) -> None:
            model_id = model.model_id
            if delay and index > 0:
                # Start offsets are measured from pool start, not from the previous launch
                target = pool_started + delay * index / 1000
                await asyncio.sleep(max(0.0, target - time.monotonic()))

            started = _now_ms()
            emit(PoolProgressEvent(
                type=PoolEventType.EXECUTION_STARTED,
                model_id=model_id,
                worktree=workspace,
                message=f"Starting execution for {model_id}",
            ))
            try:
                result = await executor(workspace, model)
            except Exception as e:
                duration = _now_ms() - started
                results[model_id] = ExecutionResult(
                    model_id=model_id, result=None, error=e, duration=duration, worktree=workspace,
                )
                emit(PoolProgressEvent(
                    type=PoolEventType.EXECUTION_FAILED,
                    model_id=model_id,
                    worktree=workspace,
                    duration=duration,
                    error=str(e),
                    message=f"Failed {model_id}: {e}",
                ))
                return

            duration = _now_ms() - started
            results[model_id] = ExecutionResult(
                model_id=model_id, result=result, error=None, duration=duration, worktree=workspace,
            )
            emit(PoolProgressEvent(
                type=PoolEventType.EXECUTION_COMPLETED,
                model_id=model_id,
                worktree=workspace,
                duration=duration,
                result=result,
                message=f"Completed {model_id} in {duration}ms",
            ))

        pending = iter(jobs)

        async def worker() -> None:
            for index, workspace, model in pending:
                await run_one(index, workspace, model)

        limit = self.max_concurrent if max_concurrent is None else max_concurrent
        worker_count = min(limit, len(jobs)) if limit > 0 else len(jobs)
        pool_started = time.monotonic()
        await asyncio.gather(*(worker() for _ in range(worker_count)))

        logger.info("Completed parallel execution: %d/%d models", len(results), len(models))
        ordered = {m.model_id: results[m.model_id] for m in models if m.model_id in results}
        return ordered
