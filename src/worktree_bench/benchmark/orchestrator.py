"""Top-level coordination of a benchmark run across models."""

from __future__ import annotations

import logging
import random
import string
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from pydantic import BaseModel, ValidationError

from worktree_bench.config import (
    BenchmarkRunConfig,
    BenchmarkType,
    BenchSettings,
    ModelConfig,
    ModelStatus,
    RunStatus,
)
from worktree_bench.errors import BenchmarkValidationError
from worktree_bench.logging.logger import RunEventLogger
from worktree_bench.metrics.base import BenchmarkMetrics, TimingMetrics
from worktree_bench.metrics.collector import MetricsCollector
from worktree_bench.workspace.manager import Workspace, WorkspaceManager, sanitize_model_id
from worktree_bench.workspace.pool import ExecutionPool, ExecutionResult, PoolEventType, PoolProgressEvent

from .base import BenchmarkRun, ModelResult, ModelScore, RunFilter, now_ms
from .executor import BenchmarkExecutor
from .store import BenchmarkStore
from .work_units import (
    INPUT_MODELS,
    BenchmarkableOperation,
    BenchmarkInput,
    ExecutionInput,
    OperationInput,
    OperationRegistry,
    WorkUnits,
)

logger = logging.getLogger(__name__)

_POOL_TO_RUN_EVENT = {
    PoolEventType.WORKSPACE_CREATED: "start",
    PoolEventType.EXECUTION_STARTED: "progress",
    PoolEventType.EXECUTION_COMPLETED: "complete",
    PoolEventType.EXECUTION_FAILED: "error",
}


@dataclass
class BenchmarkProgressEvent:
    type: str  # start | progress | complete | error
    model_id: str
    message: str
    run_id: str | None = None
    duration: int | None = None
    error: str | None = None


ProgressCallback = Callable[[BenchmarkProgressEvent], None]


def generate_run_id(benchmark_type: BenchmarkType) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"bench-{benchmark_type.run_prefix}-{now_ms()}-{suffix}"


def _translate_event(event: PoolProgressEvent, run_id: str) -> BenchmarkProgressEvent:
    event_type = _POOL_TO_RUN_EVENT[event.type]
    error = event.error
    message = event.message
    result = event.result
    if isinstance(result, ModelResult) and result.status != ModelStatus.SUCCESS:
        error = result.error
        message = f"Failed {event.model_id}: {result.error}"
        if result.status == ModelStatus.ERROR:
            event_type = "error"
    return BenchmarkProgressEvent(
        type=event_type,
        model_id=event.model_id,
        run_id=run_id,
        duration=event.duration,
        error=error,
        message=message,
    )


def _pool_error_result(execution: ExecutionResult[Any]) -> ModelResult:
    completed_at = now_ms()
    return ModelResult(
        model_id=execution.model_id,
        worktree=execution.worktree,
        status=ModelStatus.ERROR,
        duration=execution.duration,
        error=str(execution.error) or type(execution.error).__name__,
        metrics=BenchmarkMetrics(
            timing=TimingMetrics(
                started_at=completed_at - execution.duration,
                completed_at=completed_at,
                duration=execution.duration,
            ),
        ),
        timestamp=completed_at,
    )


class BenchmarkOrchestrator:
    """Coordinates a benchmark run: validate, execute every model, aggregate, persist.

    Run lifecycle: ``running`` is persisted before anything executes, so an
    interrupted run is still discoverable. It then ends in exactly one of
    ``completed`` (every model succeeded), ``partial`` (some model errored
    or reported failure) or ``failed`` (the orchestration itself raised).
    """

    def __init__(
        self,
        workspace_manager: WorkspaceManager,
        store: BenchmarkStore | None = None,
        executor: BenchmarkExecutor | None = None,
        pool: ExecutionPool | None = None,
        record_events: bool = True,
    ):
        self.workspace_manager = workspace_manager
        self.store = store or BenchmarkStore(workspace_manager.data_dir, workspace_manager=workspace_manager)
        self.executor = executor or BenchmarkExecutor()
        self.pool = pool or ExecutionPool(workspace_manager)
        self.record_events = record_events

    @classmethod
    def from_settings(
        cls,
        settings: BenchSettings,
        work_units: WorkUnits | None = None,
        operations: OperationRegistry | None = None,
    ) -> BenchmarkOrchestrator:
        manager = WorkspaceManager(settings.project_path, settings.data_path)
        collector = MetricsCollector(
            cost_rates=settings.cost_rates,
            verification_timeout=settings.verification_timeout,
        )
        executor = BenchmarkExecutor(
            metrics_collector=collector,
            operation_registry=operations,
            work_units=work_units,
            provider_env_keys=settings.provider_env_keys,
        )
        return cls(manager, executor=executor)

    # Operations

    def register_operation(self, operation: BenchmarkableOperation) -> None:
        self.executor.register_operation(operation)

    def get_operation(self, operation_id: str) -> BenchmarkableOperation | None:
        return self.executor.get_operation(operation_id)

    def list_operations(self) -> list[BenchmarkableOperation]:
        return self.executor.list_operations()

    # Running

    async def run(
        self,
        benchmark_type: BenchmarkType | str,
        input: BenchmarkInput | Mapping[str, Any],
        config: BenchmarkRunConfig,
        on_progress: ProgressCallback | None = None,
    ) -> BenchmarkRun:
        """Run one benchmark across every configured model.

        Raises BenchmarkValidationError before any side effect if the
        request is malformed. If orchestration itself fails the run is
        persisted as ``failed`` and the error re-raised.
        """
        benchmark_type = self._validate_type(benchmark_type)
        work_input = self._validate_input(benchmark_type, input)
        self._validate_config(config)

        run_id = generate_run_id(benchmark_type)
        base_commit = config.base_commit or await self.workspace_manager.get_current_commit()

        logger.info("Starting benchmark run: %s", run_id)
        logger.info(
            "Type: %s, Models: %d, Base: %s",
            benchmark_type.value, len(config.models), base_commit[:8],
        )

        run = BenchmarkRun(
            id=run_id,
            type=benchmark_type,
            input=work_input.model_dump(mode="json"),
            config=config,
            base_commit=base_commit,
            status=RunStatus.RUNNING,
        )
        self.store.save(run)

        event_log = RunEventLogger(run_id, self.store.run_dir(run_id)) if self.record_events else None
        if event_log:
            event_log.log_run_start(benchmark_type.value, base_commit, config.model_dump(mode="json"))

        def forward(event: PoolProgressEvent) -> None:
            translated = _translate_event(event, run_id)
            if event_log:
                try:
                    event_log.log_progress(
                        translated.type, translated.model_id, translated.message,
                        duration=translated.duration, error=translated.error,
                    )
                except OSError as e:
                    logger.warning("Failed to record progress event for %s: %s", translated.model_id, e)
            # Errors from on_progress are logged by the pool and do not stop the run
            if on_progress:
                on_progress(translated)

        try:
            executions = await self.pool.execute_parallel(
                run_id,
                config.models,
                self._executor_fn(benchmark_type, work_input, base_commit),
                on_progress=forward,
                base_commit=base_commit,
                max_concurrent=config.concurrency,
                delay_between_ms=config.delay_between_ms,
            )

            results: list[ModelResult] = []
            degraded = False
            for execution in executions.values():
                if execution.error is not None or execution.result is None:
                    degraded = True
                    results.append(_pool_error_result(execution))
                    continue
                results.append(execution.result)
                if execution.result.status != ModelStatus.SUCCESS:
                    degraded = True

            run.results = results
            run.status = RunStatus.PARTIAL if degraded else RunStatus.COMPLETED
            run.completed_at = now_ms()
            self.store.save(run)
        except Exception as e:
            run.status = RunStatus.FAILED
            run.completed_at = now_ms()
            self.store.save(run)
            if event_log:
                event_log.log_run_end(run.status.value, {"error": str(e)})
            logger.error("Benchmark run failed: %s - %s", run_id, e)
            raise

        if event_log:
            event_log.log_run_end(run.status.value, {
                "results": len(run.results),
                "models": len(config.models),
                "statuses": {r.model_id: r.status.value for r in run.results},
            })
        logger.info("Benchmark run completed: %s", run_id)
        logger.info("Status: %s, Results: %d/%d", run.status.value, len(run.results), len(config.models))

        if not config.keep_workspaces:
            await self._cleanup_quietly(run_id)
        return run

    def _executor_fn(self, benchmark_type: BenchmarkType, work_input: BaseModel, base_commit: str):
        async def execute(workspace: Workspace, model: ModelConfig) -> ModelResult:
            match benchmark_type:
                case BenchmarkType.OPERATION:
                    return await self.executor.execute_operation(workspace, model, work_input, base_commit)
                case BenchmarkType.EXECUTION:
                    return await self.executor.execute_task(workspace, model, work_input, base_commit)
                case BenchmarkType.EXECUTE_LOOP:
                    return await self.executor.execute_loop(workspace, model, work_input, base_commit)
                case BenchmarkType.WORKFLOW:
                    return await self.executor.execute_workflow(workspace, model, work_input, base_commit)
            raise BenchmarkValidationError(f"Unknown benchmark type: {benchmark_type}")
        return execute

    async def _cleanup_quietly(self, run_id: str) -> None:
        try:
            reports = await self.workspace_manager.cleanup_run(run_id)
        except Exception as e:
            logger.warning("Failed to clean up worktrees for %s: %s", run_id, e)
            return
        for report in reports:
            for warning in report.warnings:
                logger.warning("Cleanup of %s: %s", report.name, warning)

    # Validation

    @staticmethod
    def _validate_type(benchmark_type: BenchmarkType | str) -> BenchmarkType:
        try:
            return BenchmarkType(benchmark_type)
        except ValueError:
            raise BenchmarkValidationError(f"Unknown benchmark type: {benchmark_type}") from None

    def _validate_input(self, benchmark_type: BenchmarkType, input: BenchmarkInput | Mapping[str, Any]) -> BaseModel:
        model_cls = INPUT_MODELS[benchmark_type]
        if isinstance(input, model_cls):
            work_input = input
        elif isinstance(input, BaseModel):
            raise BenchmarkValidationError(
                f"{type(input).__name__} is not valid input for {benchmark_type.value} benchmarks"
            )
        else:
            try:
                work_input = model_cls.model_validate(input or {})
            except ValidationError as e:
                raise BenchmarkValidationError(
                    f"Invalid input for {benchmark_type.value} benchmarks: {e}"
                ) from e

        match work_input:
            case OperationInput(operation_id=operation_id):
                if not operation_id:
                    raise BenchmarkValidationError("Operation ID is required for operation benchmarks")
                if self.executor.get_operation(operation_id) is None:
                    raise BenchmarkValidationError(f"Unknown operation: {operation_id}")
            case ExecutionInput(task_id=task_id):
                if not task_id:
                    raise BenchmarkValidationError("Task ID is required for execution benchmarks")

        if not self.executor.supports(benchmark_type):
            raise BenchmarkValidationError(f"No work unit configured for {benchmark_type.value} benchmarks")
        return work_input

    @staticmethod
    def _validate_config(config: BenchmarkRunConfig) -> None:
        if not config.models:
            raise BenchmarkValidationError("At least one model is required")

        seen: dict[str, str] = {}  # sanitized id -> model id
        for model in config.models:
            if not model.provider:
                raise BenchmarkValidationError("Model provider is required")
            if not model.model:
                raise BenchmarkValidationError("Model name is required")
            if model.model_id in seen.values():
                raise BenchmarkValidationError(f"Duplicate model: {model.model_id}")
            safe_id = sanitize_model_id(model.model_id)
            if safe_id in seen:
                raise BenchmarkValidationError(
                    f"Duplicate model: {model.model_id} and {seen[safe_id]} share the workspace name {safe_id}"
                )
            seen[safe_id] = model.model_id

    # Queries and maintenance

    def get_run(self, run_id: str) -> BenchmarkRun | None:
        return self.store.get(run_id)

    def list_runs(self, run_filter: RunFilter | None = None) -> list[BenchmarkRun]:
        return self.store.list(run_filter)

    def score_model(self, run_id: str, score: ModelScore | Mapping[str, Any]) -> ModelScore:
        """Record a 1-5 score for one model; out-of-range scores are rejected before writing."""
        raw = score.score if isinstance(score, ModelScore) else score.get("score")
        if not isinstance(raw, int) or isinstance(raw, bool) or raw < 1 or raw > 5:
            raise BenchmarkValidationError("Score must be between 1 and 5")
        if not isinstance(score, ModelScore):
            try:
                score = ModelScore.model_validate(score)
            except ValidationError as e:
                raise BenchmarkValidationError(f"Invalid score: {e}") from e

        self.store.add_score(run_id, score)
        logger.info("Added score for %s: %d/5", score.model_id, score.score)
        return score

    async def cleanup_run(self, run_id: str):
        reports = await self.workspace_manager.cleanup_run(run_id)
        logger.info("Cleaned up worktrees for run: %s", run_id)
        return reports

    def list_worktrees(self) -> list[Workspace]:
        return self.workspace_manager.list()

    def get_worktrees_by_run_id(self, run_id: str) -> list[Workspace]:
        return self.workspace_manager.get_by_run(run_id)

    async def delete_run(self, run_id: str, cleanup_worktrees: bool = True) -> None:
        if cleanup_worktrees and self.store.workspace_manager is None:
            self.store.workspace_manager = self.workspace_manager
        await self.store.delete(run_id, cascade=cleanup_worktrees)
        logger.info("Deleted run: %s", run_id)
