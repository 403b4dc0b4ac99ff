"""Per-workspace execution of each benchmark kind, with timing, tokens and metrics."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping, Sequence

from pydantic import TypeAdapter

from worktree_bench.config import BenchmarkType, ModelConfig, ModelStatus
from worktree_bench.errors import BenchmarkError
from worktree_bench.llm.options import ModelOptions, build_model_options
from worktree_bench.metrics.base import BenchmarkMetrics, TimingMetrics
from worktree_bench.metrics.collector import MetricsCollector
from worktree_bench.workspace.manager import Workspace

from .base import ModelResult, now_ms
from .work_units import (
    BenchmarkableOperation,
    ExecuteLoopInput,
    ExecutionInput,
    OperationInput,
    OperationRegistry,
    StreamingCallbacks,
    WorkflowInput,
    WorkUnits,
    invoke,
)

logger = logging.getLogger(__name__)

_output_adapter = TypeAdapter(Any)

# (output) -> (status, error message)
Classifier = Callable[[Any], "tuple[ModelStatus, str | None]"]
WorkCall = Callable[[ModelOptions, StreamingCallbacks], Awaitable[Any]]


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _always_success(output: Any) -> tuple[ModelStatus, str | None]:
    return ModelStatus.SUCCESS, None


def _classify_task(output: Any) -> tuple[ModelStatus, str | None]:
    if _field(output, "success", True):
        return ModelStatus.SUCCESS, None
    attempts = _field(output, "attempts") or []
    error = _field(attempts[-1], "error") if attempts else None
    return ModelStatus.FAILED, error or _field(output, "error") or "Task execution failed"


def _classify_loop(output: Any) -> tuple[ModelStatus, str | None]:
    failed = _field(output, "failed_tasks", 0) or 0
    if failed > 0:
        return ModelStatus.FAILED, f"{failed} tasks failed"
    return ModelStatus.SUCCESS, None


def _classify_workflow(output: Any) -> tuple[ModelStatus, str | None]:
    stats = _field(output, "stats") or {}
    failed_steps = _field(output, "failed_steps") or _field(stats, "failed_steps") or 0
    total = _field(stats, "total_steps")
    successful = _field(stats, "successful_steps")
    if not failed_steps and total is not None and successful is not None:
        failed_steps = max(total - successful, 0)
    if failed_steps > 0:
        return ModelStatus.FAILED, f"{failed_steps} workflow steps failed"
    return ModelStatus.SUCCESS, None


class BenchmarkExecutor:
    """Runs one benchmark kind for one model inside its workspace.

    Each ``execute_*`` method returns a ModelResult and never raises: a
    work unit that throws becomes an ``error`` result with timing only, and
    one that finishes but reports failure becomes ``failed`` with full
    metrics.
    """

    def __init__(
        self,
        metrics_collector: MetricsCollector | None = None,
        operation_registry: OperationRegistry | None = None,
        work_units: WorkUnits | None = None,
        provider_env_keys: Mapping[str, str] | None = None,
    ):
        self.metrics_collector = metrics_collector or MetricsCollector()
        self.operation_registry = operation_registry or OperationRegistry()
        self.work_units = work_units or WorkUnits()
        self.provider_env_keys = provider_env_keys or None

    def register_operation(self, operation: BenchmarkableOperation) -> None:
        self.operation_registry.register(operation)

    def get_operation(self, operation_id: str) -> BenchmarkableOperation | None:
        return self.operation_registry.get(operation_id)

    def list_operations(self) -> list[BenchmarkableOperation]:
        return self.operation_registry.list()

    def supports(self, benchmark_type: BenchmarkType) -> bool:
        if benchmark_type == BenchmarkType.OPERATION:
            return True
        return self.work_units.for_type(benchmark_type) is not None

    def build_model_options(self, model: ModelConfig) -> ModelOptions:
        return build_model_options(model, env_keys=self.provider_env_keys)

    async def execute_operation(
        self,
        workspace: Workspace,
        model: ModelConfig,
        input: OperationInput,
        base_commit: str,
    ) -> ModelResult:
        logger.info("Executing operation %s with %s", input.operation_id, model.model_id)

        async def call(options: ModelOptions, streaming: StreamingCallbacks) -> Any:
            operation = self.operation_registry.get(input.operation_id)
            if operation is None:
                raise BenchmarkError(f"Operation not found: {input.operation_id}")
            if not operation.validate_input(input.params):
                raise BenchmarkError(f"Invalid input for operation {input.operation_id}")
            return await invoke(operation.execute, workspace.path, options, input.params, streaming)

        return await self._execute(
            workspace, model, base_commit, workspace.path, call,
            classify=_always_success,
            fallback_first_output=False,
        )

    async def execute_task(
        self,
        workspace: Workspace,
        model: ModelConfig,
        input: ExecutionInput,
        base_commit: str,
    ) -> ModelResult:
        logger.info("Executing task %s with %s", input.task_id, model.model_id)
        return await self._execute(
            workspace, model, base_commit, workspace.path,
            self._work_unit_call(BenchmarkType.EXECUTION, workspace.path, input),
            classify=_classify_task,
            verification_commands=input.verification_commands,
        )

    async def execute_loop(
        self,
        workspace: Workspace,
        model: ModelConfig,
        input: ExecuteLoopInput,
        base_commit: str,
    ) -> ModelResult:
        logger.info("Executing task loop with %s", model.model_id)
        loop_options = input.loop_options.model_copy(
            update={"config": input.loop_options.config.model_copy(update={"model": model.model_id})}
        )
        return await self._execute(
            workspace, model, base_commit, workspace.path,
            self._work_unit_call(BenchmarkType.EXECUTE_LOOP, workspace.path, loop_options),
            classify=_classify_loop,
            verification_commands=input.loop_options.config.verification_commands,
        )

    async def execute_workflow(
        self,
        workspace: Workspace,
        model: ModelConfig,
        input: WorkflowInput,
        base_commit: str,
    ) -> ModelResult:
        logger.info("Executing workflow with %s", model.model_id)
        project_dir = input.project_dir or workspace.path
        return await self._execute(
            workspace, model, base_commit, project_dir,
            self._work_unit_call(BenchmarkType.WORKFLOW, project_dir, input),
            classify=_classify_workflow,
            verification_commands=input.workflow_options.verification_commands,
        )

    def _work_unit_call(self, benchmark_type: BenchmarkType, working_dir: str, payload: Any) -> WorkCall:
        async def call(options: ModelOptions, streaming: StreamingCallbacks) -> Any:
            work_unit = self.work_units.for_type(benchmark_type)
            if work_unit is None:
                raise BenchmarkError(f"No work unit configured for {benchmark_type.value} benchmarks")
            return await invoke(work_unit, working_dir, options, payload, streaming)
        return call

    async def _execute(
        self,
        workspace: Workspace,
        model: ModelConfig,
        base_commit: str,
        working_dir: str,
        call: WorkCall,
        classify: Classifier,
        verification_commands: Sequence[str] | None = None,
        fallback_first_output: bool = True,
    ) -> ModelResult:
        model_id = model.model_id
        streaming = StreamingCallbacks(started_at=now_ms())
        started_at = streaming.started_at

        try:
            options = self.build_model_options(model)
            output = await call(options, streaming)
            completed_at = now_ms()
            # Non-streaming work units only tell us when they are done.
            if streaming.time_to_first_output is None and fallback_first_output:
                streaming.time_to_first_output = completed_at - started_at

            status, error = classify(output)
            metrics = await self.metrics_collector.collect_all(
                working_dir,
                base_commit,
                MetricsCollector.create_timing_metrics(
                    started_at, completed_at, streaming.time_to_first_output,
                ),
                streaming.tokens(),
                verification_commands,
            )
        except Exception as e:
            completed_at = now_ms()
            logger.error("Execution failed for %s: %s", model_id, e)
            return ModelResult(
                model_id=model_id,
                worktree=workspace,
                status=ModelStatus.ERROR,
                duration=completed_at - started_at,
                error=str(e) or type(e).__name__,
                metrics=BenchmarkMetrics(
                    timing=TimingMetrics(
                        started_at=started_at,
                        completed_at=completed_at,
                        duration=completed_at - started_at,
                        time_to_first_output=streaming.time_to_first_output,
                    ),
                ),
                timestamp=completed_at,
            )

        return ModelResult(
            model_id=model_id,
            worktree=workspace,
            status=status,
            duration=completed_at - started_at,
            output=_output_adapter.dump_python(output, mode="json", fallback=str),
            error=error,
            metrics=metrics,
            timestamp=completed_at,
        )
