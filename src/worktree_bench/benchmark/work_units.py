"""The boundary between the benchmark harness and the work being benchmarked.

Each benchmark kind has a typed input model and a work-unit callable with
the shape ``(working_dir, options, payload, streaming) -> output``. Work
units may be plain functions (run in a worker thread) or coroutine
functions. They can report incremental output and token usage through the
``streaming`` callbacks; the harness never looks inside them otherwise.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field

from worktree_bench.config import BenchmarkType
from worktree_bench.llm.options import ModelOptions
from worktree_bench.metrics.base import TokenMetrics

WorkUnitFn = Callable[[str, ModelOptions, Any, "StreamingCallbacks"], Any]


class OperationInput(BaseModel):
    operation_id: str
    params: dict[str, Any] = Field(default_factory=dict)


class ExecutionInput(BaseModel):
    task_id: str
    max_retries: int = 1
    verification_commands: list[str] = Field(default_factory=list)


class LoopConfig(BaseModel):
    model_config = ConfigDict(extra="allow", protected_namespaces=())

    max_retries: int = 3
    verification_commands: list[str] = Field(default_factory=list)
    model: str | None = None


class LoopOptions(BaseModel):
    model_config = ConfigDict(extra="allow")

    filters: dict[str, Any] = Field(default_factory=dict)
    tool: str = "opencode"
    config: LoopConfig = Field(default_factory=LoopConfig)


class ExecuteLoopInput(BaseModel):
    loop_options: LoopOptions


class WorkflowOptions(BaseModel):
    model_config = ConfigDict(extra="allow")

    execute_tool: str = "opencode"
    execute_max_retries: int = 3
    verification_commands: list[str] = Field(default_factory=list)


class WorkflowInput(BaseModel):
    collected_responses: dict[str, Any]
    workflow_options: WorkflowOptions
    project_dir: str | None = None
    temp_dir_base: str | None = None


BenchmarkInput = Union[OperationInput, ExecutionInput, ExecuteLoopInput, WorkflowInput]

INPUT_MODELS: dict[BenchmarkType, type[BaseModel]] = {
    BenchmarkType.OPERATION: OperationInput,
    BenchmarkType.EXECUTION: ExecutionInput,
    BenchmarkType.EXECUTE_LOOP: ExecuteLoopInput,
    BenchmarkType.WORKFLOW: WorkflowInput,
}


class StreamingCallbacks:
    """Instrumentation handed to a work unit.

    ``on_chunk`` marks time to first output; ``on_finish`` accumulates the
    token usage a work unit reports for each model call it makes.
    """

    def __init__(self, started_at: int | None = None):
        self.started_at = started_at if started_at is not None else int(time.time() * 1000)
        self.time_to_first_output: int | None = None
        self.prompt_tokens = 0
        self.completion_tokens = 0

    def on_chunk(self, chunk: Any = None) -> None:
        if self.time_to_first_output is None:
            self.time_to_first_output = int(time.time() * 1000) - self.started_at

    def on_finish(self, result: Any = None) -> None:
        usage = _get(result, "usage", result)
        self.prompt_tokens += _first_int(usage, "prompt_tokens", "promptTokens", "input_tokens", "prompt")
        self.completion_tokens += _first_int(
            usage, "completion_tokens", "completionTokens", "output_tokens", "completion",
        )

    def tokens(self) -> TokenMetrics | None:
        if self.prompt_tokens <= 0 and self.completion_tokens <= 0:
            return None
        return TokenMetrics(
            prompt=self.prompt_tokens,
            completion=self.completion_tokens,
            total=self.prompt_tokens + self.completion_tokens,
        )


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _first_int(obj: Any, *names: str) -> int:
    for name in names:
        value = _get(obj, name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
    return 0


@dataclass
class BenchmarkableOperation:
    """A named operation that can be benchmarked across models."""
    id: str
    name: str
    description: str
    execute: WorkUnitFn
    validate_input: Callable[[dict[str, Any]], bool] = lambda params: True


class OperationRegistry:
    """Operations available to ``operation`` benchmarks."""

    def __init__(self, operations: list[BenchmarkableOperation] | None = None):
        self._operations: dict[str, BenchmarkableOperation] = {}
        for operation in operations or []:
            self.register(operation)

    def register(self, operation: BenchmarkableOperation) -> None:
        self._operations[operation.id] = operation

    def get(self, operation_id: str) -> BenchmarkableOperation | None:
        return self._operations.get(operation_id)

    def list(self) -> list[BenchmarkableOperation]:
        return list(self._operations.values())

    def __contains__(self, operation_id: str) -> bool:
        return operation_id in self._operations


@dataclass
class WorkUnits:
    """Work-unit callables for the non-operation benchmark kinds."""
    execute_task: WorkUnitFn | None = None
    execute_loop: WorkUnitFn | None = None
    run_workflow: WorkUnitFn | None = None

    def for_type(self, benchmark_type: BenchmarkType) -> WorkUnitFn | None:
        return {
            BenchmarkType.EXECUTION: self.execute_task,
            BenchmarkType.EXECUTE_LOOP: self.execute_loop,
            BenchmarkType.WORKFLOW: self.run_workflow,
        }.get(benchmark_type)


async def invoke(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async work unit without blocking the event loop."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        result = await result
    return result
