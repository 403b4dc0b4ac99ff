"""Configuration data models for benchmark runs."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_DATA_DIR = ".worktree-bench"


class BenchmarkType(str, Enum):
    OPERATION = "operation"        # single registered operation
    EXECUTION = "execution"        # single task execution
    EXECUTE_LOOP = "execute-loop"  # batch task loop
    WORKFLOW = "workflow"          # full multi-step workflow

    @property
    def run_prefix(self) -> str:
        return _RUN_PREFIXES[self]


_RUN_PREFIXES = {
    BenchmarkType.OPERATION: "op",
    BenchmarkType.EXECUTION: "exec",
    BenchmarkType.EXECUTE_LOOP: "loop",
    BenchmarkType.WORKFLOW: "wf",
}


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class ModelStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"  # work unit finished but reported an unsuccessful outcome
    ERROR = "error"    # work unit or harness raised before a definitive outcome


class ModelConfig(BaseModel):
    """One model to benchmark."""
    model_config = ConfigDict(frozen=True)

    provider: str
    model: str
    reasoning_tokens: int | None = None

    @property
    def model_id(self) -> str:
        return f"{self.provider}:{self.model}"


class BenchmarkRunConfig(BaseModel):
    """Configuration for a single benchmark run."""
    models: list[ModelConfig] = Field(default_factory=list)
    concurrency: int = Field(default=0, ge=0)  # 0 = unbounded
    base_commit: str | None = None
    keep_workspaces: bool = True
    delay_between_ms: int = Field(default=0, ge=0)


class CostRates(BaseModel):
    """USD per million tokens, averaged across providers."""
    prompt_per_million: float = 3.0
    completion_per_million: float = 15.0


class BenchSettings(BaseModel):
    """Where benchmark state lives and how metrics are collected."""
    project_root: str = "."
    data_dir: str = DEFAULT_DATA_DIR
    verification_timeout: float = 120.0
    cost_rates: CostRates = Field(default_factory=CostRates)
    provider_env_keys: dict[str, str] = Field(default_factory=dict)

    @property
    def project_path(self) -> Path:
        return Path(self.project_root).resolve()

    @property
    def data_path(self) -> Path:
        data = Path(self.data_dir)
        return data if data.is_absolute() else self.project_path / data


def _load_yaml(path: str | Path) -> dict:
    with open(path) as f:
        data = yaml.safe_load(f)
    return data or {}


def load_settings(path: str | Path) -> BenchSettings:
    """Load settings from a YAML file."""
    return BenchSettings(**_load_yaml(path))


def load_run_config(path: str | Path) -> BenchmarkRunConfig:
    """Load a run configuration (models, concurrency, ...) from YAML."""
    return BenchmarkRunConfig(**_load_yaml(path))
