"""Isolated git worktrees and the pool that runs models inside them."""

from .manager import (
    RemovalReport,
    Workspace,
    WorkspaceManager,
    branch_name,
    sanitize_model_id,
    workspace_name,
)
from .pool import ExecutionPool, ExecutionResult, PoolEventType, PoolProgressEvent

__all__ = [
    "ExecutionPool",
    "ExecutionResult",
    "PoolEventType",
    "PoolProgressEvent",
    "RemovalReport",
    "Workspace",
    "WorkspaceManager",
    "branch_name",
    "sanitize_model_id",
    "workspace_name",
]
