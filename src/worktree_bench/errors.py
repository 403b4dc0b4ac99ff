"""Exception types raised across the benchmark subsystem."""

from __future__ import annotations

import subprocess


class BenchmarkError(Exception):
    """Base class for benchmark errors."""


class BenchmarkValidationError(BenchmarkError, ValueError):
    """A benchmark request is malformed or incomplete."""


class WorkspaceError(BenchmarkError, RuntimeError):
    """A workspace could not be created, found, or reset."""


class RunNotFoundError(BenchmarkError, KeyError):
    """No persisted benchmark run has the requested id."""

    def __str__(self) -> str:
        return f"Benchmark run not found: {self.args[0]}" if self.args else "Benchmark run not found"


class CommandFailed(subprocess.CalledProcessError):
    """A shell command exited with a non-zero status."""

    def __str__(self) -> str:
        message = super().__str__()
        detail = (self.stderr or self.output or "").strip()
        if detail:
            message += f"\n{detail[-2000:]}"
        return message
