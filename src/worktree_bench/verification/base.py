"""Verification result models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class CommandResult(BaseModel):
    """Outcome of one verification command."""
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: int = 0  # ms
    timed_out: bool = False

    @property
    def passed(self) -> bool:
        return self.exit_code == 0


class VerificationMetrics(BaseModel):
    tests_run: int = 0
    tests_passed: int = 0
    tests_failed: int = 0
    build_success: bool = True
    command_results: list[CommandResult] = Field(default_factory=list)
