"""Run verification commands against a workspace and summarise the results."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Sequence

from worktree_bench.process import ExecFn, run_command

from .base import CommandResult, VerificationMetrics
from .parsing import is_build_command, is_test_command, parse_test_output

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0  # seconds, per command
TIMEOUT_EXIT_CODE = 124
MAX_OUTPUT_CHARS = 10000


def _truncate(text: str) -> str:
    if len(text) > MAX_OUTPUT_CHARS:
        half = MAX_OUTPUT_CHARS // 2
        return text[:half] + "\n...[truncated]...\n" + text[-half:]
    return text


class VerificationRunner:
    """Runs commands in sequence, each raced against its own timeout."""

    def __init__(self, exec_fn: ExecFn = run_command):
        self.exec_fn = exec_fn

    async def run_command(self, command: str, cwd: str | Path, timeout: float = DEFAULT_TIMEOUT) -> CommandResult:
        start = time.monotonic()
        try:
            output = await asyncio.wait_for(self.exec_fn(command, cwd=str(cwd)), timeout=timeout)
        except asyncio.TimeoutError:
            return CommandResult(
                command=command,
                exit_code=TIMEOUT_EXIT_CODE,
                stderr=f"Command timed out after {timeout}s",
                duration=int((time.monotonic() - start) * 1000),
                timed_out=True,
            )
        except Exception as e:
            exit_code = getattr(e, "returncode", None)
            stdout = getattr(e, "stdout", None) or getattr(e, "output", None) or ""
            stderr = getattr(e, "stderr", None) or str(e)
            return CommandResult(
                command=command,
                exit_code=exit_code if isinstance(exit_code, int) and exit_code != 0 else 1,
                stdout=_truncate(stdout if isinstance(stdout, str) else ""),
                stderr=_truncate(stderr if isinstance(stderr, str) else str(e)),
                duration=int((time.monotonic() - start) * 1000),
            )

        return CommandResult(
            command=command,
            exit_code=0,
            stdout=_truncate(output.stdout),
            stderr=_truncate(output.stderr),
            duration=int((time.monotonic() - start) * 1000),
        )

    async def run(
        self,
        commands: Sequence[str],
        cwd: str | Path,
        timeout: float = DEFAULT_TIMEOUT,
        continue_on_error: bool = True,
    ) -> VerificationMetrics:
        metrics = VerificationMetrics()

        for command in commands:
            result = await self.run_command(command, cwd, timeout)
            metrics.command_results.append(result)

            if is_test_command(command):
                counts = parse_test_output(result.stdout + "\n" + result.stderr)
                metrics.tests_run += counts.total
                metrics.tests_passed += counts.passed
                metrics.tests_failed += counts.failed

            if is_build_command(command) and not result.passed:
                metrics.build_success = False

            if not result.passed and not continue_on_error:
                logger.warning("Verification command failed: %s", command)
                break

        logger.info(
            "Verification complete: %d/%d tests passed, build: %s",
            metrics.tests_passed, metrics.tests_run, "OK" if metrics.build_success else "FAILED",
        )
        return metrics
