"""Shell command execution used for every git and verification call."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from worktree_bench.errors import CommandFailed


@dataclass
class CommandOutput:
    stdout: str
    stderr: str


# (command, cwd) -> CommandOutput; raises on non-zero exit.
ExecFn = Callable[..., Awaitable[CommandOutput]]


async def run_command(command: str, cwd: str | Path | None = None) -> CommandOutput:
    """Run ``command`` through bash and return its captured output.

    Raises CommandFailed on a non-zero exit. If the awaiting task is
    cancelled (e.g. by a timeout) the child process is killed.
    """
    proc = await asyncio.create_subprocess_exec(
        "bash", "-c", command,
        cwd=str(cwd) if cwd is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        raw_out, raw_err = await proc.communicate()
    except asyncio.CancelledError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise

    stdout = raw_out.decode(errors="replace") if raw_out else ""
    stderr = raw_err.decode(errors="replace") if raw_err else ""
    if proc.returncode != 0:
        raise CommandFailed(proc.returncode, command, output=stdout, stderr=stderr)
    return CommandOutput(stdout=stdout, stderr=stderr)


def describe_error(error: BaseException) -> str:
    """Error text including captured stderr, for matching git messages."""
    if isinstance(error, CommandFailed):
        return str(error)
    stderr = getattr(error, "stderr", None)
    text = str(error)
    if isinstance(stderr, str) and stderr and stderr not in text:
        text = f"{text}\n{stderr}"
    return text
