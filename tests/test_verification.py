"""Tests for verification commands and test-output parsing."""

import asyncio
import tempfile

from fakes import FakeExec
from worktree_bench.verification import (
    VerificationRunner,
    is_build_command,
    is_test_command,
    parse_test_output,
)
from worktree_bench.verification.runner import TIMEOUT_EXIT_CODE


def test_parse_jest_summary():
    counts = parse_test_output("Tests: 10 passed, 2 failed, 12 total")
    assert (counts.passed, counts.failed, counts.total) == (10, 2, 12)

    counts = parse_test_output("Tests:       2 failed, 8 passed, 10 total")
    assert (counts.passed, counts.failed, counts.total) == (8, 2, 10)


def test_parse_pytest_summary():
    output = "collected 7 items\n...\n====== 2 failed, 5 passed, 1 error in 1.02s ======\n"
    counts = parse_test_output(output)
    assert counts.passed == 5
    assert counts.failed == 3
    assert counts.total == 8


def test_parse_mocha_and_cargo():
    counts = parse_test_output("  14 passing (2s)\n  1 failing\n")
    assert (counts.passed, counts.failed, counts.total) == (14, 1, 15)

    counts = parse_test_output("test result: FAILED. 3 passed; 1 failed; 0 ignored")
    assert (counts.passed, counts.failed, counts.total) == (3, 1, 4)


def test_parse_unrecognised_output():
    counts = parse_test_output("Build finished without tests")
    assert (counts.passed, counts.failed, counts.total) == (0, 0, 0)


def test_command_classification():
    assert is_test_command("npm test")
    assert is_test_command("python -m pytest tests/")
    assert is_test_command("cargo test --all")
    assert not is_test_command("npm run lint")
    assert is_build_command("npm run build")
    assert is_build_command("tsc --noEmit")
    assert not is_build_command("npm test")


def test_runner_real_commands():
    runner = VerificationRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        metrics = asyncio.run(runner.run(["true", "false"], tmpdir))
    assert [r.exit_code for r in metrics.command_results] == [0, 1]
    assert metrics.command_results[0].passed
    assert not metrics.command_results[1].passed


def test_runner_counts_tests_and_build_failures():
    fake = (
        FakeExec()
        .on("npm run build", stderr="error TS2322", returncode=2)
        .on("npm test", stdout="Tests: 10 passed, 2 failed, 12 total", returncode=1)
    )
    metrics = asyncio.run(VerificationRunner(fake).run(["npm run build", "npm test"], "/ws"))

    assert metrics.build_success is False
    assert metrics.tests_run == 12
    assert metrics.tests_passed == 10
    assert metrics.tests_failed == 2
    assert metrics.command_results[0].exit_code == 2
    assert "TS2322" in metrics.command_results[0].stderr


def test_runner_stops_on_error_when_asked():
    fake = FakeExec().on("lint", returncode=1)
    metrics = asyncio.run(
        VerificationRunner(fake).run(["npm run lint", "npm test"], "/ws", continue_on_error=False)
    )
    assert len(metrics.command_results) == 1
    assert fake.commands == ["npm run lint"]


def test_runner_timeout():
    fake = FakeExec().on("slow", delay=5)
    result = asyncio.run(VerificationRunner(fake).run_command("slow test", "/ws", timeout=0.05))
    assert result.timed_out
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert not result.passed
    assert "timed out" in result.stderr


def test_runner_timeout_real_process():
    runner = VerificationRunner()
    with tempfile.TemporaryDirectory() as tmpdir:
        result = asyncio.run(runner.run_command("sleep 5", tmpdir, timeout=0.2))
    assert result.timed_out
    assert result.duration < 5000
