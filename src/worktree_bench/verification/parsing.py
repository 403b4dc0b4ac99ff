"""Recognise test/build commands and pull test counts out of their output.

Matching is generic: a handful of keyword patterns decide
whether a command is a test runner or a build step, and a handful of
common summary formats are tried against the output.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

TEST_COMMAND_PATTERNS = [
    re.compile(r"\btest\b", re.IGNORECASE),
    re.compile(r"\bpytest\b", re.IGNORECASE),
    re.compile(r"\bmocha\b", re.IGNORECASE),
    re.compile(r"\bjest\b", re.IGNORECASE),
    re.compile(r"\bvitest\b", re.IGNORECASE),
    re.compile(r"\bcargo test\b", re.IGNORECASE),
    re.compile(r"\bgo test\b", re.IGNORECASE),
    re.compile(r"\btox\b", re.IGNORECASE),
    re.compile(r"\bnox\b", re.IGNORECASE),
]

BUILD_COMMAND_PATTERNS = [
    re.compile(r"\bbuild\b", re.IGNORECASE),
    re.compile(r"\bcompile\b", re.IGNORECASE),
    re.compile(r"\btsc\b"),
    re.compile(r"\bcargo build\b", re.IGNORECASE),
    re.compile(r"\bgo build\b", re.IGNORECASE),
    re.compile(r"\bmake\b"),
    re.compile(r"\bmypy\b"),
]

# "Tests: 10 passed, 2 failed, 12 total" (jest)
_JEST = re.compile(
    r"Tests:\s*(?:(\d+)\s*failed,\s*)?(\d+)\s*passed(?:,\s*(\d+)\s*failed)?(?:,\s*(\d+)\s*total)?",
    re.IGNORECASE,
)
# "10 passing" / "2 failing" (mocha)
_MOCHA_PASS = re.compile(r"(\d+)\s+passing")
_MOCHA_FAIL = re.compile(r"(\d+)\s+failing")
# "test result: ok. 10 passed; 2 failed" (cargo)
_CARGO = re.compile(r"test result:\s*\w+\.\s*(\d+)\s+passed;\s*(\d+)\s+failed")
# "===== 2 failed, 10 passed in 0.12s =====" (pytest)
_PYTEST_SUMMARY = re.compile(r"^=+ (.*\b(?:passed|failed|error|errors)\b.*) in [\d.]+m?s.*=+\s*$", re.MULTILINE)
_PYTEST_COUNT = re.compile(r"(\d+) (passed|failed|errors?)")
# "10 tests passed" / "2 tests failed" (vitest and similar)
_TESTS_PASSED = re.compile(r"(\d+)\s+tests?\s+passed", re.IGNORECASE)
_TESTS_FAILED = re.compile(r"(\d+)\s+tests?\s+failed", re.IGNORECASE)


@dataclass
class TestCounts:
    __test__ = False  # not a pytest class

    total: int = 0
    passed: int = 0
    failed: int = 0


def is_test_command(command: str) -> bool:
    return any(p.search(command) for p in TEST_COMMAND_PATTERNS)


def is_build_command(command: str) -> bool:
    return any(p.search(command) for p in BUILD_COMMAND_PATTERNS)


def parse_test_output(output: str) -> TestCounts:
    """Extract pass/fail/total counts from a test runner's output."""
    counts = TestCounts()

    match = _JEST.search(output)
    if match:
        failed_first, passed, failed_after, total = match.groups()
        counts.passed = int(passed)
        failed = failed_after or failed_first
        if failed:
            counts.failed = int(failed)
        if total:
            counts.total = int(total)
        return _with_total(counts)

    match = _CARGO.search(output)
    if match:
        counts.passed = int(match.group(1))
        counts.failed = int(match.group(2))
        return _with_total(counts)

    summaries = _PYTEST_SUMMARY.findall(output)
    if summaries:
        for number, kind in _PYTEST_COUNT.findall(summaries[-1]):
            if kind == "passed":
                counts.passed = int(number)
            else:
                counts.failed += int(number)
        return _with_total(counts)

    mocha_pass = _MOCHA_PASS.search(output)
    mocha_fail = _MOCHA_FAIL.search(output)
    if mocha_pass or mocha_fail:
        counts.passed = int(mocha_pass.group(1)) if mocha_pass else 0
        counts.failed = int(mocha_fail.group(1)) if mocha_fail else 0
        return _with_total(counts)

    passed = _TESTS_PASSED.search(output)
    failed = _TESTS_FAILED.search(output)
    if passed:
        counts.passed = int(passed.group(1))
    if failed:
        counts.failed = int(failed.group(1))
    return _with_total(counts)


def _with_total(counts: TestCounts) -> TestCounts:
    if counts.total == 0:
        counts.total = counts.passed + counts.failed
    return counts
