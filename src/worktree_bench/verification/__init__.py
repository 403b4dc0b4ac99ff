"""Verification commands: execution, test-count parsing, build detection."""

from .base import CommandResult, VerificationMetrics
from .parsing import TestCounts, is_build_command, is_test_command, parse_test_output
from .runner import DEFAULT_TIMEOUT, VerificationRunner

__all__ = [
    "DEFAULT_TIMEOUT",
    "CommandResult",
    "TestCounts",
    "VerificationMetrics",
    "VerificationRunner",
    "is_build_command",
    "is_test_command",
    "parse_test_output",
]
