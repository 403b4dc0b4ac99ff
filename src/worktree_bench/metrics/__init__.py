"""Benchmark metrics."""

from .base import BenchmarkMetrics, CodeMetrics, TimingMetrics, TokenMetrics
from .collector import MetricsCollector

__all__ = [
    "BenchmarkMetrics",
    "CodeMetrics",
    "MetricsCollector",
    "TimingMetrics",
    "TokenMetrics",
]
