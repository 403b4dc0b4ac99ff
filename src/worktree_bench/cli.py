#!/usr/bin/env python3
"""CLI entry point for running and inspecting multi-model benchmarks."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import logging
import sys
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from worktree_bench.benchmark.base import BenchmarkRun, RunFilter
from worktree_bench.benchmark.orchestrator import BenchmarkOrchestrator, BenchmarkProgressEvent
from worktree_bench.benchmark.work_units import OperationRegistry, WorkUnits
from worktree_bench.config import (
    BenchmarkType,
    BenchSettings,
    RunStatus,
    load_run_config,
    load_settings,
)
from worktree_bench.errors import BenchmarkError

_WORK_UNIT_FIELDS = {
    BenchmarkType.EXECUTION: "execute_task",
    BenchmarkType.EXECUTE_LOOP: "execute_loop",
    BenchmarkType.WORKFLOW: "run_workflow",
}


def load_object(target: str) -> Any:
    """Import ``package.module:attr`` and return the attribute."""
    module_name, sep, attr = target.partition(":")
    if not sep or not attr:
        raise ValueError(f"Expected module:attribute, got {target!r}")
    obj: Any = importlib.import_module(module_name)
    for part in attr.split("."):
        obj = getattr(obj, part)
    return obj


def _load_input(path: str) -> dict[str, Any]:
    with open(path) as f:
        if Path(path).suffix == ".json":
            return json.load(f)
        return yaml.safe_load(f) or {}


def _print_progress(event: BenchmarkProgressEvent) -> None:
    line = f"[{event.type}] {event.model_id}: {event.message}"
    if event.duration is not None and event.type in ("complete", "error"):
        line += f" ({event.duration / 1000:.1f}s)"
    print(line)


def _print_run(run: BenchmarkRun) -> None:
    print(f"Run:    {run.id}")
    print(f"Type:   {run.type.value}")
    print(f"Status: {run.status.value}")
    print(f"Base:   {run.base_commit}")
    for result in run.results:
        metrics = result.metrics
        tokens = metrics.tokens.total if metrics.tokens else 0
        cost = f"${metrics.cost:.4f}" if metrics.cost is not None else "-"
        line = (f"  {result.model_id}: {result.status.value} | Time: {result.duration / 1000:.1f}s | "
                f"Tokens: {tokens:,} | Cost: {cost}")
        if metrics.code:
            line += f" | +{metrics.code.lines_added}/-{metrics.code.lines_removed}"
        if metrics.verification:
            v = metrics.verification
            line += f" | Tests: {v.tests_passed}/{v.tests_run}"
        if result.error:
            line += f" | Error: {result.error}"
        print(line)
    for score in run.scores:
        print(f"  score {score.model_id}: {score.score}/5" + (f" ({score.notes})" if score.notes else ""))


def _build_orchestrator(args: argparse.Namespace) -> BenchmarkOrchestrator:
    settings = load_settings(args.settings) if args.settings else BenchSettings()
    if args.project:
        settings.project_root = args.project
    if args.data_dir:
        settings.data_dir = args.data_dir

    work_units = WorkUnits()
    operations = OperationRegistry()
    for target in getattr(args, "operation", None) or []:
        operations.register(load_object(target))
    work_unit = getattr(args, "work_unit", None)
    if work_unit:
        field = _WORK_UNIT_FIELDS.get(BenchmarkType(args.type))
        if field is None:
            raise ValueError("--work-unit applies to execution, execute-loop and workflow benchmarks")
        setattr(work_units, field, load_object(work_unit))
    return BenchmarkOrchestrator.from_settings(settings, work_units=work_units, operations=operations)


async def _run(args: argparse.Namespace) -> int:
    orchestrator = _build_orchestrator(args)
    config = load_run_config(args.config)
    if args.concurrency is not None:
        config.concurrency = args.concurrency
    if args.cleanup:
        config.keep_workspaces = False

    run = await orchestrator.run(args.type, _load_input(args.input), config, on_progress=_print_progress)
    print()
    _print_run(run)
    return 0 if run.status == RunStatus.COMPLETED else 1


def _list(args: argparse.Namespace) -> int:
    orchestrator = _build_orchestrator(args)
    run_filter = RunFilter(
        type=BenchmarkType(args.type) if args.type else None,
        status=RunStatus(args.status) if args.status else None,
        limit=args.limit,
        offset=args.offset,
    )
    summaries = orchestrator.store.list_summaries(run_filter)
    if not summaries:
        print("No benchmark runs.")
    for s in summaries:
        print(f"{s.id}  {s.type.value:<12} {s.status.value:<9} models={s.model_count}")
    return 0


def _show(args: argparse.Namespace) -> int:
    run = _build_orchestrator(args).get_run(args.run_id)
    if run is None:
        print(f"Run not found: {args.run_id}", file=sys.stderr)
        return 1
    _print_run(run)
    return 0


def _score(args: argparse.Namespace) -> int:
    orchestrator = _build_orchestrator(args)
    score = orchestrator.score_model(args.run_id, {
        "model_id": args.model_id,
        "score": args.score,
        "notes": args.notes,
        "scored_by": args.scored_by,
    })
    print(f"Scored {score.model_id}: {score.score}/5")
    return 0


async def _cleanup(args: argparse.Namespace) -> int:
    reports = await _build_orchestrator(args).cleanup_run(args.run_id)
    for report in reports:
        print(f"{report.name}: {'removed' if report.removed else 'not removed'}")
        for warning in report.warnings:
            print(f"  warning: {warning}")
    return 0 if all(r.clean for r in reports) else 1


async def _delete(args: argparse.Namespace) -> int:
    await _build_orchestrator(args).delete_run(args.run_id, cleanup_worktrees=not args.keep_worktrees)
    print(f"Deleted {args.run_id}")
    return 0


def _worktrees(args: argparse.Namespace) -> int:
    orchestrator = _build_orchestrator(args)
    workspaces = (
        orchestrator.get_worktrees_by_run_id(args.run_id) if args.run_id else orchestrator.list_worktrees()
    )
    if not workspaces:
        print("No worktrees.")
    for w in workspaces:
        print(f"{w.name}  {w.branch}  {w.path}")
    return 0


async def _prune(args: argparse.Namespace) -> int:
    stale = await _build_orchestrator(args).workspace_manager.prune()
    print(f"Pruned {len(stale)} stale worktree entries")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="worktree-bench",
        description="Benchmark models side by side in isolated git worktrees",
    )
    parser.add_argument("--settings", help="Path to settings YAML")
    parser.add_argument("--project", help="Repository to benchmark in (default: settings or cwd)")
    parser.add_argument("--data-dir", help="Where worktrees and results are stored")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a benchmark across models")
    run.add_argument("type", choices=[t.value for t in BenchmarkType])
    run.add_argument("--input", required=True, help="Benchmark input (JSON or YAML)")
    run.add_argument("--config", required=True, help="Run config YAML (models, concurrency, ...)")
    run.add_argument("--work-unit", help="module:callable doing the work for this benchmark type")
    run.add_argument("--operation", action="append", help="module:attr of a BenchmarkableOperation")
    run.add_argument("--concurrency", type=int, help="Max models running at once (0 = all)")
    run.add_argument("--cleanup", action="store_true", help="Remove worktrees when the run ends")
    run.set_defaults(handler=_run)

    ls = sub.add_parser("list", help="List benchmark runs")
    ls.add_argument("--type", choices=[t.value for t in BenchmarkType])
    ls.add_argument("--status", choices=[s.value for s in RunStatus])
    ls.add_argument("--limit", type=int)
    ls.add_argument("--offset", type=int, default=0)
    ls.set_defaults(handler=_list)

    show = sub.add_parser("show", help="Show one run with its results")
    show.add_argument("run_id")
    show.set_defaults(handler=_show)

    score = sub.add_parser("score", help="Score a model's result (1-5)")
    score.add_argument("run_id")
    score.add_argument("model_id")
    score.add_argument("score", type=int)
    score.add_argument("--notes")
    score.add_argument("--scored-by")
    score.set_defaults(handler=_score)

    cleanup = sub.add_parser("cleanup", help="Remove a run's worktrees")
    cleanup.add_argument("run_id")
    cleanup.set_defaults(handler=_cleanup)

    delete = sub.add_parser("delete", help="Delete a run")
    delete.add_argument("run_id")
    delete.add_argument("--keep-worktrees", action="store_true")
    delete.set_defaults(handler=_delete)

    worktrees = sub.add_parser("worktrees", help="List benchmark worktrees")
    worktrees.add_argument("--run-id")
    worktrees.set_defaults(handler=_worktrees)

    prune = sub.add_parser("prune", help="Forget worktrees whose directories are gone")
    prune.set_defaults(handler=_prune)
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        outcome = args.handler(args)
        if asyncio.iscoroutine(outcome):
            outcome = asyncio.run(outcome)
    except (BenchmarkError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    return outcome


if __name__ == "__main__":
    sys.exit(main())
