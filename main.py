#!/usr/bin/env python3
"""Quota-aware multi-agent code pipeline.

Usage:
    python main.py run --prompt "add input validation"                         # prompt only
    python main.py run --prompt "..." --mode active_file --active-file app.py   # one file
    python main.py run --prompt "..." --mode selected_files --file a.py --file b.py
    python main.py run --prompt "..." --issues analysis.json --verbose
    python main.py agents
    python main.py providers
    python main.py set-key Groq gsk_...
"""

import argparse
import asyncio
import json
import logging
import sys

from core.context import effective_budget
from core.issues import IssueRegistry, analysis_from_dict
from core.orchestrator import Orchestrator
from core.quota import QuotaTracker
from core.scheduler import RequestScheduler
from core.state import CONTEXT_MODES, PRIORITIES, ContextFile, RunRequest
from utils.diff import count_changes
from utils.fallback import FallbackSelector


def _read_context_file(path):
    with open(path, encoding="utf-8", errors="replace") as f:
        return ContextFile(path=path, content=f.read())


def _print_progress(stage):
    print(f"  [{stage.id}] {stage.name:24s} {stage.status}")


def _print_result(result, verbose=False):
    print(f"\nSuccess:       {'yes' if result.success else 'NO'}")
    if result.failure_type != "none":
        print(f"Failure type:  {result.failure_type}")
    print(f"Duration:      {result.total_duration:.1f}s")
    print(f"Quality score: {result.quality_score}")

    print("\nStages:")
    for stage in result.stages:
        line = f"  {stage.id} {stage.name:24s} {stage.status:24s} {stage.model}"
        if stage.retry_count:
            line += f" (retries: {stage.retry_count})"
        print(line)

    if result.warnings:
        print("\nWarnings:")
        for warning in result.warnings:
            print(f"  - {warning}")

    if result.error:
        print(f"\nError:\n{result.error}")

    if result.production_summary:
        print(f"\nSummary:\n  {result.production_summary}")

    if result.file_changes:
        print(f"\n{len(result.file_changes)} file change(s) (not applied):")
        for change in result.file_changes:
            marker = "new" if change.is_new_file else "modified"
            detail = ""
            if change.diff is not None:
                added, removed, modified = count_changes(change.diff)
                detail = f" +{added} -{removed} ~{modified}"
            print(f"  [{marker}] {change.path}{detail}")
            print(f"        {change.change_summary}")

    if verbose and result.report:
        report = result.report
        if report.missing_features:
            print("\nMissing features:")
            for feature in report.missing_features:
                print(f"  - {feature}")
        if report.improvement_recommendations:
            print("\nRecommendations:")
            for rec in report.improvement_recommendations:
                print(f"  - {rec}")


async def _run_pipeline(run_request):
    scheduler = RequestScheduler()
    orchestrator = Orchestrator(scheduler, QuotaTracker(), issues=IssueRegistry())
    try:
        return await orchestrator.run(run_request, on_progress=_print_progress)
    finally:
        scheduler.close()


def cmd_run(args):
    """Run the five-stage pipeline once and print the outcome."""
    files = [_read_context_file(path) for path in args.file or []]
    active_file = _read_context_file(args.active_file) if args.active_file else None

    issue_snapshot = None
    if args.issues:
        with open(args.issues) as f:
            registry = IssueRegistry()
            registry.set_analysis("project-analyzer", analysis_from_dict(json.load(f)))
            issue_snapshot = registry.snapshot()

    run_request = RunRequest(
        user_prompt=args.prompt,
        context_mode=args.mode,
        files=files,
        active_file=active_file,
        max_characters=args.max_chars,
        max_quality_retries=args.max_retries,
        issue_snapshot=issue_snapshot,
        priority=args.priority,
    )

    print(f"Mode:    {args.mode}")
    print(f"Budget:  {effective_budget(args.max_chars):,} characters")
    print("\nProgress:")
    result = asyncio.run(_run_pipeline(run_request))
    _print_result(result, verbose=args.verbose)
    if not result.success:
        sys.exit(1)


def cmd_agents(args):
    orchestrator = Orchestrator(RequestScheduler(), QuotaTracker())
    print("Pipeline agents:")
    for key, config in orchestrator.get_all_agents().items():
        print(f"  {key:16s} {config.name:20s} {config.model_id:32s} temp={config.temperature}")


def cmd_providers(args):
    selector = FallbackSelector()
    available = {p.name for p in selector.available_providers()}
    print("Fallback providers (priority order):")
    for provider in selector.providers:
        status = "configured" if provider.name in available else "no key"
        print(f"  {provider.priority}. {provider.name:14s} {status:11s} {provider.free_limit}")
        if provider.name not in available:
            print(f"     Get a key: {provider.key_url}")


def cmd_set_key(args):
    selector = FallbackSelector()
    try:
        selector.set_api_key(args.provider, args.key)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    print(f"Saved key for {args.provider} to {selector.key_store.path}")


def main():
    parser = argparse.ArgumentParser(
        prog="quota-pipeline",
        description="Quota-aware multi-agent code pipeline",
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the five-stage pipeline")
    run_parser.add_argument("--prompt", required=True, help="Natural language request")
    run_parser.add_argument("--mode", choices=CONTEXT_MODES, default="prompt_only",
                            help="Context mode (default: prompt_only)")
    run_parser.add_argument("--file", action="append", metavar="PATH",
                            help="Context file (repeatable)")
    run_parser.add_argument("--active-file", metavar="PATH", help="File to prioritize")
    run_parser.add_argument("--max-chars", type=int, help="Context character budget")
    run_parser.add_argument("--max-retries", type=int,
                            help="Quality-gate attempts, 1-5 (default: 3)")
    run_parser.add_argument("--priority", choices=PRIORITIES, default="normal",
                            help="Scheduler priority (default: normal)")
    run_parser.add_argument("--issues", metavar="JSON",
                            help="Project analysis JSON to feed the analyzer")
    run_parser.add_argument("--verbose", action="store_true",
                            help="Debug logging and full report sections")

    subparsers.add_parser("agents", help="List the agent registry")
    subparsers.add_parser("providers", help="List fallback providers")

    key_parser = subparsers.add_parser("set-key", help="Persist a fallback provider API key")
    key_parser.add_argument("provider", help="Provider name, e.g. Groq")
    key_parser.add_argument("key", help="API key (empty string removes it)")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "run":
        cmd_run(args)
    elif args.command == "agents":
        cmd_agents(args)
    elif args.command == "providers":
        cmd_providers(args)
    elif args.command == "set-key":
        cmd_set_key(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
