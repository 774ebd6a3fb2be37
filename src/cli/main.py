"""
CLI entry point for the job orchestrator.

Commands:
    run-pass       Run one scheduling pass with a job budget
    plan           Staggered run schedule of all active tenants for a date
    distribution   Tenants per timezone and their UTC processing hour
    graph          Dependency graph of the current pending work
    recover        Reset jobs stuck in processing
    enqueue-chain  Create the missing jobs of a tenant's chain
    status         Job counts per status
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from typing import List, Optional

from src.infra.logging_config import setup_logging
from src.infra.tenant_directory import JsonTenantDirectory, TenantDirectoryError
from src.planner import (
    TenantScheduleConfig,
    calculate_timezone_distribution,
    generate_staggered_schedule,
)
from src.scheduler import GraphBuildError, SchedulerService
from src.scheduler.config import (
    DEFAULT_DB_PATH,
    DEFAULT_PASS_BUDGET,
    MAX_CONCURRENT_TENANTS,
    MAX_JOBS_PER_TENANT,
    PASS_TIMEOUT_SECONDS,
    PLANNER_DST_AWARE,
    TENANT_DIRECTORY_PATH,
)

from .schemas import (
    JobResponse,
    PassSummaryResponse,
    PlannedRunResponse,
    TimezoneDistributionResponse,
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_INVALID_INPUT = 1
EXIT_PASS_FAILED = 2
EXIT_DIRECTORY_ERROR = 3


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _load_configs(path: str) -> List[TenantScheduleConfig]:
    directory = JsonTenantDirectory(path)
    return [
        TenantScheduleConfig.from_dict(record.model_dump())
        for record in directory.list_active_tenants()
    ]


def _create_service(args: argparse.Namespace, **scheduler_options) -> SchedulerService:
    return SchedulerService.create(args.db, **scheduler_options)


# =============================================================================
# Commands
# =============================================================================


def cmd_run_pass(args: argparse.Namespace) -> int:
    if args.budget < 1:
        print("Error: --budget must be positive", file=sys.stderr)
        return EXIT_INVALID_INPUT

    service = _create_service(
        args,
        max_concurrent_tenants=args.max_concurrent_tenants,
        max_jobs_per_tenant=args.max_jobs_per_tenant,
        pass_timeout_seconds=args.timeout,
    )

    async def _run():
        if args.recover:
            await service.recover()
        return await service.run_pass(args.budget)

    try:
        summary = asyncio.run(_run())
    except GraphBuildError as e:
        logger.error(f"Scheduling pass aborted: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_PASS_FAILED

    if args.json:
        _print_json(PassSummaryResponse.from_summary(summary).model_dump(mode="json"))
        return EXIT_SUCCESS

    print(f"Pass {summary.pass_id}")
    print(f"  processed: {summary.processed} (budget {summary.budget})")
    print(f"  succeeded: {summary.succeeded}")
    print(f"  failed:    {summary.failed}")
    print(f"  blocked:   {summary.blocked}")
    print(f"  tenants:   {len(summary.tenants_touched)} in {summary.batches} batches")
    print(f"  duration:  {summary.wall_clock_ms}ms")
    if summary.stopped_reason:
        print(f"  stopped:   {summary.stopped_reason}")
    for job_id, error in summary.errors.items():
        print(f"  error {job_id}: {error}")
    return EXIT_SUCCESS


def cmd_plan(args: argparse.Namespace) -> int:
    try:
        target_date = date.fromisoformat(args.date) if args.date else date.today()
    except ValueError:
        print(f"Error: Invalid date '{args.date}', expected YYYY-MM-DD", file=sys.stderr)
        return EXIT_INVALID_INPUT

    try:
        configs = _load_configs(args.tenants)
    except TenantDirectoryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_DIRECTORY_ERROR

    schedule = generate_staggered_schedule(configs, target_date, dst_aware=args.dst_aware)

    if args.json:
        _print_json([PlannedRunResponse.from_run(run).model_dump(mode="json") for run in schedule])
        return EXIT_SUCCESS

    print(f"Schedule for {target_date.isoformat()} ({len(schedule)} tenants):")
    print()
    for run in schedule:
        print(
            f"  {run.utc_run_time.strftime('%Y-%m-%d %H:%M')} UTC  "
            f"{run.tenant_id:<24} {run.priority_tier:<9} "
            f"{run.timezone} (+{run.stagger_offset_minutes}m)"
        )
    return EXIT_SUCCESS


def cmd_distribution(args: argparse.Namespace) -> int:
    try:
        configs = _load_configs(args.tenants)
    except TenantDirectoryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_DIRECTORY_ERROR

    distribution = calculate_timezone_distribution(configs)

    if args.json:
        _print_json([
            TimezoneDistributionResponse.from_distribution(entry).model_dump(mode="json")
            for entry in distribution
        ])
        return EXIT_SUCCESS

    for entry in distribution:
        print(
            f"  {entry.timezone:<22} UTC{entry.utc_offset:+d}  "
            f"{entry.tenant_count:>4} tenants  {entry.window_start}-{entry.window_end} UTC"
        )
    return EXIT_SUCCESS


def cmd_graph(args: argparse.Namespace) -> int:
    service = _create_service(args)
    try:
        print(asyncio.run(service.render_graph()), end="")
    except GraphBuildError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_PASS_FAILED
    return EXIT_SUCCESS


def cmd_recover(args: argparse.Namespace) -> int:
    service = _create_service(args)
    stats = asyncio.run(service.recover())

    if args.json:
        _print_json(stats)
    else:
        print(f"Reset {stats['stuck_jobs_reset']} stuck jobs")
        for error in stats["errors"]:
            print(f"  error: {error}")
    return EXIT_SUCCESS if not stats["errors"] else EXIT_PASS_FAILED


def cmd_enqueue_chain(args: argparse.Namespace) -> int:
    try:
        payload = json.loads(args.payload) if args.payload else {}
    except json.JSONDecodeError as e:
        print(f"Error: Invalid payload JSON: {e}", file=sys.stderr)
        return EXIT_INVALID_INPUT
    if not isinstance(payload, dict):
        print("Error: Payload must be a JSON object", file=sys.stderr)
        return EXIT_INVALID_INPUT

    service = _create_service(args)
    created = asyncio.run(service.enqueue_chain(args.tenant_id, payload))

    if args.json:
        _print_json([JobResponse.from_job(job).model_dump(mode="json") for job in created])
        return EXIT_SUCCESS

    print(f"Created {len(created)} jobs for tenant {args.tenant_id}")
    for job in created:
        print(f"  {job.id}  {job.job_type}")
    return EXIT_SUCCESS


def cmd_status(args: argparse.Namespace) -> int:
    service = _create_service(args)
    status = asyncio.run(service.status())

    if args.json:
        _print_json(status)
        return EXIT_SUCCESS

    for name, count in status["jobs"].items():
        print(f"  {name:<11} {count}")
    return EXIT_SUCCESS


# =============================================================================
# Parser
# =============================================================================


def create_parser() -> argparse.ArgumentParser:
    """
    Create argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="job-orchestrator",
        description="Multi-tenant inventory job orchestrator",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--db",
        default=DEFAULT_DB_PATH,
        help=f"SQLite job store (default: {DEFAULT_DB_PATH})"
    )
    parser.add_argument(
        "--log-dir",
        default="logs",
        help="Directory for daily log files (default: logs)"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # run-pass command
    run_parser = subparsers.add_parser("run-pass", help="Run one scheduling pass")
    run_parser.add_argument(
        "-b", "--budget",
        type=int,
        default=DEFAULT_PASS_BUDGET,
        help=f"Jobs to process before stopping (default: {DEFAULT_PASS_BUDGET})"
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        default=PASS_TIMEOUT_SECONDS,
        help="Stop starting new batches after this many seconds"
    )
    run_parser.add_argument(
        "--max-concurrent-tenants",
        type=int,
        default=MAX_CONCURRENT_TENANTS,
        help=f"Tenants per batch (default: {MAX_CONCURRENT_TENANTS})"
    )
    run_parser.add_argument(
        "--max-jobs-per-tenant",
        type=int,
        default=MAX_JOBS_PER_TENANT,
        help=f"Jobs per tenant per pass (default: {MAX_JOBS_PER_TENANT})"
    )
    run_parser.add_argument(
        "--recover",
        action="store_true",
        help="Reset stuck jobs before the pass"
    )

    # plan command
    plan_parser = subparsers.add_parser("plan", help="Staggered schedule for a date")
    plan_parser.add_argument(
        "-d", "--date",
        help="Target date YYYY-MM-DD (default: today)"
    )
    plan_parser.add_argument(
        "-t", "--tenants",
        default=TENANT_DIRECTORY_PATH,
        help=f"Tenant directory JSON (default: {TENANT_DIRECTORY_PATH})"
    )
    plan_parser.add_argument(
        "--dst-aware",
        action="store_true",
        default=PLANNER_DST_AWARE,
        help="Convert with daylight saving instead of static offsets"
    )

    # distribution command
    dist_parser = subparsers.add_parser("distribution", help="Tenants per timezone")
    dist_parser.add_argument(
        "-t", "--tenants",
        default=TENANT_DIRECTORY_PATH,
        help=f"Tenant directory JSON (default: {TENANT_DIRECTORY_PATH})"
    )

    # graph command
    subparsers.add_parser("graph", help="Show the dependency graph of pending work")

    # recover command
    subparsers.add_parser("recover", help="Reset jobs stuck in processing")

    # enqueue-chain command
    enqueue_parser = subparsers.add_parser("enqueue-chain", help="Create missing chain jobs for a tenant")
    enqueue_parser.add_argument(
        "tenant_id",
        help="Tenant identifier"
    )
    enqueue_parser.add_argument(
        "-p", "--payload",
        help="JSON object merged into every job payload"
    )

    # status command
    subparsers.add_parser("status", help="Job counts per status")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.verbose else "INFO", log_dir=args.log_dir)

    commands = {
        "run-pass": cmd_run_pass,
        "plan": cmd_plan,
        "distribution": cmd_distribution,
        "graph": cmd_graph,
        "recover": cmd_recover,
        "enqueue-chain": cmd_enqueue_chain,
        "status": cmd_status,
    }

    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return EXIT_SUCCESS
    return command(args)


if __name__ == "__main__":
    sys.exit(main())
