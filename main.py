#!/usr/bin/env python3
"""Hillstone Address-Book Sync CLI.

This module provides a command-line interface for reconciling address-book
objects from a Hillstone firewall into PostgreSQL, and for inspecting the
sync ledger, health and retention of the local copy.

Architecture:
    - open_services() wires one pool, one cache and one HillstoneClient
    - SyncJobRunner guards each job with an advisory lock
    - ReconcileObjectsUseCase does the actual reconciliation
    - HealthCheckUseCase backs --health

Environment Variables Required:
    - HILLSTONE_DOMAIN: Login domain (vsys)
    - HILLSTONE_BASE_URL: Firewall API base URL
    - HILLSTONE_USERNAME: API user
    - HILLSTONE_PASSWORD: API password
    - DATABASE_URL: PostgreSQL connection string (not needed for --test-connection)

Example Usage:
    $ python main.py                              # Full sync
    $ python main.py --force                      # Full sync even if one just completed
    $ python main.py --object web-servers         # Sync a single object
    $ python main.py --status --detailed          # Ledger and object statistics
    $ python main.py --cleanup --days 14 --dry-run

Author: Hillstone Sync Team
"""
import argparse
import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from dotenv import load_dotenv

load_dotenv()

# Local imports
from src.hillstone.api.client import HillstoneClient
from src.hillstone.api.database import apply_schema, close_pool, create_pool
from src.hillstone.api.exceptions import ConfigurationError, HillstoneError
from src.hillstone.config import Settings
from src.hillstone.runtime import Services, open_services


def emit(args: argparse.Namespace, payload: dict[str, Any], text: str) -> None:
    """Print payload as JSON under --json, otherwise the human-readable text."""
    if args.json:
        print(json.dumps(payload, indent=2, default=str))
    else:
        print(text)


def format_run(run) -> str:
    if run is None:
        return "never"
    line = (
        f"#{run.id} {run.operation_type.value} {run.status.value} "
        f"started={run.started_at.isoformat() if run.started_at else '-'} "
        f"processed={run.objects_processed} created={run.objects_created} "
        f"updated={run.objects_updated} deleted={run.objects_deleted} failed={run.objects_failed}"
    )
    if run.error_message:
        line += f" error={run.error_message}"
    return line


# ============================================
# Commands
# ============================================

async def cmd_sync_all(args: argparse.Namespace, services: Services) -> int:
    if not args.json:
        print("[Main] Starting full sync...")
    run =await services.jobs.run_sync_all(force=args.force)
    if run is None:
        emit(args, {"success": True, "skipped": True}, "[Main] Sync skipped (already running or recently completed)")
        return 0
    emit(args, {"success": True, "run": run.to_dict()}, f"[Main] Sync completed: {format_run(run)}")
    return 0


async def cmd_sync_object(args: argparse.Namespace, services: Services) -> int:
    run = await services.jobs.run_sync_specific(args.object, create=not args.no_create)
    if run is None:
        emit(args, {"success": True, "skipped": True}, f"[Main] Sync of '{args.object}' skipped (already running)")
        return 0
    emit(args, {"success": True, "run": run.to_dict()}, f"[Main] Object '{args.object}' synced: {format_run(run)}")
    return 0


async def cmd_status(args: argparse.Namespace, services: Services) -> int:
    last = await services.reconcile.get_last_sync_status()
    running = await services.reconcile.is_sync_running()
    stats = await services.reconcile.get_sync_statistics()

    payload: dict[str, Any] = {
        "last_sync": last.to_dict() if last else None,
        "sync_running": running,
        "statistics": stats.to_dict(),
    }
    lines = [
        f"Last sync:    {format_run(last)}",
        f"Running:      {'yes' if running else 'no'}",
        f"Last {stats.period_days} days: {stats.total_syncs} syncs, "
        f"{stats.successful_syncs} completed, {stats.failed_syncs} failed, "
        f"avg {stats.average_duration_seconds or 0:.1f}s",
    ]

    if args.detailed:
        objects = await services.objects.statistics(datetime.now(UTC))
        payload["objects"] = objects.to_dict()
        lines.append(
            f"Objects:      {objects.total} total, {objects.predefined} predefined, "
            f"{objects.ipv6} IPv6, {objects.with_detail} with detail, "
            f"{objects.stale_over_week} not synced in a week"
        )

    if args.recent:
        recent = await services.runs.recent(args.recent)
        payload["recent"] = [r.to_dict() for r in recent]
        lines.append(f"\nRecent {len(recent)} runs:")
        lines.extend(f"  {format_run(r)}" for r in recent)

    emit(args, payload, "\n".join(lines))
    return 0


async def cmd_health(args: argparse.Namespace, services: Services) -> int:
    report = await services.health.run()
    lines = [f"{name:<18} {check['status']:<10} {check['message']}" for name, check in report["checks"].items()]
    lines.append(f"\nOverall: {report['summary']['status']}")
    emit(args, report, "\n".join(lines))
    return 1 if report["summary"]["status"] == "unhealthy" else 0


async def cmd_cleanup(args: argparse.Namespace, services: Services) -> int:
    result = await services.jobs.run_cleanup(retention_days=args.days, dry_run=args.dry_run)
    if result is None:
        emit(args, {"success": True, "skipped": True}, "[Main] Cleanup skipped (already running)")
        return 0
    verb = "Would delete" if args.dry_run else "Deleted"
    emit(
        args,
        {"success": True, **result},
        f"[Main] {verb} {result['objects_deleted']} objects and "
        f"{result['sync_logs_deleted']} sync logs older than {result['cutoff']}",
    )
    return 0


async def cmd_test_connection(args: argparse.Namespace, settings: Settings) -> int:
    settings.validate()
    async with HillstoneClient(settings) as client:
        result = await client.test_connection()

    ok = result["connectivity"] and result["authentication"]
    lines = [
        f"Connectivity:   {'OK' if result['connectivity'] else 'FAILED'} "
        f"(status={result['status_code']}, {result['response_time_ms']} ms)",
        f"Authentication: {'OK' if result['authentication'] else 'FAILED'}",
    ]
    if result.get("auth_error"):
        lines.append(f"Auth error:     {result['auth_error']}")
    if result.get("error"):
        lines.append(f"Error:          {result['error']}")
    emit(args, {"success": ok, **result}, "\n".join(lines))
    return 0 if ok else 1


async def cmd_init_db(args: argparse.Namespace, settings: Settings) -> int:
    if not settings.database_url:
        raise ConfigurationError("DATABASE_URL is not set", missing_keys=["DATABASE_URL"])
    pool = await create_pool(settings.database_url, min_size=1, max_size=2)
    try:
        await apply_schema(pool)
    finally:
        await close_pool(pool)
    emit(args, {"success": True}, "[Main] Database schema applied")
    return 0


async def run(args: argparse.Namespace) -> int:
    """Dispatch the selected command.

    Returns:
        Process exit code
    """
    start_time = datetime.now(UTC)
    settings = Settings.from_env()

    try:
        if args.test_connection:
            return await cmd_test_connection(args, settings)
        if args.init_db:
            return await cmd_init_db(args, settings)

        async with open_services(settings) as services:
            if args.object:
                return await cmd_sync_object(args, services)
            if args.status:
                return await cmd_status(args, services)
            if args.health:
                return await cmd_health(args, services)
            if args.cleanup:
                return await cmd_cleanup(args, services)
            return await cmd_sync_all(args, services)

    except HillstoneError as e:
        emit(args, {"success": False, "error": e.to_dict()}, f"[Main] Error: {e}")
        return 1

    finally:
        if not args.json:
            duration = (datetime.now(UTC) - start_time).total_seconds()
            print(f"[Main] Completed in {duration:.1f} seconds")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sync Hillstone firewall address-book objects to PostgreSQL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                           # Full sync
  python main.py --force                   # Full sync, ignoring the recent-sync skip
  python main.py --object web-servers      # Sync one object
  python main.py --status --recent 5       # Show ledger status and the last 5 runs
  python main.py --health --json           # Health report as JSON
  python main.py --cleanup --dry-run       # Count what retention cleanup would delete
        """
    )

    # Sync options
    sync_group = parser.add_argument_group("Sync Options")
    sync_group.add_argument(
        "--object",
        type=str,
        metavar="NAME",
        help="Sync a single object by name instead of a full sync"
    )
    sync_group.add_argument(
        "--no-create",
        action="store_true",
        help="With --object, only update an object already stored locally"
    )
    sync_group.add_argument(
        "--force",
        action="store_true",
        help="Run a full sync even if one completed within the last hour"
    )

    # Reporting options
    report_group = parser.add_argument_group("Reporting")
    report_group.add_argument(
        "--status",
        action="store_true",
        help="Show the last sync, running state and 7-day statistics"
    )
    report_group.add_argument(
        "--detailed",
        action="store_true",
        help="With --status, include object store statistics"
    )
    report_group.add_argument(
        "--recent",
        type=int,
        metavar="N",
        default=0,
        help="With --status, list the N most recent runs"
    )
    report_group.add_argument(
        "--health",
        action="store_true",
        help="Run all health checks (exit 1 if any is unhealthy)"
    )
    report_group.add_argument(
        "--test-connection",
        action="store_true",
        help="Check firewall reachability and credentials (no database needed)"
    )

    # Maintenance options
    maint_group = parser.add_argument_group("Maintenance")
    maint_group.add_argument(
        "--cleanup",
        action="store_true",
        help="Delete stale objects and old sync logs"
    )
    maint_group.add_argument(
        "--days",
        type=int,
        metavar="N",
        help="With --cleanup, retention in days (default: CLEANUP_AFTER_DAYS)"
    )
    maint_group.add_argument(
        "--dry-run",
        action="store_true",
        help="With --cleanup, only count what would be deleted"
    )
    maint_group.add_argument(
        "--init-db",
        action="store_true",
        help="Apply db/schema.sql"
    )

    # Output options
    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON"
    )
    output_group.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log at INFO level"
    )
    return parser


def main() -> int:
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
