#!/usr/bin/env python3
"""Automated Scheduler for Hillstone Address-Book Sync.

This module provides a long-running scheduler that runs a full sync at a
configurable interval. Designed to run as the main process in a container.

Architecture:
    - Simple asyncio loop with sleep (no external scheduler)
    - Graceful shutdown on SIGTERM/SIGINT; a running sync stops before its
      next batch and its run is marked failed
    - Configurable via environment variables
    - Health check endpoint via a minimal HTTP server

Environment Variables:
    SYNC_INTERVAL_MINUTES: Minutes between sync runs (default: 60)
    SYNC_ON_STARTUP: Run sync immediately on startup (default: true)
    HEALTH_CHECK_PORT: Port for health check endpoint (default: 8080, 0 to disable)
    MAX_RETRIES: Attempts per scheduled sync (default: 3)
    RETRY_DELAY_SECONDS: Base delay between attempts (default: 60)

    Firewall credentials:
        HILLSTONE_DOMAIN, HILLSTONE_BASE_URL, HILLSTONE_USERNAME, HILLSTONE_PASSWORD

    Database:
        DATABASE_URL

Example:
    # Run every 30 minutes
    SYNC_INTERVAL_MINUTES=30 python scheduler.py

Docker Usage:
    docker run -e SYNC_INTERVAL_MINUTES=60 -e DATABASE_URL=... hillstone-sync

Author: Hillstone Sync Team
"""
import asyncio
import json
import logging
import os
import signal
import sys
import uuid
from datetime import UTC, datetime, timedelta
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

# Local imports
from src.hillstone.api.exceptions import ConfigurationError, HillstoneError, SyncCancelledError
from src.hillstone.config import Settings
from src.hillstone.runtime import Services, open_services

# Initialize logger
logger = logging.getLogger(__name__)

# ============================================
# Configuration
# ============================================

class SchedulerConfig:
    """Configuration loaded from environment variables."""

    def __init__(self):
        self.interval_minutes = int(os.getenv("SYNC_INTERVAL_MINUTES", "60"))
        self.sync_on_startup = os.getenv("SYNC_ON_STARTUP", "true").lower() == "true"
        self.health_check_port = int(os.getenv("HEALTH_CHECK_PORT", "8080"))
        self.max_retries = int(os.getenv("MAX_RETRIES", "3"))
        self.retry_delay_seconds = int(os.getenv("RETRY_DELAY_SECONDS", "60"))

    def __repr__(self):
        return (
            f"SchedulerConfig("
            f"interval={self.interval_minutes}m, "
            f"startup={self.sync_on_startup}, "
            f"retries={self.max_retries}, "
            f"retry_delay={self.retry_delay_seconds}s, "
            f"health_port={self.health_check_port})"
        )


# ============================================
# Sync Logic
# ============================================

async def run_sync(
    services: Services,
    attempt: int,
    max_attempts: int,
    owner: str,
    cancel_event: asyncio.Event,
) -> dict:
    """Run a single sync attempt.

    Returns:
        Dict with sync results
    """
    start_time = datetime.now(UTC)
    results = {
        "started_at": start_time.isoformat(),
        "attempt": attempt,
        "run": None,
        "skipped": False,
        "success": False,
        "error": None,
    }

    try:
        run = await services.jobs.run_sync_all(
            attempt=attempt,
            max_attempts=max_attempts,
            owner=owner,
            cancel_event=cancel_event,
        )
        if run is None:
            results["skipped"] = True
        else:
            results["run"] = run.to_dict()
        results["success"] = True

    except HillstoneError as e:
        logger.error(f"Sync attempt {attempt} failed: {e}", exc_info=not isinstance(e, SyncCancelledError))
        results["error"] = e.message
        results["error_type"] = type(e).__name__
        results["recoverable"] = e.recoverable and not isinstance(e, SyncCancelledError)

    except Exception as e:
        logger.error(f"Sync attempt {attempt} failed: {type(e).__name__}: {e}", exc_info=True)
        results["error"] = str(e)
        results["error_type"] = type(e).__name__

    end_time = datetime.now(UTC)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    return results


async def run_sync_with_retry(
    config: SchedulerConfig,
    services: Services,
    cancel_event: asyncio.Event,
) -> dict:
    """Run sync with retry logic on failure.

    Every attempt presents the same lock owner, so the full-sync lock taken
    by the first attempt is kept until the job succeeds or runs out of
    attempts.

    Returns:
        Dict with sync results of the last attempt
    """
    owner = uuid.uuid4().hex
    results: dict = {}

    for attempt in range(1, config.max_retries + 1):
        results = await run_sync(services, attempt, config.max_retries, owner, cancel_event)

        if results["success"]:
            if attempt > 1:
                print(f"[Scheduler] Sync succeeded on attempt {attempt}")
            return results

        if attempt >= config.max_retries:
            break

        wait_seconds = config.retry_delay_seconds * attempt
        print(
            f"[Scheduler] Sync failed, retrying in {wait_seconds}s "
            f"(attempt {attempt}/{config.max_retries})"
        )
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=wait_seconds)
        except asyncio.TimeoutError:
            continue

        print("[Scheduler] Shutdown requested, not retrying")
        await services.jobs.release_sync_all(owner)
        break

    print(f"[Scheduler] Sync failed after {results.get('attempt')} attempts: {results.get('error')}")
    return results


# ============================================
# Health Check Server
# ============================================

class HealthState:
    """Shared state for health checks."""

    def __init__(self):
        self.last_sync_at: Optional[datetime] = None
        self.last_sync_success: bool = False
        self.total_syncs: int = 0
        self.failed_syncs: int = 0
        self.started_at: datetime = datetime.now(UTC)

    def record(self, results: dict) -> None:
        self.total_syncs += 1
        self.last_sync_at = datetime.now(UTC)
        self.last_sync_success = results["success"]
        if not results["success"]:
            self.failed_syncs += 1

    def to_dict(self) -> dict:
        return {
            "status": "healthy" if self.last_sync_success or self.total_syncs == 0 else "unhealthy",
            "uptime_seconds": round((datetime.now(UTC) - self.started_at).total_seconds()),
            "total_syncs": self.total_syncs,
            "failed_syncs": self.failed_syncs,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else "never",
        }


async def health_check_handler(reader, writer, state: HealthState):
    """Handle HTTP health check requests."""
    request_line = (await reader.read(1024)).split(b"\r\n", 1)[0].decode(errors="replace")
    parts = request_line.split()

    if len(parts) >= 2 and parts[0] == "GET" and parts[1] == "/health":
        payload = state.to_dict()
        http_status = 200 if payload["status"] == "healthy" else 503
    else:
        payload = {"error": "not found"}
        http_status = 404

    body = json.dumps(payload)
    reason = {200: "OK", 404: "Not Found", 503: "Service Unavailable"}[http_status]
    response = (
        f"HTTP/1.1 {http_status} {reason}\r\n"
        f"Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n"
        f"Connection: close\r\n"
        f"\r\n"
        f"{body}"
    )

    writer.write(response.encode())
    await writer.drain()
    writer.close()
    await writer.wait_closed()


async def start_health_server(port: int, state: HealthState):
    """Start the health check HTTP server."""
    if port <= 0:
        return None

    async def handler(reader, writer):
        await health_check_handler(reader, writer, state)

    server = await asyncio.start_server(handler, "0.0.0.0", port)
    print(f"[Scheduler] Health check server listening on port {port}")
    return server


# ============================================
# Main Scheduler Loop
# ============================================

async def scheduler_loop(
    config: SchedulerConfig,
    services: Services,
    health_state: HealthState,
    shutdown_event: asyncio.Event,
):
    """Main scheduling loop.

    Args:
        config: Scheduler configuration
        services: Wired adapters and use cases
        health_state: Shared health state
        shutdown_event: Event to signal shutdown, also used to cancel a running sync
    """
    interval_seconds = config.interval_minutes * 60

    if config.sync_on_startup:
        print("[Scheduler] Running initial sync on startup...")
        results = await run_sync_with_retry(config, services, shutdown_event)
        health_state.record(results)
        print(f"[Scheduler] Initial sync complete: success={results['success']}")

    next_run = datetime.now(UTC) + timedelta(seconds=interval_seconds)
    print(f"[Scheduler] Next sync at {next_run.isoformat()} (in {config.interval_minutes} minutes)")

    while not shutdown_event.is_set():
        try:
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=interval_seconds,
            )
            break
        except asyncio.TimeoutError:
            pass

        print("\n[Scheduler] ========== SCHEDULED SYNC ==========")
        print(f"[Scheduler] Time: {datetime.now(UTC).isoformat()}")

        results = await run_sync_with_retry(config, services, shutdown_event)
        health_state.record(results)

        print(
            f"[Scheduler] Sync complete: success={results['success']}, "
            f"duration={results.get('duration_seconds', 0):.1f}s"
        )

        next_run = datetime.now(UTC) + timedelta(seconds=interval_seconds)
        print(f"[Scheduler] Next sync at {next_run.isoformat()} (in {config.interval_minutes} minutes)")

    print("[Scheduler] Shutdown requested, exiting loop")


# ============================================
# Main Entry Point
# ============================================

async def main():
    """Main entry point for the scheduler."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    print("=" * 60)
    print("Hillstone Address-Book Sync Scheduler")
    print("=" * 60)

    config = SchedulerConfig()
    print(f"[Scheduler] Config: {config}")

    settings = Settings.from_env()
    health_state = HealthState()
    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()

    def handle_shutdown(signum):
        print(f"\n[Scheduler] Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, handle_shutdown, signum)

    health_server = await start_health_server(config.health_check_port, health_state)

    try:
        async with open_services(settings) as services:
            await scheduler_loop(
                config=config,
                services=services,
                health_state=health_state,
                shutdown_event=shutdown_event,
            )
    except ConfigurationError as e:
        print(f"[Scheduler] ERROR: {e}")
        sys.exit(1)
    finally:
        print("[Scheduler] Cleaning up...")

        if health_server:
            health_server.close()
            await health_server.wait_closed()

        print("[Scheduler] Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
