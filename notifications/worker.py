"""
Notification worker - runs the periodic SMS jobs.

Jobs:
1. deferred_confirmation_sms (every DEFERRED_JOB_INTERVAL_MINUTES, default 60)
2. reminder_sms (every REMINDER_JOB_INTERVAL_MINUTES, default 15)

Architecture:
    - Single asyncio event loop; jobs are awaited in turn, never via
      repeated asyncio.run() (asyncpg connections are bound to one loop)
    - Health check JSON file updated after every job run
    - Graceful shutdown on SIGTERM/SIGINT

CLI:
    python -m notifications.worker                       # run forever
    python -m notifications.worker --once all            # one tick of each job
    python -m notifications.worker --once reminders --now 2025-12-01T08:00:00+00:00
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from notifications.jobs import JobReport
from notifications.runtime import NotificationRuntime, build_runtime
from shared.clock import Clock, ManualClock
from shared.config import get_settings
from shared.logging_config import configure_logging
from shared.startup_validator import StartupValidationError, validate_startup_config

logger = logging.getLogger(__name__)

HEALTH_FILE_NAME = "notification_worker_health.json"
POLL_SECONDS = 30

# Global flag for graceful shutdown
shutdown_requested = False


def signal_handler(signum: int, frame: Any) -> None:
    """
    Handle SIGTERM/SIGINT for graceful shutdown.
    """
    global shutdown_requested
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_requested = True


def update_health_check(
    job_name: str,
    last_run: datetime,
    status: str,
    processed: int,
    errors: int,
    health_dir: str | Path | None = None,
) -> None:
    """
    Record one job run in the health check file.

    The file is rewritten atomically (temp file + rename) so a health check never
    reads a half-written document.

    Args:
        job_name: Name of the job
        last_run: When the job ran
        status: 'healthy' or 'unhealthy'
        processed: Appointments matched
        errors: Appointments that failed
        health_dir: Directory of the health file (defaults to HEALTH_CHECK_DIR)
    """
    directory = Path(health_dir or get_settings().HEALTH_CHECK_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    health_file = directory / HEALTH_FILE_NAME
    temp_file = directory / f"{HEALTH_FILE_NAME}.{time.time_ns()}.tmp"

    health_data: dict[str, Any] = {}
    if health_file.exists():
        try:
            health_data = json.loads(health_file.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable health check file, rewriting it: {e}")

    health_data[job_name] = {
        "last_run": last_run.isoformat(),
        "status": status,
        "processed": processed,
        "errors": errors,
    }

    all_healthy = all(
        job.get("status") == "healthy"
        for job in health_data.values()
        if isinstance(job, dict)
    )
    health_data["overall_status"] = "healthy" if all_healthy else "unhealthy"
    health_data["last_updated"] = datetime.now(UTC).isoformat()

    try:
        temp_file.write_text(json.dumps(health_data, indent=2))
        temp_file.replace(health_file)
        logger.debug(f"Health check file updated: {health_file}")
    except OSError as e:
        logger.error(f"Failed to write health check file: {e}", exc_info=True)


async def run_job(runtime: NotificationRuntime, job_key: str) -> JobReport | None:
    """
    Run one job tick and record it in the health file.

    Args:
        runtime: Wired notification components
        job_key: "deferred" or "reminders"

    Returns:
        JobReport, or None if the job itself crashed (logged)
    """
    job = runtime.deferred_job if job_key == "deferred" else runtime.reminder_job
    try:
        report = await job.run()
    except Exception as e:
        logger.error(f"Error in {job.name}: {e}", exc_info=True, extra={"job_name": job.name})
        update_health_check(job.name, runtime.clock.now(), "unhealthy", 0, 1)
        return None

    update_health_check(job.name, report.started_at, "healthy", report.matched, report.failed)
    return report


async def run_once(runtime: NotificationRuntime, which: str) -> list[JobReport | None]:
    """Run the selected job(s) once: "deferred", "reminders" or "all"."""
    keys = ["deferred", "reminders"] if which == "all" else [which]
    return [await run_job(runtime, key) for key in keys]


async def async_main(runtime: NotificationRuntime | None = None, poll_seconds: float = POLL_SECONDS) -> None:
    """
    Run both jobs at their configured intervals until shutdown is requested.

    Each job runs once at startup, then whenever its interval has elapsed.
    """
    global shutdown_requested

    settings = get_settings()
    runtime = runtime or build_runtime(settings)

    intervals = {
        "deferred": settings.DEFERRED_JOB_INTERVAL_MINUTES * 60,
        "reminders": settings.REMINDER_JOB_INTERVAL_MINUTES * 60,
    }
    last_run: dict[str, float | None] = {key: None for key in intervals}

    logger.info(
        f"Notification worker starting: deferred every {settings.DEFERRED_JOB_INTERVAL_MINUTES}min "
        f"(window {settings.DEFERRED_SMS_MIN_HOURS}-{settings.DEFERRED_SMS_MAX_HOURS}h), "
        f"reminders every {settings.REMINDER_JOB_INTERVAL_MINUTES}min "
        f"(window {settings.REMINDER_WINDOW_MINUTES}min at {settings.REMINDER_LEAD_HOURS}h), "
        f"TIMEZONE={settings.TIMEZONE}"
    )

    update_health_check("startup", runtime.clock.now(), "healthy", 0, 0)

    while not shutdown_requested:
        for key, interval in intervals.items():
            previous = last_run[key]
            if previous is None or time.monotonic() - previous >= interval:
                last_run[key] = time.monotonic()
                await run_job(runtime, key)
            if shutdown_requested:
                break

        await asyncio.sleep(poll_seconds)

    logger.info("Notification worker shutting down gracefully...")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Appointment notification worker")
    parser.add_argument(
        "--once",
        choices=["deferred", "reminders", "all"],
        help="Run the job(s) once and exit instead of looping",
    )
    parser.add_argument(
        "--now",
        type=datetime.fromisoformat,
        help="Replay a tick at this ISO 8601 instant (requires --once)",
    )
    args = parser.parse_args(argv)
    if args.now is not None and args.once is None:
        parser.error("--now requires --once")
    return args


async def main(args: argparse.Namespace) -> int:
    """
    Validate configuration, then run once or loop, all on one event loop.

    Returns:
        Process exit code (1 if a --once run had failures)
    """
    try:
        await validate_startup_config()
    except StartupValidationError as e:
        logger.critical(f"Startup blocked: {e}")
        return 1

    clock: Clock | None = ManualClock(args.now) if args.now else None
    runtime = build_runtime(get_settings(), clock=clock)

    if args.once:
        reports = await run_once(runtime, args.once)
        print(json.dumps([r.to_dict() if r else None for r in reports], indent=2))
        return 1 if any(r is None or r.failed for r in reports) else 0

    await async_main(runtime)
    return 0


def run_notification_worker(argv: list[str] | None = None) -> int:
    """
    Synchronous entry point that sets up logging and signal handlers,
    then runs the async main function.
    """
    args = parse_args(argv)
    configure_logging()

    if not args.once:
        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    return asyncio.run(main(args))


if __name__ == "__main__":
    sys.exit(run_notification_worker())
