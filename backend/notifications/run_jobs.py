"""
CLI for running the email scheduler or a single scheduled job.

Usage:
    # Run the scheduler until interrupted
    uv run python -m notifications.run_jobs --serve

    # Run one job now (operational testing)
    uv run python -m notifications.run_jobs --job weekly-reports

    # Dry run (render emails but don't send them)
    uv run python -m notifications.run_jobs --job newsletter --dry-run
"""

import argparse
import signal
import threading

from notifications.pipeline import build_pipeline

JOBS = {
    "daily-reports": "trigger_daily_reports",
    "weekly-reports": "trigger_weekly_reports",
    "monthly-reports": "trigger_monthly_reports",
    "budget-check": "trigger_budget_checks",
    "newsletter": "trigger_newsletters",
}


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run the expense notification scheduler or a single email job"
    )

    parser.add_argument(
        "--serve", action="store_true", help="Run the scheduler until interrupted"
    )

    parser.add_argument(
        "--job",
        choices=sorted(JOBS),
        help="Run one scheduled job immediately and exit",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Dry run mode (don't actually send emails)",
    )

    args = parser.parse_args()

    if args.serve == bool(args.job):
        parser.error("Specify exactly one of --serve or --job")

    pipeline = build_pipeline(dry_run=args.dry_run)

    if args.job:
        getattr(pipeline.scheduler, JOBS[args.job])()
        pipeline.shutdown()
        return

    stopped = threading.Event()

    def _handle_signal(signum, frame):
        stopped.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    pipeline.scheduler.start()
    for job in pipeline.scheduler.status()["jobs"]:
        print(f"  {job['name']}: {job['cadence']} (next: {job['next_run']})")

    stopped.wait()
    pipeline.shutdown()


if __name__ == "__main__":
    main()
