"""
Error logging utility for the notification pipeline.

Writes each notification failure (delivery, budget check, scheduled job) to a
timestamped report file so a failed email can be diagnosed after the fact.
"""

import os
import traceback
from datetime import datetime, timezone
from typing import Any


def _log_dir() -> str:
    return os.getenv("NOTIFICATION_LOG_DIR") or os.path.join(
        os.path.dirname(__file__), "logs"
    )


def log_notification_error(
    error_type: str,
    error_message: str,
    context: dict[str, Any] | None = None,
    exc: BaseException | None = None,
) -> str:
    """
    Log a notification error to a timestamped file.

    Args:
        error_type: Type of error (e.g., 'delivery', 'budget_check', 'scheduler')
        error_message: The error message
        context: Optional dictionary with additional context (user_id, job, template, etc.)
        exc: Optional exception whose traceback is appended to the report

    Returns:
        Path to the log file created
    """
    log_dir = _log_dir()
    os.makedirs(log_dir, exist_ok=True)

    # Microseconds keep reports from one batch in separate files
    now = datetime.now(timezone.utc)
    timestamp = now.strftime("%Y%m%d_%H%M%S_%f")
    filename = os.path.join(log_dir, f"notification_error_{error_type}_{timestamp}.txt")

    with open(filename, "w", encoding="utf-8") as f:
        f.write(f"Notification Error Report - {now.isoformat()}\n")
        f.write("=" * 60 + "\n\n")
        f.write(f"Error Type: {error_type}\n")
        f.write(f"Error Message: {error_message}\n\n")

        if context:
            f.write("Context:\n")
            f.write("-" * 60 + "\n")
            for key, value in context.items():
                f.write(f"{key}: {value}\n")

        if exc is not None:
            f.write("\nTraceback:\n")
            f.write("-" * 60 + "\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))

    return filename
