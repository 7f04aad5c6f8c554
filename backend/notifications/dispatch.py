"""
Fire-and-forget execution for notification work.

Notification failures must never fail the request that triggered them. Every
background task and every engine entry point runs under the same policy,
`log_and_drop`: the error is written to an error report, a line is printed,
and nothing is re-raised.
"""

import functools
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from notifications.error_logger import log_notification_error


def log_and_drop(
    task_name: str, error: BaseException, context: Optional[dict[str, Any]] = None
) -> str:
    """
    Record a notification failure and swallow it.

    Returns:
        Path to the error report
    """
    error_file = log_notification_error(
        error_type=task_name,
        error_message=f"{type(error).__name__}: {error}",
        context=context,
        exc=error,
    )
    print(f"  ⚠️  {task_name} failed: {error}. Details logged to: {error_file}")
    return error_file


def guarded(task_name: str) -> Callable:
    """Decorator applying log_and_drop to a method; the method returns None on failure."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                log_and_drop(task_name, e, {"args": args[1:], "kwargs": kwargs})
                return None

        return wrapper

    return decorator


class BackgroundDispatcher:
    """Runs notification tasks on a small thread pool so callers never wait on email."""

    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="notifications"
        )

    def submit(self, task_name: str, fn: Callable, *args, **kwargs) -> Future:
        def run() -> Any:
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                log_and_drop(task_name, e, {"args": args, "kwargs": kwargs})
                return None

        return self._executor.submit(run)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def notify_after_transaction_write(
    dispatcher: BackgroundDispatcher,
    engine: Any,
    transaction_id: str,
    user_id: str,
    category_name: str,
) -> list[Future]:
    """
    Post-write hook for the transaction controller.

    Queues the transaction notification and the category budget check, then
    returns immediately.
    """
    return [
        dispatcher.submit("transaction_notification", engine.on_transaction_created, transaction_id),
        dispatcher.submit("budget_check", engine.check_budget_alert, user_id, category_name),
    ]
