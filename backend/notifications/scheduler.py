"""
Recurring email jobs: weekly and monthly reports, budget checks, newsletters
and transaction digests.

Each trigger has a structured cadence in UTC. In background mode an
APScheduler BackgroundScheduler fires them; tests drive the same triggers
through tick(). Within one firing, users are processed one at a time with a
short pause between them so the mail provider is never hit in bursts.
"""

import threading
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field, model_validator

from models.notification import DeliveryResult
from notifications.dispatch import log_and_drop
from notifications.notification_engine import NotificationEngine
from notifications.preference_store import PreferenceStore
from shared.finance_data import FinanceData
from shared.utils import previous_month, print_summary, to_utc

# Seconds to pause between users, heavier emails get longer pauses
THROTTLE_SECONDS = {
    "weekly_reports": 1.0,
    "monthly_reports": 1.0,
    "budget_check": 0.5,
    "newsletter": 2.0,
    "digest": 0.1,
}

JobStats = Dict[str, int]


class Cadence(BaseModel):
    """
    When a trigger fires, always in UTC.

    kind:
        daily         every day at hour:minute
        weekly        on ISO day_of_week (1 = Monday) at hour:minute
        monthly       on day_of_month at hour:minute (months without that day are skipped)
        hourly_range  every hour from start_hour to end_hour inclusive, at :minute
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["daily", "weekly", "monthly", "hourly_range"]
    hour: int = Field(0, ge=0, le=23)
    minute: int = Field(0, ge=0, le=59)
    day_of_week: Optional[int] = Field(None, ge=1, le=7)
    day_of_month: Optional[int] = Field(None, ge=1, le=31)
    start_hour: Optional[int] = Field(None, ge=0, le=23)
    end_hour: Optional[int] = Field(None, ge=0, le=23)

    @model_validator(mode="after")
    def _check_parameters(self) -> "Cadence":
        if self.kind == "weekly" and self.day_of_week is None:
            raise ValueError("weekly cadence requires day_of_week")
        if self.kind == "monthly" and self.day_of_month is None:
            raise ValueError("monthly cadence requires day_of_month")
        if self.kind == "hourly_range":
            if self.start_hour is None or self.end_hour is None:
                raise ValueError("hourly_range cadence requires start_hour and end_hour")
            if self.start_hour > self.end_hour:
                raise ValueError("start_hour must not be after end_hour")
        return self

    def _at(self, day: date, hour: int) -> datetime:
        return datetime(day.year, day.month, day.day, hour, self.minute, tzinfo=timezone.utc)

    def next_fire(self, after: datetime) -> datetime:
        """First fire time strictly after `after`."""
        after = to_utc(after)
        today = after.date()

        if self.kind == "daily":
            candidate = self._at(today, self.hour)
            return candidate if candidate > after else candidate + timedelta(days=1)

        if self.kind == "weekly":
            days_ahead = (self.day_of_week - after.isoweekday()) % 7
            candidate = self._at(today + timedelta(days=days_ahead), self.hour)
            return candidate if candidate > after else candidate + timedelta(days=7)

        if self.kind == "monthly":
            first = today.replace(day=1)
            for offset in range(0, 49):
                month_start = first + relativedelta(months=offset)
                try:
                    day = month_start.replace(day=self.day_of_month)
                except ValueError:
                    continue
                candidate = self._at(day, self.hour)
                if candidate > after:
                    return candidate
            raise ValueError(f"No valid day {self.day_of_month} found for monthly cadence")

        # hourly_range
        for day in (today, today + timedelta(days=1)):
            for hour in range(self.start_hour, self.end_hour + 1):
                candidate = self._at(day, hour)
                if candidate > after:
                    return candidate
        raise ValueError("hourly_range cadence has an empty hour range")

    def describe(self) -> str:
        clock = f"{self.hour:02d}:{self.minute:02d} UTC"
        if self.kind == "daily":
            return f"daily at {clock}"
        if self.kind == "weekly":
            return f"weekly on ISO day {self.day_of_week} at {clock}"
        if self.kind == "monthly":
            return f"monthly on day {self.day_of_month} at {clock}"
        return f"hourly at :{self.minute:02d} from {self.start_hour:02d}:00 to {self.end_hour:02d}:00 UTC"


class CadenceTrigger(BaseTrigger):
    """APScheduler trigger that fires on a Cadence."""

    def __init__(self, cadence: Cadence):
        self.cadence = cadence

    def get_next_fire_time(self, previous_fire_time, now):
        # Missed fire times collapse into the next one after now
        return self.cadence.next_fire(now)

    def __str__(self):
        return self.cadence.describe()

    def __repr__(self):
        return f"<CadenceTrigger ({self.cadence.describe()})>"


class Trigger:
    """A named cadence bound to a job; next_run is None while unregistered."""

    def __init__(self, name: str, cadence: Cadence, job: Callable[[datetime, bool], Any]):
        self.name = name
        self.cadence = cadence
        self.job = job
        self.next_run: Optional[datetime] = None


class NotificationScheduler:
    """Owns the fixed registry of recurring email triggers and their lifecycle."""

    def __init__(
        self,
        engine: NotificationEngine,
        store: PreferenceStore,
        finance: FinanceData,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.engine = engine
        self.store = store
        self.finance = finance
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.sleep = sleep

        self.is_running = False
        self._lock = threading.RLock()
        self._scheduler: Optional[BackgroundScheduler] = None
        self.triggers: Dict[str, Trigger] = {
            t.name: t
            for t in (
                Trigger("daily_reports", Cadence(kind="daily", hour=9), self.process_daily_reports),
                Trigger("weekly_reports", Cadence(kind="weekly", day_of_week=1, hour=9), self.process_weekly_reports),
                Trigger("monthly_reports", Cadence(kind="monthly", day_of_month=1, hour=9), self.process_monthly_reports),
                Trigger("budget_check", Cadence(kind="hourly_range", start_hour=9, end_hour=17), self.process_budget_checks),
                Trigger("newsletter", Cadence(kind="weekly", day_of_week=5, hour=10), self.process_newsletters),
            )
        }

    def start(self, background: bool = True) -> None:
        """
        Register every trigger and begin firing them.

        Args:
            background: register the triggers with a BackgroundScheduler; with
                False the caller drives firing through tick()
        """
        with self._lock:
            if self.is_running:
                print("⚠️  Scheduler is already running")
                return

            print("Starting email scheduler...")
            now = self.clock()
            for trigger in self.triggers.values():
                trigger.next_run = trigger.cadence.next_fire(now)

            self.is_running = True

            if background:
                self._scheduler = BackgroundScheduler(timezone="UTC")
                for trigger in self.triggers.values():
                    self._scheduler.add_job(
                        self._fire,
                        CadenceTrigger(trigger.cadence),
                        args=[trigger.name],
                        id=trigger.name,
                        name=trigger.name,
                        max_instances=1,
                        coalesce=True,
                    )
                self._scheduler.start()

        print("✓ Email scheduler started")

    def stop(self) -> None:
        """
        Cancel every trigger registration.

        No trigger fires after this returns. A send already handed to the mail
        provider completes, but a batch in progress stops before its next user.
        """
        with self._lock:
            if not self.is_running:
                print("⚠️  Scheduler is not running")
                return

            print("Stopping email scheduler...")
            self.is_running = False
            for trigger in self.triggers.values():
                trigger.next_run = None
            scheduler, self._scheduler = self._scheduler, None

        if scheduler is not None:
            scheduler.remove_all_jobs()
            scheduler.shutdown(wait=False)
        print("✓ Email scheduler stopped")

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "is_running": self.is_running,
                "job_count": len(self.triggers) if self.is_running else 0,
                "jobs": [
                    {
                        "name": t.name,
                        "cadence": t.cadence.describe(),
                        "running": t.next_run is not None,
                        "next_run": t.next_run.isoformat() if t.next_run else None,
                    }
                    for t in self.triggers.values()
                ],
            }

    def tick(self, now: Optional[datetime] = None) -> List[str]:
        """
        Fire every trigger that is due at `now` and reschedule it.

        A trigger that missed several fire times fires once.

        Returns:
            Names of the triggers fired
        """
        with self._lock:
            if not self.is_running:
                return []
            now = now or self.clock()
            due = [
                t for t in self.triggers.values() if t.next_run is not None and t.next_run <= now
            ]
            for trigger in due:
                trigger.next_run = trigger.cadence.next_fire(now)

        fired = []
        for trigger in due:
            if not self.is_running:
                break
            print(f"\n[{now.isoformat()}] Running {trigger.name} job...")
            trigger.job(now, True)
            fired.append(trigger.name)
        return fired

    def _fire(self, name: str) -> None:
        """BackgroundScheduler job: run one trigger unless stop() got there first."""
        with self._lock:
            if not self.is_running:
                return
            trigger = self.triggers[name]
            now = self.clock()
            trigger.next_run = trigger.cadence.next_fire(now)

        print(f"\n[{now.isoformat()}] Running {name} job...")
        try:
            trigger.job(now, True)
        except Exception as e:
            log_and_drop(f"scheduler_{name}", e)

    def _run_batch(
        self,
        job_name: str,
        items: List[Tuple[str, Callable[[], Optional[DeliveryResult]]]],
        throttle: float,
        scheduled: bool,
    ) -> JobStats:
        """Run one action per user, sequentially, isolating each user's failure."""
        stats = {"sent": 0, "failed": 0, "skipped": 0}

        for index, (user_id, action) in enumerate(items):
            if scheduled and not self.is_running:
                print(f"  ⊘ Scheduler stopped, abandoning {len(items) - index} remaining user(s)")
                break

            try:
                result = action()
            except Exception as e:
                log_and_drop(f"scheduler_{job_name}", e, {"user_id": user_id})
                stats["failed"] += 1
            else:
                if result is None:
                    stats["skipped"] += 1
                elif result.success:
                    stats["sent"] += 1
                else:
                    stats["failed"] += 1

            if index < len(items) - 1:
                self.sleep(throttle)

        print_summary(job_name.replace("_", " ").title(), stats)
        return stats

    def _flush_digests(self, frequency: str, scheduled: bool) -> JobStats:
        """
        Send every buffered digest for a frequency.

        Entries stay queued when the scheduler has stopped, and entries for
        users a stopped batch never reached are put back.
        """
        if scheduled and not self.is_running:
            print(f"  ⊘ Scheduler stopped, keeping {frequency} digests queued")
            return {"sent": 0, "failed": 0, "skipped": 0}

        pending = self.engine.drain_digests(frequency)
        print(f"Found {frequency} digests for {len(pending)} users")
        reached = set()

        def send(user_id, entries):
            reached.add(user_id)
            return self.engine.send_digest(user_id, frequency, entries)

        items = [
            (user_id, lambda uid=user_id, e=entries: send(uid, e))
            for user_id, entries in pending.items()
        ]
        stats = self._run_batch(f"{frequency}_digest", items, THROTTLE_SECONDS["digest"], scheduled)

        for user_id, entries in pending.items():
            if user_id not in reached:
                for entry in entries:
                    self.engine.digest_queue.enqueue(entry)
        return stats

    def process_daily_reports(self, now: Optional[datetime] = None, scheduled: bool = False) -> JobStats:
        """Send daily transaction digests."""
        try:
            return self._flush_digests("daily", scheduled)
        except Exception as e:
            log_and_drop("scheduler_daily_reports", e)
            return {"sent": 0, "failed": 0, "skipped": 0}

    def process_weekly_reports(self, now: Optional[datetime] = None, scheduled: bool = False) -> JobStats:
        """
        Send weekly reports to users whose preferred weekday is today, then
        flush weekly transaction digests.

        The report covers the ISO week that ended yesterday, so a Monday run
        summarizes the full previous week.
        """
        now = now or self.clock()
        stats = {"sent": 0, "failed": 0, "skipped": 0}
        try:
            today = now.isoweekday()
            reference = now.date() - timedelta(days=1)
            preferences = self.store.list_with_weekly_reports()
            print(f"Found {len(preferences)} users with weekly reports enabled")

            items = [
                (p.user_id, lambda uid=p.user_id: self.engine.generate_weekly_report(uid, reference))
                for p in preferences
                if p.reports.weekly.day_of_week == today
            ]
            stats = self._run_batch("weekly_reports", items, THROTTLE_SECONDS["weekly_reports"], scheduled)
        except Exception as e:
            log_and_drop("scheduler_weekly_reports", e)

        try:
            self._flush_digests("weekly", scheduled)
        except Exception as e:
            log_and_drop("scheduler_weekly_digest", e)
        return stats

    def process_monthly_reports(self, now: Optional[datetime] = None, scheduled: bool = False) -> JobStats:
        """Send last month's report to users whose preferred day of month is today."""
        now = now or self.clock()
        try:
            month, year = previous_month(now.date())
            preferences = self.store.list_with_monthly_reports()
            print(f"Found {len(preferences)} users with monthly reports enabled")

            items = [
                (p.user_id, lambda uid=p.user_id: self.engine.generate_monthly_report(uid, month, year))
                for p in preferences
                if p.reports.monthly.day_of_month == now.day
            ]
            return self._run_batch("monthly_reports", items, THROTTLE_SECONDS["monthly_reports"], scheduled)
        except Exception as e:
            log_and_drop("scheduler_monthly_reports", e)
            return {"sent": 0, "failed": 0, "skipped": 0}

    def process_budget_checks(self, now: Optional[datetime] = None, scheduled: bool = False) -> JobStats:
        """Run a budget alert check for every budgeted category of every active user."""
        try:
            users = self.finance.list_active_users()
            print(f"Checking budgets for {len(users)} active users")
            items = [
                (user.id, lambda uid=user.id: self._check_user_budgets(uid)) for user in users
            ]
            return self._run_batch("budget_check", items, THROTTLE_SECONDS["budget_check"], scheduled)
        except Exception as e:
            log_and_drop("scheduler_budget_check", e)
            return {"sent": 0, "failed": 0, "skipped": 0}

    def _check_user_budgets(self, user_id: str) -> Optional[DeliveryResult]:
        """Check each budgeted category; report the first failure, else the last send."""
        outcome: Optional[DeliveryResult] = None
        for category in self.finance.list_budgeted_categories(user_id):
            result = self.engine.check_budget_alert(user_id, category.name)
            if result is not None and (outcome is None or outcome.success):
                outcome = result
        return outcome

    def process_newsletters(self, now: Optional[datetime] = None, scheduled: bool = False) -> JobStats:
        """Send personalized tips to every newsletter subscriber."""
        try:
            preferences = self.store.list_with_newsletter()
            print(f"Found {len(preferences)} users subscribed to newsletter")
            items = [
                (p.user_id, lambda uid=p.user_id: self.engine.send_personalized_tips(uid))
                for p in preferences
            ]
            return self._run_batch("newsletter", items, THROTTLE_SECONDS["newsletter"], scheduled)
        except Exception as e:
            log_and_drop("scheduler_newsletter", e)
            return {"sent": 0, "failed": 0, "skipped": 0}

    def trigger_daily_reports(self) -> JobStats:
        print("Manually triggering daily reports...")
        return self.process_daily_reports(self.clock())

    def trigger_weekly_reports(self) -> JobStats:
        print("Manually triggering weekly reports...")
        return self.process_weekly_reports(self.clock())

    def trigger_monthly_reports(self) -> JobStats:
        print("Manually triggering monthly reports...")
        return self.process_monthly_reports(self.clock())

    def trigger_budget_checks(self) -> JobStats:
        print("Manually triggering budget checks...")
        return self.process_budget_checks(self.clock())

    def trigger_newsletters(self) -> JobStats:
        print("Manually triggering newsletters...")
        return self.process_newsletters(self.clock())
