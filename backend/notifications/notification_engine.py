"""
Domain-event handlers that decide whether to send an email and send it.

Every public entry point runs under the log-and-drop policy: a failure to
notify is logged and the method returns None, so the triggering operation
(transaction write, budget check, scheduled job) is never affected.
"""

import os
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from models.finance import Transaction, UserProfile
from models.notification import DeliveryResult, DigestEntry
from models.preferences import NotificationPreferences
from notifications.digest_queue import DigestQueue
from notifications.dispatch import guarded
from notifications.email_sender import EmailGateway
from notifications.preference_store import (
    PreferenceStore,
    should_send_budget_alert,
    should_send_transaction_notification,
)
from notifications.reports import (
    build_budget_snapshot,
    build_monthly_report,
    build_personalized_tips,
    build_weekly_report,
)
from shared.finance_data import FinanceData
from shared.utils import iso_week_window, month_window, previous_month


class NotificationEngine:
    """Turns transactions, budgets and report schedules into emails."""

    def __init__(
        self,
        store: PreferenceStore,
        gateway: EmailGateway,
        finance: FinanceData,
        digest_queue: Optional[DigestQueue] = None,
        clock: Optional[Callable[[], datetime]] = None,
        frontend_base_url: Optional[str] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.finance = finance
        self.digest_queue = digest_queue or DigestQueue()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.frontend_base_url = (
            frontend_base_url or os.getenv("FRONTEND_BASE_URL", "http://localhost:3000")
        ).rstrip("/")

    def _load(self, user_id: str) -> tuple[Optional[UserProfile], Optional[NotificationPreferences]]:
        user = self.finance.get_user(user_id)
        if not user:
            print(f"  ⚠️  User {user_id} not found, skipping")
            return None, None
        return user, self.store.get_or_create(user.id)

    def _unsubscribe_url(self, prefs: NotificationPreferences) -> str:
        return f"{self.frontend_base_url}/unsubscribe?token={prefs.unsubscribe_token}"

    def _deliver(
        self,
        user: UserProfile,
        prefs: NotificationPreferences,
        email_type: str,
        subject: str,
        context: Dict[str, Any],
        dashboard_path: str = "/dashboard",
        unsubscribable: bool = True,
    ) -> Optional[DeliveryResult]:
        """Send one templated email and record the outcome. Blacklisted users are skipped."""
        if prefs.delivery_status.is_blacklisted:
            print(f"  ⊘ User {user.id} is blacklisted after repeated failures, skipping {email_type}")
            return None

        full_context = {
            "name": user.name,
            "email": user.email,
            "dashboard_url": f"{self.frontend_base_url}{dashboard_path}",
            "preferences_url": f"{self.frontend_base_url}/settings/notifications",
            **context,
        }
        headers = None
        if unsubscribable:
            unsubscribe_url = self._unsubscribe_url(prefs)
            full_context["unsubscribe_url"] = unsubscribe_url
            headers = {"List-Unsubscribe": f"<{unsubscribe_url}>"}

        result = self.gateway.send(
            user.email,
            subject,
            email_type,
            full_context,
            text_only=prefs.email_format == "text",
            headers=headers,
        )
        self.log_email_delivery(user.id, email_type, result)
        return result

    @guarded("delivery_log")
    def log_email_delivery(self, user_id: str, email_type: str, result: DeliveryResult) -> None:
        # Only transport failures count toward the blacklist
        if result.error_kind == "configuration":
            return
        self.store.record_delivery_outcome(user_id, result.success)

    @guarded("transaction_notification")
    def on_transaction_created(self, transaction_id: str) -> Optional[DeliveryResult]:
        """
        Handle a newly written transaction.

        Immediate subscribers get an email now; daily and weekly subscribers
        get the transaction buffered for their next digest.
        """
        transaction = self.finance.get_transaction(transaction_id)
        if not transaction:
            print(f"  ⚠️  Transaction {transaction_id} not found, skipping notification")
            return None

        user, prefs = self._load(transaction.user_id)
        if not user or not prefs:
            return None

        if not should_send_transaction_notification(prefs, transaction):
            return None

        frequency = prefs.transaction_notifications.frequency
        if frequency == "immediate":
            return self._send_transaction_notification(user, prefs, transaction)
        if frequency in ("daily", "weekly"):
            self.digest_queue.enqueue(
                DigestEntry(
                    user_id=user.id,
                    transaction_id=transaction.id,
                    frequency=frequency,
                    type=transaction.type,
                    amount=transaction.amount,
                    category_name=transaction.category_name,
                    date=transaction.date,
                    queued_at=self.clock(),
                )
            )
        return None

    def _send_transaction_notification(
        self, user: UserProfile, prefs: NotificationPreferences, transaction: Transaction
    ) -> Optional[DeliveryResult]:
        return self._deliver(
            user,
            prefs,
            "transaction-notification",
            f"Transaction {transaction.type}: {transaction.category_name}",
            {"transaction": transaction.model_dump()},
        )

    def drain_digests(self, frequency: str) -> Dict[str, List[DigestEntry]]:
        return self.digest_queue.drain(frequency)

    @guarded("transaction_digest")
    def send_digest(
        self, user_id: str, frequency: str, entries: List[DigestEntry]
    ) -> Optional[DeliveryResult]:
        """
        Send one digest email covering every buffered transaction.

        Entries are dropped if the user has since turned transaction
        notifications off or moved to another frequency.
        """
        if not entries:
            return None

        user, prefs = self._load(user_id)
        if not user or not prefs:
            return None

        settings = prefs.transaction_notifications
        if not settings.enabled or settings.frequency != frequency:
            return None

        ordered = sorted(entries, key=lambda e: e.date)
        return self._deliver(
            user,
            prefs,
            "transaction-digest",
            f"Your {frequency.capitalize()} Transaction Digest ({len(ordered)} transactions)",
            {
                "frequency": frequency,
                "entries": [e.model_dump() for e in ordered],
                "total_expenses": sum(e.amount for e in ordered if e.type == "expense"),
                "total_income": sum(e.amount for e in ordered if e.type == "income"),
            },
        )

    @guarded("budget_check")
    def check_budget_alert(self, user_id: str, category_name: str) -> Optional[DeliveryResult]:
        """Compare this month's spend in a category with its limit and alert if a threshold is crossed."""
        user, prefs = self._load(user_id)
        if not user or not prefs or not prefs.budget_alerts.enabled:
            return None

        now = self.clock()
        start, end = month_window(now.month, now.year)
        expenses = self.finance.list_transactions(
            user.id, start, end, transaction_type="expense", category_name=category_name
        )
        spent = sum(t.amount for t in expenses)

        category = self.finance.get_category(user.id, category_name)
        if not category or not category.budget_limit:
            return None

        limit = category.budget_limit
        percentage = spent * 100 / limit
        decision = should_send_budget_alert(prefs, percentage)
        if not decision.send:
            return None

        budget = build_budget_snapshot(category_name, limit, spent, decision.kind)
        return self._deliver(
            user,
            prefs,
            "budget-alert",
            f"Budget Alert: {category_name} ({round(percentage)}% used)",
            {
                "budget": budget.model_dump(),
                "percentage": percentage,
                "alert_type": decision.kind,
            },
            dashboard_path="/dashboard/budgets",
        )

    # Name used by the transaction controller's post-write hook
    check_budget_alerts = check_budget_alert

    @guarded("weekly_report")
    def generate_weekly_report(
        self, user_id: str, reference_date: Optional[date] = None
    ) -> Optional[DeliveryResult]:
        """Send the summary of the ISO week (Monday to Sunday) containing reference_date."""
        user, prefs = self._load(user_id)
        if not user or not prefs or not prefs.reports.weekly.enabled:
            return None

        reference = reference_date or self.clock().date()
        start, end = iso_week_window(reference)
        transactions = self.finance.list_transactions(user.id, start, end)
        report = build_weekly_report(transactions, start, end)

        return self._deliver(
            user,
            prefs,
            "weekly-report",
            f"Your Weekly Expense Summary - {start:%b %d} to {end:%b %d, %Y}",
            {"report": report.model_dump()},
        )

    @guarded("monthly_report")
    def generate_monthly_report(
        self, user_id: str, month: int, year: int
    ) -> Optional[DeliveryResult]:
        user, prefs = self._load(user_id)
        if not user or not prefs or not prefs.reports.monthly.enabled:
            return None

        start, end = month_window(month, year)
        transactions = self.finance.list_transactions(user.id, start, end)
        report = build_monthly_report(transactions, month, year)

        return self._deliver(
            user,
            prefs,
            "monthly-report",
            f"Your Monthly Expense Report - {report.month} {report.year}",
            {"report": report.model_dump()},
            dashboard_path="/dashboard/reports",
        )

    @guarded("personalized_tips")
    def send_personalized_tips(self, user_id: str) -> Optional[DeliveryResult]:
        """Send tips derived from the previous calendar month's transactions."""
        user, prefs = self._load(user_id)
        if not user or not prefs or not prefs.marketing.personalized_insights:
            return None

        month, year = previous_month(self.clock().date())
        start, end = month_window(month, year)
        tips = build_personalized_tips(self.finance.list_transactions(user.id, start, end))

        newsletter = {
            "subject": "Your Personalized Financial Tips",
            "tips": [tip.model_dump() for tip in tips],
            "type": "personalized-tips",
        }
        return self._deliver(
            user, prefs, "newsletter", newsletter["subject"], {"newsletter": newsletter}
        )

    @guarded("welcome_email")
    def send_welcome_email(self, user_id: str) -> Optional[DeliveryResult]:
        user, prefs = self._load(user_id)
        if not user or not prefs or not prefs.account_emails.welcome:
            return None

        return self._deliver(
            user,
            prefs,
            "welcome",
            "Welcome to EXTrace - Your Financial Journey Begins!",
            {"support_url": f"{self.frontend_base_url}/support"},
            unsubscribable=False,
        )

    @guarded("password_reset_email")
    def send_password_reset_email(self, user_id: str, reset_token: str) -> Optional[DeliveryResult]:
        user, prefs = self._load(user_id)
        if not user or not prefs or not prefs.account_emails.password_reset:
            return None

        return self._deliver(
            user,
            prefs,
            "password-reset",
            "Reset Your EXTrace Password",
            {
                "reset_url": f"{self.frontend_base_url}/auth/reset-password?token={reset_token}",
                "expiry_time": "1 hour",
            },
            unsubscribable=False,
        )

    @guarded("email_verification")
    def send_email_verification(
        self, user_id: str, verification_token: str
    ) -> Optional[DeliveryResult]:
        user, prefs = self._load(user_id)
        if not user or not prefs or not prefs.account_emails.email_verification:
            return None

        return self._deliver(
            user,
            prefs,
            "email-verification",
            "Verify Your EXTrace Account",
            {
                "verification_url": f"{self.frontend_base_url}/auth/verify-email?token={verification_token}"
            },
            unsubscribable=False,
        )
