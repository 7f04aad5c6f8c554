"""
Per-user email preferences, unsubscribe identity and delivery status.

The store owns every read and write of the `email_preferences` table. Records
are created lazily with default settings the first time they are needed, and
carry an unsubscribe token that is assigned once and never replaced.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol

from pydantic import ValidationError

from models.finance import Transaction
from models.preferences import BudgetAlertDecision, NotificationPreferences
from notifications.errors import PreferenceValidationError, UnknownUnsubscribeTypeError
from notifications.unsubscribe_tokens import (
    generate_unsubscribe_token,
    validate_unsubscribe_token,
)
from shared.db import PREFERENCES_TABLE

# Consecutive failed sends before a user is blacklisted
BLACKLIST_THRESHOLD = 5

UPDATABLE_GROUPS = (
    "transaction_notifications",
    "budget_alerts",
    "reports",
    "account_emails",
    "marketing",
    "email_format",
    "timezone",
)

UNSUBSCRIBE_TYPES = ("transactions", "budgets", "reports", "newsletter", "tips")


class PreferenceBackend(Protocol):
    """Storage for serialized preference records (JSON-compatible dicts)."""

    def fetch(self, user_id: str) -> Optional[dict[str, Any]]: ...

    def fetch_by_token(self, token: str) -> Optional[dict[str, Any]]: ...

    def insert_if_absent(self, record: dict[str, Any]) -> dict[str, Any]: ...

    def save(self, record: dict[str, Any]) -> None: ...

    def list_with_flag(self, path: str) -> list[dict[str, Any]]: ...


class SupabasePreferenceBackend:
    """
    Preference records in the Supabase `email_preferences` table.

    Columns: user_id (unique), unsubscribe_token (unique), preferences (jsonb
    holding the whole serialized record), updated_at.
    """

    def __init__(self, supabase: Any):
        self.supabase = supabase

    def _first(self, response: Any) -> Optional[dict[str, Any]]:
        if not response.data:
            return None
        return response.data[0]["preferences"]

    def fetch(self, user_id: str) -> Optional[dict[str, Any]]:
        response = (
            self.supabase.table(PREFERENCES_TABLE)
            .select("preferences")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return self._first(response)

    def fetch_by_token(self, token: str) -> Optional[dict[str, Any]]:
        response = (
            self.supabase.table(PREFERENCES_TABLE)
            .select("preferences")
            .eq("unsubscribe_token", token)
            .limit(1)
            .execute()
        )
        return self._first(response)

    def insert_if_absent(self, record: dict[str, Any]) -> dict[str, Any]:
        # A concurrent creator may win; re-read so its token is the one kept
        self.supabase.table(PREFERENCES_TABLE).upsert(
            self._row(record), on_conflict="user_id", ignore_duplicates=True
        ).execute()
        return self.fetch(record["user_id"]) or record

    def save(self, record: dict[str, Any]) -> None:
        row = self._row(record)
        self.supabase.table(PREFERENCES_TABLE).update(
            {"preferences": row["preferences"], "updated_at": row["updated_at"]}
        ).eq("user_id", record["user_id"]).execute()

    def list_with_flag(self, path: str) -> list[dict[str, Any]]:
        # "reports.weekly.enabled" -> preferences->reports->weekly->>enabled
        *parents, leaf = path.split(".")
        column = "->".join(["preferences", *parents]) + f"->>{leaf}"
        response = (
            self.supabase.table(PREFERENCES_TABLE)
            .select("preferences")
            .eq(column, "true")
            .execute()
        )
        return [row["preferences"] for row in response.data or []]

    @staticmethod
    def _row(record: dict[str, Any]) -> dict[str, Any]:
        return {
            "user_id": record["user_id"],
            "unsubscribe_token": record["unsubscribe_token"],
            "preferences": record,
            "updated_at": record.get("updated_at"),
        }


def _deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Merge patch into a copy of base; nested dicts merge, everything else replaces."""
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def should_send_transaction_notification(
    prefs: NotificationPreferences, transaction: Transaction
) -> bool:
    """
    Decide whether a transaction passes the user's notification filters.

    Disabled settings, amounts below min_amount, and categories outside a
    non-empty category list all suppress the notification.
    """
    settings = prefs.transaction_notifications
    if not settings.enabled:
        return False
    if transaction.amount < settings.min_amount:
        return False
    if settings.categories and transaction.category_name not in settings.categories:
        return False
    return True


def should_send_budget_alert(
    prefs: NotificationPreferences, percentage: float
) -> BudgetAlertDecision:
    """
    Classify a budget usage percentage into exactly one alert level.

    Levels are checked from most to least severe. With `exceeded` disabled a
    percentage of 100+ falls through to critical.
    """
    if not prefs.budget_alerts.enabled:
        return BudgetAlertDecision(kind="none", send=False)

    thresholds = prefs.budget_alerts.thresholds
    if percentage >= 100 and thresholds.exceeded:
        return BudgetAlertDecision(kind="exceeded", send=True)
    if percentage >= thresholds.critical:
        return BudgetAlertDecision(kind="critical", send=True)
    if percentage >= thresholds.warning:
        return BudgetAlertDecision(kind="warning", send=True)
    return BudgetAlertDecision(kind="none", send=False)


class PreferenceStore:
    """Reads and writes NotificationPreferences through a PreferenceBackend."""

    def __init__(
        self,
        backend: PreferenceBackend,
        clock: Callable[[], datetime] | None = None,
    ):
        self.backend = backend
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # Policy checks are plain functions; exposed here for callers holding a store
    should_send_transaction_notification = staticmethod(should_send_transaction_notification)
    should_send_budget_alert = staticmethod(should_send_budget_alert)

    def _save(self, prefs: NotificationPreferences) -> NotificationPreferences:
        prefs.updated_at = self.clock()
        self.backend.save(prefs.model_dump(mode="json"))
        return prefs

    def get(self, user_id: str) -> Optional[NotificationPreferences]:
        record = self.backend.fetch(user_id)
        return NotificationPreferences(**record) if record else None

    def get_or_create(self, user_id: str) -> NotificationPreferences:
        """Return the user's preferences, creating the default record on first access."""
        existing = self.get(user_id)
        if existing:
            return existing

        now = self.clock()
        prefs = NotificationPreferences(
            user_id=user_id,
            unsubscribe_token=generate_unsubscribe_token(user_id),
            created_at=now,
            updated_at=now,
        )
        stored = self.backend.insert_if_absent(prefs.model_dump(mode="json"))
        return NotificationPreferences(**stored)

    def update(self, user_id: str, partial: dict[str, Any]) -> NotificationPreferences:
        """
        Merge the provided top-level groups into the user's preferences.

        Groups not present in `partial` keep their stored values. Within a
        group, nested settings are merged key by key.

        Raises:
            PreferenceValidationError: unknown group or invalid merged values
        """
        unknown = sorted(set(partial) - set(UPDATABLE_GROUPS))
        if unknown:
            raise PreferenceValidationError(
                f"Cannot update preference group(s): {', '.join(unknown)}"
            )

        prefs = self.get_or_create(user_id)
        current = prefs.model_dump(mode="json")
        changes = {key: value for key, value in partial.items() if value is not None}

        try:
            merged = NotificationPreferences(**_deep_merge(current, changes))
        except ValidationError as e:
            raise PreferenceValidationError(str(e)) from e

        # Identity and delivery bookkeeping are never caller-writable
        merged.unsubscribe_token = prefs.unsubscribe_token
        merged.delivery_status = prefs.delivery_status
        return self._save(merged)

    def find_by_unsubscribe_token(self, token: str) -> Optional[NotificationPreferences]:
        if validate_unsubscribe_token(token) is None:
            return None
        record = self.backend.fetch_by_token(token)
        return NotificationPreferences(**record) if record else None

    def unsubscribe_all(self, token: str) -> bool:
        """Turn off every notification and marketing class. Account emails stay on."""
        prefs = self.find_by_unsubscribe_token(token)
        if not prefs:
            return False

        prefs.transaction_notifications.enabled = False
        prefs.budget_alerts.enabled = False
        prefs.reports.weekly.enabled = False
        prefs.reports.monthly.enabled = False
        prefs.marketing.newsletter = False
        prefs.marketing.financial_tips = False
        prefs.marketing.product_updates = False
        prefs.marketing.personalized_insights = False
        self._save(prefs)
        return True

    def unsubscribe_one(self, token: str, kind: str) -> bool:
        """
        Turn off a single email class.

        Raises:
            UnknownUnsubscribeTypeError: kind is not one of UNSUBSCRIBE_TYPES
        """
        if kind not in UNSUBSCRIBE_TYPES:
            raise UnknownUnsubscribeTypeError(kind)

        prefs = self.find_by_unsubscribe_token(token)
        if not prefs:
            return False

        if kind == "transactions":
            prefs.transaction_notifications.enabled = False
        elif kind == "budgets":
            prefs.budget_alerts.enabled = False
        elif kind == "reports":
            prefs.reports.weekly.enabled = False
            prefs.reports.monthly.enabled = False
        elif kind == "newsletter":
            prefs.marketing.newsletter = False
        elif kind == "tips":
            prefs.marketing.financial_tips = False
            prefs.marketing.personalized_insights = False
        self._save(prefs)
        return True

    def get_delivery_stats(self, user_id: str) -> dict[str, Any]:
        prefs = self.get(user_id)
        if not prefs:
            return {
                "last_email_sent": None,
                "failed_deliveries": 0,
                "last_failure": None,
                "is_blacklisted": False,
            }
        return prefs.delivery_status.model_dump()

    def record_delivery_outcome(
        self, user_id: str, success: bool
    ) -> Optional[NotificationPreferences]:
        """
        Update delivery bookkeeping after a send attempt.

        Success clears the failure counter but leaves an existing blacklist in
        place; only reset_blacklist lifts it.
        """
        prefs = self.get(user_id)
        if not prefs:
            return None

        status = prefs.delivery_status
        now = self.clock()
        if success:
            status.last_email_sent = now
            status.failed_deliveries = 0
        else:
            status.failed_deliveries += 1
            status.last_failure = now
            if status.failed_deliveries >= BLACKLIST_THRESHOLD:
                status.is_blacklisted = True
        return self._save(prefs)

    def reset_blacklist(self, user_id: str) -> Optional[NotificationPreferences]:
        prefs = self.get(user_id)
        if not prefs:
            return None

        prefs.delivery_status.is_blacklisted = False
        prefs.delivery_status.failed_deliveries = 0
        prefs.delivery_status.last_failure = None
        return self._save(prefs)

    def list_with_weekly_reports(self) -> list[NotificationPreferences]:
        return self._list_with_flag("reports.weekly.enabled")

    def list_with_monthly_reports(self) -> list[NotificationPreferences]:
        return self._list_with_flag("reports.monthly.enabled")

    def list_with_newsletter(self) -> list[NotificationPreferences]:
        return self._list_with_flag("marketing.newsletter")

    def _list_with_flag(self, path: str) -> list[NotificationPreferences]:
        return [NotificationPreferences(**r) for r in self.backend.list_with_flag(path)]
