"""Pydantic models for data validation and type checking."""

from models.finance import Category, Transaction, UserProfile
from models.notification import DeliveryResult, DigestEntry
from models.preferences import (
    AccountEmailSettings,
    BudgetAlertDecision,
    BudgetAlertSettings,
    BudgetThresholds,
    DeliveryStatus,
    MarketingSettings,
    MonthlyReportSettings,
    NotificationPreferences,
    ReportSettings,
    TransactionNotificationSettings,
    WeeklyReportSettings,
)
from models.reports import (
    BudgetSnapshot,
    CategoryTotal,
    MonthlyReport,
    Tip,
    WeeklyReport,
)

__all__ = [
    "Transaction",
    "Category",
    "UserProfile",
    "DeliveryResult",
    "DigestEntry",
    "NotificationPreferences",
    "TransactionNotificationSettings",
    "BudgetAlertSettings",
    "BudgetThresholds",
    "ReportSettings",
    "WeeklyReportSettings",
    "MonthlyReportSettings",
    "AccountEmailSettings",
    "MarketingSettings",
    "DeliveryStatus",
    "BudgetAlertDecision",
    "CategoryTotal",
    "WeeklyReport",
    "MonthlyReport",
    "BudgetSnapshot",
    "Tip",
]
