"""Pydantic models for per-user email notification preferences."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from models.types import (
    AlertKind,
    CategoryList,
    EmailFormat,
    NotificationFrequency,
    TimeOfDay,
    UserID,
)

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class TransactionNotificationSettings(BaseModel):
    """When a new transaction should produce an email."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    frequency: NotificationFrequency = "immediate"
    min_amount: float = Field(0, ge=0)
    categories: CategoryList = Field(default_factory=list)  # empty means all


class BudgetThresholds(BaseModel):
    model_config = ConfigDict(extra="forbid")

    warning: float = Field(75, ge=0)
    critical: float = Field(90, ge=0)
    exceeded: bool = True


class BudgetAlertSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    thresholds: BudgetThresholds = Field(default_factory=BudgetThresholds)


class WeeklyReportSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    day_of_week: int = Field(1, ge=1, le=7)  # ISO weekday, 1 = Monday
    time: TimeOfDay = Field("09:00", pattern=TIME_PATTERN)


class MonthlyReportSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    day_of_month: int = Field(1, ge=1, le=31)
    time: TimeOfDay = Field("09:00", pattern=TIME_PATTERN)


class ReportSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    weekly: WeeklyReportSettings = Field(default_factory=WeeklyReportSettings)
    monthly: MonthlyReportSettings = Field(default_factory=MonthlyReportSettings)


class AccountEmailSettings(BaseModel):
    """Transactional account emails (welcome, security, password reset)."""

    model_config = ConfigDict(extra="forbid")

    welcome: bool = True
    security: bool = True
    password_reset: bool = True
    email_verification: bool = True


class MarketingSettings(BaseModel):
    """Promotional email classes."""

    model_config = ConfigDict(extra="forbid")

    newsletter: bool = True
    financial_tips: bool = True
    product_updates: bool = True
    personalized_insights: bool = True


class DeliveryStatus(BaseModel):
    """Delivery bookkeeping maintained by the preference store."""

    last_email_sent: datetime | None = None
    failed_deliveries: int = Field(0, ge=0)
    last_failure: datetime | None = None
    is_blacklisted: bool = False


class NotificationPreferences(BaseModel):
    """Complete preference record for one user."""

    model_config = ConfigDict(validate_assignment=True)

    user_id: UserID
    transaction_notifications: TransactionNotificationSettings = Field(
        default_factory=TransactionNotificationSettings
    )
    budget_alerts: BudgetAlertSettings = Field(default_factory=BudgetAlertSettings)
    reports: ReportSettings = Field(default_factory=ReportSettings)
    account_emails: AccountEmailSettings = Field(default_factory=AccountEmailSettings)
    marketing: MarketingSettings = Field(default_factory=MarketingSettings)
    email_format: EmailFormat = "html"
    timezone: str = "UTC"
    unsubscribe_token: str | None = None
    delivery_status: DeliveryStatus = Field(default_factory=DeliveryStatus)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BudgetAlertDecision(BaseModel):
    """Outcome of evaluating a budget percentage against alert thresholds."""

    kind: AlertKind = "none"
    send: bool = False
