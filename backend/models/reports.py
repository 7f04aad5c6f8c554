"""Pydantic models for report payloads.

Payloads are computed fresh for every send and never persisted.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from models.types import AlertKind, TransactionType


class CategoryTotal(BaseModel):
    name: str
    type: TransactionType = "expense"
    amount: float = 0.0
    count: int = 0


class WeeklyReport(BaseModel):
    """Expense summary for one ISO week."""

    week_start: datetime
    week_end: datetime
    total_expenses: float = 0.0
    total_income: float = 0.0
    transaction_count: int = 0
    top_categories: list[CategoryTotal] = Field(default_factory=list)
    daily_average: float = 0.0


class MonthlyReport(BaseModel):
    """Income and expense summary for one calendar month."""

    month: str
    month_number: int = Field(..., ge=1, le=12)
    year: int
    total_expenses: float = 0.0
    total_income: float = 0.0
    net_income: float = 0.0
    transaction_count: int = 0
    categories: list[CategoryTotal] = Field(default_factory=list)
    top_expense_category: CategoryTotal | None = None


class BudgetSnapshot(BaseModel):
    """Current-month spend for one category against its limit."""

    category: str
    limit: float
    spent: float
    remaining: float
    overspent: float
    percentage: float
    alert_type: AlertKind = "none"


class Tip(BaseModel):
    title: str
    content: str
