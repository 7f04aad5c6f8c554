"""
Report payload builders.

Pure functions over lists of transactions. Payloads are computed fresh for
every send from the transactions in the requested window.
"""

import calendar
from datetime import datetime
from typing import Iterable, List

from models.finance import Transaction
from models.reports import (
    BudgetSnapshot,
    CategoryTotal,
    MonthlyReport,
    Tip,
    WeeklyReport,
)
from models.types import AlertKind

TOP_WEEKLY_CATEGORIES = 5


def _category_totals(transactions: Iterable[Transaction]) -> List[CategoryTotal]:
    """Sum amount and count per (type, category name), largest amount first."""
    totals: dict[tuple[str, str], CategoryTotal] = {}
    for transaction in transactions:
        key = (transaction.type, transaction.category_name)
        if key not in totals:
            totals[key] = CategoryTotal(name=transaction.category_name, type=transaction.type)
        totals[key].amount += transaction.amount
        totals[key].count += 1

    # Stable sort keeps first-seen order for ties
    return sorted(totals.values(), key=lambda c: c.amount, reverse=True)


def _split_by_type(transactions: List[Transaction]) -> tuple[List[Transaction], List[Transaction]]:
    expenses = [t for t in transactions if t.type == "expense"]
    income = [t for t in transactions if t.type == "income"]
    return expenses, income


def build_weekly_report(
    transactions: List[Transaction], week_start: datetime, week_end: datetime
) -> WeeklyReport:
    """
    Summarize one ISO week of transactions.

    Category ranking and the transaction count cover expenses only; income is
    reported as a single total.
    """
    expenses, income = _split_by_type(transactions)
    total_expenses = sum(t.amount for t in expenses)

    return WeeklyReport(
        week_start=week_start,
        week_end=week_end,
        total_expenses=total_expenses,
        total_income=sum(t.amount for t in income),
        transaction_count=len(expenses),
        top_categories=_category_totals(expenses)[:TOP_WEEKLY_CATEGORIES],
        daily_average=total_expenses / 7,
    )


def build_monthly_report(
    transactions: List[Transaction], month: int, year: int
) -> MonthlyReport:
    """
    Summarize one calendar month: totals, net, category breakdown and top
    expense category.

    The breakdown covers income and expense categories, each marked with its
    type; a name used for both appears once per type.
    """
    expenses, income = _split_by_type(transactions)
    total_expenses = sum(t.amount for t in expenses)
    total_income = sum(t.amount for t in income)
    categories = _category_totals(transactions)
    top = next((c for c in categories if c.type == "expense" and c.amount > 0), None)

    return MonthlyReport(
        month=calendar.month_name[month],
        month_number=month,
        year=year,
        total_expenses=total_expenses,
        total_income=total_income,
        net_income=total_income - total_expenses,
        transaction_count=len(transactions),
        categories=categories,
        top_expense_category=top,
    )


def build_budget_snapshot(
    category: str, limit: float, spent: float, alert_type: AlertKind = "none"
) -> BudgetSnapshot:
    """Budget usage for one category; limit must be positive."""
    return BudgetSnapshot(
        category=category,
        limit=limit,
        spent=spent,
        remaining=max(0.0, limit - spent),
        overspent=max(0.0, spent - limit),
        percentage=spent * 100 / limit,
        alert_type=alert_type,
    )


def build_personalized_tips(transactions: List[Transaction]) -> List[Tip]:
    """
    Derive a few tips from last month's transactions.

    A simple heuristic, not a scoring model: activity count, the largest
    expense category, and whether spending outran income.
    """
    if not transactions:
        return [
            Tip(
                title="Start Tracking",
                content="You didn't record any transactions last month. "
                "Logging even a few purchases a week makes your reports far more useful.",
            )
        ]

    tips = [
        Tip(
            title="Track Your Progress",
            content=f"You made {len(transactions)} transactions last month. "
            "Keep up the good tracking habit!",
        )
    ]

    expenses, income = _split_by_type(transactions)
    categories = _category_totals(expenses)
    if categories:
        top = categories[0]
        tips.append(
            Tip(
                title=f"Watch Your {top.name} Spending",
                content=f"{top.name} was your largest expense category with "
                f"{top.count} transactions. Consider setting a budget limit for it.",
            )
        )

    total_expenses = sum(t.amount for t in expenses)
    total_income = sum(t.amount for t in income)
    if income and total_expenses > total_income:
        tips.append(
            Tip(
                title="Spending Outpaced Income",
                content="Your expenses were higher than your income last month. "
                "Review recurring costs to find something to trim.",
            )
        )

    return tips
