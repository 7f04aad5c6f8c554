"""
Read access to users, transactions and categories for the notification pipeline.

The pipeline never writes these tables. `FinanceData` is the seam the
notification engine and scheduler depend on; `SupabaseFinanceData` is the
production implementation.
"""

from datetime import datetime
from typing import Any, Optional, Protocol

from models.finance import Category, Transaction, UserProfile
from shared.db import CATEGORIES_TABLE, TRANSACTIONS_TABLE, USERS_TABLE


class FinanceData(Protocol):
    def get_user(self, user_id: str) -> Optional[UserProfile]: ...

    def list_active_users(self) -> list[UserProfile]: ...

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]: ...

    def list_transactions(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        transaction_type: Optional[str] = None,
        category_name: Optional[str] = None,
    ) -> list[Transaction]: ...

    def get_category(self, user_id: str, name: str) -> Optional[Category]: ...

    def list_budgeted_categories(self, user_id: str) -> list[Category]: ...


def _transaction_from_row(row: dict[str, Any]) -> Transaction:
    """Flatten the joined category name into the Transaction model."""
    category = row.get("category") or {}
    return Transaction(
        id=row["id"],
        user_id=row["user_id"],
        type=row["type"],
        amount=row["amount"],
        date=row["date"],
        category_id=row.get("category_id"),
        category_name=category.get("name") or "Uncategorized",
        notes=row.get("notes"),
        tags=row.get("tags") or [],
    )


class SupabaseFinanceData:
    """FinanceData backed by the Supabase `transactions`, `categories` and `user_profiles` tables."""

    TRANSACTION_COLUMNS = "id, user_id, type, amount, date, category_id, notes, tags, category:categories(name)"

    def __init__(self, supabase: Any):
        self.supabase = supabase

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        response = (
            self.supabase.table(USERS_TABLE)
            .select("id, name, email, is_active")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return UserProfile(**response.data[0])

    def list_active_users(self) -> list[UserProfile]:
        response = (
            self.supabase.table(USERS_TABLE)
            .select("id, name, email, is_active")
            .eq("is_active", True)
            .execute()
        )
        return [UserProfile(**row) for row in response.data or []]

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        response = (
            self.supabase.table(TRANSACTIONS_TABLE)
            .select(self.TRANSACTION_COLUMNS)
            .eq("id", transaction_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _transaction_from_row(response.data[0])

    def list_transactions(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        transaction_type: Optional[str] = None,
        category_name: Optional[str] = None,
    ) -> list[Transaction]:
        query = (
            self.supabase.table(TRANSACTIONS_TABLE)
            .select(self.TRANSACTION_COLUMNS)
            .eq("user_id", user_id)
            .gte("date", start.isoformat())
            .lte("date", end.isoformat())
            .order("date", desc=False)
        )
        if transaction_type:
            query = query.eq("type", transaction_type)

        response = query.execute()
        transactions = [_transaction_from_row(row) for row in response.data or []]

        # Category is a joined column, so filter on the flattened name
        if category_name:
            transactions = [t for t in transactions if t.category_name == category_name]
        return transactions

    def get_category(self, user_id: str, name: str) -> Optional[Category]:
        response = (
            self.supabase.table(CATEGORIES_TABLE)
            .select("id, user_id, name, budget_limit")
            .eq("user_id", user_id)
            .eq("name", name)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return Category(**response.data[0])

    def list_budgeted_categories(self, user_id: str) -> list[Category]:
        response = (
            self.supabase.table(CATEGORIES_TABLE)
            .select("id, user_id, name, budget_limit")
            .eq("user_id", user_id)
            .gt("budget_limit", 0)
            .execute()
        )
        return [Category(**row) for row in response.data or []]
