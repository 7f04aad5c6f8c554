"""Pydantic models for the finance records read by the notification pipeline.

These rows are owned by the transaction/category/user services; the
pipeline only reads them.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from models.types import CategoryID, TransactionID, TransactionType, UserID


class Transaction(BaseModel):
    """A single income or expense entry."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: TransactionID
    user_id: UserID
    type: TransactionType
    amount: float = Field(..., ge=0)
    date: datetime
    category_id: CategoryID | None = None
    category_name: str = "Uncategorized"
    notes: str | None = None
    tags: list[str] = Field(default_factory=list)


class Category(BaseModel):
    """User-defined category with an optional monthly budget limit."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: CategoryID
    user_id: UserID
    name: str = Field(..., min_length=1)
    budget_limit: float | None = Field(None, ge=0)


class UserProfile(BaseModel):
    """Minimal user record needed to address an email."""

    id: UserID
    name: str = ""
    email: str = Field(..., pattern=r"^[^@]+@[^@]+\.[^@]+$")
    is_active: bool = True
