"""Pydantic models for email delivery and the digest buffer."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from models.types import (
    DeliveryErrorKind,
    MessageID,
    TransactionID,
    TransactionType,
    UserID,
)


class DeliveryResult(BaseModel):
    """Outcome of a single send attempt through the email gateway."""

    success: bool
    message_id: MessageID | None = None
    error: str | None = None
    error_kind: DeliveryErrorKind | None = None


class DigestEntry(BaseModel):
    """A transaction waiting to be included in a daily or weekly digest."""

    user_id: UserID
    transaction_id: TransactionID
    frequency: Literal["daily", "weekly"]
    type: TransactionType
    amount: float
    category_name: str
    date: datetime
    queued_at: datetime
