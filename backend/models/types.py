"""Shared type definitions for type checking.

Uses NewType for IDs to provide compile-time type safety - prevents mixing
different ID types (e.g., passing UserID where TransactionID expected).

Uses TypeAlias for simple structural types and Literal for closed value sets.
"""

from typing import Literal, NewType, TypeAlias

# ID types using NewType for type safety
UserID = NewType("UserID", str)
TransactionID = NewType("TransactionID", str)
CategoryID = NewType("CategoryID", str)

# Structural aliases
CategoryList: TypeAlias = list[str]
TimeOfDay: TypeAlias = str  # HH:MM, 24-hour
MessageID: TypeAlias = str  # Resend email id

# Closed value sets
TransactionType = Literal["income", "expense"]
NotificationFrequency = Literal["immediate", "daily", "weekly", "never"]
EmailFormat = Literal["html", "text"]
AlertKind = Literal["none", "warning", "critical", "exceeded"]
DeliveryErrorKind = Literal["configuration", "transport"]
UnsubscribeType = Literal["transactions", "budgets", "reports", "newsletter", "tips"]
