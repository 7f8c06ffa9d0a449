"""
Data Models Package

This package contains all Pydantic models used by Smart Ledger.
Records read from or written to a store must conform to these schemas.
"""

from smart_ledger.models.records import (
    ENTITY_SCHEMAS,
    BankBalanceRecord,
    EntityName,
    EntitySchema,
    ExpensesRecord,
    FieldKind,
    FieldSpec,
    LedgerRecord,
    NormalizationError,
    OrdersRecord,
    ReminderRecord,
    SalesRecord,
    describe_invalid_row,
    get_schema,
)
from smart_ledger.models.notification import Notification, Severity
from smart_ledger.models.identity import Identity
from smart_ledger.models.activity import (
    ActivityEvent,
    ActivityEventBuilder,
    ActivityEventType,
    ActivitySeverity,
)

__all__ = [
    # Record models
    "ENTITY_SCHEMAS",
    "BankBalanceRecord",
    "EntityName",
    "EntitySchema",
    "ExpensesRecord",
    "FieldKind",
    "FieldSpec",
    "LedgerRecord",
    "NormalizationError",
    "OrdersRecord",
    "ReminderRecord",
    "SalesRecord",
    "describe_invalid_row",
    "get_schema",
    # Identity
    "Identity",
    # Notifications
    "Notification",
    "Severity",
    # Activity models
    "ActivityEvent",
    "ActivityEventBuilder",
    "ActivityEventType",
    "ActivitySeverity",
]
