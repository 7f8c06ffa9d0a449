"""
Ledger Record Models

The dashboard tracks five independent records per owner. Each one is a
single "latest" row: writes for the same owner overwrite the same row.

This module defines:
1. The pydantic model for each record as it comes back from a store
2. An EntitySchema per record describing its editable fields
3. The pure normalization rules that turn form text into store values

DESIGN DECISION: The five records share one schema abstraction instead
of five hand-written form handlers. Adding a record type means adding a
model and a schema entry, nothing else.
"""

import math
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)


# =============================================================================
# ENUMS
# =============================================================================

class EntityName(str, Enum):
    """
    The tracked records. Values double as table names and REST path segments.
    """
    BANK_BALANCE = "bank_balance"
    EXPENSES = "expenses"
    SALES = "sales"
    ORDERS = "orders"
    REMINDERS = "reminders"


class FieldKind(str, Enum):
    """How a draft field is parsed before it is written."""
    REAL = "real"        # monetary amounts
    INTEGER = "integer"  # counters
    TEXT = "text"
    DATE = "date"        # day precision, YYYY-MM-DD


class NormalizationError(ValueError):
    """A draft value could not be converted to its stored form."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


# =============================================================================
# RECORD MODELS
# =============================================================================

class LedgerRecord(BaseModel):
    """
    Common shape of every stored record.

    The owner key is `user_id` on the hosted Postgres backend and
    `ownerId` on the REST backend; both are accepted.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    owner_id: str = Field(
        ...,
        validation_alias=AliasChoices("owner_id", "user_id", "ownerId"),
        description="Identifier of the actor owning this record"
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        description="Last modification time, used to pick the latest row"
    )

    @field_validator("owner_id", mode="before")
    @classmethod
    def coerce_owner_id(cls, v: Any) -> Any:
        if v is None:
            return v
        return str(v)

    def tracked_values(self) -> dict[str, Any]:
        """The editable fields only (no owner, no timestamps)."""
        return self.model_dump(exclude={"owner_id", "updated_at"})


class BankBalanceRecord(LedgerRecord):
    amount: Optional[float] = None


class ExpensesRecord(LedgerRecord):
    amount: Optional[float] = None
    month: Optional[str] = Field(
        default=None,
        description="Free-text month label, e.g. 'Jan 2025'"
    )


class SalesRecord(LedgerRecord):
    amount: Optional[float] = None


class OrdersRecord(LedgerRecord):
    total_orders: Optional[int] = None
    pending: Optional[int] = None
    completed: Optional[int] = None


class ReminderRecord(LedgerRecord):
    title: Optional[str] = None
    due_date: Optional[str] = Field(
        default=None,
        description="Due date truncated to YYYY-MM-DD"
    )

    @field_validator("due_date", mode="before")
    @classmethod
    def truncate_due_date(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, datetime):
            return v.date().isoformat()
        if isinstance(v, date):
            return v.isoformat()
        return str(v)[:10]


# =============================================================================
# NORMALIZATION
# =============================================================================

def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _label(field: str) -> str:
    return field.replace("_", " ").capitalize()


def normalize_real(field: str, value: Any) -> Optional[float]:
    """Empty → None, otherwise a finite float."""
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        raise NormalizationError(field, f"{_label(field)} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise NormalizationError(field, f"{_label(field)} must be a number")
    if not math.isfinite(number):
        raise NormalizationError(field, f"{_label(field)} must be a finite number")
    return number


def normalize_integer(field: str, value: Any) -> Optional[int]:
    """Empty → None, otherwise an int (fractions truncated toward zero)."""
    if _is_blank(value):
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = normalize_real(field, value)
    return int(number)


def normalize_text(field: str, value: Any) -> Optional[str]:
    """Empty → None, otherwise the text unchanged."""
    if value is None or value == "":
        return None
    return str(value)


def normalize_date(field: str, value: Any) -> Optional[str]:
    """Empty → None, otherwise the day-precision ISO form."""
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()[:10]
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        raise NormalizationError(field, f"{_label(field)} must be a date (YYYY-MM-DD)")


_NORMALIZERS = {
    FieldKind.REAL: normalize_real,
    FieldKind.INTEGER: normalize_integer,
    FieldKind.TEXT: normalize_text,
    FieldKind.DATE: normalize_date,
}


def render_value(kind: FieldKind, value: Any) -> str:
    """Render a stored value as form text."""
    if value is None:
        return ""
    if kind == FieldKind.DATE:
        return str(value)[:10]
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# =============================================================================
# SCHEMAS
# =============================================================================

class FieldSpec(BaseModel):
    """One editable input of a record."""
    model_config = ConfigDict(frozen=True)

    name: str
    label: str
    kind: FieldKind
    placeholder: str = ""

    @property
    def input_type(self) -> str:
        """HTML-style input type used by the view."""
        if self.kind in (FieldKind.REAL, FieldKind.INTEGER):
            return "number"
        if self.kind == FieldKind.DATE:
            return "date"
        return "text"


class EntitySchema(BaseModel):
    """
    Describes one record type: its fields, its model, and its wording.

    All form handling goes through here:
        draft = schema.to_draft(record)       # record → form text
        values = schema.normalize(draft)      # form text → store values
    """
    model_config = ConfigDict(frozen=True)

    entity: EntityName
    title: str = Field(..., description="Section heading")
    noun: str = Field(..., description="Used in messages: '<Noun> saved'")
    fields: tuple[FieldSpec, ...]
    record_model: type[LedgerRecord]

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(f"{self.entity.value} has no field {name!r}")

    @property
    def success_message(self) -> str:
        return f"{self.noun.capitalize()} saved"

    @property
    def failure_message(self) -> str:
        return f"Error saving {self.noun}"

    def empty_draft(self) -> dict[str, str]:
        return {spec.name: "" for spec in self.fields}

    def to_draft(self, record: Optional[LedgerRecord]) -> dict[str, str]:
        """Form text for a record; absence renders the same as all-null."""
        if record is None:
            return self.empty_draft()
        return {
            spec.name: render_value(spec.kind, getattr(record, spec.name, None))
            for spec in self.fields
        }

    def normalize(self, draft: Mapping[str, Any]) -> dict[str, Any]:
        """
        Convert draft values to the full replacement written by an upsert.

        Pure and idempotent: normalizing normalized values is a no-op.
        Raises NormalizationError on unparseable input.
        """
        return {
            spec.name: _NORMALIZERS[spec.kind](spec.name, draft.get(spec.name))
            for spec in self.fields
        }

    def parse_record(self, row: Mapping[str, Any]) -> LedgerRecord:
        """Validate a raw row from a store into this schema's model."""
        return self.record_model.model_validate(dict(row))


ENTITY_SCHEMAS: dict[EntityName, EntitySchema] = {
    EntityName.BANK_BALANCE: EntitySchema(
        entity=EntityName.BANK_BALANCE,
        title="Bank Balance",
        noun="bank balance",
        record_model=BankBalanceRecord,
        fields=(
            FieldSpec(name="amount", label="Amount", kind=FieldKind.REAL,
                      placeholder="Enter your bank balance…"),
        ),
    ),
    EntityName.EXPENSES: EntitySchema(
        entity=EntityName.EXPENSES,
        title="Expenses",
        noun="expenses",
        record_model=ExpensesRecord,
        fields=(
            FieldSpec(name="amount", label="Amount", kind=FieldKind.REAL,
                      placeholder="Enter total expenses…"),
            FieldSpec(name="month", label="Month", kind=FieldKind.TEXT,
                      placeholder="e.g. Jan 2025"),
        ),
    ),
    EntityName.SALES: EntitySchema(
        entity=EntityName.SALES,
        title="Sales",
        noun="sales",
        record_model=SalesRecord,
        fields=(
            FieldSpec(name="amount", label="Amount", kind=FieldKind.REAL,
                      placeholder="Enter total sales…"),
        ),
    ),
    EntityName.ORDERS: EntitySchema(
        entity=EntityName.ORDERS,
        title="Orders",
        noun="orders",
        record_model=OrdersRecord,
        fields=(
            FieldSpec(name="total_orders", label="Total", kind=FieldKind.INTEGER,
                      placeholder="0"),
            FieldSpec(name="pending", label="Pending", kind=FieldKind.INTEGER,
                      placeholder="0"),
            FieldSpec(name="completed", label="Completed", kind=FieldKind.INTEGER,
                      placeholder="0"),
        ),
    ),
    EntityName.REMINDERS: EntitySchema(
        entity=EntityName.REMINDERS,
        title="Reminders",
        noun="reminder",
        record_model=ReminderRecord,
        fields=(
            FieldSpec(name="title", label="Title", kind=FieldKind.TEXT,
                      placeholder="Enter a reminder…"),
            FieldSpec(name="due_date", label="Due date", kind=FieldKind.DATE),
        ),
    ),
}


def get_schema(entity: EntityName | str) -> EntitySchema:
    """Look up a schema by enum member or table name."""
    return ENTITY_SCHEMAS[EntityName(entity)]


def describe_invalid_row(error: ValueError) -> str:
    """One-line summary of a row that failed validation."""
    if isinstance(error, ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
            for item in error.errors()
        )
    return str(error)
