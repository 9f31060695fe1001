"""
models/recurring.py
-------------------
Domain models for recurring obligations (salary, rent, subscriptions)
and the ledger entries they produce when completed.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Union

from utils.errors import ValidationError


# ── Frequency ─────────────────────────────────────────────

@dataclass(frozen=True)
class Daily:
    """Every day."""


@dataclass(frozen=True)
class Weekly:
    """Every seven days."""


@dataclass(frozen=True)
class Monthly:
    """Same day of the month, clamped to short months."""


@dataclass(frozen=True)
class Yearly:
    """Same month and day every year (Feb 29 clamps to Feb 28)."""


@dataclass(frozen=True)
class CustomDayOfMonth:
    """A fixed day of every month, clamped to the month's length."""
    day: int

    def __post_init__(self):
        if isinstance(self.day, bool) or not isinstance(self.day, int) or not 1 <= self.day <= 31:
            raise ValidationError(f"Custom day must be between 1 and 31, got {self.day!r}")


FrequencySpec = Union[Daily, Weekly, Monthly, Yearly, CustomDayOfMonth]

FREQUENCY_NAMES = ("daily", "weekly", "monthly", "yearly", "custom")


def frequency_from_db(name: str, day: Optional[int] = None) -> FrequencySpec:
    """
    Build a FrequencySpec from the persisted (frequency, recurring_day) pair.

    A monthly row that carries a recurring_day is a custom day-of-month
    schedule; 'custom' without a day is rejected.

    Raises:
        ValidationError: Unknown frequency name or bad day.
    """
    name = (name or "").strip().lower()
    match name:
        case "daily":
            return Daily()
        case "weekly":
            return Weekly()
        case "monthly":
            return CustomDayOfMonth(day) if day else Monthly()
        case "yearly":
            return Yearly()
        case "custom":
            if day is None:
                raise ValidationError("Custom frequency requires a day of month")
            return CustomDayOfMonth(day)
    raise ValidationError(f"Unknown frequency: {name!r}")


def frequency_to_db(freq: FrequencySpec) -> tuple[str, Optional[int]]:
    """Inverse of frequency_from_db: returns (frequency, recurring_day)."""
    match freq:
        case Daily():
            return "daily", None
        case Weekly():
            return "weekly", None
        case Monthly():
            return "monthly", None
        case Yearly():
            return "yearly", None
        case CustomDayOfMonth(day=day):
            return "custom", day
    raise ValidationError(f"Unsupported frequency: {freq!r}")


# ── Obligation ────────────────────────────────────────────

@dataclass
class RecurringObligation:
    """
    A transaction the user flagged as recurring.

    Attributes:
        id: Database primary key (None for new records).
        owner_id: Telegram user ID of the owner.
        kind: Either 'expense' or 'income'.
        amount: Amount of every occurrence.
        description: Friendly name (e.g. 'Netflix', 'Rent').
        category: Spending category reference.
        frequency: How often it recurs.
        anchor_due_date: The next unresolved occurrence. Never decreases.
        active: False once deactivated; rows are never deleted.
        currency: ISO currency code (default: EUR).
        created_at: Timestamp when the record was created.
    """
    owner_id: int
    kind: str  # 'expense' | 'income'
    amount: float
    description: str
    frequency: FrequencySpec
    anchor_due_date: date
    category: Optional[str] = None
    active: bool = True
    currency: str = "EUR"
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def __str__(self) -> str:
        status = "✅" if self.active else "❌"
        freq, _ = frequency_to_db(self.frequency)
        return (
            f"{status} {self.description}: {self.amount:.2f} {self.currency} "
            f"({freq}) - Next: {self.anchor_due_date}"
        )


@dataclass
class ActiveScan:
    """
    Result of listing one owner's active obligations.

    Attributes:
        obligations: Rows that converted cleanly.
        unreadable: IDs of rows whose stored schedule could not be parsed.
    """
    obligations: list[RecurringObligation] = field(default_factory=list)
    unreadable: list[int] = field(default_factory=list)


# ── Completion ────────────────────────────────────────────

def is_valid_amount(amount) -> bool:
    """True for a finite, strictly positive number."""
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return False
    return math.isfinite(amount) and amount > 0


@dataclass(frozen=True)
class CompletionOverrides:
    """Values the user changed while completing an occurrence."""
    amount: Optional[float] = None
    description: Optional[str] = None
    resolved_date: Optional[date] = None

    def __post_init__(self):
        if self.amount is not None and not is_valid_amount(self.amount):
            raise ValidationError("Amount must be a positive number.")

    def is_empty(self) -> bool:
        return self.amount is None and self.description is None and self.resolved_date is None


@dataclass(frozen=True)
class RealizedTransaction:
    """
    Immutable ledger entry created when an occurrence is completed.

    The idempotency key is derived from (obligation_id, anchor) so a
    retried completion can never write the same occurrence twice.
    """
    obligation_id: int
    owner_id: int
    kind: str
    amount: float
    description: str
    resolved_date: date
    idempotency_key: str
    category: Optional[str] = None
    currency: str = "EUR"
    id: Optional[int] = field(default=None, compare=False)


def idempotency_key(obligation_id: int, anchor: date) -> str:
    """Key identifying one logical occurrence of an obligation."""
    return f"{obligation_id}:{anchor.isoformat()}"
