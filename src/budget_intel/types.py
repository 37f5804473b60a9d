# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional
from uuid import uuid4

from pydantic import AfterValidator, BaseModel, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _new_id() -> str:
    return str(uuid4())


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Naive datetimes are read as UTC so comparisons never mix naive and aware.
UtcDatetime = Annotated[datetime, AfterValidator(_ensure_aware)]


# ─── Transaction ──────────────────────────────────────────────────────────────

TransactionType = Literal["expense", "income", "saved", "credit"]


class Transaction(BaseModel):
    """A ledger entry. ``created_at`` decides which month it belongs to."""

    id: str = Field(default_factory=_new_id)
    type: TransactionType
    amount: float = Field(..., ge=0)
    category: Optional[str] = None
    credit_product_id: Optional[str] = None
    paid_by_credit_product_id: Optional[str] = None
    goal_id: Optional[str] = None
    recurring_transaction_id: Optional[str] = None
    created_at: UtcDatetime = Field(default_factory=_utcnow)
    note: Optional[str] = None


# ─── Recurring transactions ───────────────────────────────────────────────────

Frequency = Literal["daily", "weekly", "biweekly", "monthly", "yearly"]
RecurringStatus = Literal["active", "paused", "completed"]


class RecurringTransaction(BaseModel):
    """A template that periodically materializes concrete transactions."""

    id: str
    name: str
    type: TransactionType
    recurring_type: str
    amount: float
    category: Optional[str] = None
    frequency: Frequency
    start_date: UtcDatetime
    end_date: Optional[UtcDatetime] = None
    next_due_date: UtcDatetime
    status: RecurringStatus = "active"
    credit_product_id: Optional[str] = None
    paid_by_credit_product_id: Optional[str] = None
    goal_id: Optional[str] = None
    created_at: UtcDatetime = Field(default_factory=_utcnow)
    updated_at: UtcDatetime = Field(default_factory=_utcnow)
    note: Optional[str] = None


class RecurringTransactionInput(BaseModel):
    """Input model for creating a recurring transaction definition."""

    name: str = Field(..., min_length=1)
    type: TransactionType
    recurring_type: str = Field(default="custom", min_length=1)
    amount: float = Field(..., gt=0, description="Amount materialized on every occurrence")
    category: Optional[str] = None
    frequency: Frequency
    start_date: UtcDatetime
    end_date: Optional[UtcDatetime] = None
    credit_product_id: Optional[str] = None
    paid_by_credit_product_id: Optional[str] = None
    goal_id: Optional[str] = None
    note: Optional[str] = None

    @model_validator(mode="after")
    def end_not_before_start(self) -> RecurringTransactionInput:
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class RecurringTransactionUpdate(BaseModel):
    """Partial update for a recurring definition. Unset fields are left alone."""

    name: Optional[str] = Field(default=None, min_length=1)
    amount: Optional[float] = Field(default=None, gt=0)
    category: Optional[str] = None
    frequency: Optional[Frequency] = None
    start_date: Optional[UtcDatetime] = None
    end_date: Optional[UtcDatetime] = None
    status: Optional[RecurringStatus] = None
    credit_product_id: Optional[str] = None
    paid_by_credit_product_id: Optional[str] = None
    goal_id: Optional[str] = None
    note: Optional[str] = None


class UpcomingTransaction(BaseModel):
    """Read-only projection of a definition's next occurrence."""

    id: str
    recurring_transaction_id: str
    name: str
    type: TransactionType
    amount: float
    category: Optional[str] = None
    scheduled_date: UtcDatetime
    days_until: int
    credit_product_id: Optional[str] = None
    paid_by_credit_product_id: Optional[str] = None
    goal_id: Optional[str] = None


class ProcessResult(BaseModel):
    """Outcome of one scheduler processing pass."""

    created: list[Transaction] = Field(default_factory=list)
    completed_ids: list[str] = Field(default_factory=list)
    skipped: bool = False


# ─── Mini budgets ─────────────────────────────────────────────────────────────

MiniBudgetStatus = Literal["active", "archived"]
MiniBudgetState = Literal["ok", "warning", "over"]


class MiniBudget(BaseModel):
    """A spending limit scoped to one calendar month and a set of categories."""

    id: str
    name: str
    month: str = Field(..., pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    currency: str
    limit_amount: float = Field(..., gt=0)
    linked_category_ids: list[str] = Field(..., min_length=1)
    status: MiniBudgetStatus = "active"
    created_at: UtcDatetime = Field(default_factory=_utcnow)
    updated_at: UtcDatetime = Field(default_factory=_utcnow)
    note: Optional[str] = None


class MiniBudgetInput(BaseModel):
    """Input model for creating a mini budget."""

    name: str = Field(..., min_length=1)
    limit_amount: float = Field(..., gt=0, description="Spending limit for the month")
    linked_category_ids: list[str] = Field(..., min_length=1)
    month: Optional[str] = Field(default=None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    note: Optional[str] = None


class MiniBudgetUpdate(BaseModel):
    """Partial update for a mini budget."""

    name: Optional[str] = Field(default=None, min_length=1)
    limit_amount: Optional[float] = Field(default=None, gt=0)
    linked_category_ids: Optional[list[str]] = Field(default=None, min_length=1)
    note: Optional[str] = None
    status: Optional[MiniBudgetStatus] = None


class MiniBudgetMonthlyState(BaseModel, frozen=True):
    """Derived spending snapshot for one budget in one month."""

    budget_id: str
    month: str
    spent_amount: float
    remaining: float
    pace: float
    forecast: float
    state: MiniBudgetState
    days_elapsed: int
    days_in_month: int

    @property
    def cache_key(self) -> str:
        return state_key(self.budget_id, self.month)


class MiniBudgetWithState(BaseModel):
    """A mini budget joined with its current monthly state."""

    budget: MiniBudget
    state: MiniBudgetMonthlyState


def state_key(budget_id: str, month: str) -> str:
    """Cache key for a (budget, month) state."""
    return f"{budget_id}-{month}"


# ─── Totals ───────────────────────────────────────────────────────────────────


class MonthlyTotals(BaseModel, frozen=True):
    """Month-level money totals used by the notification rules."""

    income: float
    expenses: float
    saved: float
    remaining: float
    chart_remaining: float


class CategoryShare(BaseModel, frozen=True):
    amount: float
    percent: float


# ─── Notifications ────────────────────────────────────────────────────────────

NotificationType = Literal[
    "monthly_start_high_spending",
    "negative_balance",
    "overspending_50_percent",
    "large_expense_spike",
    "low_balance_20_percent",
    "mini_budget_warning",
    "mini_budget_over",
    "goal_completed",
]


class Notification(BaseModel):
    """
    An alert raised by the trigger engine.

    ``title`` and ``message`` hold English fallback text. ``params`` carries
    the structured values a UI needs to render localized text.
    """

    id: str = Field(default_factory=_new_id)
    type: NotificationType
    title: str
    message: str
    params: dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDatetime = Field(default_factory=_utcnow)
    month_key: Optional[str] = None
    read: bool = False
