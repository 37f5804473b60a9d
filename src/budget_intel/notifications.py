# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Notification trigger engine.

Evaluates a fixed, ordered rule set against the current month's totals and
mini-budget states, and raises deduplicated alerts. Thresholds are static
fractions of the configured monthly income (see
:class:`~budget_intel.config.NotificationConfig`).

Dedup rules:

- month-scoped alerts fire at most once per (type, month);
- large-expense spikes mark every evaluated transaction as checked and are
  additionally suppressed within a rolling window after the latest spike
  alert of the month;
- mini-budget alerts fire only when a budget's classification changes to
  ``warning`` or ``over``;
- goal completion fires once per goal name, ever.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from pydantic import TypeAdapter

from budget_intel.clock import Clock, SystemClock
from budget_intel.config import NotificationConfig
from budget_intel.errors import (
    BudgetIntelError,
    EntityNotFoundError,
    HydrationError,
    InvalidInputError,
    PersistenceError,
)
from budget_intel.forecast import MiniBudgetForecastEngine
from budget_intel.ledger import Ledger
from budget_intel.months import month_key
from budget_intel.observer import LoggingObserver, Observer, emit
from budget_intel.persistence import PersistCommand, SaveCommand, SequenceCommand, run_command
from budget_intel.storage.interface import KeyValueStore
from budget_intel.totals import calculate_totals
from budget_intel.types import (
    MiniBudgetState,
    MiniBudgetWithState,
    MonthlyTotals,
    Notification,
    NotificationType,
    Transaction,
)

logger = logging.getLogger("budget_intel.notifications")

STORAGE_KEY = "notifications"
NOTIFIED_GOALS_KEY = "notified_goals"

_NOTIFICATIONS_ADAPTER = TypeAdapter(list[Notification])

# Fallback English text. The UI renders localized text from type + params.
DEFAULT_TEXT: dict[str, tuple[str, str]] = {
    "monthly_start_high_spending": (
        "High Spending Alert",
        "We noticed high spending activity at the start of the month. "
        "Keep an eye on your budget to stay on track.",
    ),
    "negative_balance": (
        "Funds Exhausted",
        "All available funds have been exhausted. If you forgot to add any "
        "income, add it so your balance stays accurate.",
    ),
    "overspending_50_percent": (
        "Overspending Alert",
        "You've used more than half of your monthly budget. "
        "Consider slowing down your spending pace.",
    ),
    "large_expense_spike": (
        "Large Expense Alert",
        "A large expense was recorded. Make sure this fits your monthly plan.",
    ),
    "low_balance_20_percent": (
        "Low Balance Warning",
        "Your remaining balance is getting low. Stay cautious with your upcoming expenses.",
    ),
    "mini_budget_warning": (
        "Budget Warning",
        "Your '{budget_name}' budget is on pace to run out before the month ends.",
    ),
    "mini_budget_over": (
        "Budget Exceeded",
        "Your '{budget_name}' budget is over its limit or projected to exceed it.",
    ),
    "goal_completed": (
        "Goal Completed",
        "Congratulations! You reached your goal '{goal_name}'.",
    ),
}


def build_notification(
    notification_type: NotificationType,
    now: datetime,
    month: str | None = None,
    **params: Any,
) -> Notification:
    """Create a notification with fallback text filled from ``params``."""
    title, template = DEFAULT_TEXT[notification_type]
    return Notification(
        type=notification_type,
        title=title,
        message=template.format(**params) if params else template,
        params=params,
        created_at=now,
        month_key=month,
    )


@dataclass(frozen=True)
class TriggerContext:
    """Inputs shared by every rule in one evaluation pass."""

    now: datetime
    month: str
    day: int
    monthly_income: float
    totals: MonthlyTotals
    transactions: list[Transaction]
    budgets: list[MiniBudgetWithState]


class CheckedTransactions:
    """
    Transaction ids already evaluated by the large-expense rule, per month.

    The map is cleared whenever the focused month changes, which bounds its
    size to the months evaluated since the last focus change.
    """

    def __init__(self) -> None:
        self._by_month: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return sum(len(ids) for ids in self._by_month.values())

    def contains(self, month: str, transaction_id: str) -> bool:
        return transaction_id in self._by_month.get(month, set())

    def mark(self, month: str, transaction_ids: list[str]) -> None:
        self._by_month.setdefault(month, set()).update(transaction_ids)

    def clear(self) -> None:
        self._by_month.clear()


Rule = Callable[["NotificationEngine", TriggerContext, list[Notification]], list[Notification]]


class NotificationEngine:
    """
    Evaluates alert triggers and owns the notification list.

    The engine reads the ledger and, when given one, the forecast engine's
    mini-budget states. It never writes to either.

    Usage::

        notifications = NotificationEngine(store, ledger, forecast, monthly_income=3000.0)
        await notifications.hydrate()
        created = await notifications.check_triggers()
    """

    def __init__(
        self,
        store: KeyValueStore,
        ledger: Ledger,
        forecast: MiniBudgetForecastEngine | None = None,
        config: NotificationConfig | None = None,
        monthly_income: float = 0.0,
        clock: Clock | None = None,
        observer: Observer | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._forecast = forecast
        self._config = config or NotificationConfig()
        self._monthly_income = monthly_income
        self._clock: Clock = clock or SystemClock()
        self._observer: Observer = observer or LoggingObserver()

        self._notifications: list[Notification] = []
        self._notified_goals: set[str] = set()
        self._checked = CheckedTransactions()
        self._last_seen_states: dict[tuple[str, str], MiniBudgetState] = {}
        self._focused_month: str | None = None
        self._hydrated = False
        self._lock = asyncio.Lock()
        self.last_error: BudgetIntelError | None = None

    # ─── Hydration ────────────────────────────────────────────────────────────

    @property
    def hydrated(self) -> bool:
        return self._hydrated

    async def hydrate(self) -> None:
        """Load stored notifications. Failures fall back to an empty list."""
        if self._hydrated:
            return
        try:
            raw = await self._store.load(STORAGE_KEY)
            goals = await self._store.load(NOTIFIED_GOALS_KEY)
            self._notifications = _NOTIFICATIONS_ADAPTER.validate_python(raw) if raw else []
            self._notified_goals = set(goals or [])
        except Exception as exc:  # noqa: BLE001
            self._notifications = []
            self._notified_goals = set()
            self.last_error = HydrationError(STORAGE_KEY, cause=exc)
            emit(self._observer, "notifications.hydrate.failed", error=str(exc))
        else:
            emit(self._observer, "notifications.hydrated", count=len(self._notifications))
        finally:
            self._hydrated = True

    async def retry_hydration(self) -> None:
        self._hydrated = False
        self.last_error = None
        await self.hydrate()

    # ─── Queries ──────────────────────────────────────────────────────────────

    @property
    def notifications(self) -> list[Notification]:
        """All notifications, newest first."""
        return [notification.model_copy(deep=True) for notification in self._notifications]

    @property
    def unread_count(self) -> int:
        return sum(1 for notification in self._notifications if not notification.read)

    @property
    def monthly_income(self) -> float:
        return self._monthly_income

    @monthly_income.setter
    def monthly_income(self, value: float) -> None:
        if value < 0:
            raise InvalidInputError("monthly_income must be >= 0", field="monthly_income")
        self._monthly_income = value

    @property
    def checked_count(self) -> int:
        return len(self._checked)

    # ─── Month focus ──────────────────────────────────────────────────────────

    def focus_month(self, month: str) -> None:
        """Clear the large-expense checked set when the focused month changes."""
        if month == self._focused_month:
            return
        logger.debug(
            "Focused month changed %s -> %s, clearing %d checked transactions",
            self._focused_month,
            month,
            len(self._checked),
        )
        self._checked.clear()
        self._focused_month = month

    # ─── Evaluation ───────────────────────────────────────────────────────────

    async def check_triggers(self) -> list[Notification]:
        """
        Evaluate every rule once against the current month.

        Returns the notifications created in this pass (possibly empty).
        New notifications are prepended in memory before they are persisted.

        Raises:
            PersistenceError: If the updated list could not be saved.
        """
        async with self._lock:
            context = self._build_context()
            created: list[Notification] = []

            for rule in _RULES:
                created.extend(rule(self, context, self._notifications))

            if not created:
                return []

            self._notifications = [*reversed(created), *self._notifications]
            for notification in created:
                logger.info("Raised %s notification for %s", notification.type, context.month)
                emit(
                    self._observer,
                    "notifications.created",
                    type=notification.type,
                    month=notification.month_key,
                )

            await self._run(self._notifications_command())
            return [notification.model_copy(deep=True) for notification in created]

    async def notify_goal_completed(self, goal_id: str, goal_name: str) -> Notification | None:
        """
        Raise a goal-completed alert the first time ``goal_name`` completes.

        Returns None when the goal was already celebrated.
        """
        if not goal_name:
            raise InvalidInputError("goal_name must be a non-empty string", field="goal_name")

        async with self._lock:
            if goal_name in self._notified_goals:
                return None

            notification = build_notification(
                "goal_completed",
                self._clock.now(),
                goal_id=goal_id,
                goal_name=goal_name,
            )
            self._notified_goals.add(goal_name)
            self._notifications = [notification, *self._notifications]
            emit(self._observer, "notifications.created", type="goal_completed", goal=goal_name)

            await self._run(
                SequenceCommand(
                    self._notifications_command(),
                    SaveCommand(self._store, NOTIFIED_GOALS_KEY, sorted(self._notified_goals)),
                )
            )
            return notification.model_copy(deep=True)

    # ─── User actions ─────────────────────────────────────────────────────────

    async def mark_as_read(self, notification_id: str) -> None:
        self._require(notification_id)
        self._notifications = [
            n.model_copy(update={"read": True}) if n.id == notification_id else n
            for n in self._notifications
        ]
        await self._run(self._notifications_command())

    async def mark_all_as_read(self) -> None:
        self._notifications = [n.model_copy(update={"read": True}) for n in self._notifications]
        await self._run(self._notifications_command())

    async def delete(self, notification_id: str) -> None:
        self._require(notification_id)
        self._notifications = [n for n in self._notifications if n.id != notification_id]
        await self._run(self._notifications_command())

    # ─── Rules ────────────────────────────────────────────────────────────────

    def _first_week_spending(
        self, ctx: TriggerContext, existing: list[Notification]
    ) -> list[Notification]:
        if not self._has_income(ctx) or not 1 <= ctx.day <= self._config.first_week_last_day:
            return []
        if _exists_for_month(existing, "monthly_start_high_spending", ctx.month):
            return []

        threshold = ctx.monthly_income * self._config.first_week_expense_ratio
        if ctx.totals.expenses <= threshold:
            return []
        return [
            build_notification(
                "monthly_start_high_spending",
                ctx.now,
                ctx.month,
                expenses=ctx.totals.expenses,
                threshold=threshold,
            )
        ]

    def _funds_exhausted(
        self, ctx: TriggerContext, existing: list[Notification]
    ) -> list[Notification]:
        if not self._has_income(ctx) or ctx.totals.remaining > 0:
            return []
        if _exists_for_month(existing, "negative_balance", ctx.month):
            return []
        return [
            build_notification(
                "negative_balance",
                ctx.now,
                ctx.month,
                remaining=ctx.totals.remaining,
            )
        ]

    def _mid_month_overspending(
        self, ctx: TriggerContext, existing: list[Notification]
    ) -> list[Notification]:
        if not self._has_income(ctx) or ctx.day >= self._config.mid_month_day:
            return []
        if _exists_for_month(existing, "overspending_50_percent", ctx.month):
            return []

        remaining_ratio = ctx.totals.remaining / ctx.monthly_income
        if remaining_ratio >= self._config.mid_month_remaining_ratio:
            return []
        return [
            build_notification(
                "overspending_50_percent",
                ctx.now,
                ctx.month,
                remaining=ctx.totals.remaining,
                remaining_percent=round(remaining_ratio * 100, 2),
            )
        ]

    def _large_expense_spike(
        self, ctx: TriggerContext, existing: list[Notification]
    ) -> list[Notification]:
        if not self._has_income(ctx):
            return []

        threshold = ctx.monthly_income * self._config.large_expense_ratio
        candidates = [
            tx
            for tx in ctx.transactions
            if tx.type == "expense"
            and tx.amount > threshold
            and not self._checked.contains(ctx.month, tx.id)
        ]
        if not candidates:
            return []

        # Evaluated transactions are never looked at again, alert or not.
        self._checked.mark(ctx.month, [tx.id for tx in candidates])

        latest = max(
            (
                n.created_at
                for n in existing
                if n.type == "large_expense_spike" and n.month_key == ctx.month
            ),
            default=None,
        )
        window = timedelta(seconds=self._config.large_expense_window_seconds)
        if latest is not None and ctx.now - latest < window:
            logger.debug(
                "Suppressed %d large expenses within the spike window (last alert %s)",
                len(candidates),
                latest.isoformat(),
            )
            emit(
                self._observer,
                "notifications.suppressed",
                type="large_expense_spike",
                count=len(candidates),
            )
            return []

        largest = max(candidates, key=lambda tx: tx.amount)
        return [
            build_notification(
                "large_expense_spike",
                ctx.now,
                ctx.month,
                amount=largest.amount,
                category=largest.category,
                transaction_id=largest.id,
                threshold=threshold,
            )
        ]

    def _low_balance(
        self, ctx: TriggerContext, existing: list[Notification]
    ) -> list[Notification]:
        if not self._has_income(ctx) or ctx.totals.remaining <= 0:
            return []
        if _exists_for_month(existing, "low_balance_20_percent", ctx.month):
            return []

        remaining_ratio = ctx.totals.remaining / ctx.monthly_income
        if remaining_ratio >= self._config.low_balance_ratio:
            return []
        return [
            build_notification(
                "low_balance_20_percent",
                ctx.now,
                ctx.month,
                remaining=ctx.totals.remaining,
                remaining_percent=round(remaining_ratio * 100, 2),
            )
        ]

    def _mini_budget_transitions(
        self, ctx: TriggerContext, existing: list[Notification]
    ) -> list[Notification]:
        created: list[Notification] = []

        for entry in ctx.budgets:
            budget, state = entry.budget, entry.state
            key = (budget.id, state.month)
            current = state.state
            previous = self._last_seen_states.get(key)
            self._last_seen_states[key] = current

            if current == "ok" or current == previous:
                continue

            notification_type: NotificationType = (
                "mini_budget_over" if current == "over" else "mini_budget_warning"
            )
            # First sighting after a restart: trust an alert already on file.
            if previous is None and _exists_for_budget(existing, notification_type, budget.name, state.month):
                continue

            created.append(
                build_notification(
                    notification_type,
                    ctx.now,
                    state.month,
                    budget_id=budget.id,
                    budget_name=budget.name,
                    spent=state.spent_amount,
                    limit=budget.limit_amount,
                    forecast=state.forecast,
                    previous_state=previous,
                )
            )

        return created

    # ─── Private helpers ──────────────────────────────────────────────────────

    def _has_income(self, ctx: TriggerContext) -> bool:
        return ctx.monthly_income > 0

    def _build_context(self) -> TriggerContext:
        now = self._clock.now()
        month = month_key(now)
        transactions = sorted(
            self._ledger.transactions_for_month(month),
            key=lambda tx: tx.created_at,
        )
        budgets = self._forecast.budgets_for_month(month) if self._forecast is not None else []
        return TriggerContext(
            now=now,
            month=month,
            day=now.day,
            monthly_income=self._monthly_income,
            totals=calculate_totals(transactions, self._monthly_income),
            transactions=transactions,
            budgets=budgets,
        )

    def _require(self, notification_id: str) -> Notification:
        for notification in self._notifications:
            if notification.id == notification_id:
                return notification
        raise EntityNotFoundError("notification", notification_id)

    def _notifications_command(self) -> SaveCommand:
        payload = [notification.model_dump(mode="json") for notification in self._notifications]
        return SaveCommand(self._store, STORAGE_KEY, payload)

    async def _run(self, command: PersistCommand) -> None:
        try:
            await run_command(command, self._observer, "notifications")
        except PersistenceError as exc:
            self.last_error = exc
            raise
        self.last_error = None


def _exists_for_month(existing: list[Notification], notification_type: str, month: str) -> bool:
    return any(n.type == notification_type and n.month_key == month for n in existing)


def _exists_for_budget(
    existing: list[Notification],
    notification_type: str,
    budget_name: str,
    month: str,
) -> bool:
    return any(
        n.type == notification_type
        and n.month_key == month
        and n.params.get("budget_name") == budget_name
        for n in existing
    )


# Evaluation order is fixed.
_RULES: tuple[Rule, ...] = (
    NotificationEngine._first_week_spending,
    NotificationEngine._funds_exhausted,
    NotificationEngine._mid_month_overspending,
    NotificationEngine._large_expense_spike,
    NotificationEngine._low_balance,
    NotificationEngine._mini_budget_transitions,
)
