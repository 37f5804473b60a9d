# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Mini-budget pace and forecast engine.

Every monthly state is a pure function of the budget, the month's
transactions and the current date. The persisted state map is a cache: a
missing entry is recomputed on read and every month holding active budgets
is recomputed on load.

Classification, first match wins::

    spent >= limit                                   -> over
    forecast > limit * over_forecast_ratio           -> over
    spending_ratio > warning_spending_ratio
        or forecast > limit * warning_forecast_ratio -> warning
    otherwise                                        -> ok
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import TypeAdapter

from budget_intel.clock import Clock, SystemClock
from budget_intel.config import ForecastConfig
from budget_intel.errors import (
    BudgetIntelError,
    EntityNotFoundError,
    HydrationError,
    PersistenceError,
    validate_input,
)
from budget_intel.ledger import Ledger
from budget_intel.months import days_in_month_key, month_key, parse_month_key, previous_month_key
from budget_intel.observer import LoggingObserver, Observer, emit
from budget_intel.persistence import PersistCommand, SaveCommand, run_command
from budget_intel.storage.interface import KeyValueStore
from budget_intel.types import (
    MiniBudget,
    MiniBudgetInput,
    MiniBudgetMonthlyState,
    MiniBudgetState,
    MiniBudgetUpdate,
    MiniBudgetWithState,
    Transaction,
    state_key,
)

logger = logging.getLogger("budget_intel.forecast")

BUDGETS_KEY = "mini_budgets"
STATES_KEY = "mini_budget_states"

_BUDGETS_ADAPTER = TypeAdapter(list[MiniBudget])
_STATES_ADAPTER = TypeAdapter(dict[str, MiniBudgetMonthlyState])

_REQUIRED_FIELDS: frozenset[str] = frozenset({"name", "limit_amount", "linked_category_ids", "status"})


# ─── Pure calculations ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DaysInfo:
    days_elapsed: int
    days_in_month: int


def days_info(month: str, now: datetime) -> DaysInfo:
    """
    Elapsed and total days for ``month`` as seen from ``now``.

    The current month counts today's day-of-month as elapsed; past months
    are fully elapsed; future months have zero elapsed days.
    """
    total = days_in_month_key(month)
    current = month_key(now)
    if month == current:
        return DaysInfo(days_elapsed=now.day, days_in_month=total)
    return DaysInfo(days_elapsed=total if month < current else 0, days_in_month=total)


def classify(
    spent: float,
    limit: float,
    forecast: float,
    days_elapsed: int,
    days_in_month: int,
    config: ForecastConfig | None = None,
) -> MiniBudgetState:
    """Classify a budget from its spend, projection and time progress."""
    thresholds = config or ForecastConfig()

    if spent >= limit:
        return "over"
    if forecast > limit * thresholds.over_forecast_ratio:
        return "over"

    time_progress = min(days_elapsed / days_in_month, 1.0) if days_in_month > 0 else 0.0
    expected_spending = limit * time_progress
    spending_ratio = spent / expected_spending if expected_spending > 0 else 0.0

    if (
        spending_ratio > thresholds.warning_spending_ratio
        or forecast > limit * thresholds.warning_forecast_ratio
    ):
        return "warning"
    return "ok"


def spent_in_month(budget: MiniBudget, transactions: list[Transaction], month: str) -> float:
    """Sum of linked-category expenses that fall in ``month``."""
    linked = set(budget.linked_category_ids)
    return sum(
        tx.amount
        for tx in transactions
        if tx.type == "expense"
        and tx.category is not None
        and tx.category in linked
        and month_key(tx.created_at) == month
    )


def calculate_monthly_state(
    budget: MiniBudget,
    transactions: list[Transaction],
    month: str,
    now: datetime,
    config: ForecastConfig | None = None,
) -> MiniBudgetMonthlyState:
    """Derive the monthly state for ``budget``. Pure and deterministic."""
    spent = spent_in_month(budget, transactions, month)
    days = days_info(month, now)
    pace = spent / days.days_elapsed if days.days_elapsed > 0 else 0.0
    forecast = pace * days.days_in_month

    return MiniBudgetMonthlyState(
        budget_id=budget.id,
        month=month,
        spent_amount=spent,
        remaining=budget.limit_amount - spent,
        pace=pace,
        forecast=forecast,
        state=classify(
            spent,
            budget.limit_amount,
            forecast,
            days.days_elapsed,
            days.days_in_month,
            config,
        ),
        days_elapsed=days.days_elapsed,
        days_in_month=days.days_in_month,
    )


# ─── Engine ───────────────────────────────────────────────────────────────────


class MiniBudgetForecastEngine:
    """
    Owns mini budgets and their cached monthly states.

    The engine only reads the ledger. Recomputation is driven by the caller
    (usually :class:`~budget_intel.engine.BudgetIntelligenceEngine`) through
    ``recalc_for_month`` whenever a month's transactions change.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ledger: Ledger,
        config: ForecastConfig | None = None,
        currency: str = "USD",
        clock: Clock | None = None,
        observer: Observer | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._config = config or ForecastConfig()
        self._currency = currency
        self._clock: Clock = clock or SystemClock()
        self._observer: Observer = observer or LoggingObserver()

        self._budgets: list[MiniBudget] = []
        self._states: dict[str, MiniBudgetMonthlyState] = {}
        self._last_carried_month: str | None = None
        self._hydrated = False
        self._recalc_lock = asyncio.Lock()
        self.last_error: BudgetIntelError | None = None

    # ─── Hydration ────────────────────────────────────────────────────────────

    @property
    def hydrated(self) -> bool:
        return self._hydrated

    async def hydrate(self) -> None:
        """
        Load budgets and cached states, then recompute every month that holds
        active budgets. A load failure falls back to empty state and is
        recorded in ``last_error``.
        """
        if self._hydrated:
            return

        try:
            raw_budgets = await self._store.load(BUDGETS_KEY)
            raw_states = await self._store.load(STATES_KEY)
            self._budgets = _BUDGETS_ADAPTER.validate_python(raw_budgets) if raw_budgets else []
            self._states = _STATES_ADAPTER.validate_python(raw_states) if raw_states else {}
        except Exception as exc:  # noqa: BLE001
            self._budgets = []
            self._states = {}
            self._hydrated = True
            self.last_error = HydrationError(BUDGETS_KEY, cause=exc)
            emit(self._observer, "forecast.hydrate.failed", error=str(exc))
            return

        self._hydrated = True
        emit(
            self._observer,
            "forecast.hydrated",
            budgets=len(self._budgets),
            states=len(self._states),
        )
        for month in self.active_months():
            try:
                await self.recalc_for_month(month)
            except PersistenceError as exc:
                # States stay in memory; last_error carries the retry.
                logger.warning("Recomputed states for %s were not saved: %s", month, exc)

    async def retry_hydration(self) -> None:
        self._hydrated = False
        self.last_error = None
        await self.hydrate()

    # ─── Queries ──────────────────────────────────────────────────────────────

    @property
    def budgets(self) -> list[MiniBudget]:
        return [budget.model_copy(deep=True) for budget in self._budgets]

    @property
    def states(self) -> dict[str, MiniBudgetMonthlyState]:
        """Cached states keyed by ``"{budgetId}-{month}"``."""
        return dict(self._states)

    def active_months(self) -> list[str]:
        return sorted({budget.month for budget in self._budgets if budget.status == "active"})

    def get(self, budget_id: str) -> MiniBudget | None:
        for budget in self._budgets:
            if budget.id == budget_id:
                return budget.model_copy(deep=True)
        return None

    def budgets_for_month(self, month: str) -> list[MiniBudgetWithState]:
        """
        Active budgets of ``month`` joined with their states.

        States missing from the cache are computed on the fly (and not
        stored; the next recalc stores them).
        """
        parse_month_key(month)
        joined: list[MiniBudgetWithState] = []
        transactions: list[Transaction] | None = None

        for budget in self._active_for_month(month):
            state = self._states.get(state_key(budget.id, month))
            if state is None:
                if transactions is None:
                    transactions = self._ledger.transactions_for_month(month)
                state = calculate_monthly_state(
                    budget, transactions, month, self._clock.now(), self._config
                )
            joined.append(MiniBudgetWithState(budget=budget.model_copy(deep=True), state=state))

        return joined

    def budget_for_category(self, category: str, month: str) -> MiniBudgetWithState | None:
        """First active budget of ``month`` that tracks ``category``."""
        for entry in self.budgets_for_month(month):
            if category in entry.budget.linked_category_ids:
                return entry
        return None

    # ─── Budget management ────────────────────────────────────────────────────

    async def create_budget(self, data: MiniBudgetInput | dict[str, Any]) -> MiniBudget:
        """
        Create a budget for ``data.month`` (defaults to the current month)
        and compute its initial state.

        Raises:
            InvalidInputError: If the limit is not positive, no category is
                linked, or the month key is malformed.
            PersistenceError: If the budget list could not be saved.
        """
        validated = validate_input(MiniBudgetInput, data)
        now = self._clock.now()

        budget = MiniBudget(
            id=str(uuid4()),
            name=validated.name,
            month=validated.month or month_key(now),
            currency=self._currency,
            limit_amount=validated.limit_amount,
            linked_category_ids=list(validated.linked_category_ids),
            status="active",
            created_at=now,
            updated_at=now,
            note=validated.note,
        )

        self._budgets = [*self._budgets, budget]
        logger.info("Created mini budget %s (%s) for %s", budget.id, budget.name, budget.month)
        await self._persist_budgets()
        await self.recalc_for_month(budget.month)
        emit(
            self._observer,
            "forecast.budget.created",
            id=budget.id,
            limit=budget.limit_amount,
            categories=len(budget.linked_category_ids),
        )
        return budget.model_copy(deep=True)

    async def update_budget(
        self,
        budget_id: str,
        changes: MiniBudgetUpdate | dict[str, Any],
    ) -> MiniBudget:
        """
        Apply a partial update. Limit or category edits trigger a recalc of
        the budget's month.

        Raises:
            EntityNotFoundError: If no budget has ``budget_id``.
            InvalidInputError: If the update is malformed.
            PersistenceError: If the budget list could not be saved.
        """
        current = self._require(budget_id)
        validated = validate_input(MiniBudgetUpdate, changes)
        updates = {
            field: value
            for field, value in validated.model_dump(exclude_unset=True).items()
            if value is not None or field not in _REQUIRED_FIELDS
        }
        updates["updated_at"] = self._clock.now()

        updated = current.model_copy(update=updates)
        self._budgets = [updated if b.id == budget_id else b for b in self._budgets]
        await self._persist_budgets()

        if {"limit_amount", "linked_category_ids", "status"} & updates.keys():
            await self.recalc_for_month(updated.month)
        return updated.model_copy(deep=True)

    async def delete_budget(self, budget_id: str) -> None:
        """
        Delete a budget and drop its cached states.

        Raises:
            EntityNotFoundError: If no budget has ``budget_id``.
            PersistenceError: If the budget list or state map could not be saved.
        """
        self._require(budget_id)
        self._budgets = [b for b in self._budgets if b.id != budget_id]
        prefix = f"{budget_id}-"
        self._states = {k: v for k, v in self._states.items() if not k.startswith(prefix)}

        await self._persist_budgets()
        await self._run(self._states_command())
        emit(self._observer, "forecast.budget.deleted", id=budget_id)

    # ─── Recalculation ────────────────────────────────────────────────────────

    async def recalc_for_month(self, month: str) -> list[MiniBudgetMonthlyState]:
        """
        Recompute the states of all active budgets in ``month`` and persist
        the state map. Passes are serialized; the in-memory map is updated
        before the write is awaited.
        """
        parse_month_key(month)
        async with self._recalc_lock:
            budgets = self._active_for_month(month)
            if not budgets:
                logger.debug("No active mini budgets for %s, skipping recalc", month)
                return []

            transactions = self._ledger.transactions_for_month(month)
            now = self._clock.now()
            computed = [
                calculate_monthly_state(budget, transactions, month, now, self._config)
                for budget in budgets
            ]

            next_states = dict(self._states)
            for state in computed:
                next_states[state.cache_key] = state
                logger.debug(
                    "Mini budget %s in %s: spent=%.2f forecast=%.2f state=%s",
                    state.budget_id,
                    month,
                    state.spent_amount,
                    state.forecast,
                    state.state,
                )
            self._states = next_states

            await self._run(self._states_command())
            return computed

    # ─── Carry-forward ────────────────────────────────────────────────────────

    async def carry_forward(self, month: str) -> list[MiniBudget]:
        """
        Clone the previous month's active budgets into ``month``.

        Only happens when ``month`` has no active budgets yet and is the
        current or a future month; past months are never backfilled.
        """
        parse_month_key(month)
        now = self._clock.now()
        if month < month_key(now):
            return []
        if self._active_for_month(month):
            return []

        previous = previous_month_key(month)
        source = self._active_for_month(previous)
        if not source:
            return []

        created = [
            budget.model_copy(
                update={"id": str(uuid4()), "month": month, "created_at": now, "updated_at": now}
            )
            for budget in source
        ]
        self._budgets = [*self._budgets, *created]
        logger.info("Carried %d mini budgets forward from %s to %s", len(created), previous, month)
        emit(self._observer, "forecast.carried_forward", source=previous, target=month, count=len(created))

        await self._persist_budgets()
        await self.recalc_for_month(month)
        return [budget.model_copy(deep=True) for budget in created]

    async def focus_month(self, month: str) -> list[MiniBudget]:
        """Run carry-forward once per newly focused month."""
        if month == self._last_carried_month:
            return []
        created = await self.carry_forward(month)
        self._last_carried_month = month
        return created

    # ─── Private helpers ──────────────────────────────────────────────────────

    def _active_for_month(self, month: str) -> list[MiniBudget]:
        return [b for b in self._budgets if b.month == month and b.status == "active"]

    def _require(self, budget_id: str) -> MiniBudget:
        for budget in self._budgets:
            if budget.id == budget_id:
                return budget
        raise EntityNotFoundError("mini_budget", budget_id)

    def _states_command(self) -> SaveCommand:
        payload = {key: state.model_dump(mode="json") for key, state in self._states.items()}
        return SaveCommand(self._store, STATES_KEY, payload)

    async def _persist_budgets(self) -> None:
        payload = [budget.model_dump(mode="json") for budget in self._budgets]
        await self._run(SaveCommand(self._store, BUDGETS_KEY, payload))

    async def _run(self, command: PersistCommand) -> None:
        try:
            await run_command(command, self._observer, "forecast")
        except PersistenceError as exc:
            self.last_error = exc
            raise
        self.last_error = None
