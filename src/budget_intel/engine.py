# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
from __future__ import annotations

import asyncio
import logging

from pydantic import BaseModel, Field

from budget_intel.clock import Clock, SystemClock
from budget_intel.config import EngineConfig
from budget_intel.errors import PersistenceError
from budget_intel.forecast import MiniBudgetForecastEngine
from budget_intel.ledger import DirtyMonthQueue, Ledger
from budget_intel.months import month_key, parse_month_key
from budget_intel.notifications import NotificationEngine
from budget_intel.observer import LoggingObserver, Observer, emit
from budget_intel.persistence import AppendTransactionsCommand, run_command
from budget_intel.scheduler import RecurringScheduler
from budget_intel.storage.interface import KeyValueStore
from budget_intel.totals import calculate_totals, category_breakdown
from budget_intel.types import (
    CategoryShare,
    MonthlyTotals,
    Notification,
    ProcessResult,
    Transaction,
)

logger = logging.getLogger("budget_intel.engine")


class SyncResult(BaseModel, frozen=True):
    """
    Outcome of one :meth:`BudgetIntelligenceEngine.sync` pass.

    Attributes:
        recalculated_months: Months whose mini-budget states were recomputed.
        notifications: Notifications raised by the trigger pass.
        processed: The scheduler result when the pass ran from ``run_daily``.
    """

    recalculated_months: list[str] = Field(default_factory=list)
    notifications: list[Notification] = Field(default_factory=list)
    processed: ProcessResult | None = None


class BudgetIntelligenceEngine:
    """
    Composes the RecurringScheduler, MiniBudgetForecastEngine and
    NotificationEngine around one ledger and one key-value store.

    Ledger mutations mark their month dirty. :meth:`sync` drains the dirty
    months, recomputes their mini-budget states and then evaluates the
    notification triggers, so notifications always see fresh states.

    Example::

        ledger = MemoryLedger()
        engine = BudgetIntelligenceEngine(
            ledger,
            FileStore("~/.budget"),
            config=EngineConfig(monthly_income=3000.0),
        )
        await engine.hydrate()
        await engine.run_daily()
        await engine.record_transaction(
            Transaction(type="expense", amount=42.0, category="groceries")
        )
        print(engine.current_totals())
    """

    def __init__(
        self,
        ledger: Ledger,
        store: KeyValueStore,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        observer: Observer | None = None,
    ) -> None:
        cfg = config or EngineConfig()
        self._config = cfg
        self._ledger = ledger
        self._clock: Clock = clock or SystemClock()
        self._observer: Observer = observer or LoggingObserver()

        self.scheduler = RecurringScheduler(
            store,
            ledger,
            config=cfg.scheduler,
            clock=self._clock,
            observer=self._observer,
        )
        self.forecast = MiniBudgetForecastEngine(
            store,
            ledger,
            config=cfg.forecast,
            currency=cfg.currency,
            clock=self._clock,
            observer=self._observer,
        )
        self.notifications = NotificationEngine(
            store,
            ledger,
            forecast=self.forecast,
            config=cfg.notifications,
            monthly_income=cfg.monthly_income,
            clock=self._clock,
            observer=self._observer,
        )

        self._dirty = DirtyMonthQueue()
        self._unsubscribe = ledger.subscribe(self._dirty.mark)
        self._focused_month: str | None = None
        self._calendar_month: str | None = None
        self._sync_lock = asyncio.Lock()

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def focused_month(self) -> str:
        """The month the UI is looking at; defaults to the current month."""
        return self._focused_month or month_key(self._clock.now())

    @property
    def pending_months(self) -> int:
        return len(self._dirty)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def hydrate(self) -> None:
        """
        Load every component's stored state. Failures are recorded on the
        component's ``last_error`` and never raised.
        """
        await self.scheduler.hydrate()
        await self.forecast.hydrate()
        await self.notifications.hydrate()
        try:
            await self._follow_calendar()
        except PersistenceError as exc:
            logger.warning("Carried-forward mini budgets not saved: %s", exc)
        emit(self._observer, "engine.hydrated")

    def close(self) -> None:
        """Stop listening to the ledger."""
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def record_transaction(self, transaction: Transaction) -> SyncResult:
        """
        Append ``transaction`` to the ledger and re-derive its month.

        A transaction built without an explicit ``created_at`` is stamped
        with the engine clock, so it lands in the month the engine treats as
        current.

        Raises:
            PersistenceError: If the ledger rejected the append. Nothing is
                re-derived in that case; ``await error.retry()`` re-issues the
                append.
        """
        if "created_at" not in transaction.model_fields_set:
            transaction = transaction.model_copy(update={"created_at": self._clock.now()})
        await run_command(
            AppendTransactionsCommand(self._ledger, [transaction]),
            self._observer,
            "engine",
        )
        return await self.sync()

    async def sync(self) -> SyncResult:
        """
        Recompute every dirty month, then run the notification triggers.

        A failed state write does not stop the pass: remaining months and the
        triggers still run on the in-memory states, and the first failure is
        raised at the end.
        """
        async with self._sync_lock:
            months = self._dirty.drain()
            first_error: PersistenceError | None = None

            for month in months:
                try:
                    await self.forecast.recalc_for_month(month)
                except PersistenceError as exc:
                    logger.warning("Mini budget states for %s not saved: %s", month, exc)
                    first_error = first_error or exc

            try:
                created = await self.notifications.check_triggers()
            except PersistenceError as exc:
                logger.warning("Notifications not saved: %s", exc)
                first_error = first_error or exc
                created = []

            if months:
                emit(self._observer, "engine.synced", months=months, notifications=len(created))
            if first_error is not None:
                raise first_error
            return SyncResult(recalculated_months=months, notifications=created)

    async def focus_month(self, month: str) -> SyncResult:
        """
        Switch the focused month.

        Carries the previous month's budgets forward if ``month`` has none,
        resets the large-expense checked set, recomputes the month and runs
        the triggers.
        """
        parse_month_key(month)
        self._focused_month = month
        await self.forecast.focus_month(month)
        self.notifications.focus_month(month)
        self._dirty.mark(month)
        return await self.sync()

    async def run_daily(self) -> SyncResult:
        """
        Materialize due recurring transactions (at most once per day) and
        sync the months they landed in.

        Also follows the calendar: on the first pass in a new month the
        previous month's budgets are carried forward, and the current month
        is always recomputed so elapsed days and pace reflect today.
        """
        carry_error: PersistenceError | None = None
        try:
            await self._follow_calendar()
        except PersistenceError as exc:
            logger.warning("Carried-forward mini budgets not saved: %s", exc)
            carry_error = exc

        processed = await self.scheduler.run_daily()
        self._dirty.mark(month_key(self._clock.now()))
        result = await self.sync()
        if carry_error is not None:
            raise carry_error
        return result.model_copy(update={"processed": processed})

    async def _follow_calendar(self) -> None:
        current = month_key(self._clock.now())
        if current == self._calendar_month:
            return
        logger.info("Calendar month is now %s", current)
        self._calendar_month = current
        self.notifications.focus_month(current)
        await self.forecast.focus_month(current)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def current_totals(self, month: str | None = None) -> MonthlyTotals:
        """Totals for ``month`` (defaults to the focused month)."""
        target = month or self.focused_month
        return calculate_totals(
            self._ledger.transactions_for_month(target),
            self._config.monthly_income,
        )

    def category_breakdown(self, month: str | None = None) -> dict[str, CategoryShare]:
        target = month or self.focused_month
        return category_breakdown(self._ledger.transactions_for_month(target))
