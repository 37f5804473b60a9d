# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
"""Tests for BudgetIntelligenceEngine orchestration."""

from __future__ import annotations

import asyncio

import pytest

from budget_intel.clock import FixedClock
from budget_intel.config import EngineConfig, NotificationConfig
from budget_intel.engine import BudgetIntelligenceEngine
from budget_intel.errors import HydrationError, PersistenceError
from budget_intel.forecast import STATES_KEY
from budget_intel.observer import RecordingObserver
from budget_intel.types import Transaction

from conftest import FailingLedger, FailingStore, utc

FOOD = {"name": "Food", "limit_amount": 300.0, "linked_category_ids": ["food"]}


@pytest.fixture
def engine(
    store: FailingStore,
    ledger: FailingLedger,
    clock: FixedClock,
    observer: RecordingObserver,
) -> BudgetIntelligenceEngine:
    return BudgetIntelligenceEngine(
        ledger,
        store,
        config=EngineConfig(monthly_income=1000.0),
        clock=clock,
        observer=observer,
    )


def food_expense(amount: float, clock: FixedClock) -> Transaction:
    return Transaction(type="expense", amount=amount, category="food", created_at=clock.now())


# ---------------------------------------------------------------------------
# TestSync
# ---------------------------------------------------------------------------


class TestSync:
    def test_recorded_transaction_refreshes_states_before_triggers(
        self, engine: BudgetIntelligenceEngine, clock: FixedClock
    ) -> None:
        async def scenario() -> None:
            await engine.hydrate()
            await engine.forecast.create_budget(FOOD)

            result = await engine.record_transaction(food_expense(95.0, clock))

            assert result.recalculated_months == ["2026-03"]
            assert [n.type for n in result.notifications] == ["mini_budget_warning"]
            assert engine.forecast.budgets_for_month("2026-03")[0].state.spent_amount == 95.0
            assert engine.pending_months == 0

        asyncio.run(scenario())

    def test_sync_without_changes_is_quiet(self, engine: BudgetIntelligenceEngine) -> None:
        result = asyncio.run(engine.sync())
        assert result.recalculated_months == []
        assert result.notifications == []

    def test_failed_ledger_append_skips_sync(
        self, engine: BudgetIntelligenceEngine, ledger: FailingLedger, clock: FixedClock
    ) -> None:
        async def scenario() -> None:
            ledger.fail_appends = True
            with pytest.raises(PersistenceError) as exc_info:
                await engine.record_transaction(food_expense(10.0, clock))
            assert engine.pending_months == 0

            ledger.fail_appends = False
            await exc_info.value.retry()
            assert engine.pending_months == 1
            result = await engine.sync()
            assert result.recalculated_months == ["2026-03"]

        asyncio.run(scenario())

    def test_failed_state_write_still_runs_triggers(
        self,
        engine: BudgetIntelligenceEngine,
        store: FailingStore,
        clock: FixedClock,
    ) -> None:
        async def scenario() -> None:
            await engine.forecast.create_budget(FOOD)
            store.fail_saves.add(STATES_KEY)

            with pytest.raises(PersistenceError):
                await engine.record_transaction(food_expense(95.0, clock))

            kinds = [n.type for n in engine.notifications.notifications]
            assert kinds == ["mini_budget_warning"]
            assert isinstance(engine.forecast.last_error, PersistenceError)

        asyncio.run(scenario())

    def test_close_stops_listening(
        self, engine: BudgetIntelligenceEngine, ledger: FailingLedger, clock: FixedClock
    ) -> None:
        engine.close()
        asyncio.run(ledger.append_transaction(food_expense(10.0, clock)))
        assert engine.pending_months == 0


# ---------------------------------------------------------------------------
# TestDailyRun
# ---------------------------------------------------------------------------


class TestDailyRun:
    def test_run_daily_materializes_and_syncs(
        self, engine: BudgetIntelligenceEngine, ledger: FailingLedger, clock: FixedClock
    ) -> None:
        async def scenario() -> None:
            await engine.forecast.create_budget(FOOD)
            await engine.scheduler.create(
                {
                    "name": "Meal kit",
                    "type": "expense",
                    "amount": 40.0,
                    "category": "food",
                    "frequency": "weekly",
                    "start_date": utc(2026, 3, 9),
                }
            )

            first = await engine.run_daily()
            assert first.processed is not None and len(first.processed.created) == 1
            assert first.recalculated_months == ["2026-03"]
            assert engine.forecast.budgets_for_month("2026-03")[0].state.spent_amount == 40.0

            second = await engine.run_daily()
            assert second.processed is not None and second.processed.skipped is True
            assert len(ledger.all_transactions()) == 1

        asyncio.run(scenario())

    def test_month_rollover_carries_budgets_forward(
        self, engine: BudgetIntelligenceEngine, clock: FixedClock
    ) -> None:
        async def scenario() -> None:
            await engine.forecast.create_budget(FOOD)
            await engine.record_transaction(food_expense(250.0, clock))
            assert engine.notifications.checked_count > 0

            clock.set(utc(2026, 4, 2))
            result = await engine.run_daily()

            april = engine.forecast.budgets_for_month("2026-04")
            assert [entry.budget.name for entry in april] == ["Food"]
            assert april[0].state.days_elapsed == 2
            assert "2026-04" in result.recalculated_months
            assert engine.notifications.checked_count == 0

        asyncio.run(scenario())

    def test_quiet_day_refreshes_current_month_pace(
        self, engine: BudgetIntelligenceEngine, clock: FixedClock
    ) -> None:
        async def scenario() -> None:
            await engine.forecast.create_budget(FOOD)
            await engine.record_transaction(food_expense(30.0, clock))
            assert engine.forecast.budgets_for_month("2026-03")[0].state.days_elapsed == 10

            clock.set(utc(2026, 3, 20))
            result = await engine.run_daily()

            assert result.recalculated_months == ["2026-03"]
            state = engine.forecast.budgets_for_month("2026-03")[0].state
            assert state.days_elapsed == 20
            assert state.pace == pytest.approx(1.5)

        asyncio.run(scenario())

    def test_unstamped_transaction_uses_engine_clock(
        self, engine: BudgetIntelligenceEngine, ledger: FailingLedger
    ) -> None:
        asyncio.run(engine.record_transaction(Transaction(type="expense", amount=12.0, category="food")))

        recorded = ledger.transactions_for_month("2026-03")
        assert [tx.amount for tx in recorded] == [12.0]
        assert recorded[0].created_at == utc(2026, 3, 10)


# ---------------------------------------------------------------------------
# TestFocusMonth
# ---------------------------------------------------------------------------


class TestFocusMonth:
    def test_new_month_carries_budgets_forward(
        self, engine: BudgetIntelligenceEngine, clock: FixedClock
    ) -> None:
        async def scenario() -> None:
            await engine.forecast.create_budget(FOOD)
            clock.set(utc(2026, 4, 2))

            result = await engine.focus_month("2026-04")
            assert "2026-04" in result.recalculated_months
            assert engine.focused_month == "2026-04"
            assert [entry.budget.name for entry in engine.forecast.budgets_for_month("2026-04")] == ["Food"]

        asyncio.run(scenario())

    def test_totals_follow_the_focused_month(
        self, engine: BudgetIntelligenceEngine, clock: FixedClock
    ) -> None:
        async def scenario() -> None:
            await engine.record_transaction(food_expense(120.0, clock))
            clock.set(utc(2026, 4, 2))
            await engine.record_transaction(food_expense(30.0, clock))

            assert engine.current_totals().expenses == 30.0
            await engine.focus_month("2026-03")
            assert engine.current_totals().expenses == 120.0
            assert engine.current_totals().remaining == 880.0
            assert engine.category_breakdown()["food"].percent == 100.0

        asyncio.run(scenario())


# ---------------------------------------------------------------------------
# TestHydration
# ---------------------------------------------------------------------------


class TestHydration:
    def test_load_failures_are_recorded_not_raised(
        self, engine: BudgetIntelligenceEngine, store: FailingStore
    ) -> None:
        store.fail_loads = True
        asyncio.run(engine.hydrate())

        assert isinstance(engine.scheduler.last_error, HydrationError)
        assert isinstance(engine.forecast.last_error, HydrationError)
        assert isinstance(engine.notifications.last_error, HydrationError)

    def test_restart_restores_every_component(
        self,
        engine: BudgetIntelligenceEngine,
        store: FailingStore,
        ledger: FailingLedger,
        clock: FixedClock,
    ) -> None:
        async def scenario() -> None:
            await engine.forecast.create_budget(FOOD)
            await engine.record_transaction(food_expense(95.0, clock))
            await engine.notifications.notify_goal_completed("g1", "Laptop")

            restarted = BudgetIntelligenceEngine(
                ledger,
                store,
                config=EngineConfig(
                    monthly_income=1000.0,
                    notifications=NotificationConfig(large_expense_ratio=0.5),
                ),
                clock=clock,
            )
            await restarted.hydrate()
            assert len(restarted.forecast.budgets) == 1
            assert len(restarted.notifications.notifications) == 2
            assert restarted.config.notifications.large_expense_ratio == 0.5

        asyncio.run(scenario())

    def test_restart_in_new_month_carries_budgets_forward(
        self,
        engine: BudgetIntelligenceEngine,
        store: FailingStore,
        ledger: FailingLedger,
        clock: FixedClock,
    ) -> None:
        async def scenario() -> None:
            await engine.forecast.create_budget(FOOD)
            engine.close()

            clock.set(utc(2026, 4, 2))
            restarted = BudgetIntelligenceEngine(
                ledger,
                store,
                config=EngineConfig(monthly_income=1000.0),
                clock=clock,
            )
            await restarted.hydrate()

            april = restarted.forecast.budgets_for_month("2026-04")
            assert [entry.budget.name for entry in april] == ["Food"]
            assert len(restarted.forecast.budgets) == 2

        asyncio.run(scenario())

    def test_observer_sees_lifecycle_events(
        self, engine: BudgetIntelligenceEngine, observer: RecordingObserver
    ) -> None:
        asyncio.run(engine.hydrate())
        assert "engine.hydrated" in observer.kinds()
        assert "scheduler.hydrated" in observer.kinds()
