# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
"""
budget-intelligence — recurring scheduling, mini-budget forecasting and
alert triggers for personal budgeting ledgers.

Quick start::

    import asyncio

    from budget_intel import (
        BudgetIntelligenceEngine,
        EngineConfig,
        MemoryLedger,
        MemoryStore,
        Transaction,
    )

    async def main() -> None:
        engine = BudgetIntelligenceEngine(
            MemoryLedger(),
            MemoryStore(),
            config=EngineConfig(monthly_income=3000.0),
        )
        await engine.hydrate()
        await engine.scheduler.create({
            "name": "Rent",
            "type": "expense",
            "amount": 1200.0,
            "frequency": "monthly",
            "start_date": "2026-03-01T09:00:00Z",
        })
        await engine.forecast.create_budget({
            "name": "Food",
            "limit_amount": 400.0,
            "linked_category_ids": ["groceries"],
        })
        await engine.run_daily()
        result = await engine.record_transaction(
            Transaction(type="expense", amount=80.0, category="groceries")
        )
        print([n.title for n in result.notifications])

    asyncio.run(main())
"""
from __future__ import annotations

from budget_intel.clock import Clock, FixedClock, SystemClock
from budget_intel.config import (
    EngineConfig,
    ForecastConfig,
    NotificationConfig,
    SchedulerConfig,
)
from budget_intel.engine import BudgetIntelligenceEngine, SyncResult
from budget_intel.errors import (
    BudgetIntelError,
    EntityNotFoundError,
    HydrationError,
    InvalidInputError,
    PersistenceError,
)
from budget_intel.forecast import MiniBudgetForecastEngine, calculate_monthly_state, classify
from budget_intel.ledger import DirtyMonthQueue, Ledger, MemoryLedger
from budget_intel.notifications import NotificationEngine
from budget_intel.observer import LoggingObserver, Observer, RecordingObserver
from budget_intel.persistence import PersistCommand
from budget_intel.scheduler import RecurringScheduler, next_due_date
from budget_intel.storage import FileStore, KeyValueStore, MemoryStore
from budget_intel.totals import calculate_totals, category_breakdown
from budget_intel.types import (
    MiniBudget,
    MiniBudgetInput,
    MiniBudgetMonthlyState,
    MiniBudgetUpdate,
    MiniBudgetWithState,
    MonthlyTotals,
    Notification,
    ProcessResult,
    RecurringTransaction,
    RecurringTransactionInput,
    RecurringTransactionUpdate,
    Transaction,
    UpcomingTransaction,
)

__version__ = "0.1.0"

__all__ = [
    # Core types
    "Transaction",
    "RecurringTransaction",
    "RecurringTransactionInput",
    "RecurringTransactionUpdate",
    "UpcomingTransaction",
    "ProcessResult",
    "MiniBudget",
    "MiniBudgetInput",
    "MiniBudgetUpdate",
    "MiniBudgetMonthlyState",
    "MiniBudgetWithState",
    "MonthlyTotals",
    "Notification",
    # Configuration
    "EngineConfig",
    "SchedulerConfig",
    "ForecastConfig",
    "NotificationConfig",
    # Engine
    "BudgetIntelligenceEngine",
    "SyncResult",
    "RecurringScheduler",
    "MiniBudgetForecastEngine",
    "NotificationEngine",
    # Calculations
    "next_due_date",
    "classify",
    "calculate_monthly_state",
    "calculate_totals",
    "category_breakdown",
    # Collaborators
    "Ledger",
    "MemoryLedger",
    "DirtyMonthQueue",
    "KeyValueStore",
    "MemoryStore",
    "FileStore",
    "Clock",
    "SystemClock",
    "FixedClock",
    "Observer",
    "LoggingObserver",
    "RecordingObserver",
    "PersistCommand",
    # Errors
    "BudgetIntelError",
    "InvalidInputError",
    "EntityNotFoundError",
    "PersistenceError",
    "HydrationError",
]
