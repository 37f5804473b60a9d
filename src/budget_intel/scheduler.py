# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Recurring transaction scheduler.

Owns the recurring definitions, computes due dates, and materializes due
occurrences into the ledger.

Lifecycle per definition::

    active ⇄ paused        (user toggled)
    active → completed     (end date passed; terminal)

A processing pass advances each active definition by at most ONE occurrence.
Definitions that are several occurrences behind catch up one step per pass.
``run_daily`` gates the pass so it executes at most once per calendar day,
including across process restarts.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from pydantic import TypeAdapter

from budget_intel.clock import Clock, SystemClock
from budget_intel.config import SchedulerConfig
from budget_intel.errors import (
    BudgetIntelError,
    EntityNotFoundError,
    HydrationError,
    InvalidInputError,
    PersistenceError,
    validate_input,
)
from budget_intel.ledger import Ledger
from budget_intel.months import days_in_month
from budget_intel.observer import LoggingObserver, Observer, emit
from budget_intel.persistence import (
    AppendTransactionsCommand,
    PersistCommand,
    SaveCommand,
    SequenceCommand,
    run_command,
)
from budget_intel.storage.interface import KeyValueStore
from budget_intel.types import (
    Frequency,
    ProcessResult,
    RecurringTransaction,
    RecurringTransactionInput,
    RecurringTransactionUpdate,
    Transaction,
    UpcomingTransaction,
)

logger = logging.getLogger("budget_intel.scheduler")

STORAGE_KEY = "recurring_transactions"
LAST_PROCESSED_KEY = "recurring_last_processed_date"

_DEFINITIONS_ADAPTER = TypeAdapter(list[RecurringTransaction])

# Fields an update may not clear; an explicit None is ignored for these.
_REQUIRED_FIELDS: frozenset[str] = frozenset({"name", "amount", "frequency", "start_date", "status"})

_FIXED_STEPS: dict[str, timedelta] = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "biweekly": timedelta(days=14),
}


# ---------------------------------------------------------------------------
# Due-date arithmetic
# ---------------------------------------------------------------------------


def next_due_date(current: datetime, frequency: Frequency, start: datetime) -> datetime:
    """
    Compute the occurrence after ``current``.

    Monthly recurrences re-anchor on the start date's day-of-month every
    cycle, clamped to the length of the target month: a definition started on
    the 31st lands on the 30th in April and back on the 31st in May.

    Yearly recurrences re-anchor on the start date the same way: 29 February
    falls back to 28 February in non-leap years and returns to the 29th in
    leap years.

    Time of day and tzinfo of ``current`` are preserved.
    """
    step = _FIXED_STEPS.get(frequency)
    if step is not None:
        return current + step

    if frequency == "monthly":
        index = current.year * 12 + (current.month - 1) + 1
        year, month = index // 12, index % 12 + 1
        day = min(start.day, days_in_month(year, month))
        return current.replace(year=year, month=month, day=day)

    if frequency == "yearly":
        year = current.year + 1
        day = min(start.day, days_in_month(year, start.month))
        return current.replace(year=year, month=start.month, day=day)

    raise InvalidInputError(f"Unknown frequency {frequency!r}", field="frequency")


def days_until(target: datetime, now: datetime) -> int:
    """Whole days from ``now`` until ``target``, rounded up."""
    return math.ceil((target - now).total_seconds() / 86_400)


def next_occurrence(definition: RecurringTransaction, now: datetime) -> datetime:
    """The start date while it is still ahead, otherwise the stored due date."""
    if definition.start_date > now:
        return definition.start_date
    return definition.next_due_date


def build_upcoming(
    definitions: list[RecurringTransaction],
    now: datetime,
    horizon_days: int,
) -> list[UpcomingTransaction]:
    """
    Project active, unexpired definitions whose next occurrence falls in
    ``[now, now + horizon_days]``, earliest first. Never mutates its input.
    """
    horizon_end = now + timedelta(days=horizon_days)
    upcoming: list[UpcomingTransaction] = []

    for definition in definitions:
        if definition.status != "active":
            continue
        if definition.end_date is not None and definition.end_date < now:
            continue

        scheduled = next_occurrence(definition, now)
        if not now <= scheduled <= horizon_end:
            continue

        upcoming.append(
            UpcomingTransaction(
                id=f"upcoming-{definition.id}-{scheduled.isoformat()}",
                recurring_transaction_id=definition.id,
                name=definition.name,
                type=definition.type,
                amount=definition.amount,
                category=definition.category,
                scheduled_date=scheduled,
                days_until=days_until(scheduled, now),
                credit_product_id=definition.credit_product_id,
                paid_by_credit_product_id=definition.paid_by_credit_product_id,
                goal_id=definition.goal_id,
            )
        )

    return sorted(upcoming, key=lambda item: item.scheduled_date)


def materialize(definition: RecurringTransaction) -> Transaction:
    """Build the concrete transaction for the definition's current due date."""
    return Transaction(
        id=str(uuid4()),
        type=definition.type,
        amount=definition.amount,
        category=definition.category,
        credit_product_id=definition.credit_product_id,
        paid_by_credit_product_id=definition.paid_by_credit_product_id,
        goal_id=definition.goal_id,
        recurring_transaction_id=definition.id,
        # Dated at the due date, not now, so back-dated catch-up lands in the
        # right month.
        created_at=definition.next_due_date,
    )


def advance_definition(
    definition: RecurringTransaction,
    now: datetime,
) -> tuple[RecurringTransaction, Transaction | None]:
    """
    Apply one processing step to a definition.

    Returns the (possibly unchanged) definition and the transaction to
    append, if an occurrence was due. Pure: the input is not modified.
    """
    if definition.status != "active":
        return definition, None

    if definition.end_date is not None and definition.end_date < now:
        return definition.model_copy(update={"status": "completed", "updated_at": now}), None

    if definition.next_due_date > now:
        return definition, None

    transaction = materialize(definition)
    following = next_due_date(definition.next_due_date, definition.frequency, definition.start_date)

    if definition.end_date is not None and following > definition.end_date:
        return definition.model_copy(update={"status": "completed", "updated_at": now}), transaction

    return definition.model_copy(update={"next_due_date": following, "updated_at": now}), transaction


# ---------------------------------------------------------------------------
# RecurringScheduler
# ---------------------------------------------------------------------------


class RecurringScheduler:
    """
    Owns recurring definitions and materializes due occurrences.

    Mutations are applied to the in-memory list first and then persisted.
    When a write fails the in-memory state is kept, ``last_error`` is set, and
    a :class:`~budget_intel.errors.PersistenceError` carrying a replayable
    command is raised.

    Usage::

        scheduler = RecurringScheduler(store, ledger)
        await scheduler.hydrate()
        await scheduler.create(RecurringTransactionInput(
            name="Rent", type="expense", amount=1200.0,
            category="Housing", frequency="monthly",
            start_date=datetime(2026, 1, 31, tzinfo=timezone.utc),
        ))
        result = await scheduler.run_daily()
    """

    def __init__(
        self,
        store: KeyValueStore,
        ledger: Ledger,
        config: SchedulerConfig | None = None,
        clock: Clock | None = None,
        observer: Observer | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._config = config or SchedulerConfig()
        self._clock: Clock = clock or SystemClock()
        self._observer: Observer = observer or LoggingObserver()

        self._definitions: list[RecurringTransaction] = []
        self._last_processed_date: str | None = None
        self._hydrated = False
        self._pass_lock = asyncio.Lock()
        self.last_error: BudgetIntelError | None = None

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------

    @property
    def hydrated(self) -> bool:
        return self._hydrated

    async def hydrate(self) -> None:
        """
        Load definitions and the daily gate from storage. Runs once.

        A load failure is recorded in ``last_error`` and the scheduler falls
        back to an empty definition list instead of raising.
        """
        if self._hydrated:
            logger.debug("Scheduler already hydrated, skipping")
            return

        try:
            raw = await self._store.load(STORAGE_KEY)
            self._definitions = _DEFINITIONS_ADAPTER.validate_python(raw) if raw else []
            gate = await self._store.load(LAST_PROCESSED_KEY)
            self._last_processed_date = gate if isinstance(gate, str) else None
        except Exception as exc:  # noqa: BLE001
            self._definitions = []
            self.last_error = HydrationError(STORAGE_KEY, cause=exc)
            emit(self._observer, "scheduler.hydrate.failed", error=str(exc))
        else:
            emit(self._observer, "scheduler.hydrated", count=len(self._definitions))
        finally:
            self._hydrated = True

    async def retry_hydration(self) -> None:
        self._hydrated = False
        self.last_error = None
        await self.hydrate()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def definitions(self) -> list[RecurringTransaction]:
        """All definitions (deep copies, mutation has no effect)."""
        return [definition.model_copy(deep=True) for definition in self._definitions]

    def get(self, definition_id: str) -> RecurringTransaction | None:
        for definition in self._definitions:
            if definition.id == definition_id:
                return definition.model_copy(deep=True)
        return None

    def list_active(self) -> list[RecurringTransaction]:
        return [d.model_copy(deep=True) for d in self._definitions if d.status == "active"]

    def upcoming(self) -> list[UpcomingTransaction]:
        """Occurrences due within the configured horizon. Read-only."""
        return build_upcoming(
            self._definitions,
            self._clock.now(),
            self._config.upcoming_horizon_days,
        )

    # ------------------------------------------------------------------
    # Definition management
    # ------------------------------------------------------------------

    async def create(
        self,
        data: RecurringTransactionInput | dict[str, Any],
    ) -> RecurringTransaction:
        """
        Create a definition. Its first due date is its start date.

        Raises:
            InvalidInputError: If the input is malformed.
            PersistenceError: If the definition list could not be saved.
        """
        validated = validate_input(RecurringTransactionInput, data)
        now = self._clock.now()

        definition = RecurringTransaction(
            id=str(uuid4()),
            next_due_date=validated.start_date,
            status="active",
            created_at=now,
            updated_at=now,
            **validated.model_dump(),
        )

        self._definitions = [*self._definitions, definition]
        logger.info("Created recurring transaction %s (%s)", definition.id, definition.name)
        await self._persist_definitions()
        emit(self._observer, "scheduler.created", id=definition.id, name=definition.name)
        return definition.model_copy(deep=True)

    async def update(
        self,
        definition_id: str,
        changes: RecurringTransactionUpdate | dict[str, Any],
    ) -> RecurringTransaction:
        """
        Apply a partial update.

        Changing the frequency or start date recomputes ``next_due_date``
        from the current due date with the new schedule.

        Raises:
            EntityNotFoundError: If no definition has ``definition_id``.
            InvalidInputError: If the update is malformed, would leave the end
                date before the start date, or tries to reactivate a
                completed definition.
            PersistenceError: If the definition list could not be saved.
        """
        current = self._require(definition_id)
        validated = validate_input(RecurringTransactionUpdate, changes)
        updates = {
            field: value
            for field, value in validated.model_dump(exclude_unset=True).items()
            if value is not None or field not in _REQUIRED_FIELDS
        }

        if current.status == "completed" and updates.get("status", "completed") != "completed":
            raise InvalidInputError(
                f"Recurring transaction '{definition_id}' is completed and cannot be reactivated.",
                field="status",
            )

        if "frequency" in updates or "start_date" in updates:
            updates["next_due_date"] = next_due_date(
                current.next_due_date,
                updates.get("frequency") or current.frequency,
                updates.get("start_date") or current.start_date,
            )
        updates["updated_at"] = self._clock.now()

        updated = current.model_copy(update=updates)
        if updated.end_date is not None and updated.end_date < updated.start_date:
            raise InvalidInputError("end_date must not be before start_date", field="end_date")

        self._replace(updated)
        await self._persist_definitions()
        emit(self._observer, "scheduler.updated", id=definition_id, fields=sorted(updates))
        return updated.model_copy(deep=True)

    async def delete(self, definition_id: str) -> None:
        """
        Remove a definition. Already materialized transactions stay in the ledger.

        Raises:
            EntityNotFoundError: If no definition has ``definition_id``.
            PersistenceError: If the definition list could not be saved.
        """
        self._require(definition_id)
        self._definitions = [d for d in self._definitions if d.id != definition_id]
        await self._persist_definitions()
        emit(self._observer, "scheduler.deleted", id=definition_id)

    async def pause(self, definition_id: str) -> RecurringTransaction:
        """Pause an active definition. Raises InvalidInputError otherwise."""
        current = self._require(definition_id)
        if current.status != "active":
            raise InvalidInputError(
                f"Only active recurring transactions can be paused (status: {current.status}).",
                field="status",
            )
        return await self.update(definition_id, {"status": "paused"})

    async def resume(self, definition_id: str) -> RecurringTransaction:
        """Resume a paused definition. Raises InvalidInputError otherwise."""
        current = self._require(definition_id)
        if current.status != "paused":
            raise InvalidInputError(
                f"Only paused recurring transactions can be resumed (status: {current.status}).",
                field="status",
            )
        return await self.update(definition_id, {"status": "active"})

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_due(self) -> ProcessResult:
        """
        Run one processing pass over all definitions.

        The whole transition is decided in memory first. Definitions are then
        saved in one batch and only afterwards are the materialized
        transactions appended to the ledger, so a failed save never leaves
        orphan transactions behind. A failed append does not stop the other
        appends; the failures are raised together at the end.

        Raises:
            PersistenceError: If the batch save or any append failed. Its
                command replays the outstanding writes in the same order.
        """
        async with self._pass_lock:
            now = self._clock.now()
            result = ProcessResult()
            advanced: list[RecurringTransaction] = []
            changed = False

            for definition in self._definitions:
                updated, transaction = advance_definition(definition, now)
                if updated is not definition:
                    changed = True
                    if updated.status == "completed":
                        result.completed_ids.append(updated.id)
                if transaction is not None:
                    result.created.append(transaction)
                advanced.append(updated)

            if not changed:
                logger.debug("No recurring transactions due at %s", now.isoformat())
                return result

            self._definitions = advanced

            steps: list[PersistCommand] = [self._definitions_command()]
            if result.created:
                steps.append(AppendTransactionsCommand(self._ledger, result.created))

            await self._run(SequenceCommand(*steps))

            for transaction in result.created:
                logger.info(
                    "Materialized recurring transaction %s for %s",
                    transaction.recurring_transaction_id,
                    transaction.created_at.date().isoformat(),
                )
            emit(
                self._observer,
                "scheduler.processed",
                created=len(result.created),
                completed=len(result.completed_ids),
            )
            return result

    async def run_daily(self) -> ProcessResult:
        """
        Run ``process_due`` unless it already ran today.

        The gate date is persisted before processing. If that write fails the
        pass does not run, so a restart can never process the same day twice.
        """
        today = self._clock.now().date().isoformat()
        if self._last_processed_date == today:
            logger.debug("Recurring transactions already processed for %s", today)
            return ProcessResult(skipped=True)

        previous = self._last_processed_date
        self._last_processed_date = today
        try:
            await self._run(SaveCommand(self._store, LAST_PROCESSED_KEY, today))
        except PersistenceError:
            self._last_processed_date = previous
            raise
        return await self.process_due()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require(self, definition_id: str) -> RecurringTransaction:
        for definition in self._definitions:
            if definition.id == definition_id:
                return definition
        raise EntityNotFoundError("recurring_transaction", definition_id)

    def _replace(self, updated: RecurringTransaction) -> None:
        self._definitions = [
            updated if definition.id == updated.id else definition
            for definition in self._definitions
        ]

    def _definitions_command(self) -> SaveCommand:
        payload = [definition.model_dump(mode="json") for definition in self._definitions]
        return SaveCommand(self._store, STORAGE_KEY, payload)

    async def _persist_definitions(self) -> None:
        await self._run(self._definitions_command())

    async def _run(self, command: PersistCommand) -> None:
        try:
            await run_command(command, self._observer, "scheduler")
        except PersistenceError as exc:
            self.last_error = exc
            raise
        self.last_error = None
