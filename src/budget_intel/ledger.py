# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Ledger contract, an in-process ledger, and the dirty-month queue.

The ledger owns the authoritative transactions grouped by calendar month.
Every mutation publishes the affected month key(s) to subscribers; the
engine collects them in a :class:`DirtyMonthQueue` and re-derives only the
months that changed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable

from budget_intel.errors import EntityNotFoundError
from budget_intel.months import month_key
from budget_intel.types import Transaction

logger = logging.getLogger("budget_intel.ledger")

LedgerListener = Callable[[str], None]


class Ledger(ABC):
    """
    Read/append contract the engine needs from the ledger store.

    ``transactions_for_month`` order is unspecified; consumers sort when it
    matters. Write operations are async and may raise.
    """

    def __init__(self) -> None:
        self._listeners: list[LedgerListener] = []

    @abstractmethod
    def transactions_for_month(self, month: str) -> list[Transaction]:
        ...

    @abstractmethod
    def months(self) -> list[str]:
        """Month keys that currently hold at least one transaction."""
        ...

    @abstractmethod
    async def append_transaction(self, transaction: Transaction) -> None:
        ...

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> None:
        ...

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> None:
        ...

    # ─── Change events ────────────────────────────────────────────────────────

    def subscribe(self, listener: LedgerListener) -> Callable[[], None]:
        """
        Register ``listener`` for month-change events.

        Returns a callable that removes the subscription.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, month: str) -> None:
        for listener in list(self._listeners):
            listener(month)


class MemoryLedger(Ledger):
    """
    In-process ledger grouped by month.

    Suitable for tests and for hosts that keep their ledger in memory and
    persist it themselves.
    """

    def __init__(self, transactions: list[Transaction] | None = None) -> None:
        super().__init__()
        self._by_month: dict[str, list[Transaction]] = {}
        self._month_by_id: dict[str, str] = {}
        for transaction in transactions or []:
            self._insert(transaction)

    def transactions_for_month(self, month: str) -> list[Transaction]:
        return [transaction.model_copy(deep=True) for transaction in self._by_month.get(month, [])]

    def months(self) -> list[str]:
        return sorted(month for month, entries in self._by_month.items() if entries)

    def all_transactions(self) -> list[Transaction]:
        return [
            transaction.model_copy(deep=True)
            for month in sorted(self._by_month)
            for transaction in self._by_month[month]
        ]

    def get(self, transaction_id: str) -> Transaction | None:
        month = self._month_by_id.get(transaction_id)
        if month is None:
            return None
        for transaction in self._by_month[month]:
            if transaction.id == transaction_id:
                return transaction.model_copy(deep=True)
        return None

    async def append_transaction(self, transaction: Transaction) -> None:
        if transaction.id in self._month_by_id:
            raise ValueError(f"Transaction {transaction.id!r} is already in the ledger")
        month = self._insert(transaction)
        logger.debug("Appended transaction %s to %s", transaction.id, month)
        self._publish(month)

    async def update_transaction(self, transaction: Transaction) -> None:
        old_month = self._remove(transaction.id)
        new_month = self._insert(transaction)
        self._publish(old_month)
        if new_month != old_month:
            self._publish(new_month)

    async def delete_transaction(self, transaction_id: str) -> None:
        month = self._remove(transaction_id)
        self._publish(month)

    # ─── Private helpers ──────────────────────────────────────────────────────

    def _insert(self, transaction: Transaction) -> str:
        month = month_key(transaction.created_at)
        self._by_month.setdefault(month, []).append(transaction.model_copy(deep=True))
        self._month_by_id[transaction.id] = month
        return month

    def _remove(self, transaction_id: str) -> str:
        month = self._month_by_id.pop(transaction_id, None)
        if month is None:
            raise EntityNotFoundError("transaction", transaction_id)
        self._by_month[month] = [
            entry for entry in self._by_month[month] if entry.id != transaction_id
        ]
        return month


class DirtyMonthQueue:
    """
    Set of month keys awaiting re-derivation.

    Marks are coalesced: a month changed many times between two drains is
    recomputed once.
    """

    def __init__(self) -> None:
        self._months: set[str] = set()

    def __len__(self) -> int:
        return len(self._months)

    def __contains__(self, month: object) -> bool:
        return month in self._months

    def mark(self, month: str) -> None:
        self._months.add(month)

    def drain(self) -> list[str]:
        """Return all pending months in chronological order and clear the queue."""
        pending = sorted(self._months)
        self._months.clear()
        return pending
