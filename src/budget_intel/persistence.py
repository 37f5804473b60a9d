# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Replayable write commands.

Every write the engine issues after an optimistic in-memory transition is
wrapped in a ``PersistCommand``. The command captures the exact payload that
was decided, so a failed write can be replayed later without recomputing
anything. ``execute`` converts collaborator failures into
:class:`~budget_intel.errors.PersistenceError` carrying the command itself.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from budget_intel.errors import PersistenceError
from budget_intel.observer import Observer, emit

if TYPE_CHECKING:
    from budget_intel.ledger import Ledger
    from budget_intel.storage.interface import KeyValueStore
    from budget_intel.types import Transaction

logger = logging.getLogger("budget_intel.persistence")


class PersistCommand(ABC):
    """A single deterministic write that can be issued again on failure."""

    @property
    @abstractmethod
    def key(self) -> str:
        """Storage key or ledger operation name, used in errors and events."""
        ...

    @abstractmethod
    async def _write(self) -> None:
        ...

    async def execute(self) -> None:
        """
        Issue the write.

        Raises:
            PersistenceError: Wrapping whatever the collaborator raised.
        """
        try:
            await self._write()
        except PersistenceError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise PersistenceError(self.key, command=self, cause=exc) from exc

    async def replay(self) -> None:
        """Re-issue the identical write."""
        await self.execute()


class SaveCommand(PersistCommand):
    """Write one JSON-compatible document to the key-value store."""

    def __init__(self, store: KeyValueStore, key: str, value: Any) -> None:
        self._store = store
        self._key = key
        self._value = value

    @property
    def key(self) -> str:
        return self._key

    @property
    def value(self) -> Any:
        return self._value

    async def _write(self) -> None:
        await self._store.save(self._key, self._value)


class AppendTransactionsCommand(PersistCommand):
    """
    Append transactions to the ledger, one by one.

    Appends that succeed are dropped from the command, so a replay only
    re-sends what is still missing.
    """

    def __init__(self, ledger: Ledger, transactions: list[Transaction]) -> None:
        self._ledger = ledger
        self._pending: list[Transaction] = list(transactions)
        self.appended: list[Transaction] = []

    @property
    def key(self) -> str:
        return "ledger.append"

    @property
    def pending(self) -> list[Transaction]:
        return list(self._pending)

    async def _write(self) -> None:
        failures: list[tuple[Transaction, BaseException]] = []
        for transaction in self._pending:
            try:
                await self._ledger.append_transaction(transaction)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Ledger append failed for %s: %s", transaction.id, exc)
                failures.append((transaction, exc))
            else:
                self.appended.append(transaction)

        self._pending = [transaction for transaction, _ in failures]
        if failures:
            raise PersistenceError(self.key, command=self, cause=failures[0][1])


class SequenceCommand(PersistCommand):
    """
    Run commands in order, stopping at the first failure.

    Completed steps are not repeated on replay.
    """

    def __init__(self, *commands: PersistCommand) -> None:
        self._remaining: list[PersistCommand] = list(commands)

    @property
    def key(self) -> str:
        if not self._remaining:
            return "sequence"
        return self._remaining[0].key

    async def _write(self) -> None:
        while self._remaining:
            step = self._remaining[0]
            try:
                await step.execute()
            except PersistenceError as exc:
                raise PersistenceError(step.key, command=self, cause=exc.cause) from exc
            self._remaining.pop(0)


async def run_command(
    command: PersistCommand,
    observer: Observer,
    component: str,
) -> None:
    """
    Execute ``command``, reporting the outcome to ``observer``.

    Raises:
        PersistenceError: When the write fails. The caller's in-memory state
            is expected to already reflect the decided transition.
    """
    try:
        await command.execute()
    except PersistenceError as exc:
        emit(
            observer,
            f"{component}.persist.failed",
            key=exc.key,
            error=str(exc.cause) if exc.cause is not None else exc.message,
        )
        raise
    emit(observer, f"{component}.persist.saved", key=command.key)
