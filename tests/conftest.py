# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
"""Shared fixtures for budget-intelligence tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from budget_intel.clock import FixedClock
from budget_intel.ledger import MemoryLedger
from budget_intel.observer import RecordingObserver
from budget_intel.storage.memory import MemoryStore
from budget_intel.types import Transaction


def utc(year: int, month: int, day: int, hour: int = 12, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class FailingStore(MemoryStore):
    """A MemoryStore whose writes (or reads) fail while the flags are set."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        super().__init__(initial)
        self.fail_saves: set[str] = set()
        self.fail_loads = False
        self.save_calls: list[str] = []

    async def load(self, key: str) -> Any | None:
        if self.fail_loads:
            raise OSError(f"load failed for {key}")
        return await super().load(key)

    async def save(self, key: str, value: Any) -> None:
        self.save_calls.append(key)
        if key in self.fail_saves:
            raise OSError(f"disk full while saving {key}")
        await super().save(key, value)


class FailingLedger(MemoryLedger):
    """A MemoryLedger whose appends fail while ``fail_appends`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_appends = False

    async def append_transaction(self, transaction: Transaction) -> None:
        if self.fail_appends:
            raise ConnectionError("ledger unavailable")
        await super().append_transaction(transaction)


@pytest.fixture
def clock() -> FixedClock:
    """A clock frozen at 2026-03-10 12:00 UTC."""
    return FixedClock(utc(2026, 3, 10))


@pytest.fixture
def store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def ledger() -> FailingLedger:
    return FailingLedger()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()
