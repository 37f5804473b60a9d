# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
"""Tests for key-value stores, the in-memory ledger, and write commands."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from budget_intel.errors import EntityNotFoundError, PersistenceError
from budget_intel.ledger import DirtyMonthQueue, MemoryLedger
from budget_intel.observer import RecordingObserver, emit
from budget_intel.persistence import SaveCommand, SequenceCommand, run_command
from budget_intel.storage import FileStore, MemoryStore
from budget_intel.types import Transaction

from conftest import FailingStore, utc


# ---------------------------------------------------------------------------
# TestFileStore
# ---------------------------------------------------------------------------


class TestFileStore:
    def test_save_and_load_round_trip(self, tmp_path: Path) -> None:
        store = FileStore(tmp_path / "data")

        async def scenario() -> None:
            await store.save("mini_budgets", [{"id": "b1", "limit_amount": 300.0}])
            assert await store.load("mini_budgets") == [{"id": "b1", "limit_amount": 300.0}]

        asyncio.run(scenario())
        on_disk = json.loads((tmp_path / "data" / "mini_budgets.json").read_text(encoding="utf-8"))
        assert on_disk[0]["id"] == "b1"

    def test_missing_and_empty_documents_load_as_none(self, tmp_path: Path) -> None:
        store = FileStore(tmp_path)
        (tmp_path / "notifications.json").write_text("  ", encoding="utf-8")

        assert asyncio.run(store.load("recurring_transactions")) is None
        assert asyncio.run(store.load("notifications")) is None

    def test_save_leaves_no_temporary_files(self, tmp_path: Path) -> None:
        store = FileStore(tmp_path)

        async def scenario() -> None:
            await store.save("notified_goals", ["Vacation"])
            await store.save("notified_goals", ["Vacation", "Car"])

        asyncio.run(scenario())
        assert sorted(p.name for p in tmp_path.iterdir()) == ["notified_goals.json"]

    def test_delete_is_idempotent(self, tmp_path: Path) -> None:
        store = FileStore(tmp_path)

        async def scenario() -> None:
            await store.save("recurring_last_processed_date", "2026-03-10")
            await store.delete("recurring_last_processed_date")
            await store.delete("recurring_last_processed_date")
            assert await store.load("recurring_last_processed_date") is None

        asyncio.run(scenario())

    def test_unsafe_keys_are_rejected(self, tmp_path: Path) -> None:
        store = FileStore(tmp_path)
        with pytest.raises(ValueError):
            asyncio.run(store.save("../escape", {}))


# ---------------------------------------------------------------------------
# TestMemoryStore
# ---------------------------------------------------------------------------


class TestMemoryStore:
    def test_documents_are_copied(self) -> None:
        store = MemoryStore()
        document = {"items": [1, 2]}

        async def scenario() -> None:
            await store.save("k", document)
            document["items"].append(3)
            loaded = await store.load("k")
            loaded["items"].append(4)
            assert await store.load("k") == {"items": [1, 2]}

        asyncio.run(scenario())
        assert store.keys() == ["k"]


# ---------------------------------------------------------------------------
# TestMemoryLedger
# ---------------------------------------------------------------------------


class TestMemoryLedger:
    def test_mutations_publish_affected_months(self) -> None:
        ledger = MemoryLedger()
        published: list[str] = []
        unsubscribe = ledger.subscribe(published.append)
        tx = Transaction(type="expense", amount=10.0, created_at=utc(2026, 3, 31))

        async def scenario() -> None:
            await ledger.append_transaction(tx)
            await ledger.update_transaction(tx.model_copy(update={"created_at": utc(2026, 4, 1)}))
            await ledger.delete_transaction(tx.id)

        asyncio.run(scenario())
        assert published == ["2026-03", "2026-03", "2026-04", "2026-04"]

        unsubscribe()
        asyncio.run(ledger.append_transaction(Transaction(type="income", amount=1.0)))
        assert len(published) == 4

    def test_transactions_are_grouped_by_month(self) -> None:
        ledger = MemoryLedger(
            [
                Transaction(type="expense", amount=1.0, created_at=utc(2026, 2, 1)),
                Transaction(type="expense", amount=2.0, created_at=utc(2026, 3, 1)),
            ]
        )
        assert ledger.months() == ["2026-02", "2026-03"]
        assert [tx.amount for tx in ledger.transactions_for_month("2026-03")] == [2.0]
        assert ledger.transactions_for_month("2025-01") == []

    def test_duplicate_and_unknown_ids(self) -> None:
        tx = Transaction(type="expense", amount=1.0)
        ledger = MemoryLedger([tx])

        with pytest.raises(ValueError):
            asyncio.run(ledger.append_transaction(tx))
        with pytest.raises(EntityNotFoundError):
            asyncio.run(ledger.delete_transaction("missing"))

    def test_dirty_month_queue_coalesces_and_sorts(self) -> None:
        queue = DirtyMonthQueue()
        for month in ["2026-04", "2026-03", "2026-04"]:
            queue.mark(month)

        assert len(queue) == 2
        assert "2026-03" in queue
        assert queue.drain() == ["2026-03", "2026-04"]
        assert len(queue) == 0


# ---------------------------------------------------------------------------
# TestPersistCommands
# ---------------------------------------------------------------------------


class TestPersistCommands:
    def test_sequence_resumes_at_the_failed_step(self) -> None:
        store = FailingStore()
        store.fail_saves.add("second")
        command = SequenceCommand(
            SaveCommand(store, "first", 1),
            SaveCommand(store, "second", 2),
            SaveCommand(store, "third", 3),
        )

        async def scenario() -> None:
            with pytest.raises(PersistenceError) as exc_info:
                await command.execute()
            assert exc_info.value.key == "second"
            assert isinstance(exc_info.value.cause, OSError)

            store.fail_saves.clear()
            await exc_info.value.retry()

        asyncio.run(scenario())
        assert store.save_calls == ["first", "second", "second", "third"]

    def test_run_command_reports_to_observer(self) -> None:
        store = FailingStore()
        observer = RecordingObserver()
        store.fail_saves.add("broken")

        async def scenario() -> None:
            await run_command(SaveCommand(store, "fine", 1), observer, "forecast")
            with pytest.raises(PersistenceError):
                await run_command(SaveCommand(store, "broken", 1), observer, "forecast")

        asyncio.run(scenario())
        assert observer.kinds() == ["forecast.persist.saved", "forecast.persist.failed"]
        assert observer.events[1].data["key"] == "broken"

    def test_failing_observer_never_escapes(self) -> None:
        class ExplodingObserver:
            def on_event(self, kind: str, data: dict) -> None:
                raise RuntimeError("telemetry down")

        emit(ExplodingObserver(), "scheduler.processed", created=1)
