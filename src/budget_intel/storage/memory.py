# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

import copy
from typing import Any

from budget_intel.storage.interface import KeyValueStore


class MemoryStore(KeyValueStore):
    """
    In-process memory store, suitable for single-process use and testing.

    Documents are deep-copied on the way in and out so callers can never
    mutate stored state by accident. All state is lost when the process exits.
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._documents: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def load(self, key: str) -> Any | None:
        if key not in self._documents:
            return None
        return copy.deepcopy(self._documents[key])

    async def save(self, key: str, value: Any) -> None:
        self._documents[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._documents.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._documents)
