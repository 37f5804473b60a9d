# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class KeyValueStore(ABC):
    """
    Minimal persistence contract for the engine.

    Values are JSON-compatible documents (dicts, lists, strings, numbers).
    Implementors may back this with SQLite, a mobile key-value store, Redis,
    or files. Both operations may raise; retrying is the caller's decision.
    """

    @abstractmethod
    async def load(self, key: str) -> Any | None:
        """Return the document stored under ``key``, or None when absent."""
        ...

    @abstractmethod
    async def save(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any previous document."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``. Deleting a missing key is not an error."""
        ...
