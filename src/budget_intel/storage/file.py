# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
File-backed key-value store.

Each key is stored as one JSON document at ``<directory>/<key>.json``.
Writes go to a temporary sibling file first and are then renamed over the
target, so a crash mid-write never leaves a truncated document behind.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any
from uuid import uuid4

import aiofiles
import aiofiles.os

from budget_intel.storage.interface import KeyValueStore

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class FileStore(KeyValueStore):
    """
    Persistent JSON-per-key storage backend.

    Parameters
    ----------
    directory:
        Directory holding the documents. Created if it does not exist.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Storage key {key!r} contains unsupported characters")
        return self._directory / f"{key}.json"

    async def load(self, key: str) -> Any | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        async with aiofiles.open(path, mode="r", encoding="utf-8") as file_handle:
            raw = await file_handle.read()
        if not raw.strip():
            return None
        return json.loads(raw)

    async def save(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        temp_path = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
        payload = json.dumps(value, ensure_ascii=False, sort_keys=True)
        async with aiofiles.open(temp_path, mode="w", encoding="utf-8") as file_handle:
            await file_handle.write(payload)
        await aiofiles.os.replace(temp_path, path)

    async def delete(self, key: str) -> None:
        path = self.path_for(key)
        if path.exists():
            await aiofiles.os.remove(path)
