# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from budget_intel.storage.file import FileStore
from budget_intel.storage.interface import KeyValueStore
from budget_intel.storage.memory import MemoryStore

__all__ = ["KeyValueStore", "MemoryStore", "FileStore"]
