# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Out-of-band event sink for the engine components.

Components report lifecycle events and failures through a narrow
``Observer`` protocol instead of calling a telemetry vendor directly. The
default ``LoggingObserver`` forwards events to the standard ``logging``
module; swap in any object with an ``on_event`` method to ship events
elsewhere.

Reporting is best effort: a failing observer is logged and ignored and
never changes the component's control flow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger("budget_intel.events")

# Event kinds that represent failures are logged at WARNING level.
FAILURE_SUFFIXES: tuple[str, ...] = (".failed", ".error")


@runtime_checkable
class Observer(Protocol):
    """Protocol for receiving engine events. Injected for testability."""

    def on_event(self, kind: str, data: dict[str, Any]) -> None:
        """Receive one event. Must not block."""
        ...


class LoggingObserver:
    """Writes every event to the ``budget_intel.events`` logger."""

    def __init__(self, event_logger: logging.Logger | None = None) -> None:
        self._logger = event_logger or logger

    def on_event(self, kind: str, data: dict[str, Any]) -> None:
        level = logging.WARNING if kind.endswith(FAILURE_SUFFIXES) else logging.INFO
        self._logger.log(level, "%s %s", kind, data)


@dataclass
class RecordedEvent:
    kind: str
    data: dict[str, Any]


@dataclass
class RecordingObserver:
    """Keeps events in memory. Useful in tests and for diagnostics dumps."""

    events: list[RecordedEvent] = field(default_factory=list)

    def on_event(self, kind: str, data: dict[str, Any]) -> None:
        self.events.append(RecordedEvent(kind=kind, data=dict(data)))

    def kinds(self) -> list[str]:
        return [event.kind for event in self.events]


def emit(observer: Observer, kind: str, **data: Any) -> None:
    """Deliver an event without letting observer failures escape."""
    try:
        observer.on_event(kind, data)
    except Exception:  # noqa: BLE001
        logger.exception("Observer %r failed while handling %s", observer, kind)
