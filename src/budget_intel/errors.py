# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

if TYPE_CHECKING:
    from budget_intel.persistence import PersistCommand

ModelT = TypeVar("ModelT", bound=BaseModel)


class BudgetIntelError(Exception):
    """Base class for all budget-intelligence errors."""

    def __init__(self, message: str, code: str = "BUDGET_INTEL_ERROR") -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class InvalidInputError(BudgetIntelError, ValueError):
    """
    Raised when caller input is rejected before any state is mutated.

    Attributes:
        field: The offending field name, when a single field is at fault.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, code="INVALID_INPUT")
        self.field = field

    @classmethod
    def from_validation_error(cls, error: ValidationError) -> InvalidInputError:
        """Collapse a pydantic ValidationError into a single InvalidInputError."""
        details = error.errors()
        first = details[0] if details else {}
        location = first.get("loc") or ()
        field = ".".join(str(part) for part in location) or None
        reason = first.get("msg", str(error))
        message = f"{field}: {reason}" if field else reason
        return cls(message, field=field)


class EntityNotFoundError(BudgetIntelError, LookupError):
    """
    Raised when an operation targets a record that no longer exists.

    Attributes:
        kind: The record kind (``'recurring_transaction'``, ``'mini_budget'``,
            ``'notification'``, ``'transaction'``).
        entity_id: The identifier that was looked up.
    """

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(
            f"No {kind} found with id '{entity_id}'. Refresh and try again.",
            code="NOT_FOUND",
        )
        self.kind = kind
        self.entity_id = entity_id


class PersistenceError(BudgetIntelError):
    """
    Raised when a write fails after the in-memory state was already updated.

    The in-memory transition is kept. ``command`` re-issues the identical
    write; callers retry with ``await error.retry()``.

    Attributes:
        key: Storage key (or ledger operation) that failed.
        command: The replayable write.
        cause: The underlying exception raised by the collaborator.
    """

    def __init__(
        self,
        key: str,
        command: PersistCommand,
        cause: BaseException | None = None,
    ) -> None:
        cause_text = f": {cause}" if cause is not None else ""
        super().__init__(
            f"Failed to persist '{key}'{cause_text}",
            code="PERSISTENCE_FAILED",
        )
        self.key = key
        self.command = command
        self.cause = cause

    async def retry(self) -> None:
        """Replay the failed write. Raises PersistenceError again on failure."""
        await self.command.replay()


class HydrationError(BudgetIntelError):
    """Raised (and recorded) when stored state cannot be loaded."""

    def __init__(self, key: str, cause: BaseException | None = None) -> None:
        cause_text = f": {cause}" if cause is not None else ""
        super().__init__(
            f"Failed to load '{key}'{cause_text}",
            code="HYDRATION_FAILED",
        )
        self.key = key
        self.cause = cause


def validate_input(model: type[ModelT], data: ModelT | dict[str, Any]) -> ModelT:
    """
    Validate caller input against ``model``.

    Accepts either a model instance or a plain dict.

    Raises:
        InvalidInputError: Instead of pydantic's ValidationError.
    """
    payload = data.model_dump(exclude_unset=True) if isinstance(data, BaseModel) else data
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise InvalidInputError.from_validation_error(exc) from exc
