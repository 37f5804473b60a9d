# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""
Calendar-month helpers.

Months are identified by ``YYYY-MM`` keys. Keys sort lexicographically in
chronological order, so plain string comparison orders months.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime

from budget_intel.errors import InvalidInputError

_MONTH_KEY_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def month_key(value: date | datetime) -> str:
    """Return the ``YYYY-MM`` key of the month containing ``value``."""
    return f"{value.year:04d}-{value.month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    """
    Split a month key into ``(year, month)``.

    Raises:
        InvalidInputError: If ``key`` is not a ``YYYY-MM`` string.
    """
    match = _MONTH_KEY_PATTERN.match(key)
    if match is None:
        raise InvalidInputError(f"'{key}' is not a valid YYYY-MM month key.", field="month")
    return int(match.group(1)), int(match.group(2))


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def days_in_month_key(key: str) -> int:
    year, month = parse_month_key(key)
    return days_in_month(year, month)


def shift_month(key: str, months: int) -> str:
    """Return the key ``months`` calendar months after (or before) ``key``."""
    year, month = parse_month_key(key)
    index = year * 12 + (month - 1) + months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def previous_month_key(key: str) -> str:
    return shift_month(key, -1)


def next_month_key(key: str) -> str:
    return shift_month(key, 1)


def is_current_month(key: str, now: datetime) -> bool:
    return key == month_key(now)


def is_future_month(key: str, now: datetime) -> bool:
    parse_month_key(key)
    return key > month_key(now)
