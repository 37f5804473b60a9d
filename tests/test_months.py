# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
"""Tests for month-key helpers and monthly totals."""

from __future__ import annotations

import pytest

from budget_intel.errors import InvalidInputError
from budget_intel.months import (
    days_in_month,
    days_in_month_key,
    is_current_month,
    is_future_month,
    month_key,
    next_month_key,
    parse_month_key,
    previous_month_key,
    shift_month,
)
from budget_intel.totals import calculate_totals, category_breakdown
from budget_intel.types import Transaction

from conftest import utc


# ---------------------------------------------------------------------------
# TestMonthKeys
# ---------------------------------------------------------------------------


class TestMonthKeys:
    def test_month_key_is_zero_padded(self) -> None:
        assert month_key(utc(2026, 3, 1)) == "2026-03"

    def test_parse_month_key(self) -> None:
        assert parse_month_key("2026-11") == (2026, 11)

    @pytest.mark.parametrize("bad", ["2026-13", "2026-00", "26-01", "2026/01", ""])
    def test_parse_rejects_malformed_keys(self, bad: str) -> None:
        with pytest.raises(InvalidInputError):
            parse_month_key(bad)

    def test_shift_crosses_year_boundaries(self) -> None:
        assert next_month_key("2026-12") == "2027-01"
        assert previous_month_key("2026-01") == "2025-12"
        assert shift_month("2026-05", -17) == "2024-12"

    def test_days_in_month_handles_leap_years(self) -> None:
        assert days_in_month(2024, 2) == 29
        assert days_in_month(2026, 2) == 28
        assert days_in_month_key("2026-04") == 30

    def test_current_and_future(self) -> None:
        now = utc(2026, 3, 10)
        assert is_current_month("2026-03", now) is True
        assert is_future_month("2026-04", now) is True
        assert is_future_month("2026-02", now) is False


# ---------------------------------------------------------------------------
# TestTotals
# ---------------------------------------------------------------------------


class TestTotals:
    def test_credit_counts_as_expense_and_income_adds_to_monthly_income(self) -> None:
        transactions = [
            Transaction(type="expense", amount=100.0, category="food"),
            Transaction(type="credit", amount=50.0),
            Transaction(type="saved", amount=200.0),
            Transaction(type="income", amount=300.0),
        ]
        totals = calculate_totals(transactions, monthly_income=1000.0)

        assert totals.income == pytest.approx(1300.0)
        assert totals.expenses == pytest.approx(150.0)
        assert totals.saved == pytest.approx(200.0)
        assert totals.remaining == pytest.approx(950.0)

    def test_negative_remaining_is_floored_for_charts(self) -> None:
        totals = calculate_totals([Transaction(type="expense", amount=700.0)], monthly_income=500.0)
        assert totals.remaining == pytest.approx(-200.0)
        assert totals.chart_remaining == 0.0

    def test_category_breakdown_percentages(self) -> None:
        shares = category_breakdown(
            [
                Transaction(type="expense", amount=75.0, category="food"),
                Transaction(type="expense", amount=25.0, category="fuel"),
                Transaction(type="income", amount=999.0, category="salary"),
            ]
        )
        assert set(shares) == {"food", "fuel"}
        assert shares["food"].percent == pytest.approx(75.0)
        assert shares["fuel"].amount == pytest.approx(25.0)
