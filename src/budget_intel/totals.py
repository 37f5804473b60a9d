# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

from __future__ import annotations

from budget_intel.types import CategoryShare, MonthlyTotals, Transaction

# Credit payments pay down debt, so they count as outgoing money.
EXPENSE_TYPES: frozenset[str] = frozenset({"expense", "credit"})


def calculate_totals(transactions: list[Transaction], monthly_income: float) -> MonthlyTotals:
    """
    Summarize one month of transactions.

    ``income`` is the configured monthly income plus any income transactions.
    ``remaining`` may go negative; ``chart_remaining`` is floored at zero.
    Transactions are assumed to be already filtered to the month.
    """
    expenses = sum(max(tx.amount, 0.0) for tx in transactions if tx.type in EXPENSE_TYPES)
    saved = sum(max(tx.amount, 0.0) for tx in transactions if tx.type == "saved")
    extra_income = sum(max(tx.amount, 0.0) for tx in transactions if tx.type == "income")

    income = monthly_income + extra_income
    remaining = income - (expenses + saved)

    return MonthlyTotals(
        income=income,
        expenses=expenses,
        saved=saved,
        remaining=remaining,
        chart_remaining=max(remaining, 0.0),
    )


def category_breakdown(transactions: list[Transaction]) -> dict[str, CategoryShare]:
    """
    Outgoing money per category with its share of the month's total.

    Uncategorized transactions count toward the total but get no entry.
    """
    outgoing = [tx for tx in transactions if tx.type in EXPENSE_TYPES]
    total = sum(tx.amount for tx in outgoing) or 1.0

    amounts: dict[str, float] = {}
    for tx in outgoing:
        if not tx.category:
            continue
        amounts[tx.category] = amounts.get(tx.category, 0.0) + tx.amount

    return {
        category: CategoryShare(amount=amount, percent=amount / total * 100.0)
        for category, amount in amounts.items()
    }
