# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation
from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field


class SchedulerConfig(BaseModel, frozen=True):
    """
    Configuration for the RecurringScheduler.

    Attributes:
        upcoming_horizon_days: How far ahead (in days) the upcoming view looks.
    """

    upcoming_horizon_days: Annotated[int, Field(ge=0)] = 3


class ForecastConfig(BaseModel, frozen=True):
    """
    Classification thresholds for the MiniBudgetForecastEngine.

    Attributes:
        over_forecast_ratio: A forecast above ``limit * over_forecast_ratio``
            classifies a budget as ``over`` even before the limit is reached.
        warning_forecast_ratio: A forecast above
            ``limit * warning_forecast_ratio`` classifies it as ``warning``.
        warning_spending_ratio: Spending this many times faster than elapsed
            time allows classifies it as ``warning``.
    """

    over_forecast_ratio: Annotated[float, Field(gt=0)] = 1.05
    warning_forecast_ratio: Annotated[float, Field(gt=0)] = 0.95
    warning_spending_ratio: Annotated[float, Field(gt=0)] = 1.2


class NotificationConfig(BaseModel, frozen=True):
    """
    Static trigger thresholds for the NotificationEngine.

    Ratios are fractions of the configured monthly income.

    Attributes:
        first_week_last_day: Last day-of-month counted as the first week.
        first_week_expense_ratio: First-week expenses above this ratio alert.
        mid_month_day: Overspending checks only run before this day.
        mid_month_remaining_ratio: Remaining below this ratio before
            ``mid_month_day`` alerts.
        large_expense_ratio: A single expense above this ratio is a spike.
        large_expense_window_seconds: Suppression window for repeated spikes.
        low_balance_ratio: Remaining below this ratio (but positive) alerts.
    """

    first_week_last_day: Annotated[int, Field(ge=1, le=31)] = 7
    first_week_expense_ratio: Annotated[float, Field(gt=0)] = 0.30
    mid_month_day: Annotated[int, Field(ge=1, le=31)] = 15
    mid_month_remaining_ratio: Annotated[float, Field(gt=0)] = 0.50
    large_expense_ratio: Annotated[float, Field(gt=0)] = 0.20
    large_expense_window_seconds: Annotated[int, Field(ge=0)] = 3_600
    low_balance_ratio: Annotated[float, Field(gt=0)] = 0.20


class EngineConfig(BaseModel, frozen=True):
    """
    Top-level configuration for the BudgetIntelligenceEngine.

    All fields are optional. ``monthly_income`` of zero disables the
    income-based notification rules.

    Example::

        config = EngineConfig(
            currency="EUR",
            monthly_income=3200.0,
            notifications=NotificationConfig(large_expense_ratio=0.25),
        )
        engine = BudgetIntelligenceEngine(ledger, store, config=config)
    """

    currency: str = Field(default="USD", min_length=1)
    monthly_income: Annotated[float, Field(ge=0)] = 0.0
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    forecast: ForecastConfig = Field(default_factory=ForecastConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
