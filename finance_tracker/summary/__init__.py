"""Spending summary package."""

from finance_tracker.summary.aggregator import (
    SummaryPeriod,
    daily_totals,
    describe_period,
    filter_window,
    group_by_month,
    resolve_period,
    search_transactions,
    summarize,
)

__all__ = [
    "SummaryPeriod",
    "daily_totals",
    "describe_period",
    "filter_window",
    "group_by_month",
    "resolve_period",
    "search_transactions",
    "summarize",
]
