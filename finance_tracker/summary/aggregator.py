"""
Spending Summary Aggregation

DESIGN DECISION: Summaries are DETERMINISTIC folds over the in-memory
transaction list. They never touch the store and are recomputed for
every query, so they can't go stale relative to the ledger.

Windows are inclusive on both ends. A date bound covers the whole day:
a start date begins at 00:00 UTC and an end date runs to 23:59:59.999999.
"""

from collections import OrderedDict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, Optional, Union

from finance_tracker.models.transaction import (
    ZERO,
    CategoryTotal,
    DailyTotal,
    SpendingSummary,
    Transaction,
    to_money,
    utc_now,
)


Bound = Union[date, datetime, None]


class SummaryPeriod(str, Enum):
    """Preset windows offered by the dashboard."""
    THIS_MONTH = "this_month"
    LAST_7_DAYS = "last_7_days"
    LAST_2_DAYS = "last_2_days"
    YESTERDAY = "yesterday"
    CUSTOM = "custom"
    ALL_TIME = "all_time"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_start(start: Bound) -> Optional[datetime]:
    if start is None:
        return None
    if isinstance(start, datetime):
        return _as_utc(start)
    return datetime.combine(start, time.min, tzinfo=timezone.utc)


def normalize_end(end: Bound) -> Optional[datetime]:
    if end is None:
        return None
    if isinstance(end, datetime):
        return _as_utc(end)
    return datetime.combine(end, time.max, tzinfo=timezone.utc)


def resolve_period(
    period: Union[SummaryPeriod, str],
    now: Optional[datetime] = None,
    custom_start: Bound = None,
    custom_end: Bound = None,
) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    Turn a preset period into a (start, end) window.

    Raises:
        ValueError: For a custom period missing either bound,
                    or with the end before the start
    """
    period = SummaryPeriod(period)
    now = _as_utc(now or utc_now())
    today_start = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)

    if period == SummaryPeriod.THIS_MONTH:
        return today_start.replace(day=1), now
    if period == SummaryPeriod.LAST_7_DAYS:
        return now - timedelta(days=7), now
    if period == SummaryPeriod.LAST_2_DAYS:
        return now - timedelta(days=2), now
    if period == SummaryPeriod.YESTERDAY:
        yesterday = (now - timedelta(days=1)).date()
        return normalize_start(yesterday), normalize_end(yesterday)
    if period == SummaryPeriod.CUSTOM:
        if custom_start is None or custom_end is None:
            raise ValueError("A custom period needs both a start and an end")
        start, end = normalize_start(custom_start), normalize_end(custom_end)
        if end < start:
            raise ValueError("Period end cannot be before start")
        return start, end
    return None, None


def in_window(transaction: Transaction, start: Optional[datetime], end: Optional[datetime]) -> bool:
    created_at = _as_utc(transaction.created_at)
    if start is not None and created_at < start:
        return False
    if end is not None and created_at > end:
        return False
    return True


def filter_window(
    transactions: Iterable[Transaction],
    start: Bound = None,
    end: Bound = None,
) -> list[Transaction]:
    """Transactions created inside the inclusive window."""
    start_at, end_at = normalize_start(start), normalize_end(end)
    return [t for t in transactions if in_window(t, start_at, end_at)]


def describe_period(start: Bound, end: Bound) -> str:
    """Format a window for display."""
    start_at, end_at = normalize_start(start), normalize_end(end)
    if start_at and end_at:
        date_from, date_to = start_at.date(), end_at.date()
        if date_from == date_to:
            return f"on {date_from.strftime('%d %b %Y')}"
        elif date_from.month == date_to.month and date_from.year == date_to.year:
            return f"from {date_from.strftime('%d')} to {date_to.strftime('%d %b %Y')}"
        elif date_from.year == date_to.year:
            return f"from {date_from.strftime('%d %b')} to {date_to.strftime('%d %b %Y')}"
        else:
            return f"from {date_from.strftime('%d %b %Y')} to {date_to.strftime('%d %b %Y')}"
    elif start_at:
        return f"since {start_at.strftime('%d %b %Y')}"
    elif end_at:
        return f"until {end_at.strftime('%d %b %Y')}"
    return "all time"


def summarize(
    transactions: Iterable[Transaction],
    start: Bound = None,
    end: Bound = None,
) -> SpendingSummary:
    """
    Spending and deposit totals for a window.

    Only expenses contribute to the category breakdown and the average.
    Categories outside the known set are bucketed under their literal value.
    """
    start_at, end_at = normalize_start(start), normalize_end(end)
    window = [t for t in transactions if in_window(t, start_at, end_at)]

    total_spent = ZERO
    total_deposits = ZERO
    expense_count = 0
    categories: dict[str, CategoryTotal] = {}

    for transaction in window:
        if transaction.is_deposit:
            total_deposits += transaction.total_cost
            continue

        total_spent += transaction.total_cost
        expense_count += 1
        bucket = categories.setdefault(transaction.category, CategoryTotal())
        bucket.count += 1
        bucket.total += transaction.total_cost

    average = to_money(total_spent / expense_count) if expense_count else ZERO

    return SpendingSummary(
        start=start_at,
        end=end_at,
        total_spent=total_spent,
        total_deposits=total_deposits,
        transaction_count=len(window),
        expense_count=expense_count,
        average_expense=average,
        categories=categories,
        period_description=describe_period(start_at, end_at),
    )


def daily_totals(
    transactions: Iterable[Transaction],
    start: Bound = None,
    end: Bound = None,
) -> list[DailyTotal]:
    """Expense totals per calendar day (UTC), oldest first."""
    days: dict[date, DailyTotal] = {}
    for transaction in filter_window(transactions, start, end):
        if transaction.is_deposit:
            continue
        day = _as_utc(transaction.created_at).date()
        entry = days.setdefault(day, DailyTotal(day=day))
        entry.total += transaction.total_cost
        entry.count += 1
    return [days[day] for day in sorted(days)]


def search_transactions(
    transactions: Iterable[Transaction],
    query: str,
    by: str = "item",
) -> list[Transaction]:
    """
    Filter by item name (case-insensitive substring) or exact total amount.

    A blank query matches everything; an amount query that is not a
    number matches nothing.
    """
    transactions = list(transactions)
    query = (query or "").strip()
    if not query:
        return transactions

    if by == "item":
        needle = query.lower()
        return [t for t in transactions if needle in t.item_name.lower()]
    if by == "amount":
        try:
            amount = to_money(Decimal(query))
        except (InvalidOperation, ValueError):
            return []
        return [t for t in transactions if t.total_cost == amount]
    raise ValueError(f"Unknown search type: {by}")


def group_by_month(transactions: Iterable[Transaction]) -> "OrderedDict[str, list[Transaction]]":
    """Group transactions under YYYY-MM keys, keeping their order."""
    groups: "OrderedDict[str, list[Transaction]]" = OrderedDict()
    for transaction in transactions:
        key = _as_utc(transaction.created_at).strftime("%Y-%m")
        groups.setdefault(key, []).append(transaction)
    return groups
