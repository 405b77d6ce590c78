"""Monthly financial aggregates derived from the transaction and expense logs.

Everything here is a pure function of its inputs: no state is stored and
nothing is written back. Records are assigned to a period or a day by the
``YYYY-MM`` / ``YYYY-MM-DD`` prefix of their stored ISO timestamp, which is
the local calendar date the record was created on.
"""

from __future__ import annotations

import calendar
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from . import core_logic, log
from .data_manager import ExpenseRow, TransactionRow

ZERO = Decimal("0")


@dataclass(frozen=True)
class ReportingPeriod:
    """A calendar month."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {self.month}")

    @classmethod
    def from_string(cls, value: str) -> "ReportingPeriod":
        """Parse ``YYYY-MM``.

        Raises:
            ValueError: If ``value`` is not a valid year-month.
        """

        try:
            year_text, month_text = value.strip().split("-")
            return cls(int(year_text), int(month_text))
        except ValueError as exc:
            raise ValueError(f"Invalid reporting period '{value}', expected YYYY-MM") from exc

    @classmethod
    def containing(cls, moment: date | datetime) -> "ReportingPeriod":
        return cls(moment.year, moment.month)

    @property
    def prefix(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def days_in_month(self) -> int:
        return calendar.monthrange(self.year, self.month)[1]

    def contains(self, iso_timestamp: str) -> bool:
        return iso_timestamp.startswith(self.prefix)

    def __str__(self) -> str:
        return self.prefix


@dataclass(frozen=True)
class DailyRevenue:
    day: date
    revenue: Decimal


@dataclass(frozen=True)
class PeriodReport:
    """Aggregates shown on the admin dashboard for one month."""

    period: ReportingPeriod
    revenue: Decimal
    gross_profit: Decimal
    expense_total: Decimal
    net_profit: Decimal
    transaction_count: int
    best_seller: Optional[str]
    daily_series: Tuple[DailyRevenue, ...]


def transactions_in(period: ReportingPeriod, transactions: Iterable[TransactionRow]) -> List[TransactionRow]:
    return [transaction for transaction in transactions if period.contains(transaction.timestamp_iso)]


def expenses_in(period: ReportingPeriod, expenses: Iterable[ExpenseRow]) -> List[ExpenseRow]:
    return [expense for expense in expenses if period.contains(expense.date_iso)]


def revenue(period: ReportingPeriod, transactions: Iterable[TransactionRow]) -> Decimal:
    """Sum of stored totals for transactions dated in ``period``."""

    return sum((transaction.total for transaction in transactions_in(period, transactions)), ZERO)


def gross_profit(period: ReportingPeriod, transactions: Iterable[TransactionRow]) -> Decimal:
    """Sum of the profit captured on each transaction at sale time.

    Profit is never recomputed from the current catalog cost.
    """

    return sum((transaction.profit for transaction in transactions_in(period, transactions)), ZERO)


def expense_total(period: ReportingPeriod, expenses: Iterable[ExpenseRow]) -> Decimal:
    return sum((expense.amount for expense in expenses_in(period, expenses)), ZERO)


def net_profit(
    period: ReportingPeriod,
    transactions: Iterable[TransactionRow],
    expenses: Iterable[ExpenseRow],
) -> Decimal:
    return gross_profit(period, transactions) - expense_total(period, expenses)


def daily_series(period: ReportingPeriod, transactions: Iterable[TransactionRow]) -> List[DailyRevenue]:
    """Return revenue per calendar day of ``period``, zero-filled.

    The series has exactly as many entries as the month has days.
    """

    per_day: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for transaction in transactions_in(period, transactions):
        per_day[transaction.timestamp_iso[:10]] += transaction.total

    series = []
    for day_number in range(1, period.days_in_month + 1):
        day = date(period.year, period.month, day_number)
        series.append(DailyRevenue(day=day, revenue=per_day.get(day.isoformat(), ZERO)))
    return series


def best_seller(period: ReportingPeriod, transactions: Iterable[TransactionRow]) -> Optional[str]:
    """Name of the product with the most units sold in ``period``.

    Ties go to the alphabetically first name. ``None`` when nothing sold.
    """

    units: Dict[str, int] = defaultdict(int)
    for transaction in transactions_in(period, transactions):
        for item in transaction.items:
            units[item.name] += item.quantity
    if not units:
        return None
    return min(units, key=lambda name: (-units[name], name))


def build_period_report(
    period: ReportingPeriod,
    transactions: Sequence[TransactionRow],
    expenses: Sequence[ExpenseRow],
) -> PeriodReport:
    """Compute every dashboard aggregate for ``period`` in one pass over the logs."""

    selected = transactions_in(period, transactions)
    period_revenue = revenue(period, selected)
    period_profit = gross_profit(period, selected)
    period_expenses = expense_total(period, expenses)
    report = PeriodReport(
        period=period,
        revenue=period_revenue,
        gross_profit=period_profit,
        expense_total=period_expenses,
        net_profit=period_profit - period_expenses,
        transaction_count=len(selected),
        best_seller=best_seller(period, selected),
        daily_series=tuple(daily_series(period, selected)),
    )
    log.debug(
        "Built report for %s (transactions=%d, revenue=%s, net=%s)",
        period,
        report.transaction_count,
        report.revenue,
        report.net_profit,
    )
    return report


def report_for_context(context: core_logic.RuntimeContext, period: Optional[ReportingPeriod] = None) -> PeriodReport:
    """Build the report for ``period`` (default: the current month) from the store."""

    period = period or ReportingPeriod.containing(datetime.now().astimezone())
    return build_period_report(
        period,
        core_logic.list_transactions(context),
        core_logic.list_expenses(context),
    )
