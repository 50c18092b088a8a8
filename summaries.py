from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence

from ledger import TransactionSnapshot
from models import TransactionType
from periods import add_months, month_start, start_of_day


def savings_rate(income_cents: int, expense_cents: int) -> Optional[float]:
    # None means "undefined": there is no income to save from.
    if income_cents <= 0:
        return None
    return (income_cents - expense_cents) / income_cents * 100


@dataclass(frozen=True)
class PeriodSummary:
    month: date
    income_cents: int
    expense_cents: int

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expense_cents

    @property
    def savings_rate(self) -> Optional[float]:
        return savings_rate(self.income_cents, self.expense_cents)


@dataclass(frozen=True)
class TrailingSummary:
    months: list[PeriodSummary] = field(default_factory=list)
    average_income_cents: int = 0
    average_expense_cents: int = 0

    @property
    def average_net_cents(self) -> int:
        return self.average_income_cents - self.average_expense_cents


def _mean_cents(values: Sequence[int]) -> int:
    if not values:
        return 0
    mean = Decimal(sum(values)) / Decimal(len(values))
    return int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def monthly_totals(
    transactions: Iterable[TransactionSnapshot],
    conto_ids: Iterable[int],
    start: datetime,
    end: datetime,
) -> tuple[int, int]:
    """Income and expense over ``[start, end)``. Transfers move money
    between conti and are left out of both totals."""
    ids = frozenset(conto_ids)
    income = 0
    expenses = 0
    for txn in transactions:
        if not (start <= txn.occurred_at < end):
            continue
        if txn.type == TransactionType.income and txn.to_conto_id in ids:
            income += txn.amount_cents
        elif txn.type == TransactionType.expense and txn.from_conto_id in ids:
            expenses += txn.amount_cents
    return income, expenses


def summarize_month(
    transactions: Iterable[TransactionSnapshot],
    conto_ids: Iterable[int],
    month: date,
) -> PeriodSummary:
    first = month_start(month)
    income, expenses = monthly_totals(
        transactions,
        conto_ids,
        start_of_day(first),
        start_of_day(add_months(first, 1)),
    )
    return PeriodSummary(month=first, income_cents=income, expense_cents=expenses)


def trailing_summary(
    transactions: Sequence[TransactionSnapshot],
    conto_ids: Iterable[int],
    month: date,
    months: int,
) -> TrailingSummary:
    ids = frozenset(conto_ids)
    first = month_start(month)
    summaries = [
        summarize_month(transactions, ids, add_months(first, -offset))
        for offset in range(max(months, 0), 0, -1)
    ]
    return TrailingSummary(
        months=summaries,
        average_income_cents=_mean_cents([s.income_cents for s in summaries]),
        average_expense_cents=_mean_cents([s.expense_cents for s in summaries]),
    )


def savings_rate_series(
    transactions: Sequence[TransactionSnapshot],
    conto_ids: Iterable[int],
    month: date,
    months: int,
) -> list[tuple[date, Optional[float]]]:
    return [
        (s.month, s.savings_rate)
        for s in trailing_summary(transactions, conto_ids, month, months).months
    ]


def expense_trend(
    transactions: Sequence[TransactionSnapshot],
    conto_ids: Iterable[int],
    now: datetime,
    months: int,
) -> list[PeriodSummary]:
    """The last ``months`` months up to and including the current one."""
    ids = frozenset(conto_ids)
    current = month_start(now.date())
    return [
        summarize_month(transactions, ids, add_months(current, -offset))
        for offset in range(max(months, 0) - 1, -1, -1)
    ]


TOP_CATEGORY_LIMIT = 5


@dataclass(frozen=True)
class CategoryTotal:
    category_id: int
    amount_cents: int


@dataclass(frozen=True)
class PeriodStatistics:
    transaction_count: int = 0
    income_count: int = 0
    expense_count: int = 0
    transfer_count: int = 0
    last_transaction_at: Optional[datetime] = None
    top_expense_categories: list[CategoryTotal] = field(default_factory=list)
    top_income_categories: list[CategoryTotal] = field(default_factory=list)


def _top_categories(totals: dict[int, int], limit: int) -> list[CategoryTotal]:
    ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [CategoryTotal(category_id=c, amount_cents=a) for c, a in ranked[:limit]]


def period_statistics(
    transactions: Iterable[TransactionSnapshot],
    conto_ids: Iterable[int],
    start: datetime,
    end: datetime,
    limit: int = TOP_CATEGORY_LIMIT,
) -> PeriodStatistics:
    """Counts and category rankings for entries touching ``conto_ids`` in
    ``[start, end)``.

    Uncategorized entries are counted but not ranked. Transfers never rank.
    """
    ids = frozenset(conto_ids)
    counts = {t: 0 for t in TransactionType}
    expense_totals: dict[int, int] = {}
    income_totals: dict[int, int] = {}
    last_at: Optional[datetime] = None
    for txn in transactions:
        if not (start <= txn.occurred_at < end) or not txn.touches(ids):
            continue
        counts[txn.type] += 1
        if last_at is None or txn.occurred_at > last_at:
            last_at = txn.occurred_at
        if txn.category_id is None:
            continue
        if txn.type == TransactionType.expense:
            totals = expense_totals
        elif txn.type == TransactionType.income:
            totals = income_totals
        else:
            continue
        totals[txn.category_id] = totals.get(txn.category_id, 0) + txn.amount_cents

    return PeriodStatistics(
        transaction_count=sum(counts.values()),
        income_count=counts[TransactionType.income],
        expense_count=counts[TransactionType.expense],
        transfer_count=counts[TransactionType.transfer],
        last_transaction_at=last_at,
        top_expense_categories=_top_categories(expense_totals, limit),
        top_income_categories=_top_categories(income_totals, limit),
    )
