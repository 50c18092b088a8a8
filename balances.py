"""Balance-history reconstruction for the dashboard charts.

Everything here is a pure function of its arguments: a transaction stream,
a set of conto ids and an explicit ``now``. Nothing reads the wall clock or
the database, so repeated calls with identical inputs return identical
output.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence

from config import DEFAULT_PALETTE
from ledger import TransactionSnapshot
from models import TransactionType
from periods import add_months, month_end, month_start, start_of_day


@dataclass(frozen=True)
class BalanceDataPoint:
    date: datetime
    balance: int


@dataclass(frozen=True)
class EntityInput:
    entity_id: int
    name: str
    conto_ids: frozenset[int]
    initial_balance: int
    color_index: int


@dataclass(frozen=True)
class EntitySeries:
    entity_id: int
    name: str
    color_index: int
    color: str
    points: list[BalanceDataPoint] = field(default_factory=list)


def net_change(txn: TransactionSnapshot, conto_ids: Iterable[int]) -> int:
    ids = conto_ids if isinstance(conto_ids, (set, frozenset)) else set(conto_ids)
    amount = txn.amount_cents
    if txn.type == TransactionType.income:
        return amount if txn.to_conto_id in ids else 0
    if txn.type == TransactionType.expense:
        return -amount if txn.from_conto_id in ids else 0

    # Both legs are checked independently so internal transfers cancel out.
    change = 0
    if txn.from_conto_id in ids:
        change -= amount
    if txn.to_conto_id in ids:
        change += amount
    return change


def balance_as_of(
    transactions: Iterable[TransactionSnapshot],
    conto_ids: Iterable[int],
    initial_balance: int,
    at: datetime,
) -> int:
    ids = frozenset(conto_ids)
    return initial_balance + sum(
        net_change(t, ids) for t in transactions if t.occurred_at <= at
    )


def period_start_balance(
    current_total: int,
    transactions: Iterable[TransactionSnapshot],
    conto_ids: Iterable[int],
    period_start: datetime,
    now: datetime,
) -> int:
    ids = frozenset(conto_ids)
    period_net = sum(
        net_change(t, ids)
        for t in transactions
        if period_start <= t.occurred_at <= now
    )
    return current_total - period_net


def _month_end_anchors(period_start: datetime, period_end: datetime) -> list[datetime]:
    anchors: list[datetime] = []
    current = month_start(period_start.date())
    last = month_start(period_end.date())
    while current <= last:
        anchor = min(start_of_day(month_end(current)), period_end)
        if anchor >= period_start:
            anchors.append(anchor)
        current = add_months(current, 1)
    return anchors


def balance_history(
    transactions: Iterable[TransactionSnapshot],
    conto_ids: Iterable[int],
    initial_balance: int,
    period_start: datetime,
    period_end: datetime,
) -> list[BalanceDataPoint]:
    """Reconstruct the balance of ``conto_ids`` over a window.

    ``transactions`` must include history before ``period_start`` so the
    opening balance is right. The result has a leading point at
    ``period_start``, one closing point per active day, and a month-end
    anchor for every month that has no point on its last day.
    """
    if period_start > period_end:
        return []

    ids = frozenset(conto_ids)
    balance_before = initial_balance
    day_net: dict[date, int] = {}
    for txn in sorted(transactions, key=lambda t: (t.occurred_at, t.id)):
        if txn.occurred_at < period_start:
            balance_before += net_change(txn, ids)
        elif txn.occurred_at <= period_end:
            day = txn.occurred_at.date()
            day_net[day] = day_net.get(day, 0) + net_change(txn, ids)

    points = [BalanceDataPoint(period_start, balance_before)]
    day_points: list[BalanceDataPoint] = []
    running = balance_before
    for day in sorted(day_net):
        running += day_net[day]
        # A day that began before the window is dated at the window start.
        day_points.append(
            BalanceDataPoint(max(start_of_day(day), period_start), running)
        )
    points.extend(day_points)

    covered = {p.date.date() for p in points}
    day_dates = [p.date for p in day_points]
    for anchor in _month_end_anchors(period_start, period_end):
        if anchor.date() in covered:
            continue
        idx = bisect_right(day_dates, anchor)
        balance = day_points[idx - 1].balance if idx else balance_before
        points.append(BalanceDataPoint(anchor, balance))
        covered.add(anchor.date())

    points.sort(key=lambda p: p.date)
    return points


def split_balance_history(
    points: Sequence[BalanceDataPoint],
    now: datetime,
    period_end: Optional[datetime] = None,
) -> tuple[list[BalanceDataPoint], list[BalanceDataPoint]]:
    """Split a history into actual and projected segments at end of today.

    Anything dated before the midnight that starts tomorrow is past,
    including entries at exactly midnight today. The future segment opens
    with a point at today's midnight carrying the last past balance.
    """
    today = start_of_day(now.date())
    end_of_today = today + timedelta(days=1)
    past = [p for p in points if p.date < end_of_today]
    future = [p for p in points if p.date >= end_of_today]

    if not past:
        return past, future

    last_balance = past[-1].balance
    continuity = BalanceDataPoint(today, last_balance)

    if not future:
        if period_end is not None and period_end.date() > now.date():
            return past, [
                continuity,
                BalanceDataPoint(start_of_day(period_end.date()), last_balance),
            ]
        return past, []

    future.insert(0, continuity)
    if period_end is not None and future[-1].date.date() < period_end.date():
        future.append(
            BalanceDataPoint(start_of_day(period_end.date()), future[-1].balance)
        )
    return past, future


def palette_color(color_index: int, palette: Sequence[str] = DEFAULT_PALETTE) -> str:
    return palette[color_index % len(palette)]


def multi_entity_balance_history(
    entities: Sequence[EntityInput],
    transactions: Sequence[TransactionSnapshot],
    months_back: int,
    now: datetime,
    *,
    skip_inactive: bool = False,
    palette: Sequence[str] = DEFAULT_PALETTE,
) -> list[EntitySeries]:
    """One monthly series per entity, walked backward from today's balance.

    Month 0 carries the balance as of ``now``; each earlier month subtracts
    the following month's net change. Points are dated at month start so
    every series shares the same grid. With ``skip_inactive`` an entity
    without any transaction in the lookback window is left out.
    """
    if months_back < 1:
        return []

    current_month = month_start(now.date())
    windows: list[tuple[datetime, datetime, bool]] = []
    for i in range(months_back):
        start = start_of_day(add_months(current_month, -i))
        if i == 0:
            windows.append((start, now, True))
        else:
            windows.append((start, start_of_day(add_months(start.date(), 1)), False))

    series: list[EntitySeries] = []
    for entity in entities:
        ids = entity.conto_ids
        balance_now = balance_as_of(transactions, ids, entity.initial_balance, now)

        monthly_net: list[int] = []
        has_activity = False
        for start, end, inclusive in windows:
            net = 0
            for txn in transactions:
                if txn.occurred_at < start:
                    continue
                if txn.occurred_at > end or (not inclusive and txn.occurred_at == end):
                    continue
                if not txn.touches(ids):
                    continue
                has_activity = True
                net += net_change(txn, ids)
            monthly_net.append(net)

        if skip_inactive and not has_activity:
            continue

        points: list[BalanceDataPoint] = []
        running = balance_now
        for index, (start, _end, _inclusive) in enumerate(windows):
            if index > 0:
                running -= monthly_net[index - 1]
            points.append(BalanceDataPoint(start, running))
        points.reverse()

        series.append(
            EntitySeries(
                entity_id=entity.entity_id,
                name=entity.name,
                color_index=entity.color_index,
                color=palette_color(entity.color_index, palette),
                points=points,
            )
        )
    return series


def conti_changes(
    transactions: Iterable[TransactionSnapshot],
    conto_ids: Iterable[int],
    start: datetime,
    end: datetime,
) -> dict[int, int]:
    in_range = [t for t in transactions if start <= t.occurred_at < end]
    changes: dict[int, int] = {}
    for conto_id in sorted(set(conto_ids)):
        single = frozenset({conto_id})
        changes[conto_id] = sum(net_change(t, single) for t in in_range)
    return changes


def absolute_change(current: int, period_start: int) -> int:
    return current - period_start


def percentage_change(current: int, period_start: int) -> Optional[float]:
    if period_start == 0:
        return None
    change = Decimal(absolute_change(current, period_start)) / abs(
        Decimal(period_start)
    )
    return float(change * 100)


def chart_y_domain(points: Sequence[BalanceDataPoint]) -> tuple[int, int]:
    if not points:
        return 0, 10_000
    values = [p.balance for p in points]
    low = min(values)
    high = max(values)
    if low == high:
        return low - 5_000, high + 5_000

    padding = int(
        (Decimal(high - low) / 10).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    )
    lower = max(0, low - padding) if low >= 0 else low - padding
    return lower, high + padding
