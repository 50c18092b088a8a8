from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Optional


class ChartPeriod(str, Enum):
    one_month = "1M"
    three_months = "3M"
    six_months = "6M"
    one_year = "1Y"
    all = "all"

    @property
    def months_count(self) -> Optional[int]:
        return {
            ChartPeriod.one_month: 1,
            ChartPeriod.three_months: 3,
            ChartPeriod.six_months: 6,
            ChartPeriod.one_year: 12,
            ChartPeriod.all: None,
        }[self]

    def lookback_months(self, default: int) -> int:
        return self.months_count or default


@dataclass(frozen=True)
class Period:
    slug: str
    start: datetime
    end: datetime


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    first = month_start(d)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def start_of_day(d: date) -> datetime:
    return datetime.combine(d, time.min)


def resolve_chart_window(
    period: ChartPeriod,
    *,
    now: datetime,
    selected_month: Optional[date] = None,
    lookback_months: int = 24,
) -> Period:
    if period == ChartPeriod.one_month:
        anchor = month_start(selected_month or now.date())
        return Period(
            period.value,
            start_of_day(anchor),
            datetime.combine(month_end(anchor), time.max),
        )

    months_back = period.lookback_months(lookback_months)
    first = add_months(month_start(now.date()), -(months_back - 1))
    return Period(period.value, start_of_day(first), now)
