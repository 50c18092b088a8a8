import logging
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import RecurrenceFrequency, Transaction

logger = logging.getLogger(__name__)


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


_MONTH_STEPS = {
    RecurrenceFrequency.monthly: 1,
    RecurrenceFrequency.quarterly: 3,
    RecurrenceFrequency.semiannually: 6,
    RecurrenceFrequency.yearly: 12,
}

_DAY_STEPS = {
    RecurrenceFrequency.daily: 1,
    RecurrenceFrequency.weekly: 7,
    RecurrenceFrequency.biweekly: 14,
}


def calculate_next_date(
    frequency: RecurrenceFrequency, from_date: date, *, anchor_day: int
) -> date:
    if frequency in _DAY_STEPS:
        return from_date + timedelta(days=_DAY_STEPS[frequency])
    # Month-based steps keep the template's day and snap to month end.
    return _add_months(from_date, _MONTH_STEPS[frequency], desired_day=anchor_day)


def recurrence_dates(
    first: date,
    frequency: RecurrenceFrequency,
    until: date,
    end_date: Optional[date] = None,
) -> list[date]:
    """Occurrence dates strictly after ``first`` up to ``until`` (inclusive)."""
    limit = min(until, end_date) if end_date else until
    dates: list[date] = []
    current = first
    max_iterations = 5000
    while len(dates) < max_iterations:
        current = calculate_next_date(frequency, current, anchor_day=first.day)
        if current > limit:
            break
        dates.append(current)
    return dates


class RecurringEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def project_template(self, template: Transaction, horizon: date) -> int:
        if not template.is_recurring or template.recurrence_frequency is None:
            return 0
        first = template.occurred_at.date()
        posted = 0
        for occurrence_date in recurrence_dates(
            first,
            template.recurrence_frequency,
            horizon,
            template.recurrence_end_date,
        ):
            if self._post_occurrence(template, occurrence_date):
                posted += 1
        return posted

    def project_all(self, now: Optional[datetime] = None) -> int:
        now = now or local_now()
        horizon = now.date() + timedelta(days=get_settings().projection_horizon_days)
        stmt = (
            select(Transaction)
            .where(
                Transaction.is_recurring.is_(True),
                Transaction.deleted_at.is_(None),
                Transaction.recurring_parent_id.is_(None),
            )
            .order_by(Transaction.occurred_at, Transaction.id)
        )
        templates = self.session.scalars(stmt).all()
        count = 0
        for template in templates:
            count += self.project_template(template, horizon)
        self.session.flush()
        logger.info(
            f"recurring_projection: templates={len(templates)} posted={count} horizon={horizon}"
        )
        return count

    def _post_occurrence(self, template: Transaction, occurrence_date: date) -> bool:
        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.recurring_parent_id == template.id,
                Transaction.occurrence_date == occurrence_date,
            )
            .limit(1)
        )
        existing = self.session.execute(exists_stmt).scalar_one_or_none()
        if existing:
            return False

        txn = Transaction(
            occurred_at=datetime.combine(occurrence_date, template.occurred_at.time()),
            type=template.type,
            amount_cents=template.amount_cents,
            from_conto_id=template.from_conto_id,
            to_conto_id=template.to_conto_id,
            category_id=template.category_id,
            note=template.note,
            recurring_parent_id=template.id,
            occurrence_date=occurrence_date,
        )
        self.session.add(txn)
        self.session.flush()
        return True
