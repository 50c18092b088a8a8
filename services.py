from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session, joinedload

from balances import (
    BalanceDataPoint,
    EntityInput,
    EntitySeries,
    absolute_change,
    balance_as_of,
    balance_history,
    conti_changes,
    multi_entity_balance_history,
    percentage_change,
    period_start_balance,
    split_balance_history,
)
from config import get_settings
from ledger import LedgerService, TransactionSnapshot
from models import Account, Category, Conto, Transaction, TransactionType
from periods import add_months, month_start, resolve_chart_window, start_of_day
from recurrence import RecurringEngine, local_now
from schemas import AccountIn, CategoryIn, ContoIn, DashboardSelection, TransactionIn
from summaries import (
    PeriodStatistics,
    PeriodSummary,
    TrailingSummary,
    expense_trend,
    monthly_totals,
    period_statistics,
    summarize_month,
    trailing_summary,
)

logger = logging.getLogger(__name__)


def account_inputs(accounts: Sequence[Account]) -> list[EntityInput]:
    return [
        EntityInput(
            entity_id=account.id,
            name=account.name or "Account",
            conto_ids=frozenset(c.id for c in account.active_conti),
            initial_balance=sum(c.initial_balance_cents for c in account.active_conti),
            color_index=index,
        )
        for index, account in enumerate(accounts)
    ]


def conto_inputs(conti: Sequence[Conto]) -> list[EntityInput]:
    return [
        EntityInput(
            entity_id=conto.id,
            name=conto.name or "Conto",
            conto_ids=frozenset({conto.id}),
            initial_balance=conto.initial_balance_cents,
            color_index=index,
        )
        for index, conto in enumerate(conti)
    ]


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, include_inactive: bool = False) -> list[Account]:
        stmt = (
            select(Account)
            .options(joinedload(Account.conti))
            .order_by(Account.id)
        )
        if not include_inactive:
            stmt = stmt.where(Account.is_active.is_(True))
        return self.session.scalars(stmt).unique().all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise ValueError("Account not found")
        return account

    def by_ids(self, account_ids: Iterable[int]) -> list[Account]:
        # Keeps the caller's first-seen order; series colors are positional.
        ids = list(dict.fromkeys(account_ids))
        found = {
            a.id: a
            for a in self.session.scalars(
                select(Account)
                .options(joinedload(Account.conti))
                .where(Account.id.in_(ids))
            ).unique()
        }
        return [found[i] for i in ids if i in found]

    def create(self, data: AccountIn) -> Account:
        account = Account(name=data.name.strip(), currency=data.currency.upper())
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def total_balance(
        self, account: Account, now: datetime, ledger: Optional[LedgerService] = None
    ) -> int:
        conto_ids = [c.id for c in account.active_conti]
        ledger = ledger or LedgerService(self.session)
        return balance_as_of(
            ledger.fetch(end=now, conto_ids=conto_ids),
            conto_ids,
            sum(c.initial_balance_cents for c in account.active_conti),
            now,
        )


class ContoService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, conto_id: int) -> Conto:
        conto = self.session.get(Conto, conto_id)
        if not conto:
            raise ValueError("Conto not found")
        return conto

    def by_ids(self, conto_ids: Iterable[int]) -> list[Conto]:
        ids = list(dict.fromkeys(conto_ids))
        found = {
            c.id: c
            for c in self.session.scalars(select(Conto).where(Conto.id.in_(ids)))
        }
        return [found[i] for i in ids if i in found]

    def create(self, account_id: int, data: ContoIn) -> Conto:
        account = self.session.get(Account, account_id)
        if not account:
            raise ValueError("Account not found")
        conto = Conto(
            account_id=account.id,
            name=data.name.strip(),
            type=data.type,
            initial_balance_cents=data.initial_balance_cents,
            is_active=data.is_active,
            color=data.color,
            description=data.description,
        )
        self.session.add(conto)
        self.session.commit()
        self.session.refresh(conto)
        return conto

    def balance(self, conto: Conto, now: datetime) -> int:
        return balance_as_of(
            LedgerService(self.session).fetch(end=now, conto_ids=[conto.id]),
            [conto.id],
            conto.initial_balance_cents,
            now,
        )


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, data: CategoryIn) -> Category:
        category = Category(
            name=data.name.strip(),
            type=data.type,
            account_id=data.account_id,
            color=data.color,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _check_conto(self, conto_id: Optional[int]) -> None:
        if conto_id is None:
            return
        if not self.session.get(Conto, conto_id):
            raise ValueError("Conto not found")

    def create(self, data: TransactionIn) -> Transaction:
        self._check_conto(data.from_conto_id)
        self._check_conto(data.to_conto_id)
        if data.category_id is not None:
            category = self.session.get(Category, data.category_id)
            if not category:
                raise ValueError("Category not found")
            if data.type != TransactionType.transfer and category.type != data.type:
                raise ValueError("Category type mismatch")

        txn = Transaction(
            occurred_at=data.occurred_at,
            type=data.type,
            amount_cents=data.amount_cents,
            from_conto_id=data.from_conto_id,
            to_conto_id=data.to_conto_id,
            category_id=data.category_id,
            note=data.note,
            is_recurring=data.is_recurring,
            recurrence_frequency=data.recurrence_frequency,
            recurrence_end_date=data.recurrence_end_date,
        )
        self.session.add(txn)
        self.session.flush()
        duplicates = LedgerService(self.session).duplicates_of(
            TransactionSnapshot.from_model(txn)
        )
        if duplicates:
            logger.warning(
                f"transaction_possible_duplicate: id={txn.id} "
                f"matches={[d.id for d in duplicates]}"
            )
        if txn.is_recurring:
            RecurringEngine(self.session).project_all()
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int, *, include_deleted: bool = False) -> Transaction:
        stmt = select(Transaction).where(Transaction.id == transaction_id)
        if not include_deleted:
            stmt = stmt.where(Transaction.deleted_at.is_(None))
        txn = self.session.scalar(stmt)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def duplicates(self, transaction_id: int) -> list[TransactionSnapshot]:
        txn = self.get(transaction_id)
        return LedgerService(self.session).duplicates_of(
            TransactionSnapshot.from_model(txn)
        )

    def list(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        conto_ids: Optional[Iterable[int]] = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        stmt = LedgerService(self.session).filtered(
            select(Transaction), start, end, conto_ids
        )
        if stmt is None:
            return []
        stmt = (
            stmt.order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return self.session.scalars(stmt).all()

    def soft_delete(self, transaction_id: int, now: Optional[datetime] = None) -> None:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise ValueError("Transaction not found")
        if txn.deleted_at is not None:
            return
        now = now or local_now()
        txn.deleted_at = now
        if txn.is_recurring:
            # Projected occurrences that have not happened yet go with the template.
            self.session.execute(
                update(Transaction)
                .where(
                    Transaction.recurring_parent_id == txn.id,
                    Transaction.occurred_at > now,
                    Transaction.deleted_at.is_(None),
                )
                .values(deleted_at=now)
            )
        self.session.commit()


@dataclass
class DashboardData:
    current_total_cents: int = 0
    period_start_balance_cents: int = 0
    absolute_change_cents: int = 0
    percentage_change: Optional[float] = None
    monthly_income_cents: int = 0
    monthly_expense_cents: int = 0
    average_income_cents: int = 0
    average_expense_cents: int = 0
    expense_trend: list[PeriodSummary] = field(default_factory=list)
    past: list[BalanceDataPoint] = field(default_factory=list)
    future: list[BalanceDataPoint] = field(default_factory=list)
    account_series: list[EntitySeries] = field(default_factory=list)
    conto_series: list[EntitySeries] = field(default_factory=list)
    conti_changes: dict[int, int] = field(default_factory=dict)
    recent_transactions: list[TransactionSnapshot] = field(default_factory=list)
    generation: int = 0

    @classmethod
    def empty(cls) -> "DashboardData":
        return cls()


class DashboardService:
    """Presentation-facing entry points for the balance engine.

    Every method takes the selection and ``now`` explicitly and re-derives
    its result from the ledger; nothing is cached between calls.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.ledger = LedgerService(session)
        self.settings = get_settings()

    def _all_history(self, conto_ids: Iterable[int]) -> list[TransactionSnapshot]:
        return self.ledger.fetch(conto_ids=conto_ids)

    def reconstruct_balance_history(
        self,
        conto_ids: Iterable[int],
        period_start: datetime,
        period_end: datetime,
    ) -> list[BalanceDataPoint]:
        ids = list(dict.fromkeys(conto_ids))
        conti = ContoService(self.session).by_ids(ids)
        initial = sum(c.initial_balance_cents for c in conti)
        return balance_history(
            self._all_history(ids), ids, initial, period_start, period_end
        )

    def split_past_future(
        self,
        points: Sequence[BalanceDataPoint],
        now: datetime,
        period_end: Optional[datetime] = None,
    ) -> tuple[list[BalanceDataPoint], list[BalanceDataPoint]]:
        return split_balance_history(points, now, period_end)

    def account_history(
        self, account_ids: Iterable[int], months_back: int, now: datetime
    ) -> list[EntitySeries]:
        accounts = AccountService(self.session).by_ids(account_ids)
        entities = account_inputs(accounts)
        all_ids = {i for e in entities for i in e.conto_ids}
        return multi_entity_balance_history(
            entities,
            self._all_history(all_ids),
            months_back,
            now,
            palette=self.settings.chart_palette,
        )

    def conto_history(
        self, conto_ids: Iterable[int], months_back: int, now: datetime
    ) -> list[EntitySeries]:
        conti = ContoService(self.session).by_ids(conto_ids)
        return multi_entity_balance_history(
            conto_inputs(conti),
            self._all_history([c.id for c in conti]),
            months_back,
            now,
            skip_inactive=True,
            palette=self.settings.chart_palette,
        )

    def summarize_period(self, conto_ids: Iterable[int], month: date) -> PeriodSummary:
        ids = list(conto_ids)
        first = start_of_day(month_start(month))
        history = self.ledger.fetch(
            start=first, end=start_of_day(add_months(first.date(), 1)), conto_ids=ids
        )
        return summarize_month(history, ids, month)

    def trailing_summary(
        self, conto_ids: Iterable[int], month: date, months: int
    ) -> TrailingSummary:
        ids = list(conto_ids)
        first = month_start(month)
        history = self.ledger.fetch(
            start=start_of_day(add_months(first, -max(months, 0))),
            end=start_of_day(first),
            conto_ids=ids,
        )
        return trailing_summary(history, ids, month, months)

    def period_statistics(
        self, conto_ids: Iterable[int], month: date
    ) -> PeriodStatistics:
        ids = list(conto_ids)
        first = start_of_day(month_start(month))
        end = start_of_day(add_months(first.date(), 1))
        history = self.ledger.fetch(start=first, end=end, conto_ids=ids)
        return period_statistics(history, ids, first, end)

    def load(self, selection: DashboardSelection, now: datetime) -> DashboardData:
        account_service = AccountService(self.session)
        if selection.account_ids:
            accounts = account_service.by_ids(selection.account_ids)
        else:
            accounts = account_service.list_all()
        if not accounts:
            return DashboardData.empty()

        conti = [c for a in accounts for c in a.active_conti]
        conto_ids = [c.id for c in conti]
        initial_total = sum(c.initial_balance_cents for c in conti)
        history = self._all_history(conto_ids)

        lookback = selection.period.lookback_months(
            self.settings.default_lookback_months
        )
        window = resolve_chart_window(
            selection.period,
            now=now,
            selected_month=selection.selected_month,
            lookback_months=self.settings.default_lookback_months,
        )

        data = DashboardData()
        data.current_total_cents = balance_as_of(history, conto_ids, initial_total, now)
        data.period_start_balance_cents = period_start_balance(
            data.current_total_cents, history, conto_ids, window.start, now
        )
        data.absolute_change_cents = absolute_change(
            data.current_total_cents, data.period_start_balance_cents
        )
        data.percentage_change = percentage_change(
            data.current_total_cents, data.period_start_balance_cents
        )

        this_month = start_of_day(month_start(now.date()))
        next_month = start_of_day(add_months(this_month.date(), 1))
        data.monthly_income_cents, data.monthly_expense_cents = monthly_totals(
            history, conto_ids, this_month, next_month
        )

        data.expense_trend = expense_trend(history, conto_ids, now, lookback)
        averages = trailing_summary(history, conto_ids, now.date(), lookback - 1)
        data.average_income_cents = averages.average_income_cents
        data.average_expense_cents = averages.average_expense_cents

        if selection.show_all_accounts and len(accounts) > 1:
            data.account_series = multi_entity_balance_history(
                account_inputs(accounts),
                history,
                lookback,
                now,
                palette=self.settings.chart_palette,
            )
        elif not selection.show_all_accounts and selection.show_all_conti and len(conti) > 1:
            data.conto_series = multi_entity_balance_history(
                conto_inputs(conti),
                history,
                lookback,
                now,
                skip_inactive=True,
                palette=self.settings.chart_palette,
            )
        else:
            points = balance_history(
                history, conto_ids, initial_total, window.start, window.end
            )
            data.past, data.future = split_balance_history(points, now, window.end)

        data.conti_changes = conti_changes(history, conto_ids, this_month, next_month)
        if not selection.show_all_accounts:
            data.recent_transactions = self.ledger.recent(conto_ids, limit=10)

        if self.ledger.rejected:
            logger.warning(
                f"dashboard_load: rejected_transactions={self.ledger.rejected}"
            )
        return data
