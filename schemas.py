from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import ContoType, RecurrenceFrequency, TransactionType
from periods import ChartPeriod


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    currency: str = Field(default="EUR", min_length=3, max_length=3)


class ContoIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: ContoType
    initial_balance_cents: int = 0
    is_active: bool = True
    color: Optional[str] = Field(default=None, max_length=9)
    description: Optional[str] = Field(default=None, max_length=500)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    account_id: Optional[int] = None
    color: Optional[str] = Field(default=None, max_length=7)


class TransactionIn(BaseModel):
    occurred_at: datetime
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    from_conto_id: Optional[int] = None
    to_conto_id: Optional[int] = None
    category_id: Optional[int] = None
    note: Optional[str] = Field(default=None, max_length=200)
    is_recurring: bool = False
    recurrence_frequency: Optional[RecurrenceFrequency] = None
    recurrence_end_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_endpoints(self) -> "TransactionIn":
        if self.type == TransactionType.income:
            if self.to_conto_id is None:
                raise ValueError("Income needs a destination conto")
            if self.from_conto_id is not None:
                raise ValueError("Income cannot have a source conto")
        elif self.type == TransactionType.expense:
            if self.from_conto_id is None:
                raise ValueError("Expense needs a source conto")
            if self.to_conto_id is not None:
                raise ValueError("Expense cannot have a destination conto")
        else:
            if self.from_conto_id is None or self.to_conto_id is None:
                raise ValueError("Transfer needs both source and destination")
            if self.from_conto_id == self.to_conto_id:
                raise ValueError("Transfer source and destination must differ")
        if self.is_recurring and self.recurrence_frequency is None:
            raise ValueError("Recurring transactions need a frequency")
        return self


class DashboardSelection(BaseModel):
    period: ChartPeriod = ChartPeriod.one_month
    selected_month: Optional[date] = None
    account_ids: list[int] = Field(default_factory=list)
    show_all_accounts: bool = False
    show_all_conti: bool = False


class BalancePointOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: datetime
    balance: int


class BalanceHistoryOut(BaseModel):
    period: ChartPeriod
    start: datetime
    end: datetime
    points: list[BalancePointOut]
    past: list[BalancePointOut]
    future: list[BalancePointOut]
    y_domain: tuple[int, int]


class EntitySeriesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entity_id: int
    name: str
    color_index: int
    color: str
    points: list[BalancePointOut]


class PeriodSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    month: date
    income_cents: int
    expense_cents: int
    net_cents: int
    savings_rate: Optional[float]


class TrailingSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    months: list[PeriodSummaryOut]
    average_income_cents: int
    average_expense_cents: int
    average_net_cents: int


class CategoryTotalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category_id: int
    amount_cents: int


class PeriodStatisticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_count: int
    income_count: int
    expense_count: int
    transfer_count: int
    last_transaction_at: Optional[datetime]
    top_expense_categories: list[CategoryTotalOut]
    top_income_categories: list[CategoryTotalOut]


class SummaryOut(BaseModel):
    current: PeriodSummaryOut
    trailing: TrailingSummaryOut
    statistics: PeriodStatisticsOut


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    occurred_at: datetime
    type: TransactionType
    amount_cents: int
    from_conto_id: Optional[int]
    to_conto_id: Optional[int]
    category_id: Optional[int]


class ContoOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    name: str
    type: ContoType
    initial_balance_cents: int
    is_active: bool


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    currency: str
    conti: list[ContoOut]


class DashboardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    generation: int
    current_total_cents: int
    period_start_balance_cents: int
    absolute_change_cents: int
    percentage_change: Optional[float]
    monthly_income_cents: int
    monthly_expense_cents: int
    average_income_cents: int
    average_expense_cents: int
    expense_trend: list[PeriodSummaryOut]
    past: list[BalancePointOut]
    future: list[BalancePointOut]
    account_series: list[EntitySeriesOut]
    conto_series: list[EntitySeriesOut]
    conti_changes: dict[int, int]
    recent_transactions: list[TransactionOut]
