from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class ContoType(str, Enum):
    checking = "checking"
    savings = "savings"
    credit = "credit"
    investment = "investment"
    cash = "cash"
    other = "other"


class RecurrenceFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    quarterly = "quarterly"
    semiannually = "semiannually"
    yearly = "yearly"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    conti: Mapped[list["Conto"]] = relationship(
        "Conto", back_populates="account", order_by="Conto.id"
    )
    categories: Mapped[list["Category"]] = relationship(
        "Category", back_populates="account"
    )

    @property
    def active_conti(self) -> list["Conto"]:
        return [c for c in self.conti if c.is_active]


class Conto(Base, TimestampMixin):
    __tablename__ = "conti"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[ContoType] = mapped_column(SAEnum(ContoType), nullable=False)
    initial_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(9))
    description: Mapped[Optional[str]] = mapped_column(Text)

    account: Mapped["Account"] = relationship("Account", back_populates="conti")

    __table_args__ = (
        UniqueConstraint("account_id", "name", name="uq_conto_account_name"),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    color: Mapped[Optional[str]] = mapped_column(String(7))

    account: Mapped[Optional["Account"]] = relationship(
        "Account", back_populates="categories"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    from_conto_id: Mapped[Optional[int]] = mapped_column(ForeignKey("conti.id"))
    to_conto_id: Mapped[Optional[int]] = mapped_column(ForeignKey("conti.id"))
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    note: Mapped[Optional[str]] = mapped_column(Text)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurrence_frequency: Mapped[Optional[RecurrenceFrequency]] = mapped_column(
        SAEnum(RecurrenceFrequency)
    )
    recurrence_end_date: Mapped[Optional[date]] = mapped_column(Date)
    recurring_parent_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id")
    )
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)

    from_conto: Mapped[Optional["Conto"]] = relationship(
        "Conto", foreign_keys=[from_conto_id]
    )
    to_conto: Mapped[Optional["Conto"]] = relationship(
        "Conto", foreign_keys=[to_conto_id]
    )
    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    recurring_parent: Mapped[Optional["Transaction"]] = relationship(
        "Transaction", remote_side=[id], back_populates="occurrences"
    )
    occurrences: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="recurring_parent"
    )

    __table_args__ = (
        UniqueConstraint(
            "recurring_parent_id",
            "occurrence_date",
            name="uq_txn_parent_occurrence",
        ),
        Index("ix_transactions_occurred_at", "occurred_at"),
        Index("ix_transactions_from_conto_at", "from_conto_id", "occurred_at"),
        Index("ix_transactions_to_conto_at", "to_conto_id", "occurred_at"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "type != 'transfer' OR from_conto_id IS NULL "
            "OR to_conto_id IS NULL OR from_conto_id != to_conto_id",
            name="ck_transactions_transfer_distinct",
        ),
    )
