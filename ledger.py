from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Transaction, TransactionType

logger = logging.getLogger(__name__)

DUPLICATE_TOLERANCE = timedelta(seconds=300)


class InvalidTransactionError(ValueError):
    pass


@dataclass(frozen=True)
class TransactionSnapshot:
    """Immutable view of one ledger row used by the balance engine.

    Construction enforces the ledger invariants: a non-negative amount, a
    timestamp, and the endpoints each transaction type requires. Rows that
    violate them are rejected here instead of contributing a silent zero.
    """

    id: int
    occurred_at: datetime
    amount_cents: int
    type: TransactionType
    from_conto_id: Optional[int] = None
    to_conto_id: Optional[int] = None
    category_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.occurred_at is None:
            raise InvalidTransactionError(f"Transaction {self.id} has no date")
        if self.amount_cents is None:
            raise InvalidTransactionError(f"Transaction {self.id} has no amount")
        if self.amount_cents < 0:
            raise InvalidTransactionError(
                f"Transaction {self.id} has a negative amount"
            )
        if self.type == TransactionType.income and self.to_conto_id is None:
            raise InvalidTransactionError(
                f"Income transaction {self.id} has no destination conto"
            )
        if self.type == TransactionType.expense and self.from_conto_id is None:
            raise InvalidTransactionError(
                f"Expense transaction {self.id} has no source conto"
            )
        if self.type == TransactionType.transfer:
            if self.from_conto_id is None or self.to_conto_id is None:
                raise InvalidTransactionError(
                    f"Transfer {self.id} needs both source and destination"
                )
            if self.from_conto_id == self.to_conto_id:
                raise InvalidTransactionError(
                    f"Transfer {self.id} has identical source and destination"
                )

    @classmethod
    def from_model(cls, txn: Transaction) -> "TransactionSnapshot":
        try:
            txn_type = TransactionType(txn.type)
        except ValueError as exc:
            raise InvalidTransactionError(
                f"Transaction {txn.id} has unknown type {txn.type!r}"
            ) from exc
        return cls(
            id=txn.id,
            occurred_at=txn.occurred_at,
            amount_cents=txn.amount_cents,
            type=txn_type,
            from_conto_id=txn.from_conto_id,
            to_conto_id=txn.to_conto_id,
            category_id=txn.category_id,
        )

    def touches(self, conto_ids: Iterable[int]) -> bool:
        ids = conto_ids if isinstance(conto_ids, (set, frozenset)) else set(conto_ids)
        return self.from_conto_id in ids or self.to_conto_id in ids


class LedgerService:
    """Read-only access to the transaction store.

    Store failures are logged and surface as an empty result; callers treat
    an empty ledger as "no data".
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.rejected = 0

    def filtered(
        self,
        stmt,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        conto_ids: Optional[Iterable[int]] = None,
        type: Optional[TransactionType] = None,
        category_id: Optional[int] = None,
    ):
        """Apply the ledger's row filter to ``stmt``.

        Deleted rows are always excluded and both bounds are inclusive. A
        transaction matches ``conto_ids`` when either leg is in the set.
        Returns None when ``conto_ids`` is empty, since nothing can match.
        """
        stmt = stmt.where(Transaction.deleted_at.is_(None))
        if start is not None:
            stmt = stmt.where(Transaction.occurred_at >= start)
        if end is not None:
            stmt = stmt.where(Transaction.occurred_at <= end)
        if conto_ids is not None:
            ids = list(conto_ids)
            if not ids:
                return None
            stmt = stmt.where(
                or_(
                    Transaction.from_conto_id.in_(ids),
                    Transaction.to_conto_id.in_(ids),
                )
            )
        if type is not None:
            stmt = stmt.where(Transaction.type == type)
        if category_id is not None:
            stmt = stmt.where(Transaction.category_id == category_id)
        return stmt

    def fetch(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        conto_ids: Optional[Iterable[int]] = None,
        *,
        type: Optional[TransactionType] = None,
        category_id: Optional[int] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[TransactionSnapshot]:
        ids = None if conto_ids is None else list(conto_ids)
        stmt = self.filtered(select(Transaction), start, end, ids, type, category_id)
        if stmt is None:
            return []
        if descending:
            stmt = stmt.order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
        else:
            stmt = stmt.order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            rows = self.session.scalars(stmt).all()
        except SQLAlchemyError:
            logger.exception(
                f"ledger_fetch_failed: start={start} end={end} conto_ids={ids}"
            )
            return []

        snapshots: list[TransactionSnapshot] = []
        for row in rows:
            try:
                snapshots.append(TransactionSnapshot.from_model(row))
            except InvalidTransactionError as exc:
                self.rejected += 1
                logger.warning(f"ledger_reject: id={row.id} reason={exc}")
        return snapshots

    def count(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        conto_ids: Optional[Iterable[int]] = None,
        *,
        type: Optional[TransactionType] = None,
        category_id: Optional[int] = None,
    ) -> int:
        ids = None if conto_ids is None else list(conto_ids)
        stmt = self.filtered(
            select(func.count(Transaction.id)), start, end, ids, type, category_id
        )
        if stmt is None:
            return 0
        try:
            return int(self.session.execute(stmt).scalar_one() or 0)
        except SQLAlchemyError:
            logger.exception(f"ledger_count_failed: conto_ids={ids}")
            return 0

    def recent(
        self, conto_ids: Optional[Iterable[int]] = None, limit: int = 10
    ) -> list[TransactionSnapshot]:
        return self.fetch(conto_ids=conto_ids, descending=True, limit=limit)

    def duplicates_of(
        self,
        candidate: TransactionSnapshot,
        tolerance: timedelta = DUPLICATE_TOLERANCE,
    ) -> list[TransactionSnapshot]:
        legs = [
            i for i in (candidate.from_conto_id, candidate.to_conto_id) if i is not None
        ]
        nearby = self.fetch(
            start=candidate.occurred_at - tolerance,
            end=candidate.occurred_at + tolerance,
            conto_ids=legs,
            type=candidate.type,
        )
        return find_duplicates(candidate, nearby, tolerance)


def find_duplicates(
    candidate: TransactionSnapshot,
    transactions: Iterable[TransactionSnapshot],
    tolerance: timedelta = DUPLICATE_TOLERANCE,
) -> list[TransactionSnapshot]:
    """Entries that look like a second recording of ``candidate``.

    A match has the same type and amount, shares at least one conto with
    the candidate and lies within ``tolerance`` of it.
    """
    legs = {candidate.from_conto_id, candidate.to_conto_id} - {None}
    return [
        txn
        for txn in transactions
        if txn.id != candidate.id
        and txn.type == candidate.type
        and txn.amount_cents == candidate.amount_cents
        and abs(txn.occurred_at - candidate.occurred_at) <= tolerance
        and txn.touches(legs)
    ]
