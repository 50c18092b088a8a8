from datetime import datetime

import pytest

from balances import balance_as_of, net_change
from ledger import InvalidTransactionError, TransactionSnapshot
from models import TransactionType

WHEN = datetime(2025, 3, 5, 10, 0)


def _txn(txn_id, txn_type, amount, src=None, dst=None, when=WHEN):
    return TransactionSnapshot(
        id=txn_id,
        occurred_at=when,
        amount_cents=amount,
        type=txn_type,
        from_conto_id=src,
        to_conto_id=dst,
    )


def test_income_counts_only_for_destination():
    txn = _txn(1, TransactionType.income, 200, dst=1)
    assert net_change(txn, {1}) == 200
    assert net_change(txn, {2}) == 0


def test_expense_counts_only_for_source():
    txn = _txn(1, TransactionType.expense, 50, src=1)
    assert net_change(txn, {1}) == -50
    assert net_change(txn, [1, 2]) == -50
    assert net_change(txn, {2}) == 0


def test_transfer_legs_are_independent():
    txn = _txn(1, TransactionType.transfer, 100, src=1, dst=2)
    assert net_change(txn, {1}) == -100
    assert net_change(txn, {2}) == 100
    assert net_change(txn, {1, 2}) == 0
    assert net_change(txn, {3}) == 0


def test_balance_as_of_includes_exact_instant():
    txns = [
        _txn(1, TransactionType.income, 300, dst=1, when=datetime(2025, 3, 1, 9, 0)),
        _txn(2, TransactionType.expense, 100, src=1, when=datetime(2025, 3, 2, 9, 0)),
    ]
    assert balance_as_of(txns, {1}, 1_000, datetime(2025, 3, 1, 9, 0)) == 1_300
    assert balance_as_of(txns, {1}, 1_000, datetime(2025, 3, 2, 8, 59)) == 1_300
    assert balance_as_of(txns, {1}, 1_000, datetime(2025, 3, 2, 9, 0)) == 1_200


def test_snapshot_rejects_negative_amount():
    with pytest.raises(InvalidTransactionError):
        _txn(1, TransactionType.income, -5, dst=1)


def test_snapshot_rejects_missing_endpoints():
    with pytest.raises(InvalidTransactionError):
        _txn(1, TransactionType.income, 5, src=1)
    with pytest.raises(InvalidTransactionError):
        _txn(2, TransactionType.expense, 5, dst=1)
    with pytest.raises(InvalidTransactionError):
        _txn(3, TransactionType.transfer, 5, src=1)


def test_snapshot_rejects_self_transfer():
    with pytest.raises(InvalidTransactionError):
        _txn(1, TransactionType.transfer, 5, src=1, dst=1)


def test_snapshot_rejects_missing_date():
    with pytest.raises(InvalidTransactionError):
        _txn(1, TransactionType.income, 5, dst=1, when=None)
