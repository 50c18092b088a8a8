from datetime import datetime

from balances import (
    BalanceDataPoint,
    balance_as_of,
    balance_history,
    period_start_balance,
)
from ledger import TransactionSnapshot
from models import TransactionType

JAN_START = datetime(2025, 1, 1)
JAN_END = datetime(2025, 1, 31, 23, 59, 59, 999999)


def _txn(txn_id, when, txn_type, amount, src=None, dst=None):
    return TransactionSnapshot(
        id=txn_id,
        occurred_at=when,
        amount_cents=amount,
        type=txn_type,
        from_conto_id=src,
        to_conto_id=dst,
    )


def test_single_month_with_same_day_income_and_expense():
    txns = [
        _txn(1, datetime(2025, 1, 5, 10, 0), TransactionType.income, 200, dst=1),
        _txn(2, datetime(2025, 1, 5, 18, 0), TransactionType.expense, 50, src=1),
    ]

    points = balance_history(txns, {1}, 1_000, JAN_START, JAN_END)

    assert points == [
        BalanceDataPoint(datetime(2025, 1, 1), 1_000),
        BalanceDataPoint(datetime(2025, 1, 5), 1_150),
        BalanceDataPoint(datetime(2025, 1, 31), 1_150),
    ]


def test_same_day_transactions_collapse_to_one_point():
    txns = [
        _txn(i, datetime(2025, 1, 12, 8 + i), TransactionType.expense, 10, src=1)
        for i in range(1, 5)
    ]

    points = balance_history(txns, {1}, 500, JAN_START, JAN_END)

    day_points = [p for p in points if p.date == datetime(2025, 1, 12)]
    assert len(day_points) == 1
    assert day_points[0].balance == 460


def test_history_before_period_sets_opening_balance():
    txns = [
        _txn(1, datetime(2024, 12, 15), TransactionType.income, 500, dst=1),
        _txn(2, datetime(2025, 1, 3), TransactionType.expense, 20, src=1),
    ]

    points = balance_history(txns, {1}, 100, JAN_START, JAN_END)

    assert points[0] == BalanceDataPoint(JAN_START, 600)
    assert points[1] == BalanceDataPoint(datetime(2025, 1, 3), 580)


def test_empty_months_get_month_end_anchor():
    txns = [_txn(1, datetime(2025, 2, 10, 9, 0), TransactionType.income, 300, dst=1)]
    end = datetime(2025, 3, 31, 23, 59, 59, 999999)

    points = balance_history(txns, {1}, 0, JAN_START, end)

    assert points == [
        BalanceDataPoint(datetime(2025, 1, 1), 0),
        BalanceDataPoint(datetime(2025, 1, 31), 0),
        BalanceDataPoint(datetime(2025, 2, 10), 300),
        BalanceDataPoint(datetime(2025, 2, 28), 300),
        BalanceDataPoint(datetime(2025, 3, 31), 300),
    ]


def test_anchor_is_clamped_to_period_end():
    end = datetime(2025, 1, 20, 12, 0)

    points = balance_history([], {1}, 250, JAN_START, end)

    assert points == [
        BalanceDataPoint(JAN_START, 250),
        BalanceDataPoint(end, 250),
    ]


def test_last_point_reconciles_with_ledger():
    txns = [
        _txn(1, datetime(2025, 1, 2), TransactionType.income, 1_000, dst=1),
        _txn(2, datetime(2025, 1, 9), TransactionType.transfer, 400, src=1, dst=2),
        _txn(3, datetime(2025, 1, 15), TransactionType.expense, 75, src=2),
        _txn(4, datetime(2025, 1, 20), TransactionType.transfer, 100, src=3, dst=1),
        _txn(5, datetime(2025, 2, 2), TransactionType.income, 999, dst=1),
    ]

    points = balance_history(txns, {1, 2}, 50, JAN_START, JAN_END)

    assert points[-1].balance == 50 + 1_000 - 75 + 100


def test_transfer_inside_selection_leaves_balance_flat():
    txns = [_txn(1, datetime(2025, 1, 9), TransactionType.transfer, 400, src=1, dst=2)]

    points = balance_history(txns, {1, 2}, 800, JAN_START, JAN_END)

    assert {p.balance for p in points} == {800}


def test_unsorted_input_gives_same_result():
    txns = [
        _txn(1, datetime(2025, 1, 4), TransactionType.income, 10, dst=1),
        _txn(2, datetime(2025, 1, 9), TransactionType.expense, 3, src=1),
        _txn(3, datetime(2025, 1, 2), TransactionType.income, 7, dst=1),
    ]

    forward = balance_history(txns, {1}, 0, JAN_START, JAN_END)
    backward = balance_history(list(reversed(txns)), {1}, 0, JAN_START, JAN_END)

    assert forward == backward
    assert balance_history(txns, {1}, 0, JAN_START, JAN_END) == forward


def test_invalid_range_returns_empty():
    assert balance_history([], {1}, 100, JAN_END, JAN_START) == []


def test_dates_are_ascending():
    txns = [
        _txn(i, datetime(2025, 1, i * 3), TransactionType.income, i, dst=1)
        for i in range(1, 10)
    ]

    points = balance_history(txns, {1}, 0, JAN_START, JAN_END)
    dates = [p.date for p in points]

    assert dates == sorted(dates)


def test_period_start_balance_walks_back_from_current():
    txns = [
        _txn(1, datetime(2025, 2, 20), TransactionType.income, 500, dst=1),
        _txn(2, datetime(2025, 3, 3), TransactionType.expense, 120, src=1),
        _txn(3, datetime(2025, 3, 8), TransactionType.transfer, 60, src=1, dst=2),
        _txn(4, datetime(2025, 3, 25), TransactionType.expense, 999, src=1),
    ]
    now = datetime(2025, 3, 15, 12, 0)

    assert period_start_balance(1_000, txns, {1}, datetime(2025, 3, 1), now) == 1_180
    assert period_start_balance(1_000, txns, {1, 2}, datetime(2025, 3, 1), now) == 1_120


def test_window_starting_mid_day_keeps_opening_point_first():
    txns = [_txn(1, datetime(2025, 1, 5, 11, 0), TransactionType.income, 100, dst=1)]
    start = datetime(2025, 1, 5, 10, 0)
    end = datetime(2025, 1, 5, 12, 0)

    points = balance_history(txns, {1}, 0, start, end)

    assert points[0] == BalanceDataPoint(start, 0)
    assert points[-1] == BalanceDataPoint(start, 100)
    assert points[-1].balance == balance_as_of(txns, {1}, 0, end)


def test_mid_day_start_with_earlier_activity_that_day():
    txns = [
        _txn(1, datetime(2025, 1, 5, 8, 0), TransactionType.income, 40, dst=1),
        _txn(2, datetime(2025, 1, 5, 15, 0), TransactionType.expense, 10, src=1),
        _txn(3, datetime(2025, 1, 8, 9, 0), TransactionType.income, 5, dst=1),
    ]
    start = datetime(2025, 1, 5, 12, 0)

    points = balance_history(txns, {1}, 100, start, JAN_END)

    assert points == [
        BalanceDataPoint(start, 140),
        BalanceDataPoint(start, 130),
        BalanceDataPoint(datetime(2025, 1, 8), 135),
        BalanceDataPoint(datetime(2025, 1, 31), 135),
    ]


def test_window_ending_mid_day_drops_later_activity():
    txns = [
        _txn(1, datetime(2025, 1, 20, 9, 0), TransactionType.income, 70, dst=1),
        _txn(2, datetime(2025, 1, 20, 18, 0), TransactionType.expense, 30, src=1),
    ]
    end = datetime(2025, 1, 20, 12, 0)

    points = balance_history(txns, {1}, 0, JAN_START, end)

    assert points == [
        BalanceDataPoint(JAN_START, 0),
        BalanceDataPoint(datetime(2025, 1, 20), 70),
    ]
    assert points[-1].balance == balance_as_of(txns, {1}, 0, end)


def test_anchors_across_year_end_and_leap_february():
    txns = [_txn(1, datetime(2024, 1, 10, 9, 0), TransactionType.income, 250, dst=1)]
    start = datetime(2023, 12, 1)
    end = datetime(2024, 2, 29, 23, 59, 59, 999999)

    points = balance_history(txns, {1}, 10, start, end)

    assert points == [
        BalanceDataPoint(start, 10),
        BalanceDataPoint(datetime(2023, 12, 31), 10),
        BalanceDataPoint(datetime(2024, 1, 10), 260),
        BalanceDataPoint(datetime(2024, 1, 31), 260),
        BalanceDataPoint(datetime(2024, 2, 29), 260),
    ]


def test_history_up_to_now_ignores_entry_scheduled_later_today():
    now = datetime(2025, 1, 15, 12, 0)
    txns = [
        _txn(1, datetime(2025, 1, 15, 8, 0), TransactionType.income, 300, dst=1),
        _txn(2, datetime(2025, 1, 15, 18, 0), TransactionType.expense, 120, src=1),
    ]

    points = balance_history(txns, {1}, 1_000, JAN_START, now)

    assert points[-1] == BalanceDataPoint(datetime(2025, 1, 15), 1_300)
    assert points[-1].balance == balance_as_of(txns, {1}, 1_000, now)
    assert period_start_balance(1_300, txns, {1}, JAN_START, now) == points[0].balance
