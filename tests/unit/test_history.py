"""Unit tests for historical context aggregation"""

import pytest
from datetime import date, datetime, timedelta, timezone

from anchor_gateway.domain.history import (
    average_days_between_relapses,
    group_relapses,
    summarize_history,
)
from anchor_gateway.domain.models import HistoricalContext, PastTransaction, Transaction

NOW = datetime(2024, 6, 20, 21, 0, tzinfo=timezone.utc)


def _current(description="Sportsbet", balance_cents=None) -> Transaction:
    return Transaction(
        transaction_id="current",
        amount_cents=-5000,
        description=description,
        created_at=NOW,
        balance_cents=balance_cents,
    )


def _past(tid, delta, description="Coles", amount_cents=-2000, gambling=False, trigger=None) -> PastTransaction:
    return PastTransaction(
        transaction_id=tid,
        amount_cents=amount_cents,
        description=description,
        created_at=NOW - delta,
        is_gambling=gambling,
        primary_trigger=trigger,
    )


def test_empty_history_gives_defaults():
    context = summarize_history(_current(), [])

    assert context == HistoricalContext()


def test_amount_statistics():
    past = [
        _past("a", timedelta(days=3), amount_cents=-1000),
        _past("b", timedelta(days=2), amount_cents=-3000),
    ]

    context = summarize_history(_current(), past)

    assert context.average_amount == pytest.approx(20.0)
    assert context.std_amount == pytest.approx(10.0)
    assert context.amounts == [10.0, 30.0]


def test_future_and_same_id_transactions_are_ignored():
    past = [
        _past("later", -timedelta(hours=1)),
        _past("current", timedelta(hours=1)),
    ]

    context = summarize_history(_current(), past)

    assert context.seconds_since_last_transaction is None
    assert context.transactions_last_day == 0


def test_sequence_features():
    past = [
        _past("atm", timedelta(minutes=90), description="ATM Withdrawal CBA"),
        _past("pub", timedelta(hours=2), description="Royal Hotel Bar"),
        _past("old", timedelta(days=2)),
    ] + [_past(f"burst_{i}", timedelta(minutes=5 + i)) for i in range(5)]

    context = summarize_history(_current(), past)

    assert context.seconds_since_last_transaction == pytest.approx(300.0)
    assert context.transactions_last_hour == 5
    assert context.transactions_last_day == 7
    assert context.recent_atm_withdrawal is True
    assert context.recent_drinking_venue is True
    assert context.transaction_burst is True


def test_merchant_frequency_counts_same_payee():
    past = [
        _past("s1", timedelta(days=5), description="Sportsbet"),
        _past("s2", timedelta(days=4), description="SPORTSBET PTY"),
        _past("c1", timedelta(days=3), description="Coles"),
    ]

    assert summarize_history(_current("Sportsbet"), past).merchant_frequency == 2


def test_gambling_streaks_and_relapses():
    past = [
        _past("g1", timedelta(days=40), description="TAB", gambling=True, trigger="payday"),
        _past("g2", timedelta(days=38), description="TAB", gambling=True, trigger="payday"),
        _past("g3", timedelta(days=10), description="TAB", gambling=True, trigger="late_night"),
        _past("n1", timedelta(days=5)),
    ]

    context = summarize_history(_current(), past)

    assert context.gambling_count == 3
    assert context.days_since_last_gamble == pytest.approx(10.0)
    assert context.current_clean_streak == pytest.approx(10.0)
    assert context.longest_clean_streak == pytest.approx(28.0)
    assert context.relapse_count == 2
    assert context.average_days_between_relapses == pytest.approx(30.0)
    assert context.primary_trigger == "payday"
    assert context.pattern_strength == pytest.approx(2 / 3)
    # All gambling happened at 21:00, the same hour as the current transaction
    assert context.matches_historical_pattern == pytest.approx(1.0)


def test_clean_streak_without_gambling_runs_from_first_transaction():
    past = [_past("a", timedelta(days=12)), _past("b", timedelta(days=1))]

    context = summarize_history(_current(), past)

    assert context.gambling_count == 0
    assert context.current_clean_streak == pytest.approx(12.0)
    assert context.longest_clean_streak == pytest.approx(12.0)


def test_group_relapses_splits_on_gap():
    gambling = [
        _past("g1", timedelta(days=30), gambling=True),
        _past("g2", timedelta(days=25), gambling=True),
        _past("g3", timedelta(days=22), gambling=True),
        _past("g4", timedelta(days=3), gambling=True),
    ]

    episodes = group_relapses(gambling)

    assert [[t.transaction_id for t in e] for e in episodes] == [["g1", "g2"], ["g3"], ["g4"]]
    assert average_days_between_relapses(episodes) == pytest.approx(13.5)


def test_single_relapse_has_no_average_gap():
    assert average_days_between_relapses([[_past("g", timedelta(days=1), gambling=True)]]) == 999.0


def test_naive_and_aware_timestamps_mix():
    naive = PastTransaction(
        transaction_id="naive",
        amount_cents=-1000,
        description="Coles",
        created_at=(NOW - timedelta(hours=2)).replace(tzinfo=None),
    )

    context = summarize_history(_current(), [naive, _past("aware", timedelta(hours=1))])

    assert context.transactions_last_day == 2
    assert context.seconds_since_last_transaction == pytest.approx(3600.0)


def test_recovery_context():
    context = summarize_history(
        _current(balance_cents=123456),
        [],
        commitment_start=date(2024, 6, 1),
        commitment_days=90,
        has_guardian=True,
    )

    assert context.account_balance == pytest.approx(1234.56)
    assert context.commitment_active is True
    assert context.days_into_commitment == 19
    assert context.has_guardian is True


def test_expired_commitment_is_inactive():
    context = summarize_history(_current(), [], commitment_start=date(2024, 1, 1), commitment_days=30)

    assert context.commitment_active is False
    assert context.days_into_commitment == 0
