"""Historical aggregation - turns stored transactions into feature context"""

import math
from collections import Counter
from datetime import date, timedelta
from typing import List, Optional, Sequence

from anchor_gateway.domain.merchants import is_atm, is_drinking_venue
from anchor_gateway.domain.models import HistoricalContext, PastTransaction, Transaction
from anchor_gateway.utils.time_utils import days_between, to_utc

RELAPSE_GAP_DAYS = 7
ATM_LOOKBACK = timedelta(hours=2)
DRINKING_LOOKBACK = timedelta(hours=3)
BURST_WINDOW = timedelta(minutes=30)
BURST_MIN_TRANSACTIONS = 5


def group_relapses(gambling: Sequence[PastTransaction]) -> List[List[PastTransaction]]:
    """
    Group gambling transactions into relapse episodes.

    A transaction more than RELAPSE_GAP_DAYS after the start of the current
    episode opens a new one.
    """
    episodes: List[List[PastTransaction]] = []
    for txn in sorted(gambling, key=lambda t: to_utc(t.created_at)):
        if episodes and days_between(episodes[-1][0].created_at, txn.created_at) <= RELAPSE_GAP_DAYS:
            episodes[-1].append(txn)
        else:
            episodes.append([txn])
    return episodes


def average_days_between_relapses(episodes: Sequence[Sequence[PastTransaction]]) -> float:
    if len(episodes) < 2:
        return 999.0
    starts = [episode[0].created_at for episode in episodes]
    gaps = [days_between(a, b) for a, b in zip(starts, starts[1:])]
    return sum(gaps) / len(gaps)


def _hour_distance(a: int, b: int) -> int:
    diff = abs(a - b) % 24
    return min(diff, 24 - diff)


def summarize_history(
    transaction: Transaction,
    past: Sequence[PastTransaction],
    commitment_start: Optional[date] = None,
    commitment_days: int = 90,
    has_guardian: bool = False,
) -> HistoricalContext:
    """
    Build the HistoricalContext for ``transaction`` from earlier stored transactions.

    Only transactions strictly before the current one are considered, so the
    result does not depend on the order in which events arrived.
    """
    now = to_utc(transaction.created_at)
    earlier = sorted(
        (
            t for t in past
            if t.transaction_id != transaction.transaction_id and to_utc(t.created_at) < now
        ),
        key=lambda t: to_utc(t.created_at),
    )

    context = HistoricalContext()

    # Amount history
    amounts = [abs(t.amount_cents) / 100 for t in earlier]
    if amounts:
        mean = sum(amounts) / len(amounts)
        std = math.sqrt(sum((a - mean) ** 2 for a in amounts) / len(amounts))
        context.average_amount = mean if mean > 0 else context.average_amount
        context.std_amount = std if std > 0 else context.std_amount
        context.amounts = amounts

    # Merchant frequency
    merchant = transaction.description.lower()
    context.merchant_frequency = sum(1 for t in earlier if merchant and merchant in t.description.lower())

    # Sequence
    if earlier:
        context.seconds_since_last_transaction = (now - to_utc(earlier[-1].created_at)).total_seconds()
    context.transactions_last_hour = sum(1 for t in earlier if now - to_utc(t.created_at) <= timedelta(hours=1))
    context.transactions_last_day = sum(1 for t in earlier if now - to_utc(t.created_at) <= timedelta(days=1))
    context.recent_atm_withdrawal = any(
        is_atm(t.description) and now - to_utc(t.created_at) <= ATM_LOOKBACK for t in earlier
    )
    context.recent_drinking_venue = any(
        is_drinking_venue(t.description) and now - to_utc(t.created_at) <= DRINKING_LOOKBACK for t in earlier
    )
    context.transaction_burst = (
        sum(1 for t in earlier if now - to_utc(t.created_at) <= BURST_WINDOW) >= BURST_MIN_TRANSACTIONS
    )

    # Gambling history
    gambling = [t for t in earlier if t.is_gambling]
    context.gambling_count = len(gambling)
    if gambling:
        context.days_since_last_gamble = days_between(gambling[-1].created_at, now)
        context.current_clean_streak = context.days_since_last_gamble
        event_times = [t.created_at for t in gambling]
        gaps = [days_between(a, b) for a, b in zip(event_times, event_times[1:])]
        context.longest_clean_streak = max(gaps + [context.current_clean_streak])
    elif earlier:
        context.current_clean_streak = days_between(earlier[0].created_at, now)
        context.longest_clean_streak = context.current_clean_streak

    episodes = group_relapses(gambling)
    context.relapse_count = len(episodes)
    context.average_days_between_relapses = average_days_between_relapses(episodes)

    triggers = Counter(t.primary_trigger for t in gambling if t.primary_trigger)
    if triggers:
        trigger, count = triggers.most_common(1)[0]
        context.primary_trigger = trigger
        context.pattern_strength = count / sum(triggers.values())

    if gambling:
        same_window = sum(
            1 for t in gambling if _hour_distance(to_utc(t.created_at).hour, now.hour) <= 1
        )
        context.matches_historical_pattern = same_window / len(gambling)

    # Recovery context
    if transaction.balance_cents is not None:
        context.account_balance = transaction.balance_cents / 100
    if commitment_start is not None:
        today = now.date()
        end = commitment_start + timedelta(days=commitment_days)
        context.commitment_active = commitment_start <= today < end
        context.days_into_commitment = max((today - commitment_start).days, 0) if context.commitment_active else 0
    context.has_guardian = has_guardian

    return context
