"""Feature extraction - converts a transaction and its history into the 122-value model input"""

import math
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from anchor_gateway.domain.merchants import (
    MERCHANT_CATEGORIES,
    categorize_merchant,
    is_known_gambling_venue,
    merchant_risk_score,
)
from anchor_gateway.domain.models import TRIGGERS, HistoricalContext, Transaction
from anchor_gateway.utils.time_utils import to_utc

FEATURE_COUNT = 122

# Population statistics of the training data (dollars)
AMOUNT_MEAN = 45.2
AMOUNT_STD = 120.5

Z_RANGE = (-3.0, 3.0)

BANDS: Dict[str, slice] = {
    "amount": slice(0, 5),
    "time": slice(5, 17),
    "merchant": slice(17, 22),
    "sequence": slice(22, 28),
    "historical": slice(28, 36),
    "context": slice(36, 40),
    "pattern": slice(40, 42),
    "padding": slice(42, FEATURE_COUNT),
}

# Z-score components; everything else is a ratio or flag in [0, 1]
_Z_SCORE_INDICES = (0, 2)


def _lower_bounds() -> np.ndarray:
    bounds = np.zeros(FEATURE_COUNT, dtype=np.float32)
    bounds[list(_Z_SCORE_INDICES)] = Z_RANGE[0]
    return bounds


def _upper_bounds() -> np.ndarray:
    bounds = np.ones(FEATURE_COUNT, dtype=np.float32)
    bounds[list(_Z_SCORE_INDICES)] = Z_RANGE[1]
    return bounds


LOWER_BOUNDS = _lower_bounds()
UPPER_BOUNDS = _upper_bounds()


class FeatureVector:
    """
    Fixed-length, bounds-checked model input.

    Construction clamps every component to its band's range and replaces
    NaN/Inf with zero, so a FeatureVector is always 122 finite values.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Sequence[float]):
        array = np.asarray(values, dtype=np.float32).reshape(-1)
        if array.shape[0] > FEATURE_COUNT:
            raise ValueError(f"Feature vector has {array.shape[0]} values, expected {FEATURE_COUNT}")
        if array.shape[0] < FEATURE_COUNT:
            array = np.concatenate([array, np.zeros(FEATURE_COUNT - array.shape[0], dtype=np.float32)])

        array = np.nan_to_num(array, nan=0.0, posinf=0.0, neginf=0.0)
        array = np.clip(array, LOWER_BOUNDS, UPPER_BOUNDS)
        array.setflags(write=False)
        self._values = array

    @property
    def values(self) -> np.ndarray:
        """Read-only float32 array of length 122"""
        return self._values

    def band(self, name: str) -> np.ndarray:
        """Values of one semantic band (amount, time, merchant, ...)"""
        try:
            return self._values[BANDS[name]]
        except KeyError:
            raise KeyError(f"Unknown feature band: {name}") from None

    def __len__(self) -> int:
        return FEATURE_COUNT

    def __getitem__(self, index):
        return self._values[index]

    def __eq__(self, other) -> bool:
        return isinstance(other, FeatureVector) and np.array_equal(self._values, other._values)

    def __repr__(self) -> str:
        return f"FeatureVector({np.count_nonzero(self._values)} non-zero of {FEATURE_COUNT})"


def _number(value: Any, default: float) -> float:
    """Coerce to a finite float, falling back to ``default``"""
    if value is None or isinstance(value, str):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if math.isfinite(result) else default


def _flag(value: Any) -> float:
    return 1.0 if bool(value) else 0.0


def _capped(value: Any, scale: float, default: float = 0.0) -> float:
    return min(max(_number(value, default) / scale, 0.0), 1.0)


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def encode_merchant_category(category: Optional[str]) -> float:
    category = category if category in MERCHANT_CATEGORIES else "other"
    return MERCHANT_CATEGORIES.index(category) / len(MERCHANT_CATEGORIES)


def encode_trigger(trigger: Optional[str]) -> float:
    """Ordinal trigger encoding; 0.0 means no known trigger"""
    values = [t.value for t in TRIGGERS]
    if trigger not in values:
        return 0.0
    return (values.index(trigger) + 1) / len(values)


def percentile_rank(value: float, history: Sequence[float]) -> float:
    """Percentage (0-100) of historical amounts strictly below ``value``; 50 without history"""
    if not history:
        return 50.0
    below = sum(1 for amount in history if amount < value)
    return below / len(history) * 100


class FeatureExtractor:
    """Deterministic transaction -> FeatureVector transform"""

    def extract(self, transaction: Transaction, context: Optional[HistoricalContext] = None) -> FeatureVector:
        return self.encode(self.raw_features(transaction, context))

    def raw_features(
        self, transaction: Transaction, context: Optional[HistoricalContext] = None
    ) -> Dict[str, Any]:
        """Named, un-normalized features (also the training-data format)"""
        context = context or HistoricalContext()
        amount = transaction.amount_dollars
        average = context.average_amount if context.average_amount > 0 else 50.0
        std = context.std_amount if context.std_amount > 0 else 20.0

        created_at = to_utc(transaction.created_at)
        hour = created_at.hour
        day_of_week = created_at.isoweekday() % 7  # Sunday = 0
        day_of_month = created_at.day

        merchant = transaction.description

        return {
            "amount": amount,
            "amount_percentile": percentile_rank(amount, context.amounts),
            "amount_z_score": (amount - average) / std,
            "is_above_average": amount > average,
            "is_round_number": amount > 0 and (transaction.amount_cents % 1000 == 0 or transaction.amount_cents % 5000 == 0),
            "amount_ratio": amount / average,
            "hour_of_day": hour,
            "day_of_week": day_of_week,
            "day_of_month": day_of_month,
            "is_weekend": day_of_week in (0, 6),
            "is_payday": day_of_month == 15 or day_of_month >= 28 or day_of_month <= 2,
            "is_late_night": hour >= 22 or hour < 4,
            "is_early_morning": 4 <= hour < 8,
            "hour_sin": math.sin(2 * math.pi * hour / 24),
            "hour_cos": math.cos(2 * math.pi * hour / 24),
            "day_of_week_sin": math.sin(2 * math.pi * day_of_week / 7),
            "day_of_week_cos": math.cos(2 * math.pi * day_of_week / 7),
            "merchant_category": categorize_merchant(merchant),
            "merchant_risk_score": merchant_risk_score(merchant),
            "merchant_frequency": context.merchant_frequency,
            "is_new_merchant": context.merchant_frequency == 0,
            "is_known_gambling_venue": is_known_gambling_venue(merchant),
            "time_since_last_transaction": context.seconds_since_last_transaction,
            "transactions_in_last_hour": context.transactions_last_hour,
            "transactions_in_last_day": context.transactions_last_day,
            "had_recent_atm_withdrawal": context.recent_atm_withdrawal,
            "had_recent_drinking_venue": context.recent_drinking_venue,
            "transaction_burst_active": context.transaction_burst,
            "total_gambling_transactions": context.gambling_count,
            "days_since_last_gamble": context.days_since_last_gamble,
            "current_clean_streak": context.current_clean_streak,
            "longest_clean_streak": context.longest_clean_streak,
            "total_relapses": context.relapse_count,
            "average_time_between_relapses": context.average_days_between_relapses,
            "pattern_strength": context.pattern_strength,
            "primary_trigger": context.primary_trigger,
            "account_balance": context.account_balance,
            "is_commitment_active": context.commitment_active,
            "days_into_commitment": context.days_into_commitment,
            "has_guardian": context.has_guardian,
            "matches_historical_pattern": context.matches_historical_pattern,
            "similar_user_behavior": context.similar_user_behavior,
        }

    def encode(self, raw: Mapping[str, Any]) -> FeatureVector:
        """
        Normalize a named feature mapping into a FeatureVector.

        Keys may be snake_case or camelCase. Missing or non-numeric values use
        the documented defaults.
        """
        f = {_snake_case(key): value for key, value in raw.items()}

        hour = _number(f.get("hour_of_day"), 0.0)
        day_of_week = _number(f.get("day_of_week"), 0.0)
        ratio = f.get("amount_ratio")

        values: List[float] = [
            # Amount (5)
            (_number(f.get("amount"), 0.0) - AMOUNT_MEAN) / AMOUNT_STD,
            _number(f.get("amount_percentile"), 50.0) / 100,
            _number(f.get("amount_z_score"), 0.0) / 2,
            _flag(f.get("is_above_average")),
            _flag(f.get("is_round_number")),
            # Time (12)
            hour / 24,
            day_of_week / 7,
            _number(f.get("day_of_month"), 0.0) / 31,
            _flag(f.get("is_weekend")),
            _flag(f.get("is_payday")),
            _flag(f.get("is_late_night")),
            _flag(f.get("is_early_morning")),
            (_number(f.get("hour_sin"), math.sin(2 * math.pi * hour / 24)) + 1) / 2,
            (_number(f.get("hour_cos"), math.cos(2 * math.pi * hour / 24)) + 1) / 2,
            (_number(f.get("day_of_week_sin"), math.sin(2 * math.pi * day_of_week / 7)) + 1) / 2,
            (_number(f.get("day_of_week_cos"), math.cos(2 * math.pi * day_of_week / 7)) + 1) / 2,
            _capped(ratio, 5) if _number(ratio, 0.0) else 0.5,
            # Merchant (5)
            encode_merchant_category(f.get("merchant_category")),
            _number(f.get("merchant_risk_score"), 0.0),
            _capped(f.get("merchant_frequency"), 100),
            _flag(f.get("is_new_merchant")),
            _flag(f.get("is_known_gambling_venue")),
            # Sequence (6)
            _capped(f.get("time_since_last_transaction"), 3600, default=99_999.0),
            _capped(f.get("transactions_in_last_hour"), 10),
            _capped(f.get("transactions_in_last_day"), 50),
            _flag(f.get("had_recent_atm_withdrawal")),
            _flag(f.get("had_recent_drinking_venue")),
            _flag(f.get("transaction_burst_active")),
            # Historical (8)
            _capped(f.get("total_gambling_transactions"), 100),
            _capped(f.get("days_since_last_gamble"), 365, default=999.0),
            _capped(f.get("current_clean_streak"), 90),
            _capped(f.get("longest_clean_streak"), 365),
            _capped(f.get("total_relapses"), 20),
            _capped(f.get("average_time_between_relapses"), 90, default=999.0),
            _number(f.get("pattern_strength"), 0.0),
            encode_trigger(f.get("primary_trigger")),
            # Context (4)
            _capped(f.get("account_balance"), 5000, default=1000.0),
            _flag(f.get("is_commitment_active")),
            _capped(f.get("days_into_commitment"), 90),
            _flag(f.get("has_guardian")),
            # Pattern similarity (2)
            _number(f.get("matches_historical_pattern"), 0.0),
            _number(f.get("similar_user_behavior"), 0.5),
        ]

        return FeatureVector(values)

