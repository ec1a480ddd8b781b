"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class GamblingType(str, Enum):
    """Gambling channel predicted by the type head"""

    ONLINE = "online"
    VENUE = "venue"
    SPORTS = "sports"
    LOTTERY = "lottery"


class Trigger(str, Enum):
    """Behavioral trigger predicted by the trigger head"""

    PAYDAY = "payday"
    WEEKEND = "weekend"
    LATE_NIGHT = "late_night"
    ALCOHOL = "alcohol"
    STRESS = "stress"
    BOREDOM = "boredom"
    OVERCONFIDENCE = "overconfidence"
    SOCIAL = "social"


GAMBLING_TYPES: List[GamblingType] = list(GamblingType)
TRIGGERS: List[Trigger] = list(Trigger)


@dataclass(frozen=True)
class Transaction:
    """Bank transaction received from the Up webhook"""

    transaction_id: str
    amount_cents: int  # negative for debits
    description: str
    created_at: datetime
    raw_text: Optional[str] = None
    balance_cents: Optional[int] = None

    @property
    def amount_dollars(self) -> float:
        return abs(self.amount_cents) / 100


@dataclass
class PastTransaction:
    """Previously stored transaction used to build historical context"""

    transaction_id: str
    amount_cents: int
    description: str
    created_at: datetime
    is_gambling: bool = False
    primary_trigger: Optional[str] = None


@dataclass
class HistoricalContext:
    """
    Everything the feature extractor needs beyond the transaction itself.

    Defaults are the neutral values used for a user with no history.
    """

    # Amount history
    average_amount: float = 50.0
    std_amount: float = 20.0
    amounts: List[float] = field(default_factory=list)

    # Merchant
    merchant_frequency: int = 0

    # Sequence (seconds since last transaction, None when there is none)
    seconds_since_last_transaction: Optional[float] = None
    transactions_last_hour: int = 0
    transactions_last_day: int = 0
    recent_atm_withdrawal: bool = False
    recent_drinking_venue: bool = False
    transaction_burst: bool = False

    # Gambling history
    gambling_count: int = 0
    days_since_last_gamble: float = 999.0
    current_clean_streak: float = 0.0
    longest_clean_streak: float = 0.0
    relapse_count: int = 0
    average_days_between_relapses: float = 999.0
    pattern_strength: float = 0.0
    primary_trigger: Optional[str] = None

    # Recovery context
    account_balance: Optional[float] = None
    commitment_active: bool = False
    days_into_commitment: int = 0
    has_guardian: bool = False

    # Pattern similarity
    matches_historical_pattern: float = 0.0
    similar_user_behavior: float = 0.5


@dataclass
class TriggerScore:
    """Ranked trigger alternative"""

    trigger: Trigger
    confidence: float


@dataclass
class ClassificationResult:
    """Output of the four classifier heads for one transaction"""

    is_gambling: bool
    gambling_confidence: float
    gambling_type: Optional[GamblingType]
    type_confidence: float
    primary_trigger: Trigger
    trigger_confidence: float
    relapse_risk: float
    top_triggers: List[TriggerScore]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isGambling": self.is_gambling,
            "gamblingConfidence": self.gambling_confidence,
            "gamblingType": self.gambling_type.value if self.gambling_type else None,
            "typeConfidence": self.type_confidence,
            "primaryTrigger": self.primary_trigger.value,
            "triggerConfidence": self.trigger_confidence,
            "relapseRisk": self.relapse_risk,
            "topTriggers": [
                {"trigger": t.trigger.value, "confidence": t.confidence} for t in self.top_triggers
            ],
        }


@dataclass
class Recommendation:
    """Suggested follow-up action for collaborators"""

    priority: str
    action: str
    message: str


@dataclass
class InterventionRecord:
    """Alert-or-not outcome for a single transaction"""

    transaction_id: str
    alert: bool
    status: str  # alert | no_alert | resolved_whitelisted | alert_unclassified
    rationale: str
    decided_at: datetime
    gambling_type: Optional[GamblingType] = None
    primary_trigger: Optional[Trigger] = None
    relapse_risk: Optional[float] = None
    risk_level: str = "low"
    recommendations: List[Recommendation] = field(default_factory=list)


@dataclass
class LabeledExample:
    """
    Supervised training example.

    ``features`` is either a mapping of named raw features (as produced by
    FeatureExtractor.raw_features) or an already encoded 122-value sequence.
    """

    features: Any
    is_gambling: bool
    gambling_type: Optional[str] = None
    trigger: Optional[str] = None
    relapse_risk: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LabeledExample":
        return cls(
            features=data["features"],
            is_gambling=bool(data["isGambling"] if "isGambling" in data else data["is_gambling"]),
            gambling_type=data.get("gamblingType", data.get("gambling_type")),
            trigger=data.get("trigger"),
            relapse_risk=float(data.get("relapseRisk", data.get("relapse_risk")) or 0.0),
        )
