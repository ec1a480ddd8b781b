"""Intervention decision - converts classifier output into an alert-or-not outcome"""

from datetime import datetime, timezone
from typing import List, Optional

from anchor_gateway.domain.models import (
    ClassificationResult,
    InterventionRecord,
    Recommendation,
    Transaction,
)

DEFAULT_CONFIDENCE_THRESHOLD = 0.5


def determine_risk_level(relapse_risk: float) -> str:
    """
    Map relapse risk to a level for downstream collaborators.

    Bands:
    - > 0.7: critical (immediate intervention)
    - > 0.5: elevated (guardian should be told)
    - otherwise: low
    """
    if relapse_risk > 0.7:
        return "critical"
    elif relapse_risk > 0.5:
        return "elevated"
    else:
        return "low"


def build_recommendations(result: ClassificationResult) -> List[Recommendation]:
    """Follow-up actions implied by a classification"""
    recommendations = []

    if result.relapse_risk > 0.7:
        recommendations.append(
            Recommendation(
                priority="critical",
                action="immediate_intervention",
                message="High relapse risk detected. Immediate intervention recommended.",
            )
        )

    if result.relapse_risk > 0.5:
        recommendations.append(
            Recommendation(
                priority="high",
                action="notify_guardian",
                message="Notify guardian of elevated risk.",
            )
        )

    if result.gambling_confidence > 0.9:
        recommendations.append(
            Recommendation(
                priority="high",
                action="block_transaction",
                message="High confidence gambling transaction. Consider blocking.",
            )
        )

    return recommendations


def decide(
    transaction: Transaction,
    result: Optional[ClassificationResult],
    whitelisted: bool,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    decided_at: Optional[datetime] = None,
) -> InterventionRecord:
    """
    Main entry point: decide whether a transaction warrants an alert.

    Rules, in order:
    1. Whitelisted payee: no alert, resolved
    2. No classification (inference failed): alert, since a missed alert is
       worse than a false one
    3. Alert iff the detection head is positive with confidence above threshold
    """
    decided_at = decided_at or datetime.now(timezone.utc)

    if whitelisted:
        return InterventionRecord(
            transaction_id=transaction.transaction_id,
            alert=False,
            status="resolved_whitelisted",
            rationale=f"Payee '{transaction.description}' is whitelisted",
            decided_at=decided_at,
        )

    if result is None:
        return InterventionRecord(
            transaction_id=transaction.transaction_id,
            alert=True,
            status="alert_unclassified",
            rationale="Classification unavailable; alerting by default",
            decided_at=decided_at,
        )

    alert = result.is_gambling and result.gambling_confidence > threshold
    if alert:
        rationale = (
            f"Gambling detected with confidence {result.gambling_confidence:.2f} "
            f"(threshold {threshold:.2f})"
        )
    else:
        rationale = (
            f"Gambling confidence {result.gambling_confidence:.2f} "
            f"does not exceed threshold {threshold:.2f}"
        )

    return InterventionRecord(
        transaction_id=transaction.transaction_id,
        alert=alert,
        status="alert" if alert else "no_alert",
        rationale=rationale,
        decided_at=decided_at,
        gambling_type=result.gambling_type,
        primary_trigger=result.primary_trigger,
        relapse_risk=result.relapse_risk,
        risk_level=determine_risk_level(result.relapse_risk),
        recommendations=build_recommendations(result),
    )
