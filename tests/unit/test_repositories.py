"""Unit tests for the transaction store repositories"""

import pytest
from datetime import datetime, timedelta, timezone
from sqlalchemy.orm import Session

from anchor_gateway.domain.exceptions import DuplicateTransactionError
from anchor_gateway.domain.intervention import decide
from anchor_gateway.domain.models import (
    ClassificationResult,
    GamblingType,
    Transaction,
    Trigger,
    TriggerScore,
)
from anchor_gateway.infrastructure.database.repositories import (
    InterventionRepository,
    TransactionRepository,
    WhitelistRepository,
)

BASE_TIME = datetime(2024, 6, 1, 20, 0, tzinfo=timezone.utc)


def _transaction(tid: str, description: str = "Sportsbet", hours: int = 0) -> Transaction:
    return Transaction(
        transaction_id=tid,
        amount_cents=-5000,
        description=description,
        created_at=BASE_TIME + timedelta(hours=hours),
    )


def _gambling_result() -> ClassificationResult:
    return ClassificationResult(
        is_gambling=True,
        gambling_confidence=0.93,
        gambling_type=GamblingType.SPORTS,
        type_confidence=0.8,
        primary_trigger=Trigger.PAYDAY,
        trigger_confidence=0.7,
        relapse_risk=0.75,
        top_triggers=[TriggerScore(Trigger.PAYDAY, 0.7)],
    )


def test_create_transaction_twice_raises_duplicate(db: Session):
    repo = TransactionRepository(db)
    repo.create_transaction(_transaction("t1"), whitelisted=False)
    db.commit()

    assert repo.exists("t1") is True
    with pytest.raises(DuplicateTransactionError):
        repo.create_transaction(_transaction("t1"), whitelisted=False)

    assert len(repo.get_recent()) == 1


def test_classification_is_persisted(db: Session):
    repo = TransactionRepository(db)
    repo.create_transaction(_transaction("t2"), whitelisted=False, result=_gambling_result(), model_version="1.0.0")
    db.commit()

    record = repo.get_by_transaction_id("t2")
    assert record.is_gambling is True
    assert record.gambling_type == "sports"
    assert record.primary_trigger == "payday"
    assert record.classification["gamblingConfidence"] == pytest.approx(0.93)
    assert record.model_version == "1.0.0"


def test_history_only_includes_earlier_transactions(db: Session):
    repo = TransactionRepository(db)
    repo.create_transaction(_transaction("early", hours=0), whitelisted=False, result=_gambling_result())
    repo.create_transaction(_transaction("late", "Coles", hours=5), whitelisted=False)
    db.commit()

    history = repo.get_history(before=BASE_TIME + timedelta(hours=1))

    assert [p.transaction_id for p in history] == ["early"]
    assert history[0].is_gambling is True
    assert history[0].primary_trigger == "payday"


def test_intervention_is_linked_to_transaction(db: Session):
    transaction = _transaction("t3")
    stored = TransactionRepository(db).create_transaction(transaction, whitelisted=False, result=_gambling_result())
    record = decide(transaction, _gambling_result(), whitelisted=False)

    interventions = InterventionRepository(db)
    interventions.create_intervention(stored.id, record)
    db.commit()

    assert interventions.count_for_transaction("t3") == 1
    alerts = interventions.get_recent_alerts()
    assert [a.transaction_id for a in alerts] == ["t3"]
    assert alerts[0].risk_level == "critical"
    actions = [r["action"] for r in alerts[0].details["recommendations"]]
    assert actions == ["immediate_intervention", "notify_guardian", "block_transaction"]


def test_whitelist_matching_is_case_insensitive_substring(db: Session):
    repo = WhitelistRepository(db)
    repo.add_entry("Woolworths", category="groceries")
    db.commit()

    assert repo.is_whitelisted("WOOLWORTHS METRO 1234") is True
    assert repo.is_whitelisted("Sportsbet") is False
    assert repo.is_whitelisted(None) is False
    assert repo.is_whitelisted("") is False


def test_whitelist_remove(db: Session):
    repo = WhitelistRepository(db)
    repo.add_entry("  Landlord  ")
    db.commit()

    assert repo.get_by_name("Landlord") is not None
    assert repo.remove_entry("Landlord") is True
    assert repo.remove_entry("Landlord") is False
    assert repo.list_entries() == []
