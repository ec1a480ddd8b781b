"""Data access layer for transactions, whitelist entries and interventions"""

import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from anchor_gateway.infrastructure.database.models import Intervention, TransactionRecord, WhitelistEntry
from anchor_gateway.domain.exceptions import DuplicateTransactionError
from anchor_gateway.domain.models import (
    ClassificationResult,
    InterventionRecord,
    PastTransaction,
    Transaction,
)

logger = logging.getLogger(__name__)


class TransactionRepository:
    """Repository for stored transactions"""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, transaction_id: str) -> bool:
        """Idempotency check against the unique transaction_id index"""
        return (
            self.db.query(TransactionRecord.id)
            .filter(TransactionRecord.transaction_id == transaction_id)
            .first()
            is not None
        )

    def create_transaction(
        self,
        transaction: Transaction,
        whitelisted: bool,
        result: Optional[ClassificationResult] = None,
        model_version: Optional[str] = None,
    ) -> TransactionRecord:
        """
        Persist a transaction with its classification.

        Raises:
            DuplicateTransactionError: another delivery of the same transaction
                ID was stored first (the session is rolled back)
        """
        db_transaction = TransactionRecord(
            transaction_id=transaction.transaction_id,
            amount_cents=transaction.amount_cents,
            payee_name=transaction.description,
            description=transaction.raw_text or transaction.description,
            balance_cents=transaction.balance_cents,
            timestamp=transaction.created_at,
            is_whitelisted=whitelisted,
            # Whitelisted transactions don't need intervention
            intervention_completed=whitelisted,
            model_version=model_version if result else None,
        )
        if result is not None:
            db_transaction.is_gambling = result.is_gambling
            db_transaction.gambling_confidence = result.gambling_confidence
            db_transaction.gambling_type = result.gambling_type.value if result.gambling_type else None
            db_transaction.primary_trigger = result.primary_trigger.value
            db_transaction.relapse_risk = result.relapse_risk
            db_transaction.classification = result.to_dict()

        self.db.add(db_transaction)
        try:
            self.db.flush()  # Surface unique-constraint conflicts before commit
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateTransactionError(f"Transaction {transaction.transaction_id} already stored") from e
        return db_transaction

    def get_by_transaction_id(self, transaction_id: str) -> Optional[TransactionRecord]:
        return (
            self.db.query(TransactionRecord)
            .filter(TransactionRecord.transaction_id == transaction_id)
            .first()
        )

    def get_recent(self, limit: int = 50) -> List[TransactionRecord]:
        """Fetch recent transactions, newest first"""
        return self.db.query(TransactionRecord).order_by(TransactionRecord.timestamp.desc()).limit(limit).all()

    def get_history(self, before: datetime, limit: int = 1000) -> List[PastTransaction]:
        """Transactions before ``before`` for historical feature context"""
        rows = (
            self.db.query(TransactionRecord)
            .filter(TransactionRecord.timestamp < before)
            .order_by(TransactionRecord.timestamp.desc())
            .limit(limit)
            .all()
        )
        return [
            PastTransaction(
                transaction_id=row.transaction_id,
                amount_cents=row.amount_cents,
                description=row.payee_name or "",
                created_at=row.timestamp,
                is_gambling=bool(row.is_gambling),
                primary_trigger=row.primary_trigger if row.is_gambling else None,
            )
            for row in rows
        ]


class WhitelistRepository:
    """Repository for whitelisted payees"""

    def __init__(self, db: Session):
        self.db = db

    def is_whitelisted(self, payee_name: Optional[str]) -> bool:
        """
        Case-insensitive match of any whitelist pattern within the payee name.

        Database failures return False: an unnecessary alert is preferable
        to a suppressed one.
        """
        if not payee_name:
            return False

        try:
            patterns = [row.payee_name for row in self.db.query(WhitelistEntry.payee_name).all()]
        except SQLAlchemyError as e:
            logger.error("Error checking whitelist: %s", e, extra={"payee_name": payee_name})
            return False

        payee = payee_name.lower()
        return any(pattern and pattern.lower() in payee for pattern in patterns)

    def add_entry(self, payee_name: str, category: Optional[str] = None, notes: Optional[str] = None) -> WhitelistEntry:
        entry = WhitelistEntry(payee_name=payee_name.strip(), category=category, notes=notes)
        self.db.add(entry)
        self.db.flush()
        return entry

    def get_by_name(self, payee_name: str) -> Optional[WhitelistEntry]:
        return (
            self.db.query(WhitelistEntry)
            .filter(WhitelistEntry.payee_name == payee_name.strip())
            .first()
        )

    def list_entries(self) -> List[WhitelistEntry]:
        return self.db.query(WhitelistEntry).order_by(WhitelistEntry.payee_name).all()

    def remove_entry(self, payee_name: str) -> bool:
        """Delete an entry by exact name; returns False if it did not exist"""
        entry = self.get_by_name(payee_name)
        if entry is None:
            return False
        self.db.delete(entry)
        self.db.flush()
        return True


class InterventionRepository:
    """Repository for intervention decisions"""

    def __init__(self, db: Session):
        self.db = db

    def create_intervention(self, record_id, record: InterventionRecord) -> Intervention:
        """Persist an intervention decision for a stored transaction"""
        db_intervention = Intervention(
            transaction_record_id=record_id,
            transaction_id=record.transaction_id,
            alert=record.alert,
            status=record.status,
            rationale=record.rationale,
            risk_level=record.risk_level,
            details={
                "gambling_type": record.gambling_type.value if record.gambling_type else None,
                "primary_trigger": record.primary_trigger.value if record.primary_trigger else None,
                "relapse_risk": record.relapse_risk,
                "recommendations": [
                    {"priority": r.priority, "action": r.action, "message": r.message}
                    for r in record.recommendations
                ],
            },
            decided_at=record.decided_at,
        )
        self.db.add(db_intervention)
        self.db.flush()
        return db_intervention

    def count_for_transaction(self, transaction_id: str) -> int:
        return self.db.query(Intervention).filter(Intervention.transaction_id == transaction_id).count()

    def get_recent_alerts(self, limit: int = 50) -> List[Intervention]:
        return (
            self.db.query(Intervention)
            .filter(Intervention.alert.is_(True))
            .order_by(Intervention.decided_at.desc())
            .limit(limit)
            .all()
        )
