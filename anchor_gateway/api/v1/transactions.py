"""GET /v1/transactions and /v1/alerts - Stored transactions and alert history"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from anchor_gateway.api.v1.schemas import (
    AlertItem,
    AlertListResponse,
    TransactionItem,
    TransactionListResponse,
)
from anchor_gateway.infrastructure.database.session import get_db
from anchor_gateway.infrastructure.database.repositories import InterventionRepository, TransactionRepository
from anchor_gateway.infrastructure.database.models import TransactionRecord

router = APIRouter()


def _transaction_item(record: TransactionRecord) -> TransactionItem:
    return TransactionItem(
        transaction_id=record.transaction_id,
        amount_cents=record.amount_cents,
        payee_name=record.payee_name,
        timestamp=record.timestamp.isoformat(),
        is_whitelisted=record.is_whitelisted,
        is_gambling=record.is_gambling,
        gambling_confidence=record.gambling_confidence,
        gambling_type=record.gambling_type,
        primary_trigger=record.primary_trigger,
        relapse_risk=record.relapse_risk,
        intervention_completed=record.intervention_completed,
    )


@router.get("/transactions", response_model=TransactionListResponse)
def list_transactions(
    limit: int = Query(50, ge=1, le=500, description="Maximum number of transactions"),
    db: Session = Depends(get_db),
):
    """Recent transactions, newest first"""
    records = TransactionRepository(db).get_recent(limit=limit)
    return TransactionListResponse(transactions=[_transaction_item(r) for r in records])


@router.get("/transactions/{transaction_id}", response_model=TransactionItem)
def get_transaction(transaction_id: str, db: Session = Depends(get_db)):
    record = TransactionRepository(db).get_by_transaction_id(transaction_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return _transaction_item(record)


@router.get("/alerts", response_model=AlertListResponse)
def list_alerts(
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """
    Recent intervention decisions that raised an alert.

    Returns:
        Alerts with rationale, risk level and recommendations
    """
    interventions = InterventionRepository(db).get_recent_alerts(limit=limit)
    return AlertListResponse(
        alerts=[
            AlertItem(
                transaction_id=i.transaction_id,
                status=i.status,
                rationale=i.rationale,
                risk_level=i.risk_level,
                details=i.details,
                decided_at=i.decided_at.isoformat(),
            )
            for i in interventions
        ]
    )
