"""POST /v1/webhooks/up - Up Bank transaction webhook receiver"""

import json
import time
import logging
from dataclasses import dataclass
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, BackgroundTasks, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from anchor_gateway.api.v1.schemas import ClassificationSchema, InterventionSchema, WebhookResponse
from anchor_gateway.api.dependencies import (
    get_alert_client,
    get_classifier,
    get_request_id,
    get_settings,
    get_up_client,
)
from anchor_gateway.config import Settings
from anchor_gateway.infrastructure.database.session import get_db
from anchor_gateway.infrastructure.database.repositories import (
    InterventionRepository,
    TransactionRepository,
    WhitelistRepository,
)
from anchor_gateway.infrastructure.clients.up_bank import UpBankClient
from anchor_gateway.infrastructure.clients.alerts import AlertClient, build_alert_payload
from anchor_gateway.domain.events import EventType, WebhookEvent, parse_webhook_event, transaction_from_attributes
from anchor_gateway.domain.exceptions import (
    DeadlineExceededError,
    DuplicateTransactionError,
    InferenceError,
    MalformedPayloadError,
    TransactionFetchError,
)
from anchor_gateway.domain.history import summarize_history
from anchor_gateway.domain.intervention import decide
from anchor_gateway.domain.models import ClassificationResult, InterventionRecord, Transaction
from anchor_gateway.domain.signature import validate_signature
from anchor_gateway.ml.classifier import RiskClassifier
from anchor_gateway.infrastructure.observability.metrics import (
    inference_failure_counter,
    inference_latency_histogram,
    record_intervention,
    signature_failure_counter,
    store_failure_counter,
    up_fetch_failures_counter,
    webhook_event_counter,
)
from anchor_gateway.infrastructure.observability.logging import log_webhook_outcome
from anchor_gateway.utils.time_utils import Deadline

router = APIRouter()


@dataclass
class ProcessingOutcome:
    """Result of the store-side pipeline for one transaction"""

    transaction: Transaction
    duplicate: bool = False
    whitelisted: bool = False
    result: Optional[ClassificationResult] = None
    record: Optional[InterventionRecord] = None


def classify_transaction(
    db: Session,
    transaction: Transaction,
    classifier: RiskClassifier,
    config: Settings,
    request_id: str,
) -> Optional[ClassificationResult]:
    """
    Build historical context, extract features and run the classifier.

    Returns None when inference fails; the caller then alerts by default.
    """
    history = TransactionRepository(db).get_history(before=transaction.created_at)
    context = summarize_history(
        transaction,
        history,
        commitment_start=config.commitment_start,
        commitment_days=config.commitment_days,
        has_guardian=bool(config.guardian_contact),
    )

    try:
        with inference_latency_histogram.time():
            vector = classifier.extractor.extract(transaction, context)
            return classifier.predict(vector)
    except InferenceError as e:
        inference_failure_counter.inc()
        logging.error(
            f"Classification failed: {e}",
            extra={"request_id": request_id, "transaction_id": transaction.transaction_id},
        )
        return None


def process_transaction(
    db: Session,
    transaction: Transaction,
    classifier: RiskClassifier,
    config: Settings,
    deadline: Deadline,
    request_id: str,
) -> ProcessingOutcome:
    """
    Duplicate check, whitelist check, classification, decision and persistence.

    Flow:
    1. Skip transaction IDs that are already stored
    2. Check the whitelist (classification is skipped for whitelisted payees)
    3. Extract features and classify
    4. Decide on intervention
    5. Persist transaction + intervention and commit

    Nothing is committed once the deadline has passed.

    Raises:
        DuplicateTransactionError: a concurrent delivery stored the ID first
        DeadlineExceededError: time budget spent before commit
    """
    transactions = TransactionRepository(db)

    # 1. Idempotency
    if transactions.exists(transaction.transaction_id):
        return ProcessingOutcome(transaction=transaction, duplicate=True)

    # 2. Whitelist
    whitelisted = WhitelistRepository(db).is_whitelisted(transaction.description)

    # 3. Classification
    result = None
    if not whitelisted:
        deadline.check("classification")
        result = classify_transaction(db, transaction, classifier, config, request_id)

    # 4. Decision
    record = decide(transaction, result, whitelisted, threshold=config.alert_confidence_threshold)

    # 5. Persistence
    deadline.check("persistence")
    db_transaction = transactions.create_transaction(
        transaction,
        whitelisted=whitelisted,
        result=result,
        model_version=classifier.model_version,
    )
    InterventionRepository(db).create_intervention(db_transaction.id, record)

    deadline.check("commit")
    db.commit()

    return ProcessingOutcome(
        transaction=transaction,
        whitelisted=whitelisted,
        result=result,
        record=record,
    )


async def resolve_transaction(event: WebhookEvent, up_client: UpBankClient, request_id: str) -> Transaction:
    """Inline transaction, or the referenced resource fetched from the Up API"""
    if not event.needs_fetch:
        return event.transaction

    if not up_client.configured:
        logging.warning(
            "Webhook has no inline transaction details and no Up API token is configured; using defaults",
            extra={"request_id": request_id, "transaction_id": event.transaction_id},
        )
        return transaction_from_attributes(event.transaction_id, {})

    return await up_client.get_transaction(event.transaction_id, url=event.resource_url)


def _intervention_schema(record: InterventionRecord) -> InterventionSchema:
    return InterventionSchema(
        alert=record.alert,
        status=record.status,
        rationale=record.rationale,
        risk_level=record.risk_level,
        gambling_type=record.gambling_type.value if record.gambling_type else None,
        primary_trigger=record.primary_trigger.value if record.primary_trigger else None,
        relapse_risk=record.relapse_risk,
        recommendations=[r.action for r in record.recommendations],
    )


@router.post("/webhooks/up", response_model=WebhookResponse)
async def receive_up_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    classifier: RiskClassifier = Depends(get_classifier),
    up_client: UpBankClient = Depends(get_up_client),
    alert_client: AlertClient = Depends(get_alert_client),
    config: Settings = Depends(get_settings),
):
    """
    Receive TRANSACTION_CREATED events from Up Bank.

    Flow:
    1. Verify the HMAC signature over the raw body (401 on failure)
    2. Parse the envelope; other event types are acknowledged and ignored
    3. Resolve the transaction (inline or fetched from the Up API)
    4. Duplicate/whitelist check, classify, decide, persist
    5. Schedule the alert only after the commit succeeded
    6. Return 200 (Up retries anything else)
    """
    start_time = time.time()
    request_id = get_request_id(request)
    deadline = Deadline(config.webhook_timeout_seconds)

    # 1. Signature
    raw_body = await request.body()
    signature = request.headers.get(config.signature_header)
    if not signature:
        signature_failure_counter.labels(reason="missing").inc()
        logging.error("Missing signature header", extra={"request_id": request_id})
        raise HTTPException(status_code=401, detail="Missing signature")

    if not validate_signature(raw_body, signature, config.up_webhook_secret):
        signature_failure_counter.labels(reason="invalid").inc()
        logging.error("Invalid webhook signature", extra={"request_id": request_id})
        raise HTTPException(status_code=401, detail="Invalid signature")

    # 2. Envelope
    try:
        event = parse_webhook_event(json.loads(raw_body))
    except (ValueError, MalformedPayloadError) as e:
        webhook_event_counter.labels(outcome="rejected").inc()
        logging.warning(f"Malformed webhook payload: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=400, detail=str(e))

    if event.event_type != EventType.TRANSACTION_CREATED:
        webhook_event_counter.labels(outcome="ignored").inc()
        return WebhookResponse(message="Event type ignored")

    try:
        # 3. Transaction details
        transaction = await resolve_transaction(event, up_client, request_id)
        deadline.check("processing")

        # 4. Pipeline (blocking database and model work)
        outcome = await run_in_threadpool(
            process_transaction, db, transaction, classifier, config, deadline, request_id
        )

    except DuplicateTransactionError:
        db.rollback()
        outcome = ProcessingOutcome(transaction=transaction, duplicate=True)

    except TransactionFetchError as e:
        up_fetch_failures_counter.inc()
        webhook_event_counter.labels(outcome="failed").inc()
        db.rollback()
        logging.error(f"Up API error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Up API unavailable")

    except DeadlineExceededError as e:
        webhook_event_counter.labels(outcome="failed").inc()
        db.rollback()
        logging.error(f"Webhook timed out: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Processing timed out")

    except SQLAlchemyError as e:
        store_failure_counter.inc()
        webhook_event_counter.labels(outcome="failed").inc()
        db.rollback()
        logging.error(f"Transaction store error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    except Exception as e:
        webhook_event_counter.labels(outcome="failed").inc()
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    duration_ms = (time.time() - start_time) * 1000

    if outcome.duplicate:
        webhook_event_counter.labels(outcome="duplicate").inc()
        log_webhook_outcome(request_id, outcome.transaction.transaction_id, "duplicate", duration_ms)
        return WebhookResponse(
            message="Duplicate transaction ignored",
            transaction_id=outcome.transaction.transaction_id,
            duplicate=True,
        )

    record = outcome.record
    result = outcome.result

    # 5. Alert only after the transaction is durably stored
    if record.alert:
        background_tasks.add_task(alert_client.send_alert, build_alert_payload(outcome.transaction, record))

    webhook_event_counter.labels(outcome="processed").inc()
    record_intervention(
        record.status,
        result.is_gambling if result else None,
        result.gambling_confidence if result else None,
    )
    log_webhook_outcome(
        request_id,
        outcome.transaction.transaction_id,
        record.status,
        duration_ms,
        whitelisted=outcome.whitelisted,
        alert=record.alert,
        gambling_confidence=result.gambling_confidence if result else None,
    )

    return WebhookResponse(
        message="Webhook processed",
        transaction_id=outcome.transaction.transaction_id,
        whitelisted=outcome.whitelisted,
        classification=ClassificationSchema(**result.to_dict()) if result else None,
        intervention=_intervention_schema(record),
    )
