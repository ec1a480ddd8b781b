"""Alert webhook client with exponential backoff retry logic"""

import httpx
import asyncio
import logging
from typing import Dict, Any
from anchor_gateway.config import settings
from anchor_gateway.domain.exceptions import AlertDeliveryError
from anchor_gateway.domain.models import InterventionRecord, Transaction
from anchor_gateway.infrastructure.observability.metrics import alert_latency_histogram, alert_failure_counter

logger = logging.getLogger(__name__)


def build_alert_payload(transaction: Transaction, record: InterventionRecord) -> Dict[str, Any]:
    """Event body consumed by the notification service"""
    return {
        "event": "GAMBLING_ALERT",
        "transaction_id": transaction.transaction_id,
        "amount_cents": transaction.amount_cents,
        "payee": transaction.description,
        "occurred_at": transaction.created_at.isoformat(),
        "status": record.status,
        "rationale": record.rationale,
        "gambling_type": record.gambling_type.value if record.gambling_type else None,
        "primary_trigger": record.primary_trigger.value if record.primary_trigger else None,
        "relapse_risk": record.relapse_risk,
        "risk_level": record.risk_level,
        "recommendations": [r.action for r in record.recommendations],
    }


class AlertClient:
    """Client for sending alert events to the notification service"""

    def __init__(
        self,
        webhook_url: str | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
    ):
        self.webhook_url = webhook_url or settings.alert_webhook_url
        self.max_retries = settings.alert_max_retries if max_retries is None else max_retries
        self.backoff_base = settings.alert_backoff_base if backoff_base is None else backoff_base

    async def send_alert(self, payload: Dict[str, Any]) -> None:
        """
        Send alert event with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s, 16s (base^attempt)
        - Retries on 5xx errors and network failures
        - Tracks latency histogram and failure counter

        Raises:
            AlertDeliveryError: all retries failed
        """
        if not self.webhook_url:
            logger.warning(
                "ALERT: no alert webhook configured, alert logged only",
                extra={"transaction_id": payload.get("transaction_id")},
            )
            return

        # At least one delivery attempt is always made
        max_attempts = max(self.max_retries, 1)
        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < max_attempts:
                try:
                    with alert_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=payload,
                            timeout=settings.http_timeout_seconds,
                        )
                        response.raise_for_status()
                        return  # Success

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    alert_failure_counter.inc()

                    if attempt >= max_attempts:
                        # Final failure after all retries
                        logger.error(
                            "Alert delivery failed after %d attempts: %s",
                            attempt,
                            e,
                            extra={"transaction_id": payload.get("transaction_id")},
                        )
                        raise AlertDeliveryError(f"Alert delivery failed: {e}") from e

                    # Exponential backoff: 1s, 2s, 4s, 8s, 16s
                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
