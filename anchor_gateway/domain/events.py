"""Webhook envelope parsing for Up Bank events"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional

from anchor_gateway.domain.exceptions import MalformedPayloadError
from anchor_gateway.domain.models import Transaction
from anchor_gateway.utils.time_utils import parse_timestamp

UNKNOWN_DESCRIPTION = "Unknown"


class EventType(str, Enum):
    """Closed set of webhook event kinds; anything unrecognised maps to UNKNOWN"""

    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    TRANSACTION_SETTLED = "TRANSACTION_SETTLED"
    TRANSACTION_DELETED = "TRANSACTION_DELETED"
    PING = "PING"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: Any) -> "EventType":
        if not isinstance(raw, str):
            return cls.UNKNOWN
        # "transaction.created" and "TRANSACTION_CREATED" are the same event
        normalized = raw.strip().upper().replace(".", "_").replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNKNOWN


@dataclass
class WebhookEvent:
    """Normalized inbound event"""

    event_type: EventType
    transaction_id: Optional[str] = None
    transaction: Optional[Transaction] = None
    resource_url: Optional[str] = None

    @property
    def needs_fetch(self) -> bool:
        """True when the envelope only references the transaction resource"""
        return self.transaction is None and self.transaction_id is not None


def _object(value: Any, field_name: str) -> Dict[str, Any]:
    """Nested JSON object, or an empty one when absent"""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedPayloadError(f"{field_name} must be a JSON object")
    return value


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def parse_amount_cents(amount: Any) -> int:
    """
    Convert an amount field to signed cents.

    Accepts the Up money object ({"value": "-50.00", "valueInBaseUnits": -5000}),
    a bare number or numeric string in dollars. Missing amounts are zero.
    """
    if amount is None:
        return 0

    if isinstance(amount, dict):
        if amount.get("valueInBaseUnits") is not None:
            try:
                return int(amount["valueInBaseUnits"])
            except (TypeError, ValueError) as e:
                raise MalformedPayloadError(f"Invalid amount: {amount!r}") from e
        amount = amount.get("value")
        if amount is None:
            return 0

    try:
        dollars = Decimal(str(amount))
    except InvalidOperation as e:
        raise MalformedPayloadError(f"Invalid amount: {amount!r}") from e
    if not dollars.is_finite():
        raise MalformedPayloadError(f"Invalid amount: {amount!r}")

    return int((dollars * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def transaction_from_attributes(
    transaction_id: str,
    attributes: Dict[str, Any],
    received_at: Optional[datetime] = None,
) -> Transaction:
    """Build a Transaction from JSON:API style attributes, substituting defaults"""
    received_at = received_at or datetime.now(timezone.utc)
    created_at = parse_timestamp(attributes.get("createdAt") or attributes.get("created_at"))

    balance = attributes.get("balance")
    balance_cents = parse_amount_cents(balance) if balance is not None else None

    return Transaction(
        transaction_id=transaction_id,
        amount_cents=parse_amount_cents(attributes.get("amount")),
        description=_text(attributes.get("description")) or _text(attributes.get("payee")) or UNKNOWN_DESCRIPTION,
        raw_text=_text(attributes.get("rawText")) or _text(attributes.get("raw_text")),
        created_at=created_at or received_at,
        balance_cents=balance_cents,
    )


def parse_webhook_event(payload: Any, received_at: Optional[datetime] = None) -> WebhookEvent:
    """
    Normalize an inbound webhook body.

    Two shapes are accepted:
    - Up Bank envelope: data.attributes.eventType plus
      data.relationships.transaction.data.id, with optional inline amount /
      description on data.attributes
    - Flat events: {"event": "transaction.created", "transaction_id", "amount", "payee"}

    Raises:
        MalformedPayloadError: body is not an object, or a transaction event
            carries no transaction identifier
    """
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Webhook body must be a JSON object")

    data = payload.get("data")
    if isinstance(data, dict):
        attributes = _object(data.get("attributes"), "data.attributes")
        relationships = _object(data.get("relationships"), "data.relationships")
        event_type = EventType.parse(attributes.get("eventType"))
    else:
        attributes = payload
        relationships = {}
        event_type = EventType.parse(payload.get("event") or payload.get("eventType"))

    if event_type != EventType.TRANSACTION_CREATED:
        return WebhookEvent(event_type=event_type)

    transaction_ref = _object(relationships.get("transaction"), "relationships.transaction")
    ref_data = _object(transaction_ref.get("data"), "relationships.transaction.data")
    transaction_id = (
        ref_data.get("id")
        or attributes.get("transactionId")
        or attributes.get("transaction_id")
        or attributes.get("id")
    )
    if not transaction_id:
        raise MalformedPayloadError("Transaction event is missing a transaction identifier")
    transaction_id = str(transaction_id)

    resource_url = _text(_object(transaction_ref.get("links"), "relationships.transaction.links").get("related"))

    has_inline_details = any(
        attributes.get(key) is not None for key in ("amount", "description", "payee")
    )
    if not has_inline_details:
        return WebhookEvent(
            event_type=event_type,
            transaction_id=transaction_id,
            resource_url=resource_url,
        )

    return WebhookEvent(
        event_type=event_type,
        transaction_id=transaction_id,
        transaction=transaction_from_attributes(transaction_id, attributes, received_at),
        resource_url=resource_url,
    )
