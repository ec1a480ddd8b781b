"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class TriggerScoreSchema(BaseModel):
    """Ranked trigger alternative"""

    trigger: str
    confidence: float


class ClassificationSchema(BaseModel):
    """Classifier output in the collaborator-facing camelCase shape"""

    isGambling: bool
    gamblingConfidence: float
    gamblingType: Optional[str] = None
    typeConfidence: float
    primaryTrigger: str
    triggerConfidence: float
    relapseRisk: float
    topTriggers: List[TriggerScoreSchema]


class InterventionSchema(BaseModel):
    """Alert-or-not outcome"""

    alert: bool
    status: str
    rationale: str
    risk_level: str
    gambling_type: Optional[str] = None
    primary_trigger: Optional[str] = None
    relapse_risk: Optional[float] = None
    recommendations: List[str] = []


class WebhookResponse(BaseModel):
    """Response for POST /v1/webhooks/up"""

    message: str
    transaction_id: Optional[str] = None
    whitelisted: bool = False
    duplicate: bool = False
    classification: Optional[ClassificationSchema] = None
    intervention: Optional[InterventionSchema] = None


class WhitelistCreateRequest(BaseModel):
    """Request body for POST /v1/whitelist"""

    payee_name: str = Field(..., min_length=1, max_length=255, description="Payee name pattern")
    category: Optional[str] = Field(None, description="rent, utilities, groceries, pet...")
    notes: Optional[str] = None


class WhitelistEntrySchema(BaseModel):
    """Single whitelist entry"""

    model_config = ConfigDict(from_attributes=True)

    payee_name: str
    category: Optional[str] = None
    notes: Optional[str] = None


class WhitelistResponse(BaseModel):
    """Response for GET /v1/whitelist"""

    entries: List[WhitelistEntrySchema]


class TransactionItem(BaseModel):
    """Stored transaction with its classification"""

    transaction_id: str
    amount_cents: int
    payee_name: Optional[str] = None
    timestamp: str
    is_whitelisted: bool
    is_gambling: Optional[bool] = None
    gambling_confidence: Optional[float] = None
    gambling_type: Optional[str] = None
    primary_trigger: Optional[str] = None
    relapse_risk: Optional[float] = None
    intervention_completed: bool


class TransactionListResponse(BaseModel):
    """Response for GET /v1/transactions"""

    transactions: List[TransactionItem]


class AlertItem(BaseModel):
    """Single alert decision"""

    transaction_id: str
    status: str
    rationale: str
    risk_level: str
    details: Optional[Dict[str, Any]] = None
    decided_at: str


class AlertListResponse(BaseModel):
    """Response for GET /v1/alerts"""

    alerts: List[AlertItem]
