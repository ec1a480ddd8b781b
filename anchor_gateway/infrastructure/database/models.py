"""SQLAlchemy ORM models for transactions, whitelist and interventions"""

import uuid
from sqlalchemy import Column, String, BigInteger, Boolean, Float, DateTime, ForeignKey, Text, JSON, Uuid
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class TransactionRecord(Base):
    """Bank transaction received by webhook, annotated with its classification"""

    __tablename__ = "transactions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transaction_id = Column(String(255), nullable=False, unique=True)  # Up transaction ID, idempotency key
    amount_cents = Column(BigInteger, nullable=False)  # negative for debits
    payee_name = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    balance_cents = Column(BigInteger, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    is_whitelisted = Column(Boolean, nullable=False, default=False)
    is_gambling = Column(Boolean, nullable=True)  # NULL when not classified
    gambling_confidence = Column(Float, nullable=True)
    gambling_type = Column(Text, nullable=True)
    primary_trigger = Column(Text, nullable=True)
    relapse_risk = Column(Float, nullable=True)
    classification = Column(JSON, nullable=True)
    model_version = Column(Text, nullable=True)
    intervention_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    interventions = relationship("Intervention", back_populates="transaction", cascade="all, delete-orphan")


class WhitelistEntry(Base):
    """Approved payee that never triggers an alert"""

    __tablename__ = "whitelist"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payee_name = Column(String(255), nullable=False, unique=True)
    category = Column(Text, nullable=True)  # rent, utilities, groceries, pet...
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Intervention(Base):
    """Alert-or-not decision for a stored transaction"""

    __tablename__ = "interventions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    transaction_record_id = Column(
        Uuid(as_uuid=True), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    transaction_id = Column(String(255), nullable=False, index=True)
    alert = Column(Boolean, nullable=False)
    status = Column(Text, nullable=False)
    rationale = Column(Text, nullable=False)
    risk_level = Column(Text, nullable=False, default="low")
    details = Column(JSON, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    transaction = relationship("TransactionRecord", back_populates="interventions")
