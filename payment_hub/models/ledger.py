"""SQLAlchemy models for the payment ledger."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


class PaymentRecord(Base):
    """
    One payment as seen by this system, keyed by the provider's external id.

    Status is always *set* from the latest accepted provider observation,
    never accumulated, so re-applying the same observation is a no-op.
    status_updated_at is the provider's timestamp for that observation and
    drives the ordering policy in engine.reconciliation.
    """

    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("provider", "external_id", name="uq_provider_external_id"),
    )

    id = Column(String(12), primary_key=True, default=_new_id)
    provider = Column(String(30), nullable=False, index=True)
    external_id = Column(String(255), nullable=False, index=True)  # Intent / payment / preference id
    payment_id = Column(String(255), nullable=True, index=True)  # Settled payment id when it differs (MercadoPago)
    reference = Column(String(255), nullable=True, index=True)  # Merchant reference echoed by the provider
    user_id = Column(String(64), nullable=True, index=True)  # From the "userId" metadata, for history lookups
    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    status_updated_at = Column(DateTime(timezone=True), nullable=True)
    payment_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    audit_logs = relationship("AuditLog", back_populates="payment", lazy="raise")


class AuditLog(Base):
    """
    Immutable audit trail entry.

    Every ledger write (creation, status change, stale or duplicate
    observation) gets an entry. These are append-only and never modified.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(String(12), ForeignKey("payments.id"), nullable=True, index=True)
    provider = Column(String(30), nullable=True)
    action = Column(String(50), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow)

    payment = relationship("PaymentRecord", back_populates="audit_logs")
