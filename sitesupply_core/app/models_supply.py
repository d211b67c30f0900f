"""
Site Supply Chain - Data Models
===============================
Persistent entities for the material request -> dispatch -> GRN -> invoice flow.

Key Features:
- Decimal precision for quantities and money
- One dispatch (PurchaseHistory) per request, enforced by a unique index
- Append-only stock ledger; balances are always derived, never stored
- One invoice per completed GRN, with collision-free invoice numbers
- Notification outbox committed with the state change that produced it
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Boolean, Float,
    Numeric, Enum as SQLEnum, Index, CheckConstraint, UniqueConstraint,
    event
)
from sqlalchemy.orm import relationship
from .db import Base


# =============================================================================
# ENUMS
# =============================================================================

class RequestStatus(str, Enum):
    """Material request lifecycle"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SENT = "sent"
    RECEIVED = "received"


class HistoryStatus(str, Enum):
    """Dispatch record lifecycle. SENT is a legacy alias of PENDING_GRN."""
    PENDING_GRN = "PENDING_GRN"
    SENT = "SENT"
    RECEIVED = "RECEIVED"


class MovementDirection(str, Enum):
    IN = "IN"
    OUT = "OUT"


class LedgerSource(str, Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    ADJUSTMENT = "adjustment"


class SourceKind(str, Enum):
    """Tag for the ledger's polymorphic back-reference"""
    MATERIAL_REQUEST = "material_request"
    DAILY_PROGRESS_REPORT = "daily_progress_report"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class NotificationType(str, Enum):
    MATERIAL_REQUEST = "material_request"
    MATERIAL_APPROVED = "material_approved"
    MATERIAL_REJECTED = "material_rejected"
    MATERIAL_SENT = "material_sent"
    MATERIAL_RECEIVED = "material_received"
    STOCK_ALERT = "stock_alert"


# =============================================================================
# MATERIAL REQUESTS
# =============================================================================

class MaterialRequest(Base):
    """
    A single ask for a quantity of one material on one project.

    Never deleted - rejected and completed requests stay as the audit trail.
    Status only moves through services.state_machine.
    """
    __tablename__ = "material_requests"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)

    material_id = Column(String(64), nullable=False)  # catalog code
    material_name = Column(String(200), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit = Column(String(20), nullable=False)
    reason = Column(Text, nullable=False)

    requested_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(SQLEnum(RequestStatus), nullable=False, default=RequestStatus.PENDING)

    # Set by the usage-anomaly detector at creation, read-only afterwards
    anomaly_detected = Column(Boolean, default=False)
    anomaly_reason = Column(Text, nullable=True)

    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = relationship("Project")
    requester = relationship("User", foreign_keys=[requested_by])

    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_request_quantity_positive'),
        Index('ix_request_project_status', 'project_id', 'status'),
        Index('ix_request_status_created', 'status', 'created_at'),
        Index('ix_request_requested_by', 'requested_by'),
    )


# =============================================================================
# DISPATCH / GRN
# =============================================================================

class PurchaseHistory(Base):
    """
    One dispatch-and-delivery transaction for exactly one approved request.

    Workflow:
    1. Purchase manager sends -> PENDING_GRN
    2. Engineer confirms receipt with photo + GPS -> RECEIVED (terminal)
    """
    __tablename__ = "purchase_history"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    # unique: a request may be dispatched at most once
    material_request_id = Column(Integer, ForeignKey("material_requests.id"), nullable=False)

    material_id = Column(String(64), nullable=False)
    material_name = Column(String(200), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit = Column(String(20), nullable=False)

    # Pricing (INR)
    unit_price = Column(Numeric(15, 2), nullable=False, default=0)
    gst_rate = Column(Numeric(5, 2), nullable=False, default=18)
    base_price = Column(Numeric(15, 2), nullable=False, default=0)
    gst_amount = Column(Numeric(15, 2), nullable=False, default=0)
    total_cost = Column(Numeric(15, 2), nullable=False, default=0)

    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    sent_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    status = Column(SQLEnum(HistoryStatus), nullable=False, default=HistoryStatus.PENDING_GRN)

    # GRN evidence
    received_at = Column(DateTime, nullable=True)
    received_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    proof_photo_url = Column(String(500), nullable=True)
    geo_location = Column(String(500), nullable=True)  # reverse geocoded address
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    grn_generated = Column(Boolean, default=False)
    grn_generated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    material_request = relationship("MaterialRequest")
    project = relationship("Project")
    invoice = relationship("PurchaseInvoice", back_populates="purchase_history", uselist=False)

    __table_args__ = (
        UniqueConstraint('material_request_id', name='uq_purchase_history_request'),
        Index('ix_history_project_status', 'project_id', 'status'),
        Index('ix_history_sent_by', 'sent_by'),
        Index('ix_history_received_by', 'received_by'),
    )


# =============================================================================
# STOCK LEDGER
# =============================================================================

class StockLedgerEntry(Base):
    """
    Immutable movement log. Never updated or deleted after insertion.

    Balance for a (project, material) = sum(IN) - sum(OUT). The balance may
    go negative; that is surfaced as an alert, not prevented.
    """
    __tablename__ = "stock_ledger"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    material_id = Column(String(64), nullable=False, index=True)
    material_name = Column(String(200), nullable=False)

    direction = Column(SQLEnum(MovementDirection), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit = Column(String(20), nullable=False)
    source = Column(SQLEnum(LedgerSource), nullable=False)

    # Tagged back-reference: kind + id, resolved via stock_service.SOURCE_RESOLVERS
    source_kind = Column(SQLEnum(SourceKind), nullable=True)
    source_ref_id = Column(Integer, nullable=True)

    remarks = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_ledger_quantity_positive'),
        Index('ix_ledger_project_material', 'project_id', 'material_id'),
        Index('ix_ledger_project_created', 'project_id', 'created_at'),
        Index('ix_ledger_source_ref', 'source_kind', 'source_ref_id'),
    )


# =============================================================================
# INVOICES
# =============================================================================

class PurchaseInvoice(Base):
    """Financial artifact produced exactly once per completed GRN"""
    __tablename__ = "purchase_invoices"

    id = Column(Integer, primary_key=True, index=True)
    purchase_history_id = Column(Integer, ForeignKey("purchase_history.id"), nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    invoice_number = Column(String(50), nullable=False)

    material_name = Column(String(200), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit = Column(String(20), nullable=False)

    # Copied from the history row, never recomputed
    base_price = Column(Numeric(15, 2), nullable=False)
    gst_rate = Column(Numeric(5, 2), nullable=False)
    gst_amount = Column(Numeric(15, 2), nullable=False)
    total_amount = Column(Numeric(15, 2), nullable=False)

    # Tax split
    gst_type = Column(String(20), nullable=False)  # CGST_SGST or IGST
    cgst_amount = Column(Numeric(15, 2), nullable=False, default=0)
    sgst_amount = Column(Numeric(15, 2), nullable=False, default=0)
    igst_amount = Column(Numeric(15, 2), nullable=False, default=0)
    supplier_state = Column(String(100), nullable=True)
    client_state = Column(String(100), nullable=True)

    generated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    generated_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    purchase_history = relationship("PurchaseHistory", back_populates="invoice")

    __table_args__ = (
        UniqueConstraint('purchase_history_id', name='uq_invoice_purchase_history'),
        UniqueConstraint('invoice_number', name='uq_invoice_number'),
        Index('ix_invoice_project_generated', 'project_id', 'generated_at'),
    )


@event.listens_for(StockLedgerEntry, "before_update")
@event.listens_for(PurchaseInvoice, "before_update")
def _reject_update(mapper, connection, target):
    raise ValueError(f"{type(target).__name__} rows are immutable")


@event.listens_for(StockLedgerEntry, "before_delete")
@event.listens_for(PurchaseInvoice, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ValueError(f"{type(target).__name__} rows cannot be deleted")


# =============================================================================
# SYSTEM TABLES
# =============================================================================

class NumberSequence(Base):
    """
    Counters for document numbers.
    One row per (sequence, period) so invoice numbering restarts each
    financial year without losing prior counters.
    """
    __tablename__ = "number_sequences"

    id = Column(Integer, primary_key=True, index=True)
    sequence_name = Column(String(50), nullable=False)  # purchase_invoice, ...
    period = Column(String(20), nullable=False, default="")  # e.g. "2026-27"
    prefix = Column(String(20), default="")
    current_number = Column(Integer, default=0)
    padding = Column(Integer, default=6)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('sequence_name', 'period', name='uq_sequence_period'),
    )


class NotificationOutbox(Base):
    """
    Notification events enqueued in the same transaction as the state change.
    Drained after commit by services.notification_service.OutboxRelay.
    """
    __tablename__ = "notification_outbox"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(Text, nullable=True)  # JSON

    status = Column(SQLEnum(OutboxStatus), nullable=False, default=OutboxStatus.PENDING)
    attempts = Column(Integer, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    delivered_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('ix_outbox_status_created', 'status', 'created_at'),
    )


class AuditLog(Base):
    """Audit trail for every committed supply-chain transition"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=False)
    action = Column(String(30), nullable=False)  # create, approve, reject, send, receive, invoice

    new_values = Column(Text, nullable=True)  # JSON

    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_audit_entity', 'entity_type', 'entity_id'),
        Index('ix_audit_user_date', 'user_id', 'created_at'),
    )
