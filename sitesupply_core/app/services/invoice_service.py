"""
Purchase Invoice Issuer
=======================
One invoice per completed GRN:
- Amounts copied from the purchase history row, never recomputed
- CGST/SGST vs IGST split from the supplier and project states
- Invoice numbers per Indian financial year, allocated under a row lock
"""

import logging
from datetime import datetime, date
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import config
from ..models import User
from ..models_supply import PurchaseHistory, PurchaseInvoice, NumberSequence, HistoryStatus
from ..security import SecurityAuditLog
from . import directory
from .directory import Role
from .exceptions import (
    NotFoundError, InvalidStateError, DuplicateInvoiceError, PermissionDeniedError, ConcurrentUpdateError
)
from .gst import calculate_gst
from .pagination import paginate

logger = logging.getLogger(__name__)

INVOICE_SEQUENCE = "purchase_invoice"


def financial_year(when: date) -> str:
    """Indian financial year label, April to March: 2026-05-01 -> '2026-27'"""
    start = when.year if when.month >= 4 else when.year - 1
    return f"{start}-{str(start + 1)[-2:]}"


def next_invoice_number(db: Session, when: Optional[datetime] = None, prefix: Optional[str] = None) -> str:
    """
    Allocate the next invoice number for the financial year of ``when``.

    Uses SELECT FOR UPDATE so two issuers cannot read the same counter.
    Format: PREFIX/FY/NUMBER, e.g. PI/2026-27/000001
    """
    period = financial_year(when or datetime.utcnow())
    prefix = prefix or config.INVOICE_PREFIX

    seq = db.query(NumberSequence).filter(
        NumberSequence.sequence_name == INVOICE_SEQUENCE,
        NumberSequence.period == period
    ).with_for_update().first()

    if not seq:
        seq = NumberSequence(
            sequence_name=INVOICE_SEQUENCE,
            period=period,
            prefix=prefix,
            current_number=0,
            padding=6
        )
        db.add(seq)

    seq.current_number = (seq.current_number or 0) + 1
    db.flush()

    number_str = str(seq.current_number).zfill(seq.padding or 6)
    return f"{seq.prefix or prefix}/{period}/{number_str}"


class InvoiceService:
    """Service class for purchase invoice operations"""

    @staticmethod
    def issue_for_history(
        db: Session,
        history_id: int,
        actor: User,
        supplier_state: Optional[str] = None
    ) -> PurchaseInvoice:
        """
        Create the invoice for a RECEIVED purchase history and commit it.

        Raises:
            NotFoundError: unknown history
            DuplicateInvoiceError: an invoice already exists for it
            InvalidStateError: the GRN has not been confirmed
            ConcurrentUpdateError: invoice number allocation collided with
                another issuer; safe to retry
        """
        history = db.query(PurchaseHistory).filter(PurchaseHistory.id == history_id).first()
        if not history:
            raise NotFoundError(f"Purchase history {history_id} not found", code="HISTORY_NOT_FOUND")

        existing = db.query(PurchaseInvoice).filter(PurchaseInvoice.purchase_history_id == history.id).first()
        if existing:
            raise DuplicateInvoiceError(
                f"Invoice {existing.invoice_number} already exists for purchase history {history.id}"
            )
        if HistoryStatus(history.status) != HistoryStatus.RECEIVED:
            raise InvalidStateError(
                f"Cannot invoice purchase history {history.id} before GRN (status: {HistoryStatus(history.status).value})"
            )

        project = directory.get_project(db, history.project_id)
        supplier_state = supplier_state or config.SUPPLIER_STATE
        # No state on the project: treat as intra-state supply
        client_state = project.state or supplier_state
        breakdown = calculate_gst(history.base_price, history.gst_rate, supplier_state, client_state)

        now = datetime.utcnow()
        invoice = PurchaseInvoice(
            purchase_history_id=history.id,
            project_id=history.project_id,
            material_name=history.material_name,
            quantity=history.quantity,
            unit=history.unit,
            base_price=history.base_price,
            gst_rate=history.gst_rate,
            gst_amount=history.gst_amount,
            total_amount=history.total_cost,
            gst_type=breakdown.gst_type,
            cgst_amount=breakdown.cgst_amount,
            sgst_amount=breakdown.sgst_amount,
            igst_amount=breakdown.igst_amount,
            supplier_state=supplier_state,
            client_state=client_state,
            generated_at=now,
            generated_by=actor.id
        )
        try:
            # a new financial year inserts its sequence row here, which can collide
            invoice.invoice_number = next_invoice_number(db, now)
            db.add(invoice)
            db.flush()
            SecurityAuditLog.log_sensitive_action(
                db, actor.id, "invoice", "purchase_invoice", invoice.id,
                {
                    "purchase_history_id": history.id,
                    "invoice_number": invoice.invoice_number,
                    "total_amount": str(invoice.total_amount),
                }
            )
            db.commit()
        except IntegrityError as e:
            db.rollback()
            winner = db.query(PurchaseInvoice).filter(PurchaseInvoice.purchase_history_id == history_id).first()
            if winner:
                raise DuplicateInvoiceError(
                    f"Invoice {winner.invoice_number} for purchase history {history_id} was issued concurrently"
                ) from e
            logger.warning("Invoice number allocation lost a race for purchase history %s: %s", history_id, e.orig)
            raise ConcurrentUpdateError(
                f"Invoice number allocation for purchase history {history_id} collided; retry"
            ) from e

        db.refresh(invoice)
        logger.info("Purchase invoice issued: %s for history %s by %s", invoice.invoice_number, history.id, actor.id)
        return invoice

    @staticmethod
    def regenerate(db: Session, history_id: int, actor: User) -> PurchaseInvoice:
        """Retry issuance for a GRN whose invoice failed on the receive path"""
        history = db.query(PurchaseHistory).filter(PurchaseHistory.id == history_id).first()
        if not history:
            raise NotFoundError(f"Purchase history {history_id} not found", code="HISTORY_NOT_FOUND")
        InvoiceService._require_invoice_access(db, history.project_id, actor)
        return InvoiceService.issue_for_history(db, history_id, actor)

    @staticmethod
    def _require_invoice_access(db: Session, project_id: int, actor: User) -> None:
        if actor.role == Role.OWNER:
            return
        if actor.role != Role.MANAGER:
            raise PermissionDeniedError("Only managers and owners can access purchase invoices")
        directory.require_member(db, directory.get_project(db, project_id), actor, allow_owner_role=False)

    @staticmethod
    def list_invoices(
        db: Session,
        actor: User,
        project_id: Optional[int] = None,
        page: int = 1,
        limit: int = 20
    ):
        query = db.query(PurchaseInvoice)
        if actor.role == Role.MANAGER:
            query = query.filter(PurchaseInvoice.project_id.in_(directory.member_project_ids(db, actor)))
        elif actor.role != Role.OWNER:
            raise PermissionDeniedError("Only managers and owners can access purchase invoices")
        if project_id is not None:
            query = query.filter(PurchaseInvoice.project_id == project_id)
        return paginate(query.order_by(PurchaseInvoice.generated_at.desc(), PurchaseInvoice.id.desc()), page, limit)

    @staticmethod
    def get_invoice(db: Session, invoice_id: int, actor: User) -> PurchaseInvoice:
        invoice = db.query(PurchaseInvoice).filter(PurchaseInvoice.id == invoice_id).first()
        if not invoice:
            raise NotFoundError(f"Purchase invoice {invoice_id} not found", code="INVOICE_NOT_FOUND")
        InvoiceService._require_invoice_access(db, invoice.project_id, actor)
        return invoice
