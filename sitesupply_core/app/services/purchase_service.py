"""
Purchase Dispatch Protocol
==========================
send:    approved request -> PurchaseHistory(PENDING_GRN), request(sent)
receive: PurchaseHistory(PENDING_GRN|SENT) + photo + GPS
         -> RECEIVED, request(received), ledger IN entry, invoice

Double-dispatch is stopped twice: the explicit lookup for an existing history
and the unique index on purchase_history.material_request_id, which closes the
race between the check and the insert.

The GRN is the fact of record. It commits before the invoice is attempted, and
an invoice failure only leaves a RECEIVED history without an invoice, which
can be regenerated later.
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import config
from ..models import User
from ..models_supply import (
    MaterialRequest, PurchaseHistory, RequestStatus, HistoryStatus, NotificationType
)
from ..security import SecurityAuditLog
from . import directory, notification_service
from .catalog import resolve_unit_price, get_unit_price
from .directory import Role
from .exceptions import (
    ValidationError, NotFoundError, InvalidStateError, AlreadySentError,
    AlreadyReceivedError, MissingEvidenceError, PermissionDeniedError
)
from .gst import price_with_gst
from .invoice_service import InvoiceService
from .material_request_service import MaterialRequestService
from .notification_service import OutboxRelay, NotificationDispatcher
from .pagination import paginate
from .state_machine import AWAITING_GRN, transition_request, transition_history
from .stock_service import StockLedgerService

logger = logging.getLogger(__name__)


def _parse_gst_rate(gst_rate) -> Decimal:
    if gst_rate is None:
        return config.DEFAULT_GST_RATE
    try:
        rate = Decimal(str(gst_rate))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"GST rate must be a number, got {gst_rate!r}")
    if not rate.is_finite() or rate < 0 or rate > 100:
        raise ValidationError("GST rate must be between 0 and 100")
    return rate


def validate_evidence(proof_photo_url: Optional[str], latitude, longitude) -> tuple[str, float, float]:
    """
    A GRN needs a proof photo and a position.

    Raises:
        MissingEvidenceError: empty photo, or latitude/longitude absent or
            outside [-90, 90] / [-180, 180]
    """
    if not proof_photo_url or not str(proof_photo_url).strip():
        raise MissingEvidenceError("Proof photo is required to confirm receipt")
    if latitude is None or longitude is None:
        raise MissingEvidenceError("GPS coordinates are required to confirm receipt")
    try:
        lat, lon = float(latitude), float(longitude)
    except (TypeError, ValueError):
        raise MissingEvidenceError("GPS coordinates must be numbers")
    if not -90 <= lat <= 90:
        raise MissingEvidenceError(f"Latitude {lat} is out of range [-90, 90]")
    if not -180 <= lon <= 180:
        raise MissingEvidenceError(f"Longitude {lon} is out of range [-180, 180]")
    return str(proof_photo_url).strip(), lat, lon


class PurchaseDispatchService:
    """Service class for dispatch and GRN operations"""

    @staticmethod
    def get_history(db: Session, history_id: int) -> PurchaseHistory:
        history = db.query(PurchaseHistory).filter(PurchaseHistory.id == history_id).first()
        if not history:
            raise NotFoundError(f"Purchase history {history_id} not found", code="HISTORY_NOT_FOUND")
        return history

    @staticmethod
    def send(
        db: Session,
        request_id: int,
        actor: User,
        gst_rate=None,
        dispatcher: Optional[NotificationDispatcher] = None,
        price_lookup: Callable = get_unit_price
    ) -> PurchaseHistory:
        """
        Dispatch an approved request.

        Raises:
            NotFoundError: unknown request
            AlreadySentError: a history row already exists for the request
            InvalidStateError: request is not approved
            PermissionDeniedError: caller is not a purchase manager
        """
        directory.require_role(actor, Role.PURCHASE_MANAGER)
        rate = _parse_gst_rate(gst_rate)
        request = MaterialRequestService.get(db, request_id)

        existing = db.query(PurchaseHistory).filter(PurchaseHistory.material_request_id == request.id).first()
        if existing:
            raise AlreadySentError(
                f"Material request {request.id} was already sent (purchase history {existing.id})"
            )
        if RequestStatus(request.status) != RequestStatus.APPROVED:
            raise InvalidStateError(
                f"Only approved requests can be sent (status: {RequestStatus(request.status).value})"
            )

        unit_price = resolve_unit_price(db, request.material_id, request.material_name, lookup=price_lookup)
        base_price, gst_amount, total_cost = price_with_gst(unit_price, request.quantity, rate)

        now = datetime.utcnow()
        history = PurchaseHistory(
            project_id=request.project_id,
            material_request_id=request.id,
            material_id=request.material_id,
            material_name=request.material_name,
            quantity=request.quantity,
            unit=request.unit,
            unit_price=unit_price,
            gst_rate=rate,
            base_price=base_price,
            gst_amount=gst_amount,
            total_cost=total_cost,
            sent_at=now,
            sent_by=actor.id,
            status=HistoryStatus.PENDING_GRN
        )
        db.add(history)
        try:
            db.flush()
        except IntegrityError as e:
            db.rollback()
            raise AlreadySentError(f"Material request {request_id} was sent concurrently") from e

        transition_request(db, request, RequestStatus.SENT)

        SecurityAuditLog.log_sensitive_action(
            db, actor.id, "send", "purchase_history", history.id,
            {
                "material_request_id": request.id,
                "gst_rate": str(rate),
                "total_cost": str(total_cost),
            }
        )
        notification_service.enqueue(
            db,
            [request.requested_by],
            NotificationType.MATERIAL_SENT,
            "Material Sent",
            f"{request.material_name} ({Decimal(str(request.quantity)).normalize():f} {request.unit}) has been sent. "
            f"Please confirm receipt with a photo.",
            {"materialRequestId": request.id, "purchaseHistoryId": history.id, "projectId": request.project_id}
        )
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise AlreadySentError(f"Material request {request_id} was sent concurrently") from e
        db.refresh(history)

        logger.info("Material sent: request %s -> history %s by %s (total %s)", request.id, history.id, actor.id, total_cost)
        OutboxRelay.drain_quietly(db, dispatcher)
        return history

    @staticmethod
    def receive(
        db: Session,
        history_id: int,
        actor: User,
        proof_photo_url: Optional[str],
        latitude,
        longitude,
        geo_location: Optional[str] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        invoice_issuer: Optional[Callable] = None
    ) -> PurchaseHistory:
        """
        Confirm physical receipt (GRN).

        Raises:
            NotFoundError: unknown history
            AlreadyReceivedError: GRN already confirmed, here or by a concurrent caller
            MissingEvidenceError: photo or GPS missing/invalid
            InvalidStateError: history not awaiting GRN
            PermissionDeniedError: caller is not an engineer/manager on the project
        """
        history = PurchaseDispatchService.get_history(db, history_id)
        project = directory.get_project(db, history.project_id)
        directory.require_role(actor, Role.ENGINEER, Role.MANAGER)
        directory.require_member(db, project, actor, allow_owner_role=False)

        if HistoryStatus(history.status) == HistoryStatus.RECEIVED:
            raise AlreadyReceivedError(f"Material for purchase history {history.id} was already received")
        proof_photo_url, lat, lon = validate_evidence(proof_photo_url, latitude, longitude)
        if HistoryStatus(history.status) not in AWAITING_GRN:
            raise InvalidStateError(
                f"Purchase history {history.id} is not awaiting GRN (status: {HistoryStatus(history.status).value})"
            )

        request = MaterialRequestService.get(db, history.material_request_id)

        now = datetime.utcnow()
        try:
            transition_history(
                db, history, HistoryStatus.RECEIVED,
                received_at=now,
                received_by=actor.id,
                proof_photo_url=proof_photo_url,
                latitude=lat,
                longitude=lon,
                geo_location=geo_location,
                grn_generated=True,
                grn_generated_at=now
            )
            transition_request(db, request, RequestStatus.RECEIVED)
        except InvalidStateError:
            db.rollback()
            db.refresh(history)
            if HistoryStatus(history.status) == HistoryStatus.RECEIVED:
                raise AlreadyReceivedError(
                    f"Material for purchase history {history.id} was received concurrently"
                )
            raise
        StockLedgerService.add_stock_in(db, request, history.quantity, actor.id)

        SecurityAuditLog.log_sensitive_action(
            db, actor.id, "receive", "purchase_history", history.id,
            {
                "material_request_id": request.id,
                "proof_photo_url": proof_photo_url,
                "latitude": lat,
                "longitude": lon,
            }
        )
        recipients = directory.project_manager_ids(db, project.id) + [project.owner_id]
        notification_service.enqueue(
            db,
            recipients,
            NotificationType.MATERIAL_RECEIVED,
            "Material Received",
            f"{actor.full_name} confirmed receipt of {history.material_name} "
            f"({Decimal(str(history.quantity)).normalize():f} {history.unit}) on {project.name}.",
            {
                "materialRequestId": request.id,
                "purchaseHistoryId": history.id,
                "projectId": project.id,
                "proofPhotoUrl": proof_photo_url,
            }
        )
        db.commit()
        logger.info("GRN confirmed: history %s (request %s) by %s", history.id, request.id, actor.id)

        issuer = invoice_issuer or InvoiceService.issue_for_history
        try:
            issuer(db, history.id, actor)
        except Exception as e:
            db.rollback()
            logger.warning("Invoice generation failed for purchase history %s: %s", history.id, e)

        OutboxRelay.drain_quietly(db, dispatcher)
        db.refresh(history)
        return history

    # =========================================================================
    # QUERIES
    # =========================================================================

    @staticmethod
    def list_approved_requests(db: Session, actor: User, page: int = 1, limit: int = 20):
        """Approved, not yet sent; each item carries the catalog price and default GST rate"""
        if actor.role not in (Role.PURCHASE_MANAGER, Role.OWNER):
            raise PermissionDeniedError("Only purchase managers can view approved requests")
        query = db.query(MaterialRequest).filter(
            MaterialRequest.status == RequestStatus.APPROVED
        ).order_by(MaterialRequest.approved_at.asc(), MaterialRequest.id.asc())
        requests, pagination = paginate(query, page, limit)
        items = []
        for request in requests:
            items.append({
                "request": request,
                "unit_price": resolve_unit_price(db, request.material_id, request.material_name),
                "gst_rate": config.DEFAULT_GST_RATE,
            })
        return items, pagination

    @staticmethod
    def list_awaiting_grn(db: Session, actor: User, project_id: Optional[int] = None):
        """Sent materials the caller's projects still have to confirm"""
        query = db.query(PurchaseHistory).filter(PurchaseHistory.status.in_(list(AWAITING_GRN)))
        if actor.role != Role.OWNER:
            query = query.filter(PurchaseHistory.project_id.in_(directory.member_project_ids(db, actor)))
        if project_id is not None:
            query = query.filter(PurchaseHistory.project_id == project_id)
        return query.order_by(PurchaseHistory.sent_at.desc(), PurchaseHistory.id.desc()).all()

    @staticmethod
    def history_by_project(
        db: Session,
        actor: User,
        project_id: int,
        status: Optional[HistoryStatus] = None,
        page: int = 1,
        limit: int = 20
    ):
        project = directory.get_project(db, project_id)
        if actor.role != Role.PURCHASE_MANAGER:
            directory.require_member(db, project, actor)
        query = db.query(PurchaseHistory).filter(PurchaseHistory.project_id == project.id)
        if status:
            query = query.filter(PurchaseHistory.status == status)
        return paginate(query.order_by(PurchaseHistory.sent_at.desc(), PurchaseHistory.id.desc()), page, limit)

    @staticmethod
    def all_history(
        db: Session,
        actor: User,
        status: Optional[HistoryStatus] = None,
        page: int = 1,
        limit: int = 20
    ):
        query = db.query(PurchaseHistory)
        if actor.role not in (Role.PURCHASE_MANAGER, Role.OWNER):
            query = query.filter(PurchaseHistory.project_id.in_(directory.member_project_ids(db, actor)))
        if status:
            query = query.filter(PurchaseHistory.status == status)
        return paginate(query.order_by(PurchaseHistory.sent_at.desc(), PurchaseHistory.id.desc()), page, limit)
