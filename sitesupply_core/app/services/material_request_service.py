"""
Material Request Lifecycle
==========================
pending -> approved | rejected, with who-may-do-what checks.

Each mutating call is one unit of work: status change, audit row and
notification outbox rows commit together; outbox delivery happens after the
commit and cannot fail the transition.
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..models import User
from ..models_supply import MaterialRequest, RequestStatus, NotificationType
from ..security import SecurityAuditLog
from . import directory, notification_service
from .anomaly import detect_request_anomaly
from .directory import Role
from .exceptions import ValidationError, NotFoundError, PermissionDeniedError, InvalidStateError
from .notification_service import OutboxRelay, NotificationDispatcher
from .pagination import paginate
from .state_machine import transition_request

logger = logging.getLogger(__name__)


def parse_quantity(value) -> Decimal:
    """Quantities are positive decimals with 3 places"""
    try:
        quantity = Decimal(str(value))
        if quantity.is_finite():
            quantity = quantity.quantize(Decimal("0.001"))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Quantity must be a number, got {value!r}")
    # checked after rounding: 0.0004 stores as 0.000
    if not quantity.is_finite() or quantity <= 0:
        raise ValidationError("Quantity must be at least 0.001")
    return quantity


def _required(name: str, value: Optional[str]) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} is required")
    return str(value).strip()


class MaterialRequestService:
    """Service class for material request operations"""

    @staticmethod
    def get(db: Session, request_id: int) -> MaterialRequest:
        request = db.query(MaterialRequest).filter(MaterialRequest.id == request_id).first()
        if not request:
            raise NotFoundError(f"Material request {request_id} not found", code="REQUEST_NOT_FOUND")
        return request

    @staticmethod
    def create(
        db: Session,
        actor: User,
        project_id: int,
        material_id: str,
        material_name: str,
        quantity,
        unit: str,
        reason: str,
        anomaly_detector: Optional[Callable] = detect_request_anomaly,
        dispatcher: Optional[NotificationDispatcher] = None
    ) -> MaterialRequest:
        """
        Raise a new request in ``pending``.

        Raises:
            ValidationError: quantity <= 0 or a blank required field
            NotFoundError: unknown project
            PermissionDeniedError: caller is not an engineer on the project
        """
        quantity = parse_quantity(quantity)
        material_id = _required("material_id", material_id)
        material_name = _required("material_name", material_name)
        unit = _required("unit", unit)
        reason = _required("reason", reason)

        project = directory.get_project(db, project_id)
        directory.require_role(actor, Role.ENGINEER)
        directory.require_member(db, project, actor, allow_owner_role=False)

        anomaly_detected, anomaly_reason = False, None
        if anomaly_detector is not None:
            try:
                result = anomaly_detector(db, project.id, material_id, quantity)
                anomaly_detected, anomaly_reason = result.is_anomaly, result.reason
            except Exception as e:
                logger.warning("Anomaly detection failed for project %s material %s: %s", project.id, material_id, e)

        request = MaterialRequest(
            project_id=project.id,
            material_id=material_id,
            material_name=material_name,
            quantity=quantity,
            unit=unit,
            reason=reason,
            requested_by=actor.id,
            status=RequestStatus.PENDING,
            anomaly_detected=anomaly_detected,
            anomaly_reason=anomaly_reason
        )
        db.add(request)
        db.flush()

        title = "Material Request Raised"
        if anomaly_detected:
            title = "Material Request Raised - Usage Anomaly"
        notification_service.enqueue(
            db,
            directory.project_manager_ids(db, project.id),
            NotificationType.MATERIAL_REQUEST,
            title,
            f"{actor.full_name} requested {material_name} ({quantity.normalize():f} {unit}) for {project.name}.",
            {
                "materialRequestId": request.id,
                "projectId": project.id,
                "anomalyDetected": anomaly_detected,
                "anomalyReason": anomaly_reason,
            }
        )
        db.commit()
        db.refresh(request)

        logger.info("Material request created: %s by %s", request.id, actor.id)
        OutboxRelay.drain_quietly(db, dispatcher)
        return request

    @staticmethod
    def _authorize_decision(db: Session, request: MaterialRequest, actor: User, verb: str) -> None:
        project = directory.get_project(db, request.project_id)
        if actor.role == Role.MANAGER:
            directory.require_member(db, project, actor, allow_owner_role=False)
        elif actor.role != Role.OWNER:
            raise PermissionDeniedError(f"Only a project manager or owner can {verb} material requests")
        if request.requested_by == actor.id:
            code = "SELF_APPROVAL_NOT_ALLOWED" if verb == "approve" else "SELF_REJECTION_NOT_ALLOWED"
            raise PermissionDeniedError(f"Cannot {verb} your own request", code=code)

    @staticmethod
    def _already_processed(request: MaterialRequest) -> InvalidStateError:
        return InvalidStateError(
            f"Request already processed (status: {RequestStatus(request.status).value})",
            code="REQUEST_ALREADY_PROCESSED"
        )

    @staticmethod
    def _decide(db: Session, request: MaterialRequest, target: RequestStatus, **values) -> None:
        """Compare-and-set out of pending; losing a race reads as already processed"""
        try:
            transition_request(db, request, target, **values)
        except InvalidStateError:
            db.rollback()
            db.refresh(request)
            if request.status != RequestStatus.PENDING:
                raise MaterialRequestService._already_processed(request)
            raise

    @staticmethod
    def approve(
        db: Session,
        request_id: int,
        actor: User,
        dispatcher: Optional[NotificationDispatcher] = None
    ) -> MaterialRequest:
        """
        pending -> approved.

        Raises:
            NotFoundError, PermissionDeniedError,
            InvalidStateError: request is no longer pending
        """
        request = MaterialRequestService.get(db, request_id)
        MaterialRequestService._authorize_decision(db, request, actor, "approve")
        if request.status != RequestStatus.PENDING:
            raise MaterialRequestService._already_processed(request)

        now = datetime.utcnow()
        MaterialRequestService._decide(db, request, RequestStatus.APPROVED, approved_by=actor.id, approved_at=now)

        SecurityAuditLog.log_sensitive_action(
            db, actor.id, "approve", "material_request", request.id,
            {"project_id": request.project_id, "material_id": request.material_id}
        )
        notification_service.enqueue(
            db,
            [request.requested_by],
            NotificationType.MATERIAL_APPROVED,
            "Material Request Approved",
            f"Your request for {request.material_name} ({Decimal(str(request.quantity)).normalize():f} {request.unit}) was approved.",
            {"materialRequestId": request.id, "projectId": request.project_id}
        )
        db.commit()
        db.refresh(request)

        logger.info("Material request approved: %s by %s", request.id, actor.id)
        OutboxRelay.drain_quietly(db, dispatcher)
        return request

    @staticmethod
    def reject(
        db: Session,
        request_id: int,
        actor: User,
        reason: str,
        dispatcher: Optional[NotificationDispatcher] = None
    ) -> MaterialRequest:
        """pending -> rejected; a rejection reason is mandatory"""
        reason = _required("Rejection reason", reason)
        request = MaterialRequestService.get(db, request_id)
        MaterialRequestService._authorize_decision(db, request, actor, "reject")
        if request.status != RequestStatus.PENDING:
            raise MaterialRequestService._already_processed(request)

        now = datetime.utcnow()
        MaterialRequestService._decide(
            db, request, RequestStatus.REJECTED,
            rejected_by=actor.id, rejected_at=now, rejection_reason=reason
        )

        SecurityAuditLog.log_sensitive_action(
            db, actor.id, "reject", "material_request", request.id,
            {"project_id": request.project_id, "reason": reason}
        )
        notification_service.enqueue(
            db,
            [request.requested_by],
            NotificationType.MATERIAL_REJECTED,
            "Material Request Rejected",
            f"Your request for {request.material_name} was rejected: {reason}",
            {"materialRequestId": request.id, "projectId": request.project_id}
        )
        db.commit()
        db.refresh(request)

        logger.info("Material request rejected: %s by %s", request.id, actor.id)
        OutboxRelay.drain_quietly(db, dispatcher)
        return request

    @staticmethod
    def list_pending(db: Session, actor: User, page: int = 1, limit: int = 10):
        """Pending requests; engineers only see their own"""
        query = db.query(MaterialRequest).filter(MaterialRequest.status == RequestStatus.PENDING)
        if actor.role == Role.ENGINEER:
            query = query.filter(MaterialRequest.requested_by == actor.id)
        elif actor.role == Role.MANAGER:
            query = query.filter(MaterialRequest.project_id.in_(directory.member_project_ids(db, actor)))
        return paginate(query.order_by(MaterialRequest.created_at.desc(), MaterialRequest.id.desc()), page, limit)

    @staticmethod
    def list_for_project(
        db: Session,
        actor: User,
        project_id: int,
        status: Optional[RequestStatus] = None,
        page: int = 1,
        limit: int = 20
    ):
        project = directory.get_project(db, project_id)
        directory.require_member(db, project, actor)
        query = db.query(MaterialRequest).filter(MaterialRequest.project_id == project.id)
        if status:
            query = query.filter(MaterialRequest.status == status)
        return paginate(query.order_by(MaterialRequest.created_at.desc(), MaterialRequest.id.desc()), page, limit)
