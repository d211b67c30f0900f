"""
Stock Ledger Service
====================
Append-only movement log and the aggregations derived from it:
- Balances are computed from entries on every read, never stored
- A balance may go negative; that is reported as an alert, not refused
- Each entry may carry a tagged back-reference (source_kind + source_ref_id)
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from .. import config
from ..models import User
from ..models_supply import (
    StockLedgerEntry, MaterialRequest, MovementDirection, LedgerSource,
    SourceKind, NotificationType
)
from . import directory, notification_service
from .directory import Role
from .exceptions import ValidationError, PermissionDeniedError
from .material_request_service import parse_quantity
from .notification_service import OutboxRelay, NotificationDispatcher

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Which back-reference kind each source may carry
SOURCE_KIND_FOR: Dict[LedgerSource, Optional[SourceKind]] = {
    LedgerSource.PURCHASE: SourceKind.MATERIAL_REQUEST,
    LedgerSource.USAGE: SourceKind.DAILY_PROGRESS_REPORT,
    LedgerSource.ADJUSTMENT: None,
}


# =============================================================================
# BACK-REFERENCE RESOLUTION
# =============================================================================

def _resolve_material_request(db: Session, ref_id: int):
    return db.query(MaterialRequest).filter(MaterialRequest.id == ref_id).first()


SOURCE_RESOLVERS: Dict[SourceKind, Callable[[Session, int], object]] = {
    SourceKind.MATERIAL_REQUEST: _resolve_material_request,
}


def register_source_resolver(kind: SourceKind, resolver: Callable[[Session, int], object]) -> None:
    """Daily progress reports live in another module; it registers its own lookup here."""
    SOURCE_RESOLVERS[SourceKind(kind)] = resolver


def resolve_source(db: Session, entry: StockLedgerEntry):
    """Return the object an entry points back to, or None"""
    if entry.source_kind is None or entry.source_ref_id is None:
        return None
    resolver = SOURCE_RESOLVERS.get(SourceKind(entry.source_kind))
    if resolver is None:
        logger.debug("No resolver registered for %s", entry.source_kind)
        return None
    return resolver(db, entry.source_ref_id)


# =============================================================================
# AGGREGATION
# =============================================================================

def summarize(entries: List[StockLedgerEntry]) -> List[dict]:
    """
    Group entries by material and derive balance = total_in - total_out.

    Independent of entry order; result sorted by material name.
    """
    rows: Dict[str, dict] = {}
    for entry in entries:
        row = rows.get(entry.material_id)
        if row is None:
            row = rows[entry.material_id] = {
                "material_id": entry.material_id,
                "material_name": entry.material_name,
                "unit": entry.unit,
                "total_in": ZERO,
                "total_out": ZERO,
            }
        quantity = Decimal(str(entry.quantity))
        if MovementDirection(entry.direction) == MovementDirection.IN:
            row["total_in"] += quantity
        else:
            row["total_out"] += quantity

    result = []
    for row in rows.values():
        row["balance"] = row["total_in"] - row["total_out"]
        result.append(row)
    result.sort(key=lambda r: ((r["material_name"] or "").lower(), r["material_id"]))
    return result


def alert_reasons(total_in: Decimal, total_out: Decimal, factor: Optional[Decimal] = None) -> List[str]:
    """Why a material is flagged; an empty list means no alert"""
    factor = config.STOCK_OVERAGE_FACTOR if factor is None else Decimal(str(factor))
    reasons = []
    if total_in - total_out < 0:
        reasons.append("negative_balance")
    if total_in > 0 and total_out > total_in * factor:
        reasons.append("usage_exceeds_supply")
    return reasons


class StockLedgerService:
    """Service class for stock ledger operations"""

    @staticmethod
    def append(
        db: Session,
        project_id: int,
        material_id: str,
        material_name: str,
        direction: MovementDirection,
        quantity,
        unit: str,
        source: LedgerSource,
        created_by: int,
        source_kind: Optional[SourceKind] = None,
        source_ref_id: Optional[int] = None,
        remarks: Optional[str] = None
    ) -> StockLedgerEntry:
        """
        Insert one movement. Does not commit; the caller owns the unit of work.

        Raises:
            ValidationError: quantity <= 0, missing material, or a
                back-reference that does not match the source
        """
        quantity = parse_quantity(quantity)
        if not material_id or not material_name or not unit:
            raise ValidationError("material_id, material_name and unit are required")

        source = LedgerSource(source)
        direction = MovementDirection(direction)
        kind = SourceKind(source_kind) if source_kind is not None else None
        if (kind is None) != (source_ref_id is None):
            raise ValidationError("source_kind and source_ref_id must be given together")
        if kind is not None and SOURCE_KIND_FOR[source] != kind:
            raise ValidationError(f"A {source.value} entry cannot reference a {kind.value}")

        entry = StockLedgerEntry(
            project_id=project_id,
            material_id=material_id,
            material_name=material_name,
            direction=direction,
            quantity=quantity,
            unit=unit,
            source=source,
            source_kind=kind,
            source_ref_id=source_ref_id,
            remarks=remarks,
            created_by=created_by,
            created_at=datetime.utcnow()
        )
        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def add_stock_in(db: Session, request: MaterialRequest, quantity, created_by: int) -> StockLedgerEntry:
        """IN movement for goods received against a material request"""
        return StockLedgerService.append(
            db,
            project_id=request.project_id,
            material_id=request.material_id,
            material_name=request.material_name,
            direction=MovementDirection.IN,
            quantity=quantity,
            unit=request.unit,
            source=LedgerSource.PURCHASE,
            created_by=created_by,
            source_kind=SourceKind.MATERIAL_REQUEST,
            source_ref_id=request.id,
            remarks=f"GRN for material request #{request.id}"
        )

    @staticmethod
    def record_usage(
        db: Session,
        actor: User,
        project_id: int,
        material_id: str,
        material_name: str,
        quantity,
        unit: str,
        report_id: int,
        remarks: Optional[str] = None,
        dispatcher: Optional[NotificationDispatcher] = None
    ) -> StockLedgerEntry:
        """OUT movement for material consumed on site, tied to a daily progress report"""
        project = directory.get_project(db, project_id)
        directory.require_role(actor, Role.ENGINEER, Role.MANAGER)
        directory.require_member(db, project, actor, allow_owner_role=False)
        if report_id is None:
            raise ValidationError("A daily progress report id is required for usage entries")

        entry = StockLedgerService.append(
            db,
            project_id=project.id,
            material_id=material_id,
            material_name=material_name,
            direction=MovementDirection.OUT,
            quantity=quantity,
            unit=unit,
            source=LedgerSource.USAGE,
            created_by=actor.id,
            source_kind=SourceKind.DAILY_PROGRESS_REPORT,
            source_ref_id=report_id,
            remarks=remarks
        )
        StockLedgerService._enqueue_alert(db, project, material_id)
        db.commit()
        db.refresh(entry)

        logger.info("Stock usage recorded: %s %s on project %s by %s", entry.quantity, material_id, project.id, actor.id)
        OutboxRelay.drain_quietly(db, dispatcher)
        return entry

    @staticmethod
    def record_adjustment(
        db: Session,
        actor: User,
        project_id: int,
        material_id: str,
        material_name: str,
        direction: MovementDirection,
        quantity,
        unit: str,
        remarks: str,
        dispatcher: Optional[NotificationDispatcher] = None
    ) -> StockLedgerEntry:
        """Manual correction (stock count, damage, return). Managers and owners only."""
        project = directory.get_project(db, project_id)
        if actor.role == Role.MANAGER:
            directory.require_member(db, project, actor, allow_owner_role=False)
        elif actor.role != Role.OWNER:
            raise PermissionDeniedError("Only a project manager or owner can adjust stock")
        if not remarks or not remarks.strip():
            raise ValidationError("Remarks are required for stock adjustments")

        entry = StockLedgerService.append(
            db,
            project_id=project.id,
            material_id=material_id,
            material_name=material_name,
            direction=direction,
            quantity=quantity,
            unit=unit,
            source=LedgerSource.ADJUSTMENT,
            created_by=actor.id,
            remarks=remarks.strip()
        )
        if entry.direction == MovementDirection.OUT:
            StockLedgerService._enqueue_alert(db, project, material_id)
        db.commit()
        db.refresh(entry)

        logger.info(
            "Stock adjustment recorded: %s %s %s on project %s by %s",
            entry.direction.value, entry.quantity, material_id, project.id, actor.id
        )
        OutboxRelay.drain_quietly(db, dispatcher)
        return entry

    @staticmethod
    def _enqueue_alert(db: Session, project, material_id: str) -> None:
        entries = db.query(StockLedgerEntry).filter(
            StockLedgerEntry.project_id == project.id,
            StockLedgerEntry.material_id == material_id
        ).all()
        for row in summarize(entries):
            reasons = alert_reasons(row["total_in"], row["total_out"])
            if not reasons:
                continue
            recipients = directory.project_manager_ids(db, project.id) + [project.owner_id]
            notification_service.enqueue(
                db,
                recipients,
                NotificationType.STOCK_ALERT,
                "Stock Alert",
                f"{row['material_name']} on {project.name}: balance {row['balance'].normalize():f} {row['unit']} "
                f"(in {row['total_in'].normalize():f}, out {row['total_out'].normalize():f})",
                {"projectId": project.id, "materialId": material_id, "reasons": reasons}
            )

    # =========================================================================
    # QUERIES
    # =========================================================================

    @staticmethod
    def _entries(db: Session, project_id: int) -> List[StockLedgerEntry]:
        return db.query(StockLedgerEntry).filter(
            StockLedgerEntry.project_id == project_id
        ).order_by(StockLedgerEntry.id.asc()).all()

    @staticmethod
    def get_balance(db: Session, project_id: int, actor: Optional[User] = None) -> List[dict]:
        if actor is not None:
            directory.require_member(db, directory.get_project(db, project_id), actor)
        return summarize(StockLedgerService._entries(db, project_id))

    @staticmethod
    def get_alerts(db: Session, project_id: int, actor: Optional[User] = None) -> List[dict]:
        alerts = []
        for row in StockLedgerService.get_balance(db, project_id, actor):
            reasons = alert_reasons(row["total_in"], row["total_out"])
            if reasons:
                alerts.append({**row, "reasons": reasons})
        return alerts

    @staticmethod
    def list_entries(
        db: Session,
        project_id: int,
        actor: Optional[User] = None,
        material_id: Optional[str] = None,
        limit: int = 100
    ) -> List[StockLedgerEntry]:
        if actor is not None:
            directory.require_member(db, directory.get_project(db, project_id), actor)
        query = db.query(StockLedgerEntry).filter(StockLedgerEntry.project_id == project_id)
        if material_id:
            query = query.filter(StockLedgerEntry.material_id == material_id)
        return query.order_by(StockLedgerEntry.created_at.desc(), StockLedgerEntry.id.desc()).limit(limit).all()
