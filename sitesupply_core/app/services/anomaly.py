"""Default usage-anomaly detector for new material requests"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.orm import Session

from .. import config
from ..models_supply import MaterialRequest, RequestStatus


@dataclass
class AnomalyResult:
    is_anomaly: bool
    reason: Optional[str] = None
    average_usage: Optional[Decimal] = None


def detect_request_anomaly(
    db: Session,
    project_id: int,
    material_id: str,
    quantity: Decimal,
    now: Optional[datetime] = None
) -> AnomalyResult:
    """
    Anomaly if quantity > average of recent requests * ANOMALY_THRESHOLD.

    Recent = same project and material, pending or approved, created within
    ANOMALY_WINDOW_DAYS. No history means no anomaly.
    """
    since = (now or datetime.utcnow()) - timedelta(days=config.ANOMALY_WINDOW_DAYS)
    recent = db.query(MaterialRequest).filter(
        MaterialRequest.project_id == project_id,
        MaterialRequest.material_id == material_id,
        MaterialRequest.created_at >= since,
        MaterialRequest.status.in_([RequestStatus.PENDING, RequestStatus.APPROVED])
    ).all()

    if not recent:
        return AnomalyResult(is_anomaly=False)

    total = sum((Decimal(str(r.quantity)) for r in recent), Decimal("0"))
    average = total / len(recent)
    if Decimal(str(quantity)) <= average * config.ANOMALY_THRESHOLD:
        return AnomalyResult(is_anomaly=False, average_usage=average)

    increase = ((Decimal(str(quantity)) - average) / average * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    avg_display = average.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    reason = f"{increase}% higher than average usage ({avg_display} {recent[0].unit or 'units'})"
    return AnomalyResult(is_anomaly=True, reason=reason, average_usage=average)
