from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..security import get_db, get_current_user
from ..schemas import NotificationOut, MarkReadRequest
from ..services import notification_service

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
async def get_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user)
):
    items = notification_service.list_notifications(db, current_user.id, unread_only, limit)
    return {
        "success": True,
        "data": [NotificationOut.model_validate(n) for n in items],
        "unread": sum(1 for n in items if not n.read)
    }


@router.post("/mark-read")
async def mark_notifications_read(
    data: MarkReadRequest,
    db: Session = Depends(get_db),
    current_user = Depends(get_current_user)
):
    updated = notification_service.mark_read(db, current_user.id, data.ids)
    return {"success": True, "updated": updated}
