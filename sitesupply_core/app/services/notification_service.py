"""
Notification outbox and dispatcher.

Services call ``enqueue`` inside their unit of work so the event commits
together with the state change. After the commit they call
``OutboxRelay.drain_quietly``; delivery problems are recorded on the outbox
row and logged, never raised to the operation that produced the event.
"""

import json
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from .. import config
from ..models import Notification
from ..models_supply import NotificationOutbox, OutboxStatus, NotificationType

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Delivery interface. Implementations push one message to one user."""

    def notify(self, user_id: int, type: str, title: str, message: str, data: Optional[dict] = None) -> None:
        raise NotImplementedError


class InAppNotificationDispatcher(NotificationDispatcher):
    """Writes to the user's in-app inbox (``notifications`` table)"""

    def __init__(self, db: Session):
        self.db = db

    def notify(self, user_id, type, title, message, data=None):
        self.db.add(Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=json.dumps(data or {}),
            read=False
        ))
        self.db.flush()


def default_dispatcher(db: Session) -> NotificationDispatcher:
    return InAppNotificationDispatcher(db)


def enqueue(
    db: Session,
    user_ids: Iterable[int],
    type: NotificationType,
    title: str,
    message: str,
    data: Optional[dict] = None
) -> List[NotificationOutbox]:
    """Add one outbox row per distinct recipient. Does not commit."""
    rows = []
    seen = set()
    for user_id in user_ids:
        if user_id is None or user_id in seen:
            continue
        seen.add(user_id)
        row = NotificationOutbox(
            user_id=user_id,
            type=type.value,
            title=title,
            message=message,
            data=json.dumps(data or {}, default=str),
            status=OutboxStatus.PENDING,
            attempts=0
        )
        db.add(row)
        rows.append(row)
    return rows


class OutboxRelay:
    """Drains pending outbox rows through a NotificationDispatcher"""

    @staticmethod
    def drain(
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        limit: int = 100,
        max_attempts: Optional[int] = None
    ) -> dict:
        dispatcher = dispatcher or default_dispatcher(db)
        max_attempts = max_attempts or config.OUTBOX_MAX_ATTEMPTS

        pending_ids = [row.id for row in db.query(NotificationOutbox.id).filter(
            NotificationOutbox.status == OutboxStatus.PENDING
        ).order_by(NotificationOutbox.id.asc()).limit(limit).all()]

        delivered = failed = 0
        for row_id in pending_ids:
            row = db.query(NotificationOutbox).filter(NotificationOutbox.id == row_id).first()
            if row is None or row.status != OutboxStatus.PENDING:
                continue
            try:
                dispatcher.notify(
                    row.user_id, row.type, row.title, row.message,
                    json.loads(row.data) if row.data else {}
                )
                row.status = OutboxStatus.DELIVERED
                row.attempts = (row.attempts or 0) + 1
                row.delivered_at = datetime.utcnow()
                db.commit()
                delivered += 1
            except Exception as e:
                db.rollback()
                row = db.query(NotificationOutbox).filter(NotificationOutbox.id == row_id).first()
                row.attempts = (row.attempts or 0) + 1
                row.last_error = str(e)[:1000]
                if row.attempts >= max_attempts:
                    row.status = OutboxStatus.FAILED
                db.commit()
                failed += 1
                logger.warning(
                    "Failed to deliver %s notification %s to user %s (attempt %s): %s",
                    row.type, row.id, row.user_id, row.attempts, e
                )

        if delivered or failed:
            logger.info("Outbox drained: %s delivered, %s failed", delivered, failed)
        return {"delivered": delivered, "failed": failed}

    @staticmethod
    def drain_quietly(db: Session, dispatcher: Optional[NotificationDispatcher] = None) -> None:
        """drain() for use right after a committed transition; never raises"""
        try:
            OutboxRelay.drain(db, dispatcher)
        except Exception as e:
            db.rollback()
            logger.warning("Notification outbox drain failed: %s", e)


# =============================================================================
# INBOX
# =============================================================================

def list_notifications(db: Session, user_id: int, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read == False)
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def mark_read(db: Session, user_id: int, ids: List[int]) -> int:
    if not ids:
        return 0
    updated = 0
    for n in db.query(Notification).filter(Notification.id.in_(ids)).all():
        # only the addressee may mark a notification read
        if n.user_id == user_id and not n.read:
            n.read = True
            n.read_at = datetime.utcnow()
            updated += 1
    db.commit()
    return updated
