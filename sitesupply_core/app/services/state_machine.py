"""
Explicit finite-state machines for request and dispatch status.

``transition_*`` are the only functions allowed to change a status column.
Each one checks the adjacency table and then performs a compare-and-set
UPDATE (``WHERE id = :id AND status = :expected``) so a concurrent writer
that already moved the row makes this call fail instead of overwriting it.
"""

import logging
from typing import Dict, FrozenSet

from sqlalchemy.orm import Session

from ..models_supply import MaterialRequest, PurchaseHistory, RequestStatus, HistoryStatus
from .exceptions import InvalidStateError

logger = logging.getLogger(__name__)


REQUEST_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED}),
    RequestStatus.APPROVED: frozenset({RequestStatus.SENT}),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.SENT: frozenset({RequestStatus.RECEIVED}),
    RequestStatus.RECEIVED: frozenset(),
}

# PENDING_GRN and SENT mean the same thing: dispatched, awaiting GRN.
HISTORY_TRANSITIONS: Dict[HistoryStatus, FrozenSet[HistoryStatus]] = {
    HistoryStatus.PENDING_GRN: frozenset({HistoryStatus.RECEIVED}),
    HistoryStatus.SENT: frozenset({HistoryStatus.RECEIVED}),
    HistoryStatus.RECEIVED: frozenset(),
}

AWAITING_GRN = frozenset({HistoryStatus.PENDING_GRN, HistoryStatus.SENT})


def can_transition_request(current: RequestStatus, target: RequestStatus) -> bool:
    return target in REQUEST_TRANSITIONS.get(current, frozenset())


def can_transition_history(current: HistoryStatus, target: HistoryStatus) -> bool:
    return target in HISTORY_TRANSITIONS.get(current, frozenset())


def _compare_and_set(db: Session, model, row_id: int, expected, target, values: dict) -> None:
    updated = db.query(model).filter(
        model.id == row_id,
        model.status == expected
    ).update({model.status: target, **values}, synchronize_session="fetch")
    if updated != 1:
        raise InvalidStateError(
            f"{model.__name__} {row_id} is no longer {expected.value}; "
            f"it was changed by another operation"
        )


def transition_request(
    db: Session,
    request: MaterialRequest,
    target: RequestStatus,
    **values
) -> MaterialRequest:
    """
    Move a material request to ``target``.

    Extra keyword arguments are written in the same UPDATE (approver,
    timestamps, rejection reason).

    Raises:
        InvalidStateError: if the move is not in the adjacency table or the
            row changed underneath us.
    """
    current = RequestStatus(request.status)
    if not can_transition_request(current, target):
        raise InvalidStateError(
            f"Material request {request.id} cannot move from {current.value} to {target.value}"
        )
    columns = {getattr(MaterialRequest, k): v for k, v in values.items()}
    _compare_and_set(db, MaterialRequest, request.id, current, target, columns)
    logger.debug("Material request %s: %s -> %s", request.id, current.value, target.value)
    return request


def transition_history(
    db: Session,
    history: PurchaseHistory,
    target: HistoryStatus,
    **values
) -> PurchaseHistory:
    """Move a purchase history row to ``target``; same contract as transition_request."""
    current = HistoryStatus(history.status)
    if not can_transition_history(current, target):
        raise InvalidStateError(
            f"Purchase history {history.id} cannot move from {current.value} to {target.value}"
        )
    columns = {getattr(PurchaseHistory, k): v for k, v in values.items()}
    _compare_and_set(db, PurchaseHistory, history.id, current, target, columns)
    logger.debug("Purchase history %s: %s -> %s", history.id, current.value, target.value)
    return history
