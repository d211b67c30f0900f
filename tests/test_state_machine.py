"""
Tests for the request and purchase-history state machines.
"""
import pytest

from sitesupply_core.app.models_supply import MaterialRequest, RequestStatus, HistoryStatus
from sitesupply_core.app.services.exceptions import InvalidStateError
from sitesupply_core.app.services.state_machine import (
    AWAITING_GRN, can_transition_request, can_transition_history, transition_request
)


ALLOWED_REQUEST_MOVES = {
    (RequestStatus.PENDING, RequestStatus.APPROVED),
    (RequestStatus.PENDING, RequestStatus.REJECTED),
    (RequestStatus.APPROVED, RequestStatus.SENT),
    (RequestStatus.SENT, RequestStatus.RECEIVED),
}


@pytest.mark.parametrize("current", list(RequestStatus))
@pytest.mark.parametrize("target", list(RequestStatus))
def test_request_adjacency(current, target):
    assert can_transition_request(current, target) == ((current, target) in ALLOWED_REQUEST_MOVES)


def test_history_adjacency():
    assert can_transition_history(HistoryStatus.PENDING_GRN, HistoryStatus.RECEIVED)
    assert can_transition_history(HistoryStatus.SENT, HistoryStatus.RECEIVED)
    assert not can_transition_history(HistoryStatus.RECEIVED, HistoryStatus.RECEIVED)
    assert not can_transition_history(HistoryStatus.RECEIVED, HistoryStatus.PENDING_GRN)
    assert not can_transition_history(HistoryStatus.PENDING_GRN, HistoryStatus.SENT)


def test_awaiting_grn_treats_legacy_sent_as_pending_grn():
    assert AWAITING_GRN == {HistoryStatus.PENDING_GRN, HistoryStatus.SENT}


def test_transition_outside_table_is_rejected(db, make_request):
    request = make_request()
    with pytest.raises(InvalidStateError):
        transition_request(db, request, RequestStatus.RECEIVED)
    db.rollback()
    stored = db.query(MaterialRequest).filter(MaterialRequest.id == request.id).first()
    assert stored.status == RequestStatus.PENDING


def test_compare_and_set_loses_to_concurrent_writer(db, users, make_request):
    request = make_request()
    # Another session already approved the row; our copy still says pending.
    db.query(MaterialRequest).filter(MaterialRequest.id == request.id).update(
        {MaterialRequest.status: RequestStatus.REJECTED}, synchronize_session=False
    )
    assert request.status == RequestStatus.PENDING

    with pytest.raises(InvalidStateError, match="changed by another operation"):
        transition_request(db, request, RequestStatus.APPROVED, approved_by=users.manager.id)


def test_transition_writes_extra_columns(db, users, make_request):
    request = make_request()
    transition_request(db, request, RequestStatus.REJECTED, rejected_by=users.manager.id, rejection_reason="Over budget")
    db.commit()
    db.refresh(request)
    assert request.status == RequestStatus.REJECTED
    assert request.rejected_by == users.manager.id
    assert request.rejection_reason == "Over budget"
