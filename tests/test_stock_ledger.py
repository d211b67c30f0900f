"""
Tests for the append-only stock ledger, balances and alerts.
"""
import random
from decimal import Decimal

import pytest

from sitesupply_core.app import models
from sitesupply_core.app.models_supply import (
    StockLedgerEntry, MaterialRequest, MovementDirection, LedgerSource, SourceKind
)
from sitesupply_core.app.services.exceptions import ValidationError, PermissionDeniedError
from sitesupply_core.app.services.stock_service import (
    StockLedgerService, alert_reasons, resolve_source, register_source_resolver, SOURCE_RESOLVERS
)


def _append(db, project, users, direction, quantity, material_id="CEM-OPC-53", name="Cement", **extra):
    source = extra.pop("source", LedgerSource.ADJUSTMENT)
    return StockLedgerService.append(
        db,
        project_id=project.id,
        material_id=material_id,
        material_name=name,
        direction=direction,
        quantity=quantity,
        unit=extra.pop("unit", "bags"),
        source=source,
        created_by=users.manager.id,
        **extra
    )


def test_balance_is_sum_in_minus_sum_out_in_any_order(db, users, project):
    moves = [
        (MovementDirection.IN, "100"), (MovementDirection.OUT, "30.5"),
        (MovementDirection.IN, "20"), (MovementDirection.OUT, "0.25"),
        (MovementDirection.OUT, "10"),
    ]
    random.Random(7).shuffle(moves)
    for direction, qty in moves:
        _append(db, project, users, direction, qty)
    _append(db, project, users, MovementDirection.IN, "4", material_id="BRK-RED", name="Bricks", unit="pcs")
    db.commit()

    rows = StockLedgerService.get_balance(db, project.id)
    assert [r["material_name"] for r in rows] == ["Bricks", "Cement"]
    cement = rows[1]
    assert cement["total_in"] == Decimal("120")
    assert cement["total_out"] == Decimal("40.75")
    assert cement["balance"] == Decimal("79.25")


def test_balance_may_go_negative(db, users, project):
    _append(db, project, users, MovementDirection.OUT, 5)
    db.commit()
    [row] = StockLedgerService.get_balance(db, project.id)
    assert row["balance"] == Decimal("-5")


def test_overage_threshold():
    assert "usage_exceeds_supply" in alert_reasons(Decimal("100"), Decimal("125"))
    assert "usage_exceeds_supply" not in alert_reasons(Decimal("100"), Decimal("119"))
    assert "usage_exceeds_supply" not in alert_reasons(Decimal("100"), Decimal("120"))
    # nothing received: only the negative balance counts
    assert alert_reasons(Decimal("0"), Decimal("5")) == ["negative_balance"]
    assert alert_reasons(Decimal("100"), Decimal("80")) == []


def test_alerts_flag_overdrawn_materials(db, users, project):
    _append(db, project, users, MovementDirection.IN, 100)
    _append(db, project, users, MovementDirection.OUT, 125)
    _append(db, project, users, MovementDirection.IN, 10, material_id="SND-RIV", name="Sand", unit="tonne")
    _append(db, project, users, MovementDirection.OUT, 4, material_id="SND-RIV", name="Sand", unit="tonne")
    db.commit()

    alerts = StockLedgerService.get_alerts(db, project.id)
    assert [a["material_id"] for a in alerts] == ["CEM-OPC-53"]
    assert alerts[0]["reasons"] == ["negative_balance", "usage_exceeds_supply"]


@pytest.mark.parametrize("quantity", [0, -1, "-0.5", "0.0004"])
def test_append_rejects_non_positive_quantity(db, users, project, quantity):
    with pytest.raises(ValidationError):
        _append(db, project, users, MovementDirection.IN, quantity)


def test_append_enforces_source_pairing(db, users, project):
    with pytest.raises(ValidationError):
        _append(db, project, users, MovementDirection.IN, 1, source=LedgerSource.PURCHASE,
                source_kind=SourceKind.DAILY_PROGRESS_REPORT, source_ref_id=1)
    with pytest.raises(ValidationError):
        _append(db, project, users, MovementDirection.IN, 1, source=LedgerSource.ADJUSTMENT,
                source_kind=SourceKind.MATERIAL_REQUEST, source_ref_id=1)
    with pytest.raises(ValidationError):
        _append(db, project, users, MovementDirection.OUT, 1, source=LedgerSource.USAGE,
                source_kind=SourceKind.DAILY_PROGRESS_REPORT)


def test_ledger_entries_are_immutable(db, users, project):
    entry = _append(db, project, users, MovementDirection.IN, 10)
    db.commit()

    entry.quantity = Decimal("11")
    with pytest.raises(ValueError, match="immutable"):
        db.flush()
    db.rollback()

    db.delete(entry)
    with pytest.raises(ValueError, match="cannot be deleted"):
        db.flush()
    db.rollback()

    assert db.query(StockLedgerEntry).one().quantity == Decimal("10")


def test_record_usage_references_progress_report(db, users, project):
    _append(db, project, users, MovementDirection.IN, 10)
    db.commit()

    entry = StockLedgerService.record_usage(
        db, users.engineer, project.id, "CEM-OPC-53", "Cement", 4, "bags", report_id=77
    )
    assert entry.direction == MovementDirection.OUT
    assert entry.source == LedgerSource.USAGE
    assert entry.source_kind == SourceKind.DAILY_PROGRESS_REPORT
    assert entry.source_ref_id == 77
    assert StockLedgerService.get_balance(db, project.id)[0]["balance"] == Decimal("6")


def test_usage_past_supply_alerts_manager_and_owner(db, users, project):
    _append(db, project, users, MovementDirection.IN, 10)
    db.commit()
    StockLedgerService.record_usage(db, users.engineer, project.id, "CEM-OPC-53", "Cement", 13, "bags", report_id=5)

    for user in (users.manager, users.owner):
        types = [n.type for n in db.query(models.Notification).filter(models.Notification.user_id == user.id)]
        assert types == ["stock_alert"]


def test_record_usage_requires_site_member(db, users, project):
    with pytest.raises(PermissionDeniedError):
        StockLedgerService.record_usage(db, users.purchase, project.id, "CEM-OPC-53", "Cement", 1, "bags", report_id=1)


def test_adjustment_by_manager(db, users, project):
    entry = StockLedgerService.record_adjustment(
        db, users.manager, project.id, "CEM-OPC-53", "Cement",
        MovementDirection.IN, 3, "bags", remarks="Physical count correction"
    )
    assert entry.source == LedgerSource.ADJUSTMENT
    assert entry.source_kind is None
    assert entry.remarks == "Physical count correction"


def test_adjustment_rules(db, users, project):
    with pytest.raises(PermissionDeniedError):
        StockLedgerService.record_adjustment(
            db, users.engineer, project.id, "CEM-OPC-53", "Cement", MovementDirection.OUT, 1, "bags", "Damaged"
        )
    with pytest.raises(ValidationError):
        StockLedgerService.record_adjustment(
            db, users.owner, project.id, "CEM-OPC-53", "Cement", MovementDirection.OUT, 1, "bags", ""
        )


def test_resolve_source_through_registry(db, users, project, sent_history, evidence):
    from sitesupply_core.app.services.purchase_service import PurchaseDispatchService

    PurchaseDispatchService.receive(db, sent_history.id, users.engineer, **evidence)
    entry = db.query(StockLedgerEntry).one()
    source = resolve_source(db, entry)
    assert isinstance(source, MaterialRequest)
    assert source.id == sent_history.material_request_id

    usage = StockLedgerService.record_usage(db, users.engineer, project.id, "CEM-OPC-53", "Cement", 1, "bags", report_id=9)
    assert resolve_source(db, usage) is None

    saved = dict(SOURCE_RESOLVERS)
    try:
        register_source_resolver(SourceKind.DAILY_PROGRESS_REPORT, lambda db, ref_id: {"report": ref_id})
        assert resolve_source(db, usage) == {"report": 9}
    finally:
        SOURCE_RESOLVERS.clear()
        SOURCE_RESOLVERS.update(saved)


def test_stock_reads_require_membership(db, users, project):
    with pytest.raises(PermissionDeniedError):
        StockLedgerService.get_balance(db, project.id, users.outsider)
    assert StockLedgerService.get_balance(db, project.id, users.owner) == []
