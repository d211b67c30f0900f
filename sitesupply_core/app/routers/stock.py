"""
Stock Ledger API Router
=======================
Derived balances and alerts per project, raw ledger entries, and manual
adjustments. Usage (OUT) entries are written by the daily progress report
module through StockLedgerService.record_usage.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..security import get_db, require_permission, Permission
from ..schemas import StockBalanceOut, StockAlertOut, StockEntryOut, StockAdjustmentCreate
from ..services.stock_service import StockLedgerService

router = APIRouter(prefix="/api/stock", tags=["Stock"])


@router.get("/project/{project_id}")
async def project_stock(
    project_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.STOCK_VIEW))
):
    rows = StockLedgerService.get_balance(db, project_id, current_user)
    return {"success": True, "data": [StockBalanceOut(**row) for row in rows]}


@router.get("/alerts/{project_id}")
async def project_alerts(
    project_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.STOCK_VIEW))
):
    rows = StockLedgerService.get_alerts(db, project_id, current_user)
    return {"success": True, "data": [StockAlertOut(**row) for row in rows], "count": len(rows)}


@router.get("/ledger/{project_id}")
async def project_ledger(
    project_id: int,
    material_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.STOCK_VIEW))
):
    entries = StockLedgerService.list_entries(db, project_id, current_user, material_id, limit)
    return {"success": True, "data": [StockEntryOut.model_validate(e) for e in entries]}


@router.post("/adjustments", status_code=201)
async def create_adjustment(
    data: StockAdjustmentCreate,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.STOCK_ADJUST))
):
    entry = StockLedgerService.record_adjustment(
        db, current_user,
        project_id=data.project_id,
        material_id=data.material_id,
        material_name=data.material_name,
        direction=data.direction,
        quantity=data.quantity,
        unit=data.unit,
        remarks=data.remarks
    )
    return {
        "success": True,
        "message": "Stock adjustment recorded",
        "data": StockEntryOut.model_validate(entry)
    }
