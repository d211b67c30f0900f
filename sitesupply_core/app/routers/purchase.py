"""
Purchase Dispatch & GRN API Router
==================================
- Purchase manager sends approved requests
- Engineer confirms receipt with proof photo + GPS (GRN)
- Purchase history views
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from ..security import get_db, require_permission, Permission
from ..models_supply import HistoryStatus
from ..schemas import (
    ApprovedRequestOut, MaterialRequestOut, PurchaseHistoryOut, PurchaseInvoiceOut,
    SendRequest, ReceiveRequest
)
from ..services.gst import price_with_gst
from ..services.purchase_service import PurchaseDispatchService

router = APIRouter(prefix="/api/purchase", tags=["Purchase & GRN"])


@router.get("/approved-requests")
async def approved_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.PURCHASE_VIEW))
):
    """Approved requests waiting to be sent, priced from the catalog"""
    items, pagination = PurchaseDispatchService.list_approved_requests(db, current_user, page, limit)
    data = []
    for item in items:
        request = item["request"]
        _, _, total = price_with_gst(item["unit_price"], request.quantity, item["gst_rate"])
        base = MaterialRequestOut.model_validate(request).model_dump()
        data.append(ApprovedRequestOut(
            **base,
            unit_price=item["unit_price"],
            gst_rate=item["gst_rate"],
            estimated_total=total
        ))
    return {"success": True, "data": data, "pagination": pagination}


@router.post("/send/{request_id}")
async def send_material(
    request_id: int,
    data: Optional[SendRequest] = Body(None),
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.PURCHASE_SEND))
):
    history = PurchaseDispatchService.send(
        db, request_id, current_user,
        gst_rate=data.gst_rate if data else None
    )
    return {
        "success": True,
        "message": "Material sent successfully",
        "data": PurchaseHistoryOut.model_validate(history)
    }


@router.post("/receive/{history_id}")
async def receive_material(
    history_id: int,
    data: ReceiveRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.GRN_RECEIVE))
):
    """
    Confirm receipt (GRN).

    The GRN stands even if invoice generation fails; ``invoice`` is then null
    and the invoice can be regenerated from /api/purchase-invoices.
    """
    history = PurchaseDispatchService.receive(
        db, history_id, current_user,
        proof_photo_url=data.proof_photo_url,
        latitude=data.latitude,
        longitude=data.longitude,
        geo_location=data.geo_location
    )
    invoice = history.invoice
    return {
        "success": True,
        "message": "Material received successfully",
        "data": PurchaseHistoryOut.model_validate(history),
        "invoice": PurchaseInvoiceOut.model_validate(invoice) if invoice else None
    }


@router.get("/sent-for-engineer")
async def sent_for_engineer(
    project_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.PURCHASE_VIEW))
):
    histories = PurchaseDispatchService.list_awaiting_grn(db, current_user, project_id)
    return {"success": True, "data": [PurchaseHistoryOut.model_validate(h) for h in histories]}


@router.get("/history/project/{project_id}")
async def project_history(
    project_id: int,
    status: Optional[HistoryStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.PURCHASE_VIEW))
):
    items, pagination = PurchaseDispatchService.history_by_project(
        db, current_user, project_id, status, page, limit
    )
    return {
        "success": True,
        "data": [PurchaseHistoryOut.model_validate(h) for h in items],
        "pagination": pagination
    }


@router.get("/history")
async def all_history(
    status: Optional[HistoryStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.PURCHASE_VIEW))
):
    items, pagination = PurchaseDispatchService.all_history(db, current_user, status, page, limit)
    total_cost = sum((Decimal(str(h.total_cost)) for h in items), Decimal("0"))
    return {
        "success": True,
        "data": [PurchaseHistoryOut.model_validate(h) for h in items],
        "pagination": pagination,
        "page_total_cost": float(total_cost)
    }
