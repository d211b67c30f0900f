from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..security import get_db, require_permission, Permission
from ..schemas import PurchaseInvoiceOut
from ..services.invoice_service import InvoiceService

router = APIRouter(prefix="/api/purchase-invoices", tags=["Purchase Invoices"])


@router.get("")
async def list_invoices(
    project_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.INVOICE_VIEW))
):
    items, pagination = InvoiceService.list_invoices(db, current_user, project_id, page, limit)
    return {
        "success": True,
        "data": [PurchaseInvoiceOut.model_validate(i) for i in items],
        "pagination": pagination
    }


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.INVOICE_VIEW))
):
    invoice = InvoiceService.get_invoice(db, invoice_id, current_user)
    return {"success": True, "data": PurchaseInvoiceOut.model_validate(invoice)}


@router.post("/generate/{history_id}", status_code=201)
async def generate_invoice(
    history_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.INVOICE_GENERATE))
):
    """Issue the invoice for a received GRN that has none yet"""
    invoice = InvoiceService.regenerate(db, history_id, current_user)
    return {
        "success": True,
        "message": f"Invoice {invoice.invoice_number} generated",
        "data": PurchaseInvoiceOut.model_validate(invoice)
    }
