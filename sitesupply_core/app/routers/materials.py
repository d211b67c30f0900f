"""
Material Requests API Router
============================
Engineer raises, manager/owner approves or rejects.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..security import get_db, require_permission, Permission
from ..models_supply import RequestStatus
from ..schemas import MaterialRequestCreate, MaterialRequestOut, RejectRequest, CatalogItemOut
from ..services.catalog import list_catalog
from ..services.material_request_service import MaterialRequestService

router = APIRouter(prefix="/api/materials", tags=["Material Requests"])


@router.post("/request", status_code=201)
async def create_request(
    data: MaterialRequestCreate,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.REQUEST_CREATE))
):
    request = MaterialRequestService.create(
        db,
        current_user,
        project_id=data.project_id,
        material_id=data.material_id,
        material_name=data.material_name,
        quantity=data.quantity,
        unit=data.unit,
        reason=data.reason
    )
    return {
        "success": True,
        "message": "Material request created successfully",
        "data": MaterialRequestOut.model_validate(request)
    }


@router.get("/pending")
async def list_pending(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.REQUEST_VIEW))
):
    items, pagination = MaterialRequestService.list_pending(db, current_user, page, limit)
    return {
        "success": True,
        "data": [MaterialRequestOut.model_validate(r) for r in items],
        "pagination": pagination
    }


@router.get("/project/{project_id}")
async def list_project_requests(
    project_id: int,
    status: Optional[RequestStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.REQUEST_VIEW))
):
    items, pagination = MaterialRequestService.list_for_project(db, current_user, project_id, status, page, limit)
    return {
        "success": True,
        "data": [MaterialRequestOut.model_validate(r) for r in items],
        "pagination": pagination
    }


@router.post("/{request_id}/approve")
async def approve_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.REQUEST_APPROVE))
):
    request = MaterialRequestService.approve(db, request_id, current_user)
    return {
        "success": True,
        "message": "Material request approved",
        "data": MaterialRequestOut.model_validate(request)
    }


@router.post("/{request_id}/reject")
async def reject_request(
    request_id: int,
    data: RejectRequest,
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.REQUEST_APPROVE))
):
    request = MaterialRequestService.reject(db, request_id, current_user, data.reason)
    return {
        "success": True,
        "message": "Material request rejected",
        "data": MaterialRequestOut.model_validate(request)
    }


@router.get("/catalog", response_model=List[CatalogItemOut])
async def get_catalog(
    db: Session = Depends(get_db),
    current_user = Depends(require_permission(Permission.CATALOG_VIEW))
):
    return list_catalog(db)
