import json
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator

from .models_supply import RequestStatus, HistoryStatus, MovementDirection, LedgerSource, SourceKind


# Quantities and money are validated by the services (400 with an error code),
# so the input schemas only coerce types.

class MaterialRequestCreate(BaseModel):
    project_id: int
    material_id: str
    material_name: str
    quantity: Decimal
    unit: str
    reason: str


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class MaterialRequestOut(BaseModel):
    id: int
    project_id: int
    material_id: str
    material_name: str
    quantity: float
    unit: str
    reason: str
    requested_by: int
    status: RequestStatus
    anomaly_detected: bool = False
    anomaly_reason: Optional[str] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ApprovedRequestOut(MaterialRequestOut):
    """Approved request as seen by the purchase manager"""
    unit_price: float
    gst_rate: float
    estimated_total: float


class SendRequest(BaseModel):
    gst_rate: Optional[Decimal] = None


class ReceiveRequest(BaseModel):
    proof_photo_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geo_location: Optional[str] = None


class PurchaseHistoryOut(BaseModel):
    id: int
    project_id: int
    material_request_id: int
    material_id: str
    material_name: str
    quantity: float
    unit: str
    unit_price: float
    gst_rate: float
    base_price: float
    gst_amount: float
    total_cost: float
    sent_at: datetime
    sent_by: int
    status: HistoryStatus
    received_at: Optional[datetime] = None
    received_by: Optional[int] = None
    proof_photo_url: Optional[str] = None
    geo_location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    grn_generated: bool = False
    grn_generated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StockBalanceOut(BaseModel):
    material_id: str
    material_name: str
    unit: str
    total_in: float
    total_out: float
    balance: float


class StockAlertOut(StockBalanceOut):
    reasons: List[str] = []


class StockEntryOut(BaseModel):
    id: int
    project_id: int
    material_id: str
    material_name: str
    direction: MovementDirection
    quantity: float
    unit: str
    source: LedgerSource
    source_kind: Optional[SourceKind] = None
    source_ref_id: Optional[int] = None
    remarks: Optional[str] = None
    created_by: int
    created_at: datetime

    class Config:
        from_attributes = True


class StockAdjustmentCreate(BaseModel):
    project_id: int
    material_id: str
    material_name: str
    direction: MovementDirection
    quantity: Decimal
    unit: str
    remarks: Optional[str] = None


class PurchaseInvoiceOut(BaseModel):
    id: int
    purchase_history_id: int
    project_id: int
    invoice_number: str
    material_name: str
    quantity: float
    unit: str
    base_price: float
    gst_rate: float
    gst_amount: float
    total_amount: float
    gst_type: str
    cgst_amount: float
    sgst_amount: float
    igst_amount: float
    supplier_state: Optional[str] = None
    client_state: Optional[str] = None
    generated_at: datetime
    generated_by: int

    class Config:
        from_attributes = True


class CatalogItemOut(BaseModel):
    id: int
    code: str
    name: str
    unit: str
    approx_price_inr: Optional[float] = None
    category: Optional[str] = None

    class Config:
        from_attributes = True


class NotificationOut(BaseModel):
    id: int
    type: str
    title: str
    message: str
    data: dict = {}
    read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    @field_validator("data", mode="before")
    @classmethod
    def parse_data(cls, v):
        if not v:
            return {}
        if isinstance(v, str):
            return json.loads(v)
        return v

    class Config:
        from_attributes = True


class MarkReadRequest(BaseModel):
    ids: List[int] = Field(default_factory=list)
