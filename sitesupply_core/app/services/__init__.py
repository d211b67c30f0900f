"""
Services package initialization.
Business logic layer for site material supply operations.
"""

from .exceptions import (
    SupplyError,
    ValidationError,
    MissingEvidenceError,
    PermissionDeniedError,
    NotFoundError,
    InvalidStateError,
    AlreadySentError,
    AlreadyReceivedError,
    DuplicateInvoiceError,
    TransientLookupError,
    ConcurrentUpdateError,
)
from .gst import calculate_gst, price_with_gst, round_money, GstBreakdown
from .material_request_service import MaterialRequestService
from .purchase_service import PurchaseDispatchService
from .stock_service import StockLedgerService, resolve_source, register_source_resolver
from .invoice_service import InvoiceService, next_invoice_number, financial_year
from .notification_service import NotificationDispatcher, InAppNotificationDispatcher, OutboxRelay

__all__ = [
    'SupplyError',
    'ValidationError',
    'MissingEvidenceError',
    'PermissionDeniedError',
    'NotFoundError',
    'InvalidStateError',
    'AlreadySentError',
    'AlreadyReceivedError',
    'DuplicateInvoiceError',
    'TransientLookupError',
    'ConcurrentUpdateError',
    'calculate_gst',
    'price_with_gst',
    'round_money',
    'GstBreakdown',
    'MaterialRequestService',
    'PurchaseDispatchService',
    'StockLedgerService',
    'resolve_source',
    'register_source_resolver',
    'InvoiceService',
    'next_invoice_number',
    'financial_year',
    'NotificationDispatcher',
    'InAppNotificationDispatcher',
    'OutboxRelay',
]
