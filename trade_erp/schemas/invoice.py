"""Invoice schemas for API requests/responses."""
from pydantic import Field

from trade_erp.schemas.base import BaseCreateSchema, BaseUpdateSchema, BaseResponseSchema
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal
import uuid

from trade_erp.models.invoice import InvoiceType


# ==================== LINE ITEMS ====================

class InvoiceLineCreate(BaseCreateSchema):
    """
    Invoice line input.

    Decimal places are capped at what the line columns store; ranges are
    checked by the tax engine.
    """
    item_id: Optional[uuid.UUID] = None
    quantity: Decimal = Field(..., decimal_places=3)
    unit_price: Decimal = Field(..., decimal_places=2)
    discount1_percent: Decimal = Field(Decimal("0"), decimal_places=3)
    discount1_amount: Optional[Decimal] = Field(None, decimal_places=2, description="Overrides discount1_percent when given")
    discount2_percent: Decimal = Field(Decimal("0"), decimal_places=3)
    discount2_amount: Optional[Decimal] = Field(None, decimal_places=2, description="Overrides discount2_percent when given")
    claim_account_id: Optional[str] = Field(None, max_length=64)
    gst_rate: Optional[Decimal] = Field(None, decimal_places=3, description="Defaults to the item's GST rate")
    advance_tax_percent: Decimal = Field(Decimal("0"), decimal_places=3)
    scheme1_quantity: Decimal = Field(Decimal("0"), decimal_places=3)
    scheme2_quantity: Decimal = Field(Decimal("0"), decimal_places=3)
    batch_number: Optional[str] = Field(None, max_length=50)
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None


class InvoiceItemResponse(BaseResponseSchema):
    id: uuid.UUID
    line_number: int
    item_id: uuid.UUID
    quantity: Decimal
    unit_price: Decimal
    discount1_percent: Decimal
    discount1_amount: Decimal
    discount2_percent: Decimal
    discount2_amount: Decimal
    claim_account_id: Optional[str] = None
    gst_rate: Decimal
    gst_amount: Decimal
    advance_tax_percent: Decimal
    advance_tax_amount: Decimal
    scheme1_quantity: Decimal
    scheme2_quantity: Decimal
    batch_number: Optional[str] = None
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None
    line_subtotal: Decimal
    taxable_amount: Decimal
    line_total: Decimal


# ==================== INVOICE ====================

class InvoiceCreate(BaseCreateSchema):
    """Invoice creation schema. ``customer_id`` for sales types, ``supplier_id`` for purchase types."""
    invoice_type: InvoiceType
    customer_id: Optional[uuid.UUID] = None
    supplier_id: Optional[uuid.UUID] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    claim_account_id: Optional[str] = Field(None, max_length=64)
    dimension: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    items: List[InvoiceLineCreate] = []


class InvoiceUpdate(BaseUpdateSchema):
    """Header fields are editable until cancellation; ``items`` only while draft."""
    due_date: Optional[date] = None
    claim_account_id: Optional[str] = Field(None, max_length=64)
    dimension: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    items: Optional[List[InvoiceLineCreate]] = None


class InvoiceResponse(BaseResponseSchema):
    id: uuid.UUID
    invoice_number: str
    invoice_type: str
    status: str
    payment_status: str
    customer_id: Optional[uuid.UUID] = None
    supplier_id: Optional[uuid.UUID] = None
    invoice_date: date
    due_date: date
    claim_account_id: Optional[str] = None
    dimension: Optional[str] = None
    notes: Optional[str] = None

    subtotal: Decimal
    total_discount1: Decimal
    total_discount2: Decimal
    taxable_amount: Decimal
    total_tax: Decimal
    gst_total: Decimal
    gst18_total: Decimal
    gst4_total: Decimal
    advance_tax_total: Decimal
    non_filer_gst_total: Decimal
    income_tax_total: Decimal
    grand_total: Decimal
    paid_amount: Decimal
    amount_due: Decimal

    created_by: uuid.UUID
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[uuid.UUID] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[uuid.UUID] = None
    cancellation_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None

    items: List[InvoiceItemResponse] = []
    created_at: datetime
    updated_at: Optional[datetime] = None


# ==================== ACTIONS ====================

class CancelRequest(BaseCreateSchema):
    reason: Optional[str] = Field(None, max_length=500)


class PaymentCreate(BaseCreateSchema):
    """Full settlement of the outstanding amount."""
    payment_method: Optional[str] = Field(None, max_length=30)
    payment_reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None


class PartialPaymentCreate(BaseCreateSchema):
    amount: Decimal
    payment_method: Optional[str] = Field(None, max_length=30)
    payment_reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
