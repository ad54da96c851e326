"""Invoice input and result schemas."""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from distledger.schemas.base import BaseCreateSchema, BaseResponseSchema


# ==================== Input ====================

class InvoiceLineInput(BaseCreateSchema):
    """One product line to invoice."""
    product_id: UUID
    quantity: int
    quantity_shipped: Optional[int] = None  # Defaults to quantity
    margin_percentage: Optional[Decimal] = None  # Overrides and updates the stored store margin


class InvoiceCreate(BaseCreateSchema):
    """Direct invoice for a store, without a sales order."""
    store_id: UUID
    items: List[InvoiceLineInput]
    is_igst: bool = False
    invoice_date: Optional[date] = None
    notes: Optional[str] = None


class InvoiceFromOrderCreate(BaseCreateSchema):
    """Invoice a submitted or approved sales order."""
    order_id: UUID
    items: Optional[List[InvoiceLineInput]] = None  # None bills the order's own lines
    is_igst: bool = False
    invoice_date: Optional[date] = None
    notes: Optional[str] = None


# ==================== Output ====================

class PricedLine(BaseModel):
    """Line priced by the pricing engine, full precision."""
    product_id: UUID
    quantity: int
    quantity_shipped: int
    cost_price: Decimal
    margin_percentage: Decimal
    unit_price: Decimal
    gst_rate: Decimal
    total: Decimal
    cgst: Decimal = Decimal("0")
    sgst: Decimal = Decimal("0")
    igst: Decimal = Decimal("0")


class InvoiceTotals(BaseModel):
    """Invoice-level aggregates after the single rounding step."""
    subtotal: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    round_off: Decimal
    total_amount: Decimal


class InvoiceCreateResult(BaseModel):
    invoice_id: UUID
    invoice_number: str
    subtotal: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    round_off: Decimal
    total_amount: Decimal
    dispatch_id: Optional[UUID] = None


class InvoiceItemResponse(BaseResponseSchema):
    id: UUID
    product_id: UUID
    quantity: int
    quantity_shipped: int
    unit_price: Decimal
    cost_price: Decimal
    margin_percentage: Decimal
    gst_rate: Decimal
    total: Decimal


class InvoiceResponse(BaseResponseSchema):
    id: UUID
    invoice_number: str
    invoice_date: date
    store_id: UUID
    order_id: Optional[UUID] = None
    is_igst: bool
    subtotal: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    round_off: Decimal
    total_amount: Decimal
    total_paid: Decimal
    payment_status: str
    status: str
    notes: Optional[str] = None
    created_at: datetime


class HsnSummaryLine(BaseModel):
    """Tax breakdown for one HSN code."""
    hsn_code: str
    gst_rate: Decimal
    taxable_value: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    total_tax: Decimal


class InvoiceDetail(BaseModel):
    invoice: InvoiceResponse
    items: List[InvoiceItemResponse]
    hsn_summary: List[HsnSummaryLine]
    amount_in_words: str
    balance_due: Decimal
