"""Payment ledger schemas."""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from distledger.models.billing import PaymentMethod
from distledger.schemas.base import BaseCreateSchema, BaseResponseSchema


class PaymentCreate(BaseCreateSchema):
    """Collection against an invoice."""
    invoice_id: UUID
    amount: Decimal
    payment_date: Optional[date] = None  # Defaults to today
    payment_method: Optional[PaymentMethod] = None  # Defaults to settings.DEFAULT_PAYMENT_METHOD
    reference_number: Optional[str] = None
    collected_by: Optional[str] = None
    notes: Optional[str] = None


class PaymentResult(BaseModel):
    payment_id: UUID
    new_total_paid: Decimal
    new_payment_status: str
    remaining_balance: Decimal


class PaymentDeleteResult(BaseModel):
    invoice_id: UUID
    new_total_paid: Decimal
    new_payment_status: str
    remaining_balance: Decimal


class PaymentResponse(BaseResponseSchema):
    id: UUID
    invoice_id: UUID
    amount: Decimal
    payment_date: date
    payment_method: str
    reference_number: Optional[str] = None
    collected_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class InvoicePaymentSummary(BaseModel):
    invoice_id: UUID
    invoice_number: str
    total_amount: Decimal
    total_paid: Decimal
    remaining_balance: Decimal
    payment_status: str
    payments: List[PaymentResponse]


class OutstandingInvoice(BaseModel):
    invoice_id: UUID
    invoice_number: str
    store_id: UUID
    invoice_date: date
    total_amount: Decimal
    total_paid: Decimal
    remaining_balance: Decimal
    payment_status: str


class ReconciliationResult(BaseModel):
    """Outcome of recomputing an invoice's cached paid total from its ledger."""
    invoice_id: UUID
    cached_total_paid: Decimal
    ledger_total_paid: Decimal
    payment_status: str
    repaired: bool
