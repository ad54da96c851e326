"""Sales order schemas."""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from distledger.schemas.base import BaseCreateSchema, BaseResponseSchema


class OrderLineInput(BaseCreateSchema):
    product_id: UUID
    quantity: int


class OrderCreate(BaseCreateSchema):
    store_id: UUID
    items: List[OrderLineInput]
    notes: Optional[str] = None


class OrderItemResponse(BaseResponseSchema):
    id: UUID
    product_id: UUID
    quantity: int


class OrderResponse(BaseResponseSchema):
    id: UUID
    order_number: str
    store_id: UUID
    status: str
    notes: Optional[str] = None
    invoice_id: Optional[UUID] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    created_at: datetime


class StockWarning(BaseModel):
    product_id: UUID
    product_name: str
    needed: int
    available: int
    level: str  # OUT_OF_STOCK or LOW_STOCK


class OrderApprovalResult(BaseModel):
    order: OrderResponse
    stock_warnings: List[StockWarning] = []
