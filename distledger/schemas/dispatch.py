"""Dispatch schemas."""
from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from distledger.models.dispatch import DispatchStatus
from distledger.schemas.base import BaseCreateSchema, BaseResponseSchema


# ==================== Input ====================

class DispatchLineInput(BaseCreateSchema):
    product_id: UUID
    quantity: int
    invoice_item_id: Optional[UUID] = None


class DispatchCreate(BaseCreateSchema):
    invoice_id: UUID
    items: List[DispatchLineInput]
    priority: Optional[int] = None  # 1..10, defaults to 1
    delivery_address: Optional[str] = None
    notes: Optional[str] = None
    dispatch_date: Optional[date] = None


class DispatchStatusUpdate(BaseCreateSchema):
    status: DispatchStatus
    vehicle_number: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    notes: Optional[str] = None


# ==================== Output ====================

class BatchAllocation(BaseModel):
    """Quantity taken from one batch."""
    batch_id: UUID
    batch_number: str
    quantity: int


class DispatchBatchAllocation(BaseModel):
    product_id: UUID
    batch_id: UUID
    batch_number: str
    quantity: int


class AllocationShortfall(BaseModel):
    product_id: UUID
    requested: int
    allocated: int
    shortfall: int


class DispatchCreateResult(BaseModel):
    dispatch_id: UUID
    is_small_order: bool
    priority: int
    batch_allocations: List[DispatchBatchAllocation]
    shortfalls: List[AllocationShortfall] = []


class CombineResult(BaseModel):
    combined_dispatch_id: UUID
    dispatch_ids: List[UUID]
    priority: int


class DispatchItemResponse(BaseResponseSchema):
    id: UUID
    product_id: UUID
    quantity: int
    invoice_item_id: Optional[UUID] = None


class DispatchResponse(BaseResponseSchema):
    id: UUID
    invoice_id: Optional[UUID] = None
    dispatch_date: date
    status: str
    priority: int
    is_small_order: bool
    combined_dispatch_id: Optional[UUID] = None
    delivery_address: Optional[str] = None
    vehicle_number: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    notes: Optional[str] = None
    dispatched_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime


class DispatchDetail(BaseModel):
    dispatch: DispatchResponse
    items: List[DispatchItemResponse]
    batch_allocations: List[DispatchBatchAllocation]
