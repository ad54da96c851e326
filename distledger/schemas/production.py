"""Production, recipe and batch schemas."""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel

from distledger.schemas.base import BaseCreateSchema, BaseResponseSchema


# ==================== Input ====================

class RecipeLineInput(BaseCreateSchema):
    raw_material_id: UUID
    quantity_required: Decimal  # Per unit of product


class ProductionOrderCreate(BaseCreateSchema):
    product_id: UUID
    quantity_to_produce: int
    notes: Optional[str] = None


# ==================== Output ====================

class ProductionMaterialResponse(BaseResponseSchema):
    id: UUID
    raw_material_id: UUID
    quantity_required: Decimal
    quantity_used: Optional[Decimal] = None


class ProductionOrderResponse(BaseResponseSchema):
    id: UUID
    order_number: str
    product_id: UUID
    quantity_to_produce: int
    quantity_produced: int
    status: str
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class LowStockMaterial(BaseModel):
    raw_material_id: UUID
    name: str
    stock_quantity: Decimal
    reorder_level: Decimal


class ProductionCompleteResult(BaseModel):
    production_order_id: UUID
    quantity_produced: int
    batch_id: UUID
    batch_number: str
    low_stock_materials: List[LowStockMaterial] = []


class ProductBatchResponse(BaseResponseSchema):
    id: UUID
    product_id: UUID
    batch_number: str
    production_order_id: Optional[UUID] = None
    production_date: date
    quantity_produced: int
    quantity_remaining: int
    status: str


class BatchConservation(BaseModel):
    """Produced vs. remaining vs. dispatched for one batch."""
    batch_id: UUID
    batch_number: str
    quantity_produced: int
    quantity_remaining: int
    quantity_dispatched: int
    balanced: bool


class SuggestionMaterial(BaseModel):
    raw_material_id: UUID
    name: str
    unit: str
    required_per_unit: Decimal
    total_required: Decimal
    available: Decimal
    sufficient: bool


class ProductionSuggestion(BaseModel):
    product_id: UUID
    product_name: str
    current_stock: int
    total_required: int
    production_needed: int
    can_produce: int
    has_recipe: bool
    materials: List[SuggestionMaterial] = []
