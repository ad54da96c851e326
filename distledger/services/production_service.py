"""
Production Service.

Recipes, production orders and completion. Completion consumes raw
materials in proportion to actual yield, credits finished-goods stock and
mints a batch, all inside the caller's transaction.
"""
import logging
import uuid
from datetime import datetime, timezone, date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from distledger.core.enum_utils import status_in
from distledger.core.exceptions import (
    NotFoundError, ValidationError, StateConflictError, InsufficientMaterialError
)
from distledger.models.document_sequence import DocumentType
from distledger.models.order import Order, OrderItem, OrderStatus
from distledger.models.product import Product, ProductRecipe
from distledger.models.production import (
    ProductionOrder, ProductionMaterial, ProductionStatus
)
from distledger.models.raw_material import RawMaterial
from distledger.schemas.production import (
    RecipeLineInput, ProductionOrderCreate, ProductionCompleteResult,
    LowStockMaterial, ProductionSuggestion, SuggestionMaterial
)
from distledger.services.batch_ledger_service import BatchLedger
from distledger.services.document_sequence_service import DocumentSequenceService


logger = logging.getLogger(__name__)


class ProductionService:
    """Service for recipes and production orders."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.batch_ledger = BatchLedger(db)

    # =========================================================================
    # RECIPES
    # =========================================================================

    async def get_recipe(self, product_id: uuid.UUID) -> List[ProductRecipe]:
        result = await self.db.execute(
            select(ProductRecipe).where(ProductRecipe.product_id == product_id)
        )
        return list(result.scalars().all())

    async def set_recipe(
        self,
        product_id: uuid.UUID,
        lines: List[RecipeLineInput]
    ) -> List[ProductRecipe]:
        """Replace a product's recipe."""
        product = await self.db.get(Product, product_id)
        if not product:
            raise NotFoundError("Product", product_id)

        material_ids = [line.raw_material_id for line in lines]
        if len(set(material_ids)) != len(material_ids):
            raise ValidationError("Recipe lists a raw material more than once")
        for line in lines:
            if line.quantity_required <= 0:
                raise ValidationError(
                    f"Recipe quantity must be positive for raw material {line.raw_material_id}"
                )

        materials = await self._load_materials(material_ids)
        for material_id in material_ids:
            if material_id not in materials:
                raise NotFoundError("RawMaterial", material_id)

        await self.db.execute(
            delete(ProductRecipe).where(ProductRecipe.product_id == product_id)
        )
        recipe = [
            ProductRecipe(
                product_id=product_id,
                raw_material_id=line.raw_material_id,
                quantity_required=line.quantity_required,
            )
            for line in lines
        ]
        self.db.add_all(recipe)
        await self.db.flush()

        logger.info(f"Recipe for product {product.name} set with {len(recipe)} material(s)")
        return recipe

    # =========================================================================
    # PRODUCTION ORDERS
    # =========================================================================

    async def get_order(self, order_id: uuid.UUID) -> ProductionOrder:
        order = await self.db.get(ProductionOrder, order_id)
        if not order:
            raise NotFoundError("ProductionOrder", order_id)
        return order

    async def list_orders(self, status: Optional[str] = None) -> List[ProductionOrder]:
        query = select(ProductionOrder).order_by(ProductionOrder.created_at.desc())
        if status:
            query = query.where(ProductionOrder.status == status.upper())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_materials(self, order_id: uuid.UUID) -> List[ProductionMaterial]:
        result = await self.db.execute(
            select(ProductionMaterial).where(ProductionMaterial.production_order_id == order_id)
        )
        return list(result.scalars().all())

    async def create_order(self, data: ProductionOrderCreate) -> ProductionOrder:
        """
        Plan a production run.

        Raw material stock must cover recipe quantity × planned units for
        every material; stock is reserved only logically and is deducted
        at completion.

        Raises:
            ValidationError: Non-positive quantity or product without a recipe
            NotFoundError: Unknown product
            InsufficientMaterialError: Stock cannot cover the plan
        """
        if data.quantity_to_produce <= 0:
            raise ValidationError(f"Quantity to produce must be positive, got {data.quantity_to_produce}")

        product = await self.db.get(Product, data.product_id)
        if not product:
            raise NotFoundError("Product", data.product_id)

        recipe = await self.get_recipe(data.product_id)
        if not recipe:
            raise ValidationError(f"No recipe defined for product {product.name}")

        materials = await self._load_materials([line.raw_material_id for line in recipe])
        shortages = []
        for line in recipe:
            material = materials[line.raw_material_id]
            required = Decimal(line.quantity_required) * data.quantity_to_produce
            if Decimal(material.stock_quantity) < required:
                shortages.append({
                    "raw_material_id": str(material.id),
                    "name": material.name,
                    "required": str(required),
                    "available": str(material.stock_quantity),
                })
        if shortages:
            raise InsufficientMaterialError(shortages)

        order_number = await DocumentSequenceService(self.db).get_next_number(DocumentType.PRODUCTION_ORDER)
        order = ProductionOrder(
            order_number=order_number,
            product_id=product.id,
            quantity_to_produce=data.quantity_to_produce,
            quantity_produced=0,
            status=ProductionStatus.PENDING.value,
            notes=data.notes,
            materials=[
                ProductionMaterial(
                    raw_material_id=line.raw_material_id,
                    quantity_required=Decimal(line.quantity_required) * data.quantity_to_produce,
                )
                for line in recipe
            ],
        )
        self.db.add(order)
        await self.db.flush()

        logger.info(f"Production order {order_number} created: {data.quantity_to_produce} x {product.name}")
        return order

    async def start_order(self, order_id: uuid.UUID) -> ProductionOrder:
        """Start a pending production order."""
        order = await self._get_order_for_update(order_id)
        if order.status != ProductionStatus.PENDING.value:
            raise StateConflictError(
                f"Only pending production orders can be started (status: {order.status})"
            )

        order.status = ProductionStatus.IN_PROGRESS.value
        order.started_at = datetime.now(timezone.utc)
        await self.db.flush()
        return order

    async def complete_order(
        self,
        order_id: uuid.UUID,
        quantity_produced: Optional[int] = None,
        production_date: Optional[date] = None
    ) -> ProductionCompleteResult:
        """
        Complete a production order.

        Args:
            order_id: Production order
            quantity_produced: Actual yield; defaults to the planned quantity.
                Under- and over-production are both allowed.
            production_date: Batch date; defaults to today

        Returns:
            Yield and the newly minted batch

        Raises:
            NotFoundError: Unknown order
            StateConflictError: Order already completed or cancelled
            ValidationError: Non-positive yield
        """
        # 1. Lock order and check state
        order = await self._get_order_for_update(order_id)
        if status_in(order.status, ProductionStatus.COMPLETED, ProductionStatus.CANCELLED):
            raise StateConflictError(
                f"Production order {order.order_number} is already {order.status.lower()}"
            )

        if quantity_produced is None:
            quantity_produced = order.quantity_to_produce
        if quantity_produced <= 0:
            raise ValidationError(f"Quantity produced must be positive, got {quantity_produced}")

        usage_ratio = Decimal(quantity_produced) / Decimal(order.quantity_to_produce)

        # 2. Consume raw materials; stock may go negative
        planned = await self.get_materials(order.id)
        materials = await self._load_materials(
            [m.raw_material_id for m in planned],
            for_update=True
        )
        low_stock = []
        for material_line in planned:
            actual_used = Decimal(material_line.quantity_required) * usage_ratio
            material = materials[material_line.raw_material_id]
            material.stock_quantity = Decimal(material.stock_quantity) - actual_used
            material_line.quantity_used = actual_used

            reorder_level = Decimal(material.reorder_level or 0)
            if reorder_level > 0 and material.stock_quantity <= reorder_level:
                logger.warning(
                    f"Raw material {material.name} at {material.stock_quantity} {material.unit}, "
                    f"reorder level {reorder_level}"
                )
                low_stock.append(LowStockMaterial(
                    raw_material_id=material.id,
                    name=material.name,
                    stock_quantity=material.stock_quantity,
                    reorder_level=reorder_level,
                ))

        # 3. Credit finished goods
        result = await self.db.execute(
            select(Product).where(Product.id == order.product_id).with_for_update()
        )
        product = result.scalar_one()
        product.stock_quantity = (product.stock_quantity or 0) + quantity_produced

        # 4. Mint batch
        batch = await self.batch_ledger.mint_batch(
            product_id=product.id,
            quantity=quantity_produced,
            production_order_id=order.id,
            production_date=production_date,
        )

        # 5. Close order
        order.status = ProductionStatus.COMPLETED.value
        order.quantity_produced = quantity_produced
        order.completed_at = datetime.now(timezone.utc)
        await self.db.flush()

        logger.info(
            f"Production order {order.order_number} completed: {quantity_produced}/"
            f"{order.quantity_to_produce} units into {batch.batch_number}"
        )
        return ProductionCompleteResult(
            production_order_id=order.id,
            quantity_produced=quantity_produced,
            batch_id=batch.id,
            batch_number=batch.batch_number,
            low_stock_materials=low_stock,
        )

    async def cancel_order(self, order_id: uuid.UUID) -> ProductionOrder:
        """Cancel a production order that has not completed."""
        order = await self._get_order_for_update(order_id)
        if status_in(order.status, ProductionStatus.COMPLETED, ProductionStatus.CANCELLED):
            raise StateConflictError(
                f"Production order {order.order_number} is already {order.status.lower()}"
            )

        order.status = ProductionStatus.CANCELLED.value
        await self.db.flush()
        logger.info(f"Production order {order.order_number} cancelled")
        return order

    # =========================================================================
    # PLANNING
    # =========================================================================

    async def get_production_suggestions(self) -> List[ProductionSuggestion]:
        """
        Production needed to cover open sales orders.

        Demand is the sum of submitted and approved order lines per product;
        needed = max(0, demand - stock), capped by what raw material stock
        can make.
        """
        result = await self.db.execute(
            select(Product, func.sum(OrderItem.quantity))
            .join(OrderItem, OrderItem.product_id == Product.id)
            .join(Order, Order.id == OrderItem.order_id)
            .where(Order.status.in_([OrderStatus.SUBMITTED.value, OrderStatus.APPROVED.value]))
            .group_by(Product.id)
            .order_by(Product.name)
        )

        suggestions = []
        for product, total_required in result.all():
            total_required = int(total_required or 0)
            current_stock = product.stock_quantity or 0
            needed = max(0, total_required - current_stock)

            recipe = await self.get_recipe(product.id)
            materials = await self._load_materials([line.raw_material_id for line in recipe])

            can_produce = needed
            material_status = []
            if recipe and needed > 0:
                for line in recipe:
                    material = materials[line.raw_material_id]
                    per_unit = Decimal(line.quantity_required)
                    available = Decimal(material.stock_quantity)
                    total_material = per_unit * needed
                    can_produce = min(can_produce, max(0, int(available // per_unit)))
                    material_status.append(SuggestionMaterial(
                        raw_material_id=material.id,
                        name=material.name,
                        unit=material.unit,
                        required_per_unit=per_unit,
                        total_required=total_material,
                        available=available,
                        sufficient=available >= total_material,
                    ))

            suggestions.append(ProductionSuggestion(
                product_id=product.id,
                product_name=product.name,
                current_stock=current_stock,
                total_required=total_required,
                production_needed=needed,
                can_produce=can_produce,
                has_recipe=bool(recipe),
                materials=material_status,
            ))
        return suggestions

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_order_for_update(self, order_id: uuid.UUID) -> ProductionOrder:
        result = await self.db.execute(
            select(ProductionOrder).where(ProductionOrder.id == order_id).with_for_update()
        )
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("ProductionOrder", order_id)
        return order

    async def _load_materials(
        self,
        material_ids: List[uuid.UUID],
        for_update: bool = False
    ) -> dict:
        if not material_ids:
            return {}
        query = select(RawMaterial).where(RawMaterial.id.in_(list(set(material_ids))))
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return {m.id: m for m in result.scalars().all()}
