"""
Sales Order Service.

DRAFT → SUBMITTED → APPROVED → INVOICED, with cancellation from any
status except INVOICED. Invoicing itself happens in InvoiceService.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from distledger.core.exceptions import NotFoundError, ValidationError, StateConflictError
from distledger.models.document_sequence import DocumentType
from distledger.models.order import Order, OrderItem, OrderStatus
from distledger.models.product import Product
from distledger.models.store import Store
from distledger.schemas.order import (
    OrderCreate, OrderLineInput, OrderApprovalResult, OrderResponse, StockWarning
)
from distledger.services.document_sequence_service import DocumentSequenceService


logger = logging.getLogger(__name__)


class OrderService:
    """Service for sales orders."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_order(self, data: OrderCreate) -> Order:
        """Create a draft order."""
        store = await self.db.get(Store, data.store_id)
        if not store:
            raise NotFoundError("Store", data.store_id)
        await self._validate_lines(data.items)

        order_number = await DocumentSequenceService(self.db).get_next_number(DocumentType.ORDER)
        order = Order(
            order_number=order_number,
            store_id=store.id,
            status=OrderStatus.DRAFT.value,
            notes=data.notes,
        )
        self.db.add(order)
        await self.db.flush()

        self.db.add_all([
            OrderItem(order_id=order.id, product_id=line.product_id, quantity=line.quantity)
            for line in data.items
        ])
        await self.db.flush()

        logger.info(f"Order {order_number} created for store {store.name}")
        return order

    async def update_items(self, order_id: uuid.UUID, items: List[OrderLineInput]) -> List[OrderItem]:
        """Replace the lines of a draft or submitted order."""
        order = await self._get_for_update(order_id)
        if order.status not in [OrderStatus.DRAFT.value, OrderStatus.SUBMITTED.value]:
            raise StateConflictError(
                f"Order {order.order_number} cannot be edited (status: {order.status})"
            )
        await self._validate_lines(items)

        await self.db.execute(delete(OrderItem).where(OrderItem.order_id == order.id))
        new_items = [
            OrderItem(order_id=order.id, product_id=line.product_id, quantity=line.quantity)
            for line in items
        ]
        self.db.add_all(new_items)
        await self.db.flush()
        return new_items

    async def get_items(self, order_id: uuid.UUID) -> List[OrderItem]:
        result = await self.db.execute(
            select(OrderItem).where(OrderItem.order_id == order_id)
        )
        return list(result.scalars().all())

    async def submit_order(self, order_id: uuid.UUID) -> Order:
        order = await self._get_for_update(order_id)
        if order.status != OrderStatus.DRAFT.value:
            raise StateConflictError(f"Only draft orders can be submitted (status: {order.status})")

        order.status = OrderStatus.SUBMITTED.value
        order.submitted_at = datetime.now(timezone.utc)
        await self.db.flush()
        return order

    async def approve_order(self, order_id: uuid.UUID) -> OrderApprovalResult:
        """
        Approve a submitted order.

        Approval is not blocked by stock; lines the stock cache cannot
        cover come back as warnings.
        """
        order = await self._get_for_update(order_id)
        if order.status != OrderStatus.SUBMITTED.value:
            raise StateConflictError(f"Only submitted orders can be approved (status: {order.status})")

        result = await self.db.execute(
            select(OrderItem, Product)
            .join(Product, Product.id == OrderItem.product_id)
            .where(OrderItem.order_id == order.id)
        )
        warnings = []
        for item, product in result.all():
            available = product.stock_quantity or 0
            if available < item.quantity:
                warnings.append(StockWarning(
                    product_id=product.id,
                    product_name=product.name,
                    needed=item.quantity,
                    available=available,
                    level="OUT_OF_STOCK" if available <= 0 else "LOW_STOCK",
                ))

        order.status = OrderStatus.APPROVED.value
        order.approved_at = datetime.now(timezone.utc)
        await self.db.flush()

        if warnings:
            logger.warning(f"Order {order.order_number} approved with {len(warnings)} stock warning(s)")
        return OrderApprovalResult(order=OrderResponse.model_validate(order), stock_warnings=warnings)

    async def cancel_order(self, order_id: uuid.UUID) -> Order:
        order = await self._get_for_update(order_id)
        if order.status == OrderStatus.INVOICED.value:
            raise StateConflictError(f"Order {order.order_number} is invoiced and cannot be cancelled")
        if order.status == OrderStatus.CANCELLED.value:
            raise StateConflictError(f"Order {order.order_number} is already cancelled")

        order.status = OrderStatus.CANCELLED.value
        await self.db.flush()
        logger.info(f"Order {order.order_number} cancelled")
        return order

    async def get_order(self, order_id: uuid.UUID) -> Order:
        order = await self.db.get(Order, order_id)
        if not order:
            raise NotFoundError("Order", order_id)
        return order

    async def list_orders(
        self,
        store_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None
    ) -> List[Order]:
        query = select(Order).order_by(Order.created_at.desc())
        if store_id:
            query = query.where(Order.store_id == store_id)
        if status:
            query = query.where(Order.status == status.upper())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _validate_lines(self, items: List[OrderLineInput]) -> None:
        if not items:
            raise ValidationError("Order must have at least one item")
        for line in items:
            if line.quantity <= 0:
                raise ValidationError(f"Quantity must be positive for product {line.product_id}")

        product_ids = list({line.product_id for line in items})
        result = await self.db.execute(select(Product.id).where(Product.id.in_(product_ids)))
        found = set(result.scalars().all())
        for product_id in product_ids:
            if product_id not in found:
                raise NotFoundError("Product", product_id)

    async def _get_for_update(self, order_id: uuid.UUID) -> Order:
        result = await self.db.execute(
            select(Order).where(Order.id == order_id).with_for_update()
        )
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("Order", order_id)
        return order
