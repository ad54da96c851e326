"""
Batch Ledger: finished-goods batches and FIFO allocation.

Batches are minted by production completion and drawn down only by
dispatch allocation. For every batch:

    quantity_remaining + Σ dispatch_batches.quantity == quantity_produced
"""
import logging
import uuid
from datetime import date
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from distledger.core.exceptions import ValidationError
from distledger.models.dispatch import DispatchBatch
from distledger.models.production import ProductBatch, BatchStatus
from distledger.schemas.dispatch import BatchAllocation
from distledger.schemas.production import BatchConservation


logger = logging.getLogger(__name__)


def format_batch_number(production_date: date, sequence: int) -> str:
    """BATCH-YYYYMMDD-NNN"""
    return f"BATCH-{production_date.strftime('%Y%m%d')}-{sequence:03d}"


class BatchLedger:
    """Service for batch minting, FIFO allocation and batch audits."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # ALLOCATION
    # =========================================================================

    async def allocate(self, product_id: uuid.UUID, quantity: int) -> List[BatchAllocation]:
        """
        Allocate quantity from the product's batches, oldest first.

        Batches are ordered by production_date, ties broken by id.
        Allocation is best-effort: when the pool runs out the partial
        allocation is returned and the caller decides how to report the
        shortfall. An empty pool returns an empty list.

        Args:
            product_id: Product to draw from
            quantity: Units requested

        Returns:
            Allocations in consumption order

        Raises:
            ValidationError: If quantity is not positive
        """
        if quantity <= 0:
            raise ValidationError(f"Allocation quantity must be positive, got {quantity}")

        result = await self.db.execute(
            select(ProductBatch)
            .where(
                ProductBatch.product_id == product_id,
                ProductBatch.status == BatchStatus.AVAILABLE.value,
                ProductBatch.quantity_remaining > 0,
            )
            .order_by(
                ProductBatch.production_date.asc(),
                ProductBatch.id.asc(),
            )
            .with_for_update()
        )
        batches = result.scalars().all()

        allocations = []
        remaining_needed = quantity
        for batch in batches:
            if remaining_needed == 0:
                break

            take = min(remaining_needed, batch.quantity_remaining)
            batch.quantity_remaining -= take
            if batch.quantity_remaining == 0:
                batch.status = BatchStatus.DEPLETED.value
            remaining_needed -= take

            allocations.append(BatchAllocation(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                quantity=take,
            ))

        await self.db.flush()

        if allocations:
            logger.debug(
                f"Allocated {quantity - remaining_needed}/{quantity} of product {product_id} "
                f"from {len(allocations)} batch(es)"
            )
        return allocations

    async def has_batches(self, product_id: uuid.UUID) -> bool:
        """Whether the product has ever been produced into batches."""
        result = await self.db.execute(
            select(func.count(ProductBatch.id)).where(ProductBatch.product_id == product_id)
        )
        return result.scalar_one() > 0

    # =========================================================================
    # MINTING
    # =========================================================================

    async def next_batch_number(self, product_id: uuid.UUID, production_date: date) -> str:
        """Batch number for the product's next batch on production_date."""
        result = await self.db.execute(
            select(func.count(ProductBatch.id)).where(
                ProductBatch.product_id == product_id,
                ProductBatch.production_date == production_date,
            )
        )
        return format_batch_number(production_date, result.scalar_one() + 1)

    async def mint_batch(
        self,
        product_id: uuid.UUID,
        quantity: int,
        production_order_id: Optional[uuid.UUID] = None,
        production_date: Optional[date] = None,
        notes: Optional[str] = None
    ) -> ProductBatch:
        """Create a new available batch holding the full produced quantity."""
        if quantity <= 0:
            raise ValidationError(f"Batch quantity must be positive, got {quantity}")

        production_date = production_date or date.today()
        batch = ProductBatch(
            product_id=product_id,
            batch_number=await self.next_batch_number(product_id, production_date),
            production_order_id=production_order_id,
            production_date=production_date,
            quantity_produced=quantity,
            quantity_remaining=quantity,
            status=BatchStatus.AVAILABLE.value,
            notes=notes,
        )
        self.db.add(batch)
        await self.db.flush()

        logger.info(f"Minted batch {batch.batch_number} ({quantity} units) for product {product_id}")
        return batch

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list_available_batches(self, product_id: uuid.UUID) -> List[ProductBatch]:
        """Available batches in the order allocation would consume them."""
        result = await self.db.execute(
            select(ProductBatch)
            .where(
                ProductBatch.product_id == product_id,
                ProductBatch.status == BatchStatus.AVAILABLE.value,
                ProductBatch.quantity_remaining > 0,
            )
            .order_by(
                ProductBatch.production_date.asc(),
                ProductBatch.id.asc(),
            )
        )
        return list(result.scalars().all())

    async def list_batches(
        self,
        product_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None
    ) -> List[ProductBatch]:
        query = select(ProductBatch)
        if product_id:
            query = query.where(ProductBatch.product_id == product_id)
        if status:
            query = query.where(ProductBatch.status == status.upper())
        query = query.order_by(ProductBatch.production_date.desc(), ProductBatch.created_at.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def check_conservation(
        self,
        product_id: Optional[uuid.UUID] = None
    ) -> List[BatchConservation]:
        """
        Compare each batch's remaining quantity with its dispatch history.

        A batch is balanced when remaining plus dispatched equals produced.
        """
        dispatched = (
            select(
                DispatchBatch.batch_id,
                func.coalesce(func.sum(DispatchBatch.quantity), 0).label("dispatched")
            )
            .group_by(DispatchBatch.batch_id)
            .subquery()
        )
        query = (
            select(ProductBatch, func.coalesce(dispatched.c.dispatched, 0))
            .outerjoin(dispatched, dispatched.c.batch_id == ProductBatch.id)
            .order_by(ProductBatch.production_date.asc(), ProductBatch.created_at.asc())
        )
        if product_id:
            query = query.where(ProductBatch.product_id == product_id)

        result = await self.db.execute(query)

        report = []
        for batch, quantity_dispatched in result.all():
            quantity_dispatched = int(quantity_dispatched)
            balanced = batch.quantity_remaining + quantity_dispatched == batch.quantity_produced
            if not balanced:
                logger.warning(
                    f"Batch {batch.batch_number} out of balance: produced {batch.quantity_produced}, "
                    f"remaining {batch.quantity_remaining}, dispatched {quantity_dispatched}"
                )
            report.append(BatchConservation(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                quantity_produced=batch.quantity_produced,
                quantity_remaining=batch.quantity_remaining,
                quantity_dispatched=quantity_dispatched,
                balanced=balanced,
            ))
        return report
