"""
Dispatch Assembler.

Builds dispatches from invoices, draws stock from the batch ledger in FIFO
order and runs the dispatch state machine:

    PENDING → READY → IN_TRANSIT → DELIVERED
    PENDING / READY → CANCELLED
    PENDING (small order) → COMBINED   (only through combine_small_orders)
"""
import logging
import uuid
from datetime import datetime, timezone, date
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from distledger.config import settings
from distledger.core.enum_utils import get_enum_value
from distledger.core.exceptions import (
    NotFoundError, ValidationError, StateConflictError, AllocationShortfallWarning
)
from distledger.models.billing import Invoice, InvoiceStatus
from distledger.models.dispatch import (
    Dispatch, DispatchItem, DispatchBatch, CombinedDispatch, DispatchStatus
)
from distledger.models.product import Product
from distledger.models.production import ProductBatch
from distledger.schemas.dispatch import (
    DispatchCreate, DispatchLineInput, DispatchStatusUpdate, DispatchCreateResult,
    DispatchBatchAllocation, AllocationShortfall, CombineResult,
    DispatchDetail, DispatchResponse, DispatchItemResponse
)
from distledger.services.batch_ledger_service import BatchLedger


logger = logging.getLogger(__name__)


MIN_PRIORITY = 1
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 1

# Allowed status changes through update_status. COMBINED is entered only
# by combine_small_orders.
ALLOWED_TRANSITIONS: Dict[str, set] = {
    DispatchStatus.PENDING.value: {
        DispatchStatus.READY.value,
        DispatchStatus.IN_TRANSIT.value,
        DispatchStatus.DELIVERED.value,
        DispatchStatus.CANCELLED.value,
    },
    DispatchStatus.READY.value: {
        DispatchStatus.IN_TRANSIT.value,
        DispatchStatus.DELIVERED.value,
        DispatchStatus.CANCELLED.value,
    },
    DispatchStatus.IN_TRANSIT.value: {
        DispatchStatus.DELIVERED.value,
    },
    DispatchStatus.DELIVERED.value: set(),
    DispatchStatus.CANCELLED.value: set(),
    DispatchStatus.COMBINED.value: set(),
}


def can_transition(current: str, new: str) -> bool:
    """Whether update_status may move a dispatch from current to new."""
    return new in ALLOWED_TRANSITIONS.get(current, set())


def is_small_order(items: List[DispatchLineInput]) -> bool:
    """
    Small when either few distinct products or few units.

    4 distinct products totalling 3 units is small (unit rule).
    """
    distinct_products = len({item.product_id for item in items})
    total_quantity = sum(item.quantity for item in items)
    return (
        distinct_products <= settings.SMALL_ORDER_MAX_PRODUCTS
        or total_quantity <= settings.SMALL_ORDER_MAX_QUANTITY
    )


def priority_for_total(total_amount: Decimal) -> int:
    """Auto-dispatch priority tier for an invoice total."""
    total_amount = Decimal(total_amount)
    if total_amount >= settings.PRIORITY_HIGH_THRESHOLD:
        return 3
    if total_amount >= settings.PRIORITY_MEDIUM_THRESHOLD:
        return 2
    return 1


def validate_priority(priority: int) -> int:
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValidationError(
            f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {priority}",
            {"priority": priority},
        )
    return priority


class DispatchAssembler:
    """Service for dispatch creation, allocation and lifecycle."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.batch_ledger = BatchLedger(db)

    # =========================================================================
    # CREATION
    # =========================================================================

    async def create_dispatch(self, data: DispatchCreate) -> DispatchCreateResult:
        """
        Create a dispatch and allocate its lines from batches.

        Each line is allocated FIFO. Products with batches that cannot
        fully cover a line still ship; the shortfall is logged and
        reported in the result. Products that were never batch-tracked
        skip allocation.

        Raises:
            ValidationError: Empty items, non-positive quantity, priority outside 1..10
            NotFoundError: Unknown invoice or product
            StateConflictError: Invoice is cancelled
        """
        # 1. Validate input
        if not data.items:
            raise ValidationError("Dispatch must have at least one item")
        for item in data.items:
            if item.quantity <= 0:
                raise ValidationError(
                    f"Dispatch quantity must be positive for product {item.product_id}"
                )
        priority = validate_priority(data.priority if data.priority is not None else DEFAULT_PRIORITY)

        # 2. Validate references
        invoice = await self.db.get(Invoice, data.invoice_id)
        if not invoice:
            raise NotFoundError("Invoice", data.invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise StateConflictError(f"Invoice {invoice.invoice_number} is cancelled")

        product_ids = {item.product_id for item in data.items}
        result = await self.db.execute(
            select(Product).where(Product.id.in_(list(product_ids))).with_for_update()
        )
        products = {p.id: p for p in result.scalars().all()}
        for product_id in product_ids:
            if product_id not in products:
                raise NotFoundError("Product", product_id)

        # 3. Create dispatch
        small = is_small_order(data.items)
        dispatch = Dispatch(
            invoice_id=invoice.id,
            dispatch_date=data.dispatch_date or date.today(),
            status=DispatchStatus.PENDING.value,
            priority=priority,
            is_small_order=small,
            delivery_address=data.delivery_address,
            notes=data.notes,
        )
        self.db.add(dispatch)
        await self.db.flush()

        # 4. Allocate each line
        allocations = []
        shortfalls = []
        for item in data.items:
            self.db.add(DispatchItem(
                dispatch_id=dispatch.id,
                invoice_item_id=item.invoice_item_id,
                product_id=item.product_id,
                quantity=item.quantity,
            ))

            line_allocations = await self.batch_ledger.allocate(item.product_id, item.quantity)
            for allocation in line_allocations:
                self.db.add(DispatchBatch(
                    dispatch_id=dispatch.id,
                    invoice_item_id=item.invoice_item_id,
                    batch_id=allocation.batch_id,
                    quantity=allocation.quantity,
                ))
                allocations.append(DispatchBatchAllocation(
                    product_id=item.product_id,
                    batch_id=allocation.batch_id,
                    batch_number=allocation.batch_number,
                    quantity=allocation.quantity,
                ))

            allocated = sum(a.quantity for a in line_allocations)
            if allocated < item.quantity:
                if line_allocations or await self.batch_ledger.has_batches(item.product_id):
                    shortfall = AllocationShortfallWarning(item.product_id, item.quantity, allocated)
                    logger.warning(f"Dispatch {dispatch.id}: {shortfall}")
                    shortfalls.append(AllocationShortfall(
                        product_id=item.product_id,
                        requested=item.quantity,
                        allocated=allocated,
                        shortfall=shortfall.shortfall,
                    ))
                else:
                    logger.debug(f"Product {item.product_id} has no batches, allocation skipped")

            # Stock cache follows physical dispatch
            product = products[item.product_id]
            product.stock_quantity = (product.stock_quantity or 0) - item.quantity

        await self.db.flush()

        logger.info(
            f"Dispatch {dispatch.id} created for invoice {invoice.invoice_number}: "
            f"{len(data.items)} line(s), priority {priority}, small={small}"
        )
        return DispatchCreateResult(
            dispatch_id=dispatch.id,
            is_small_order=small,
            priority=priority,
            batch_allocations=allocations,
            shortfalls=shortfalls,
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def update_status(
        self,
        dispatch_id: uuid.UUID,
        data: DispatchStatusUpdate
    ) -> Dispatch:
        """
        Move a dispatch along its state machine.

        Stamps dispatched_at on entering IN_TRANSIT and delivered_at on
        DELIVERED.
        """
        dispatch = await self._get_for_update(dispatch_id)
        new_status = get_enum_value(data.status)

        if not can_transition(dispatch.status, new_status):
            raise StateConflictError(
                f"Dispatch cannot move from {dispatch.status} to {new_status}",
                {"current": dispatch.status, "requested": new_status},
            )

        now = datetime.now(timezone.utc)
        if new_status in (DispatchStatus.IN_TRANSIT.value, DispatchStatus.DELIVERED.value):
            dispatch.dispatched_at = dispatch.dispatched_at or now
        if new_status == DispatchStatus.DELIVERED.value:
            dispatch.delivered_at = now

        for field in ("vehicle_number", "driver_name", "driver_phone", "notes"):
            value = getattr(data, field)
            if value is not None:
                setattr(dispatch, field, value)

        old_status = dispatch.status
        dispatch.status = new_status
        await self.db.flush()

        logger.info(f"Dispatch {dispatch.id}: {old_status} -> {new_status}")
        return dispatch

    async def update_priority(self, dispatch_id: uuid.UUID, priority: int) -> Dispatch:
        """Change priority of a dispatch that has not been closed."""
        validate_priority(priority)
        dispatch = await self._get_for_update(dispatch_id)
        if not ALLOWED_TRANSITIONS.get(dispatch.status):
            raise StateConflictError(f"Dispatch is {dispatch.status}, priority cannot change")

        dispatch.priority = priority
        await self.db.flush()
        return dispatch

    async def combine_small_orders(
        self,
        dispatch_ids: List[uuid.UUID],
        priority: Optional[int] = None,
        notes: Optional[str] = None
    ) -> CombineResult:
        """
        Group small pending dispatches into one combined dispatch.

        All members are checked in a single locked read; if any is missing,
        not pending or not small, nothing changes.

        Raises:
            ValidationError: Fewer than two distinct ids, priority outside 1..10
            NotFoundError: Unknown dispatch id
            StateConflictError: A member is not a pending small order
        """
        unique_ids = list(dict.fromkeys(dispatch_ids))
        if len(unique_ids) < 2:
            raise ValidationError("At least two dispatches are needed to combine")
        if priority is None:
            priority = settings.COMBINED_DISPATCH_DEFAULT_PRIORITY
        validate_priority(priority)

        result = await self.db.execute(
            select(Dispatch).where(Dispatch.id.in_(unique_ids)).with_for_update()
        )
        dispatches = {d.id: d for d in result.scalars().all()}

        for dispatch_id in unique_ids:
            if dispatch_id not in dispatches:
                raise NotFoundError("Dispatch", dispatch_id)

        ineligible = [
            str(d.id) for d in dispatches.values()
            if d.status != DispatchStatus.PENDING.value or not d.is_small_order
        ]
        if ineligible:
            raise StateConflictError(
                "Only pending small-order dispatches can be combined",
                {"ineligible": ineligible},
            )

        combined = CombinedDispatch(priority=priority, notes=notes)
        self.db.add(combined)
        await self.db.flush()

        for dispatch_id in unique_ids:
            dispatch = dispatches[dispatch_id]
            dispatch.combined_dispatch_id = combined.id
            dispatch.status = DispatchStatus.COMBINED.value
        await self.db.flush()

        logger.info(f"Combined {len(unique_ids)} dispatches into {combined.id}")
        return CombineResult(
            combined_dispatch_id=combined.id,
            dispatch_ids=unique_ids,
            priority=priority,
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_dispatch(self, dispatch_id: uuid.UUID) -> DispatchDetail:
        dispatch = await self.db.get(Dispatch, dispatch_id)
        if not dispatch:
            raise NotFoundError("Dispatch", dispatch_id)

        items_result = await self.db.execute(
            select(DispatchItem).where(DispatchItem.dispatch_id == dispatch_id)
        )
        batches_result = await self.db.execute(
            select(DispatchBatch, ProductBatch)
            .join(ProductBatch, ProductBatch.id == DispatchBatch.batch_id)
            .where(DispatchBatch.dispatch_id == dispatch_id)
            .order_by(DispatchBatch.created_at)
        )

        return DispatchDetail(
            dispatch=DispatchResponse.model_validate(dispatch),
            items=[DispatchItemResponse.model_validate(i) for i in items_result.scalars().all()],
            batch_allocations=[
                DispatchBatchAllocation(
                    product_id=batch.product_id,
                    batch_id=batch.id,
                    batch_number=batch.batch_number,
                    quantity=row.quantity,
                )
                for row, batch in batches_result.all()
            ],
        )

    async def list_dispatches(
        self,
        status: Optional[str] = None,
        small_only: bool = False
    ) -> List[Dispatch]:
        """Dispatches, highest priority first, then oldest first."""
        query = select(Dispatch)
        if status:
            query = query.where(Dispatch.status == status.upper())
        if small_only:
            query = query.where(Dispatch.is_small_order == True)
        query = query.order_by(Dispatch.priority.desc(), Dispatch.created_at.asc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _get_for_update(self, dispatch_id: uuid.UUID) -> Dispatch:
        result = await self.db.execute(
            select(Dispatch).where(Dispatch.id == dispatch_id).with_for_update()
        )
        dispatch = result.scalar_one_or_none()
        if not dispatch:
            raise NotFoundError("Dispatch", dispatch_id)
        return dispatch
