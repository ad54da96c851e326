"""Invoice Service.

Creates GST tax invoices for stores, either directly or from a submitted
or approved sales order. Invoicing an order also creates its dispatch,
prioritised by invoice value.

Flow: Order -> Invoice (priced by PricingEngine) -> Dispatch (DispatchAssembler)
"""
import uuid
import logging
from collections import OrderedDict
from datetime import datetime, timezone, date
from decimal import Decimal
from typing import List, Optional

from num2words import num2words
from sqlalchemy import select, delete, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from distledger.core.enum_utils import status_in
from distledger.core.exceptions import NotFoundError, ValidationError, StateConflictError
from distledger.models.billing import (
    Invoice, InvoiceItem, InvoicePayment, InvoiceStatus, PaymentStatus
)
from distledger.models.dispatch import Dispatch, DispatchItem, DispatchBatch
from distledger.models.document_sequence import DocumentType
from distledger.models.order import Order, OrderItem, OrderStatus
from distledger.models.product import Product
from distledger.models.store import Store
from distledger.schemas.billing import (
    InvoiceCreate, InvoiceFromOrderCreate, InvoiceLineInput, InvoiceCreateResult,
    InvoiceDetail, InvoiceResponse, InvoiceItemResponse, HsnSummaryLine,
    PricedLine, InvoiceTotals
)
from distledger.schemas.dispatch import DispatchCreate, DispatchLineInput
from distledger.services.dispatch_service import DispatchAssembler, priority_for_total
from distledger.services.document_sequence_service import DocumentSequenceService
from distledger.services.pricing_engine import PricingEngine


logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def amount_to_words(amount: Decimal) -> str:
    """Convert amount to words (Indian numbering system)."""
    amount = Decimal(amount)
    rupees = int(amount)
    paise = int((amount - rupees) * 100)

    words = num2words(rupees, lang='en_IN').replace(",", "")
    if paise > 0:
        paise_words = num2words(paise, lang='en_IN').replace(",", "")
        return f"Rupees {words.title()} and {paise_words.title()} Paise Only"
    return f"Rupees {words.title()} Only"


class InvoiceService:
    """Service for invoice creation and lifecycle."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.pricing = PricingEngine(db)

    # =========================================================================
    # CREATION
    # =========================================================================

    async def create_invoice(self, data: InvoiceCreate) -> InvoiceCreateResult:
        """
        Create an invoice for a store without a sales order.

        Stock is untouched and no dispatch is created.

        Raises:
            NotFoundError: Unknown store or product
            ValidationError: Empty item list or bad quantities
        """
        store = await self.db.get(Store, data.store_id)
        if not store:
            raise NotFoundError("Store", data.store_id)

        lines, totals = await self.pricing.price_items(store.id, data.items, data.is_igst)
        invoice, _ = await self._persist_invoice(
            store_id=store.id,
            lines=lines,
            totals=totals,
            is_igst=data.is_igst,
            invoice_date=data.invoice_date,
            notes=data.notes,
        )

        logger.info(f"Invoice {invoice.invoice_number} created for store {store.name}: {invoice.total_amount}")
        return self._result(invoice)

    async def create_invoice_from_order(self, data: InvoiceFromOrderCreate) -> InvoiceCreateResult:
        """
        Invoice a sales order and create its dispatch.

        Lines with non-positive quantity are skipped. The dispatch priority
        follows the invoice total (>= 50,000 → 3, >= 20,000 → 2, else 1).

        Args:
            data: Order id, optional replacement lines, IGST flag

        Returns:
            Invoice number and totals plus the auto-created dispatch id

        Raises:
            NotFoundError: Unknown order or product
            StateConflictError: Order already invoiced, cancelled, or not yet submitted
            ValidationError: No line with a positive quantity
        """
        # 1. Lock order and check state
        result = await self.db.execute(
            select(Order).where(Order.id == data.order_id).with_for_update()
        )
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("Order", data.order_id)

        if order.status == OrderStatus.INVOICED.value:
            raise StateConflictError(f"Order {order.order_number} is already invoiced")
        if order.status == OrderStatus.CANCELLED.value:
            raise StateConflictError(f"Order {order.order_number} is cancelled")
        if not status_in(order.status, OrderStatus.SUBMITTED, OrderStatus.APPROVED):
            raise StateConflictError(
                f"Order {order.order_number} must be submitted or approved before invoicing "
                f"(status: {order.status})"
            )

        # 2. Resolve lines
        if data.items is None:
            items_result = await self.db.execute(
                select(OrderItem).where(OrderItem.order_id == order.id)
            )
            lines_in = [
                InvoiceLineInput(product_id=i.product_id, quantity=i.quantity)
                for i in items_result.scalars().all()
            ]
        else:
            lines_in = data.items

        lines_in = [line for line in lines_in if line.quantity > 0]
        if not lines_in:
            raise ValidationError(f"Order {order.order_number} has no items with a positive quantity")

        # 3. Price and persist
        lines, totals = await self.pricing.price_items(order.store_id, lines_in, data.is_igst)
        invoice, items = await self._persist_invoice(
            store_id=order.store_id,
            lines=lines,
            totals=totals,
            is_igst=data.is_igst,
            invoice_date=data.invoice_date,
            notes=data.notes,
            order_id=order.id,
        )

        # 4. Close order
        order.status = OrderStatus.INVOICED.value
        order.invoice_id = invoice.id

        # 5. Auto-dispatch shipped quantities
        dispatch_id = None
        dispatch_lines = [
            DispatchLineInput(
                product_id=item.product_id,
                quantity=item.quantity_shipped,
                invoice_item_id=item.id,
            )
            for item in items if item.quantity_shipped > 0
        ]
        if dispatch_lines:
            store = await self.db.get(Store, order.store_id)
            dispatch = await DispatchAssembler(self.db).create_dispatch(DispatchCreate(
                invoice_id=invoice.id,
                items=dispatch_lines,
                priority=priority_for_total(invoice.total_amount),
                delivery_address=store.address if store else None,
                notes=f"Auto-created from order {order.order_number}",
            ))
            dispatch_id = dispatch.dispatch_id

        await self.db.flush()

        logger.info(
            f"Invoice {invoice.invoice_number} created from order {order.order_number}: "
            f"{invoice.total_amount}, dispatch {dispatch_id}"
        )
        return self._result(invoice, dispatch_id)

    async def _persist_invoice(
        self,
        store_id: uuid.UUID,
        lines: List[PricedLine],
        totals: InvoiceTotals,
        is_igst: bool,
        invoice_date: Optional[date] = None,
        notes: Optional[str] = None,
        order_id: Optional[uuid.UUID] = None
    ):
        invoice_number = await DocumentSequenceService(self.db).get_next_number(DocumentType.INVOICE)

        invoice = Invoice(
            invoice_number=invoice_number,
            invoice_date=invoice_date or date.today(),
            store_id=store_id,
            order_id=order_id,
            is_igst=is_igst,
            subtotal=totals.subtotal,
            cgst=totals.cgst,
            sgst=totals.sgst,
            igst=totals.igst,
            round_off=totals.round_off,
            total_amount=totals.total_amount,
            total_paid=ZERO,
            payment_status=PaymentStatus.PENDING.value,
            status=InvoiceStatus.PENDING.value,
            notes=notes,
        )
        self.db.add(invoice)
        await self.db.flush()

        items = [
            InvoiceItem(
                invoice_id=invoice.id,
                product_id=line.product_id,
                quantity=line.quantity,
                quantity_shipped=line.quantity_shipped,
                unit_price=line.unit_price,
                cost_price=line.cost_price,
                margin_percentage=line.margin_percentage,
                gst_rate=line.gst_rate,
                total=line.total,
            )
            for line in lines
        ]
        self.db.add_all(items)
        await self.db.flush()
        return invoice, items

    def _result(self, invoice: Invoice, dispatch_id: Optional[uuid.UUID] = None) -> InvoiceCreateResult:
        return InvoiceCreateResult(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            subtotal=invoice.subtotal,
            cgst=invoice.cgst,
            sgst=invoice.sgst,
            igst=invoice.igst,
            round_off=invoice.round_off,
            total_amount=invoice.total_amount,
            dispatch_id=dispatch_id,
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def cancel_invoice(self, invoice_id: uuid.UUID) -> Invoice:
        """
        Cancel an invoice.

        Payments are kept; a cancelled invoice carrying payments is logged
        so collections can be refunded or moved.
        """
        invoice = await self._get_for_update(invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise StateConflictError(f"Invoice {invoice.invoice_number} is already cancelled")

        payment_count = await self.db.scalar(
            select(func.count(InvoicePayment.id)).where(InvoicePayment.invoice_id == invoice.id)
        )
        if payment_count:
            logger.warning(
                f"Invoice {invoice.invoice_number} cancelled with {payment_count} payment(s) "
                f"totalling {invoice.total_paid}"
            )

        invoice.status = InvoiceStatus.CANCELLED.value
        invoice.cancelled_at = datetime.now(timezone.utc)
        await self.db.flush()

        logger.info(f"Invoice {invoice.invoice_number} cancelled")
        return invoice

    async def delete_invoice(self, invoice_id: uuid.UUID) -> None:
        """
        Permanently delete a cancelled invoice with its items and payments.

        Dispatches and orders that referenced it are detached.
        """
        invoice = await self._get_for_update(invoice_id)
        if invoice.status != InvoiceStatus.CANCELLED.value:
            raise StateConflictError(
                f"Only cancelled invoices can be deleted; cancel {invoice.invoice_number} first"
            )

        item_ids = select(InvoiceItem.id).where(InvoiceItem.invoice_id == invoice.id)
        await self.db.execute(
            update(DispatchItem).where(DispatchItem.invoice_item_id.in_(item_ids)).values(invoice_item_id=None)
        )
        await self.db.execute(
            update(DispatchBatch).where(DispatchBatch.invoice_item_id.in_(item_ids)).values(invoice_item_id=None)
        )
        await self.db.execute(
            update(Dispatch).where(Dispatch.invoice_id == invoice.id).values(invoice_id=None)
        )
        await self.db.execute(
            update(Order).where(Order.invoice_id == invoice.id).values(invoice_id=None)
        )
        await self.db.execute(delete(InvoicePayment).where(InvoicePayment.invoice_id == invoice.id))
        await self.db.execute(delete(InvoiceItem).where(InvoiceItem.invoice_id == invoice.id))
        await self.db.execute(delete(Invoice).where(Invoice.id == invoice.id))
        await self.db.flush()

        logger.info(f"Invoice {invoice.invoice_number} permanently deleted")

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_invoice(self, invoice_id: uuid.UUID) -> Invoice:
        invoice = await self.db.get(Invoice, invoice_id)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def get_invoice_detail(self, invoice_id: uuid.UUID) -> InvoiceDetail:
        """Invoice with items, HSN-wise tax summary and amount in words."""
        invoice = await self.get_invoice(invoice_id)

        result = await self.db.execute(
            select(InvoiceItem, Product.hsn_code)
            .join(Product, Product.id == InvoiceItem.product_id)
            .where(InvoiceItem.invoice_id == invoice.id)
        )
        rows = result.all()

        summary: "OrderedDict[tuple, dict]" = OrderedDict()
        for item, hsn_code in rows:
            key = (hsn_code or "", Decimal(item.gst_rate))
            entry = summary.setdefault(key, {"taxable_value": ZERO})
            entry["taxable_value"] += Decimal(item.total)

        hsn_summary = []
        for (hsn_code, gst_rate), entry in summary.items():
            taxable = entry["taxable_value"]
            if invoice.is_igst:
                cgst = sgst = ZERO
                igst = taxable * gst_rate / 100
            else:
                cgst = sgst = taxable * gst_rate / 200
                igst = ZERO
            hsn_summary.append(HsnSummaryLine(
                hsn_code=hsn_code,
                gst_rate=gst_rate,
                taxable_value=taxable,
                cgst=cgst,
                sgst=sgst,
                igst=igst,
                total_tax=cgst + sgst + igst,
            ))

        return InvoiceDetail(
            invoice=InvoiceResponse.model_validate(invoice),
            items=[InvoiceItemResponse.model_validate(item) for item, _ in rows],
            hsn_summary=hsn_summary,
            amount_in_words=amount_to_words(invoice.total_amount),
            balance_due=invoice.balance_due,
        )

    async def list_invoices(
        self,
        store_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None
    ) -> List[Invoice]:
        query = select(Invoice).order_by(Invoice.created_at.desc())
        if store_id:
            query = query.where(Invoice.store_id == store_id)
        if status:
            query = query.where(Invoice.status == status.upper())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _get_for_update(self, invoice_id: uuid.UUID) -> Invoice:
        result = await self.db.execute(
            select(Invoice).where(Invoice.id == invoice_id).with_for_update()
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice
