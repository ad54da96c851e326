"""
Payment Ledger.

Payments are rows in invoice_payments. After every insert or delete the
invoice's total_paid is recomputed as the SUM of its remaining rows and
payment_status is derived from it; the cached figures are never
incremented or decremented in place.
"""
import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from distledger.config import settings
from distledger.core.enum_utils import get_enum_value
from distledger.core.exceptions import (
    NotFoundError, ValidationError, StateConflictError, OverpaymentError
)
from distledger.models.billing import Invoice, InvoicePayment, InvoiceStatus, PaymentStatus
from distledger.schemas.payment import (
    PaymentCreate, PaymentResult, PaymentDeleteResult, PaymentResponse,
    InvoicePaymentSummary, OutstandingInvoice, ReconciliationResult
)


logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def derive_payment_status(total_paid: Decimal, total_amount: Decimal) -> str:
    """PAID once the total is covered, PARTIAL for any collection, else PENDING."""
    if total_paid >= total_amount:
        return PaymentStatus.PAID.value
    if total_paid > 0:
        return PaymentStatus.PARTIAL.value
    return PaymentStatus.PENDING.value


def remaining_balance(total_amount: Decimal, total_paid: Decimal) -> Decimal:
    return max(ZERO, Decimal(total_amount) - Decimal(total_paid))


class PaymentLedger:
    """Service for recording, removing and reconciling invoice payments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, data: PaymentCreate) -> PaymentResult:
        """
        Record a payment against an invoice.

        Args:
            data: Invoice, amount and optional date, method, reference

        Returns:
            New paid total, status and remaining balance

        Raises:
            ValidationError: Amount is not positive
            NotFoundError: Unknown invoice
            StateConflictError: Invoice is cancelled
            OverpaymentError: Amount exceeds balance plus tolerance
        """
        amount = Decimal(data.amount)
        if amount <= 0:
            raise ValidationError(f"Payment amount must be positive, got {amount}")

        invoice = await self._get_invoice_for_update(data.invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise StateConflictError(f"Invoice {invoice.invoice_number} is cancelled")

        paid_so_far = await self._ledger_total(invoice.id)
        balance = Decimal(invoice.total_amount) - paid_so_far
        if amount > balance + settings.PAYMENT_TOLERANCE:
            raise OverpaymentError(
                f"Payment {amount} exceeds balance {balance} on invoice {invoice.invoice_number}",
                {"amount": str(amount), "balance": str(balance)},
            )

        payment = InvoicePayment(
            invoice_id=invoice.id,
            amount=amount,
            payment_date=data.payment_date or date.today(),
            payment_method=get_enum_value(data.payment_method) or settings.DEFAULT_PAYMENT_METHOD,
            reference_number=data.reference_number,
            collected_by=data.collected_by,
            notes=data.notes,
        )
        self.db.add(payment)
        await self.db.flush()

        await self._recompute(invoice)

        logger.info(
            f"Payment {amount} recorded on invoice {invoice.invoice_number}: "
            f"paid {invoice.total_paid}, {invoice.payment_status}"
        )
        return PaymentResult(
            payment_id=payment.id,
            new_total_paid=invoice.total_paid,
            new_payment_status=invoice.payment_status,
            remaining_balance=remaining_balance(invoice.total_amount, invoice.total_paid),
        )

    async def delete(self, payment_id: uuid.UUID) -> PaymentDeleteResult:
        """Remove a payment and recompute the invoice from what remains."""
        payment = await self.db.get(InvoicePayment, payment_id)
        if not payment:
            raise NotFoundError("InvoicePayment", payment_id)

        invoice = await self._get_invoice_for_update(payment.invoice_id)
        await self.db.delete(payment)
        await self.db.flush()

        await self._recompute(invoice)

        logger.info(
            f"Payment {payment.amount} removed from invoice {invoice.invoice_number}: "
            f"paid {invoice.total_paid}, {invoice.payment_status}"
        )
        return PaymentDeleteResult(
            invoice_id=invoice.id,
            new_total_paid=invoice.total_paid,
            new_payment_status=invoice.payment_status,
            remaining_balance=remaining_balance(invoice.total_amount, invoice.total_paid),
        )

    async def list_payments(self, invoice_id: uuid.UUID) -> InvoicePaymentSummary:
        invoice = await self.db.get(Invoice, invoice_id)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)

        result = await self.db.execute(
            select(InvoicePayment)
            .where(InvoicePayment.invoice_id == invoice_id)
            .order_by(InvoicePayment.payment_date.desc(), InvoicePayment.created_at.desc())
        )
        return InvoicePaymentSummary(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            total_amount=invoice.total_amount,
            total_paid=invoice.total_paid,
            remaining_balance=remaining_balance(invoice.total_amount, invoice.total_paid),
            payment_status=invoice.payment_status,
            payments=[PaymentResponse.model_validate(p) for p in result.scalars().all()],
        )

    async def list_outstanding(self, store_id: Optional[uuid.UUID] = None) -> List[OutstandingInvoice]:
        """Invoices not fully paid and not cancelled, oldest first."""
        query = (
            select(Invoice)
            .where(
                Invoice.status != InvoiceStatus.CANCELLED.value,
                Invoice.payment_status != PaymentStatus.PAID.value,
            )
            .order_by(Invoice.invoice_date.asc(), Invoice.created_at.asc())
        )
        if store_id:
            query = query.where(Invoice.store_id == store_id)

        result = await self.db.execute(query)
        return [
            OutstandingInvoice(
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                store_id=invoice.store_id,
                invoice_date=invoice.invoice_date,
                total_amount=invoice.total_amount,
                total_paid=invoice.total_paid,
                remaining_balance=remaining_balance(invoice.total_amount, invoice.total_paid),
                payment_status=invoice.payment_status,
            )
            for invoice in result.scalars().all()
        ]

    async def reconcile_invoice(self, invoice_id: uuid.UUID) -> ReconciliationResult:
        """
        Rebuild an invoice's cached paid total and status from its ledger.

        Reports whether the cached values had drifted.
        """
        invoice = await self._get_invoice_for_update(invoice_id)
        cached_total = Decimal(invoice.total_paid or 0)
        cached_status = invoice.payment_status

        ledger_total = await self._recompute(invoice)
        repaired = ledger_total != cached_total or invoice.payment_status != cached_status
        if repaired:
            logger.warning(
                f"Invoice {invoice.invoice_number} paid total drifted: cached {cached_total}, "
                f"ledger {ledger_total}"
            )

        return ReconciliationResult(
            invoice_id=invoice.id,
            cached_total_paid=cached_total,
            ledger_total_paid=ledger_total,
            payment_status=invoice.payment_status,
            repaired=repaired,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _ledger_total(self, invoice_id: uuid.UUID) -> Decimal:
        total = await self.db.scalar(
            select(func.coalesce(func.sum(InvoicePayment.amount), 0))
            .where(InvoicePayment.invoice_id == invoice_id)
        )
        return Decimal(total or 0)

    async def _recompute(self, invoice: Invoice) -> Decimal:
        """Set total_paid, payment_status and payment_date from the ledger."""
        total_paid = await self._ledger_total(invoice.id)
        first_payment = await self.db.scalar(
            select(func.min(InvoicePayment.payment_date))
            .where(InvoicePayment.invoice_id == invoice.id)
        )

        invoice.total_paid = total_paid
        invoice.payment_status = derive_payment_status(total_paid, Decimal(invoice.total_amount))
        invoice.payment_date = first_payment
        await self.db.flush()
        return total_paid

    async def _get_invoice_for_update(self, invoice_id: uuid.UUID) -> Invoice:
        result = await self.db.execute(
            select(Invoice).where(Invoice.id == invoice_id).with_for_update()
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice
