"""Billing models: GST tax invoices, line items and the payment ledger.

Supports:
- Intra-state invoices (CGST + SGST at half rate each)
- Inter-state invoices (IGST)
- Append-only payment ledger per invoice
"""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Date
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distledger.database import Base
from distledger.db_types import UUIDType, MoneyType

if TYPE_CHECKING:
    from distledger.models.product import Product
    from distledger.models.store import Store


class InvoiceStatus(str, Enum):
    """Invoice status enumeration."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    """Collection status, derived from the payment ledger."""
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class PaymentMethod(str, Enum):
    """How a payment was collected."""
    CASH = "CASH"
    UPI = "UPI"
    CHEQUE = "CHEQUE"
    BANK_TRANSFER = "BANK_TRANSFER"
    CARD = "CARD"


class Invoice(Base):
    """
    GST tax invoice.

    total_amount = subtotal + cgst + sgst + igst + round_off, rounded once
    at invoice level. total_paid is recomputed from invoice_payments on
    every ledger change.
    """
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    invoice_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="YYYY-YY/N"
    )
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)

    store_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("stores.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True
    )

    is_igst: Mapped[bool] = mapped_column(Boolean, default=False)

    # Amounts
    subtotal: Mapped[Decimal] = mapped_column(MoneyType, default=0)
    cgst: Mapped[Decimal] = mapped_column(MoneyType, default=0)
    sgst: Mapped[Decimal] = mapped_column(MoneyType, default=0)
    igst: Mapped[Decimal] = mapped_column(MoneyType, default=0)
    round_off: Mapped[Decimal] = mapped_column(MoneyType, default=0)
    total_amount: Mapped[Decimal] = mapped_column(MoneyType, default=0)

    # Collections
    total_paid: Mapped[Decimal] = mapped_column(MoneyType, default=0)
    payment_status: Mapped[str] = mapped_column(
        String(50),
        default="PENDING",
        nullable=False,
        comment="PENDING, PARTIAL, PAID"
    )
    payment_date: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        comment="Date of first payment"
    )

    status: Mapped[str] = mapped_column(
        String(50),
        default="PENDING",
        nullable=False,
        index=True,
        comment="PENDING, COMPLETED, CANCELLED"
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    store: Mapped["Store"] = relationship("Store")
    items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan"
    )
    payments: Mapped[List["InvoicePayment"]] = relationship(
        "InvoicePayment",
        back_populates="invoice",
        cascade="all, delete-orphan"
    )

    @property
    def balance_due(self) -> Decimal:
        """Outstanding amount, never negative."""
        return max(Decimal("0"), Decimal(self.total_amount or 0) - Decimal(self.total_paid or 0))


class InvoiceItem(Base):
    """Invoice line item, priced at full precision."""
    __tablename__ = "invoice_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_shipped: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, comment="After margin")
    cost_price: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, comment="Base price before margin")
    margin_percentage: Mapped[Decimal] = mapped_column(MoneyType, default=0)
    gst_rate: Mapped[Decimal] = mapped_column(MoneyType, default=0)
    total: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, comment="Pre-tax line amount")

    # Relationships
    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")
    product: Mapped["Product"] = relationship("Product")


class InvoicePayment(Base):
    """One collection against an invoice. Rows are inserted or deleted, never edited."""
    __tablename__ = "invoice_payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(30), default="CASH")
    reference_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    collected_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="payments")
