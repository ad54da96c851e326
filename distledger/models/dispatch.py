"""
Dispatch Models.

- Dispatch: physical shipment of an invoice
- DispatchItem: product and quantity shipped on a dispatch
- DispatchBatch: which batch satisfied which dispatch line (audit trail)
- CombinedDispatch: group of small pending dispatches shipped together
"""
import uuid
from datetime import datetime, timezone, date
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Date
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distledger.database import Base
from distledger.db_types import UUIDType

if TYPE_CHECKING:
    from distledger.models.billing import Invoice
    from distledger.models.production import ProductBatch


class DispatchStatus(str, Enum):
    """Dispatch status."""
    PENDING = "PENDING"
    READY = "READY"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"       # Terminal
    CANCELLED = "CANCELLED"       # Terminal
    COMBINED = "COMBINED"         # Fulfilled through a CombinedDispatch


class CombinedDispatch(Base):
    """Two or more small dispatches shipped as one."""
    __tablename__ = "combined_dispatches"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    priority: Mapped[int] = mapped_column(Integer, default=5)
    status: Mapped[str] = mapped_column(String(50), default="PENDING", nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    dispatches: Mapped[List["Dispatch"]] = relationship(
        "Dispatch",
        back_populates="combined_dispatch"
    )


class Dispatch(Base):
    """
    Shipment of an invoice's goods.

    is_small_order is fixed at creation.
    """
    __tablename__ = "dispatches"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    dispatch_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(50),
        default="PENDING",
        nullable=False,
        index=True,
        comment="PENDING, READY, IN_TRANSIT, DELIVERED, CANCELLED, COMBINED"
    )
    priority: Mapped[int] = mapped_column(Integer, default=1, comment="1 (lowest) to 10")
    is_small_order: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    combined_dispatch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("combined_dispatches.id", ondelete="SET NULL"),
        nullable=True
    )

    # Logistics
    delivery_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    vehicle_number: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    driver_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    driver_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
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
    invoice: Mapped[Optional["Invoice"]] = relationship("Invoice")
    items: Mapped[List["DispatchItem"]] = relationship(
        "DispatchItem",
        back_populates="dispatch",
        cascade="all, delete-orphan"
    )
    batches: Mapped[List["DispatchBatch"]] = relationship(
        "DispatchBatch",
        back_populates="dispatch",
        cascade="all, delete-orphan"
    )
    combined_dispatch: Mapped[Optional["CombinedDispatch"]] = relationship(
        "CombinedDispatch",
        back_populates="dispatches"
    )


class DispatchItem(Base):
    """Product line shipped on a dispatch."""
    __tablename__ = "dispatch_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    dispatch_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("dispatches.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    invoice_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("invoice_items.id", ondelete="SET NULL"),
        nullable=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    dispatch: Mapped["Dispatch"] = relationship("Dispatch", back_populates="items")


class DispatchBatch(Base):
    """Quantity of one batch consumed by one dispatch line."""
    __tablename__ = "dispatch_batches"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    dispatch_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("dispatches.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    invoice_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("invoice_items.id", ondelete="SET NULL"),
        nullable=True
    )
    batch_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("product_batches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    dispatch: Mapped["Dispatch"] = relationship("Dispatch", back_populates="batches")
    batch: Mapped["ProductBatch"] = relationship("ProductBatch")
