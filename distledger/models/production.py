"""
Production Models.

- ProductionOrder: planned run of one product
- ProductionMaterial: raw material planned and actually used by a run
- ProductBatch: finished-goods lot minted when a run completes
"""
import uuid
from datetime import datetime, timezone, date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import (
    String, DateTime, ForeignKey, Integer, Text, Date, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distledger.database import Base
from distledger.db_types import UUIDType, QuantityType

if TYPE_CHECKING:
    from distledger.models.product import Product
    from distledger.models.raw_material import RawMaterial


# ============================================================================
# ENUMS
# ============================================================================

class ProductionStatus(str, Enum):
    """Production order status."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"       # Terminal
    CANCELLED = "CANCELLED"       # Terminal


class BatchStatus(str, Enum):
    """Product batch status. DEPLETED iff quantity_remaining == 0."""
    AVAILABLE = "AVAILABLE"
    DEPLETED = "DEPLETED"


# ============================================================================
# MODELS
# ============================================================================

class ProductionOrder(Base):
    """Planned production run for a single product."""
    __tablename__ = "production_orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    order_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        comment="PROD-YYYY-YY/N"
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    quantity_to_produce: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_produced: Mapped[int] = mapped_column(Integer, default=0)

    status: Mapped[str] = mapped_column(
        String(50),
        default="PENDING",
        nullable=False,
        index=True,
        comment="PENDING, IN_PROGRESS, COMPLETED, CANCELLED"
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
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
    product: Mapped["Product"] = relationship("Product")
    materials: Mapped[List["ProductionMaterial"]] = relationship(
        "ProductionMaterial",
        back_populates="production_order",
        cascade="all, delete-orphan"
    )


class ProductionMaterial(Base):
    """Raw material planned for, and consumed by, a production order."""
    __tablename__ = "production_materials"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    production_order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("production_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    raw_material_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("raw_materials.id", ondelete="RESTRICT"),
        nullable=False
    )
    quantity_required: Mapped[Decimal] = mapped_column(
        QuantityType,
        nullable=False,
        comment="Recipe quantity x planned units"
    )
    quantity_used: Mapped[Optional[Decimal]] = mapped_column(
        QuantityType,
        nullable=True,
        comment="Set on completion, scaled by actual yield"
    )

    # Relationships
    production_order: Mapped["ProductionOrder"] = relationship(
        "ProductionOrder",
        back_populates="materials"
    )
    raw_material: Mapped["RawMaterial"] = relationship("RawMaterial")


class ProductBatch(Base):
    """
    Finished-goods lot.

    quantity_remaining + sum(dispatch_batches.quantity) == quantity_produced
    """
    __tablename__ = "product_batches"
    __table_args__ = (
        UniqueConstraint("product_id", "batch_number", name="uq_product_batch_number"),
        Index("ix_product_batches_fifo", "product_id", "status", "production_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    batch_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="BATCH-YYYYMMDD-NNN"
    )
    production_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("production_orders.id", ondelete="SET NULL"),
        nullable=True
    )
    production_date: Mapped[date] = mapped_column(Date, nullable=False)

    quantity_produced: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_remaining: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(50),
        default="AVAILABLE",
        nullable=False,
        comment="AVAILABLE, DEPLETED"
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    product: Mapped["Product"] = relationship("Product")
