"""Finished goods and their bill of materials."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distledger.database import Base
from distledger.db_types import UUIDType, MoneyType, QuantityType

if TYPE_CHECKING:
    from distledger.models.raw_material import RawMaterial


class Product(Base):
    """
    Finished product.

    stock_quantity is a cache: production credits it and dispatch debits it.
    The batch ledger is the allocation source of truth.
    """
    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    hsn_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    weight: Mapped[Optional[Decimal]] = mapped_column(QuantityType, nullable=True)
    weight_unit: Mapped[str] = mapped_column(String(10), default="g")

    # Pricing
    cost: Mapped[Decimal] = mapped_column(MoneyType, default=0)
    mrp: Mapped[Decimal] = mapped_column(MoneyType, default=0)
    gst_rate: Mapped[Decimal] = mapped_column(MoneyType, default=0, comment="Percent, e.g. 12")

    # Stock
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reorder_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

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
    recipe: Mapped[List["ProductRecipe"]] = relationship(
        "ProductRecipe",
        back_populates="product",
        cascade="all, delete-orphan"
    )

    @property
    def base_price(self) -> Decimal:
        """MRP, falling back to cost when MRP is zero or unset."""
        if self.mrp:
            return Decimal(self.mrp)
        return Decimal(self.cost or 0)


class ProductRecipe(Base):
    """Raw material needed to make one unit of a product."""
    __tablename__ = "product_recipes"
    __table_args__ = (
        UniqueConstraint("product_id", "raw_material_id", name="uq_product_recipe_material"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    raw_material_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("raw_materials.id", ondelete="RESTRICT"),
        nullable=False
    )
    quantity_required: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)

    # Relationships
    product: Mapped["Product"] = relationship("Product", back_populates="recipe")
    raw_material: Mapped["RawMaterial"] = relationship("RawMaterial")
