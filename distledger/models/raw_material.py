"""Raw materials consumed by production."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from distledger.database import Base
from distledger.db_types import UUIDType, MoneyType, QuantityType


class RawMaterial(Base):
    """
    Raw material stock.

    Debited by production completion (may go negative), credited by
    receiving flows outside this package.
    """
    __tablename__ = "raw_materials"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    hsn_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    unit: Mapped[str] = mapped_column(String(20), default="kg")
    stock_quantity: Mapped[Decimal] = mapped_column(QuantityType, default=0, nullable=False)
    cost_per_unit: Mapped[Decimal] = mapped_column(MoneyType, default=0)
    reorder_level: Mapped[Decimal] = mapped_column(QuantityType, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )
