"""
Document Sequence Model for Atomic Number Generation

• Financial year based numbering (April-March)
• Continuous sequence within financial year (no daily reset)
• One counter row per (document type, financial year), incremented under row lock

DOCUMENT FORMATS:
━━━━━━━━━━━━━━━━
• Invoice:            2025-26/1
• Sales order:        ORD-2025-26/1
• Production order:   PROD-2025-26/1
• Purchase request:   PR-2025-26/1
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from distledger.database import Base
from distledger.db_types import UUIDType


class DocumentType(str, Enum):
    """Document types that use sequence numbering."""
    INVOICE = "INV"
    ORDER = "ORD"
    PRODUCTION_ORDER = "PROD"
    PURCHASE_REQUEST = "PR"


class DocumentSequenceAudit(Base):
    """Audit log of every number issued or repaired."""
    __tablename__ = "document_sequence_audit"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    document_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        index=True
    )
    financial_year: Mapped[str] = mapped_column(
        String(10),
        nullable=False
    )
    operation: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="GET_NEXT, SEED, SYNC"
    )
    old_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    new_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    document_number: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class DocumentSequence(Base):
    """
    Per-type, per-financial-year counter.

    Example:
        document_type = "ORD"
        financial_year = "2025-26"
        current_number = 42
        → Next order number: ORD-2025-26/43
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint(
            "document_type", "financial_year",
            name="uq_document_type_fy"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    document_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        index=True,
        comment="INV, ORD, PROD, PR"
    )
    financial_year: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="e.g., 2025-26"
    )
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<DocumentSequence({self.document_type}/{self.financial_year}: {self.current_number})>"
