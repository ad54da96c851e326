"""
Document Sequence Service for Atomic Number Generation

- Financial year based numbering (April-March)
- Continuous sequence within financial year (no daily reset, no zero padding)
- Counter row per (document type, financial year) read with SELECT FOR UPDATE
- Format: {PREFIX}{FY}/{SEQUENCE}, e.g. ORD-2025-26/14

USAGE:
    from distledger.services.document_sequence_service import DocumentSequenceService

    async def create_order(db: AsyncSession):
        service = DocumentSequenceService(db)
        order_number = await service.get_next_number("ORD")
        # Returns: ORD-2025-26/1

SUPPORTED DOCUMENT TYPES:
    INV  - Tax invoice          (no prefix)
    ORD  - Sales order
    PROD - Production order
    PR   - Purchase request
"""

import logging
import re
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from distledger.core.enum_utils import get_enum_value
from distledger.core.exceptions import ValidationError
from distledger.models.billing import Invoice
from distledger.models.document_sequence import DocumentSequence, DocumentSequenceAudit, DocumentType
from distledger.models.order import Order
from distledger.models.production import ProductionOrder


logger = logging.getLogger(__name__)


# Document type metadata
DOCUMENT_METADATA = {
    DocumentType.INVOICE.value: {"name": "Tax Invoice", "prefix": "", "column": Invoice.invoice_number},
    DocumentType.ORDER.value: {"name": "Sales Order", "prefix": "ORD-", "column": Order.order_number},
    DocumentType.PRODUCTION_ORDER.value: {"name": "Production Order", "prefix": "PROD-", "column": ProductionOrder.order_number},
    DocumentType.PURCHASE_REQUEST.value: {"name": "Purchase Request", "prefix": "PR-", "column": None},
}


# ==================== Pure helpers ====================

def financial_year_start(now: datetime) -> int:
    """
    Calendar year in which the financial year containing ``now`` began.

    Indian financial year: April to March
    - Jan 2026 → 2025
    - Apr 2026 → 2026
    """
    return now.year if now.month >= 4 else now.year - 1


def financial_year_label(now: datetime) -> str:
    """Financial year label, e.g. "2025-26"."""
    start = financial_year_start(now)
    return f"{start}-{(start + 1) % 100:02d}"


def parse_document_number(number: Optional[str], prefix: str = "") -> Optional[tuple]:
    """
    Split a document number into (financial year label, sequence).

    Returns None when the number does not follow ``{prefix}YYYY-YY/N``,
    which covers legacy formats.
    """
    if not number:
        return None
    match = re.match(rf"^{re.escape(prefix)}(\d{{4}})-(\d{{2}})/(\d+)$", number)
    if not match:
        return None
    return f"{match.group(1)}-{match.group(2)}", int(match.group(3))


def next_document_number(last_number: Optional[str], now: datetime, prefix: str = "") -> str:
    """
    Next number in the financial-year sequence.

    Continues ``last_number`` when it belongs to the financial year of
    ``now``; otherwise (absent, previous year, legacy format) starts at 1.

    Examples:
        >>> next_document_number("2025-26/7", datetime(2025, 9, 1))
        '2025-26/8'
        >>> next_document_number("2024-25/50", datetime(2025, 4, 1))
        '2025-26/1'
        >>> next_document_number("ARC0042", datetime(2025, 4, 1))
        '2025-26/1'
    """
    fy_label = financial_year_label(now)
    parsed = parse_document_number(last_number, prefix)
    if parsed and parsed[0] == fy_label:
        return f"{prefix}{fy_label}/{parsed[1] + 1}"
    return f"{prefix}{fy_label}/1"


# ==================== Service ====================

class DocumentSequenceService:
    """
    Service for generating document numbers.

    Uses database-level locking (SELECT FOR UPDATE) on the counter row so
    concurrent transactions cannot issue the same number. The first use in
    a financial year seeds the counter from the highest number already on
    file, so numbering continues across upgrades of existing data.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _validate_type(self, document_type) -> str:
        doc_type = get_enum_value(document_type).upper()
        if doc_type not in DOCUMENT_METADATA:
            valid_types = ", ".join(DOCUMENT_METADATA.keys())
            raise ValidationError(f"Invalid document type '{doc_type}'. Valid types: {valid_types}")
        return doc_type

    async def get_next_number(
        self,
        document_type: str,
        now: Optional[datetime] = None
    ) -> str:
        """
        Get next document number with atomic increment.

        Args:
            document_type: DocumentType or its code (INV, ORD, PROD, PR)
            now: Clock override; defaults to the current local time

        Returns:
            Formatted document number, e.g. 2025-26/12

        Raises:
            ValidationError: If document_type is invalid
        """
        doc_type = self._validate_type(document_type)
        now = now or datetime.now()
        financial_year = financial_year_label(now)
        prefix = DOCUMENT_METADATA[doc_type]["prefix"]

        # Lock and get/create sequence record
        sequence = await self._get_or_create_sequence(doc_type, financial_year)
        old_number = sequence.current_number

        last_number = f"{prefix}{financial_year}/{old_number}" if old_number else None
        doc_number = next_document_number(last_number, now, prefix)
        sequence.current_number = parse_document_number(doc_number, prefix)[1]

        self.db.add(DocumentSequenceAudit(
            document_type=doc_type,
            financial_year=financial_year,
            operation="GET_NEXT",
            old_number=old_number,
            new_number=sequence.current_number,
            document_number=doc_number,
        ))
        await self.db.flush()

        return doc_number

    async def preview_next_number(
        self,
        document_type: str,
        now: Optional[datetime] = None
    ) -> str:
        """What the next number would be, without incrementing or locking."""
        doc_type = self._validate_type(document_type)
        now = now or datetime.now()
        financial_year = financial_year_label(now)
        prefix = DOCUMENT_METADATA[doc_type]["prefix"]

        result = await self.db.execute(
            select(DocumentSequence.current_number)
            .where(
                DocumentSequence.document_type == doc_type,
                DocumentSequence.financial_year == financial_year
            )
        )
        current = result.scalar_one_or_none()
        if current is None:
            current = await self._max_existing_number(doc_type, financial_year)

        last_number = f"{prefix}{financial_year}/{current}" if current else None
        return next_document_number(last_number, now, prefix)

    async def sync_sequence_from_documents(
        self,
        document_type: str,
        now: Optional[datetime] = None
    ) -> DocumentSequence:
        """
        Raise the counter to the highest number actually used.

        Use this to repair a counter after documents were imported
        without going through the service.
        """
        doc_type = self._validate_type(document_type)
        financial_year = financial_year_label(now or datetime.now())

        sequence = await self._get_or_create_sequence(doc_type, financial_year)
        max_used = await self._max_existing_number(doc_type, financial_year)
        old_number = sequence.current_number

        if max_used > sequence.current_number:
            sequence.current_number = max_used
            self.db.add(DocumentSequenceAudit(
                document_type=doc_type,
                financial_year=financial_year,
                operation="SYNC",
                old_number=old_number,
                new_number=max_used,
            ))
            logger.warning(
                f"Sequence {doc_type}/{financial_year} was behind documents: "
                f"{old_number} -> {max_used}"
            )

        await self.db.flush()
        return sequence

    async def _max_existing_number(self, document_type: str, financial_year: str) -> int:
        """Highest sequence already used by documents of this type and year."""
        metadata = DOCUMENT_METADATA[document_type]
        column = metadata["column"]
        if column is None:
            return 0

        prefix = metadata["prefix"]
        result = await self.db.execute(
            select(column).where(column.like(f"{prefix}{financial_year}/%"))
        )
        numbers = [parse_document_number(n, prefix) for n in result.scalars().all()]
        return max((n[1] for n in numbers if n), default=0)

    async def _get_or_create_sequence(
        self,
        document_type: str,
        financial_year: str
    ) -> DocumentSequence:
        """
        Get existing sequence with row lock, or create and seed a new one.

        Two transactions creating the same counter collide on
        uq_document_type_fy; the loser rolls back and the caller retries.
        """
        result = await self.db.execute(
            select(DocumentSequence)
            .where(
                DocumentSequence.document_type == document_type,
                DocumentSequence.financial_year == financial_year
            )
            .with_for_update()
        )
        sequence = result.scalar_one_or_none()

        if sequence:
            return sequence

        seed = await self._max_existing_number(document_type, financial_year)
        sequence = DocumentSequence(
            document_type=document_type,
            financial_year=financial_year,
            current_number=seed,
        )
        self.db.add(sequence)
        if seed:
            self.db.add(DocumentSequenceAudit(
                document_type=document_type,
                financial_year=financial_year,
                operation="SEED",
                old_number=0,
                new_number=seed,
            ))
            logger.info(f"Seeded {document_type}/{financial_year} sequence from existing documents at {seed}")
        await self.db.flush()

        # Re-fetch with lock to ensure atomicity
        result = await self.db.execute(
            select(DocumentSequence)
            .where(DocumentSequence.id == sequence.id)
            .with_for_update()
        )
        return result.scalar_one()
