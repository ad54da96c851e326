"""Verify batch conservation, invoice paid totals and document counters."""
import asyncio
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from distledger.database import get_db_session
from distledger.logging_config import setup_logging
from distledger.models.billing import Invoice
from distledger.services.batch_ledger_service import BatchLedger
from distledger.services.document_sequence_service import DocumentSequenceService, DOCUMENT_METADATA
from distledger.services.payment_service import PaymentLedger


async def verify():
    """Check and repair derived ledger state."""
    print("=" * 70)
    print("LEDGER VERIFICATION")
    print("=" * 70)

    async with get_db_session() as db:
        # 1. Batch conservation
        print("\n=== BATCH CONSERVATION ===")
        report = await BatchLedger(db).check_conservation()
        unbalanced = [r for r in report if not r.balanced]
        print(f"  Batches checked: {len(report)}")
        for r in unbalanced:
            print(
                f"  ✗ {r.batch_number}: produced {r.quantity_produced}, "
                f"remaining {r.quantity_remaining}, dispatched {r.quantity_dispatched}"
            )
        if not unbalanced:
            print("  ✓ All batches balanced")

        # 2. Invoice paid totals
        print("\n=== INVOICE PAYMENTS ===")
        ledger = PaymentLedger(db)
        invoice_ids = (await db.execute(select(Invoice.id))).scalars().all()
        repaired = 0
        for invoice_id in invoice_ids:
            result = await ledger.reconcile_invoice(invoice_id)
            if result.repaired:
                repaired += 1
                print(
                    f"  ✗ {invoice_id}: cached {result.cached_total_paid} -> "
                    f"ledger {result.ledger_total_paid} ({result.payment_status})"
                )
        print(f"  Invoices checked: {len(invoice_ids)}, repaired: {repaired}")

        # 3. Document counters
        print("\n=== DOCUMENT SEQUENCES ===")
        sequences = DocumentSequenceService(db)
        for document_type in DOCUMENT_METADATA:
            sequence = await sequences.sync_sequence_from_documents(document_type)
            print(f"  {document_type:<5} {sequence.financial_year}: {sequence.current_number}")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(verify())
