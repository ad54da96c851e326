"""
Tests for the invoice service.

Covers:
- Invoicing sales orders with automatic dispatch
- Priority tiers on auto-created dispatches
- Order state checks and zero-quantity lines
- Direct invoices leave stock alone
- Cancel and delete rules
- Invoice detail with HSN summary and amount in words
"""

import uuid
from decimal import Decimal

import pytest

from distledger.core.exceptions import NotFoundError, StateConflictError, ValidationError
from distledger.models.billing import InvoiceStatus, PaymentStatus
from distledger.models.order import OrderStatus
from distledger.schemas.billing import InvoiceCreate, InvoiceFromOrderCreate, InvoiceLineInput
from distledger.schemas.order import OrderCreate, OrderLineInput
from distledger.schemas.payment import PaymentCreate
from distledger.services.dispatch_service import DispatchAssembler
from distledger.services.invoice_service import InvoiceService, amount_to_words
from distledger.services.order_service import OrderService
from distledger.services.payment_service import PaymentLedger


@pytest.fixture
def submitted_order(db, make_store):
    async def _make(*lines):
        store = await make_store()
        orders = OrderService(db)
        order = await orders.create_order(OrderCreate(
            store_id=store.id,
            items=[OrderLineInput(product_id=p.id, quantity=q) for p, q in lines],
        ))
        await orders.submit_order(order.id)
        return order
    return _make


class TestAmountInWords:

    def test_whole_rupees(self):
        words = amount_to_words(Decimal("1120"))
        assert words.startswith("Rupees One Thousand")
        assert words.endswith("Only")
        assert "Paise" not in words

    def test_paise(self):
        assert "Fifty Paise" in amount_to_words(Decimal("10.50"))


class TestInvoiceFromOrder:

    async def test_invoice_closes_order_and_dispatches(self, db, make_product, submitted_order):
        product = await make_product(stock_quantity=50)
        order = await submitted_order((product, 10))

        result = await InvoiceService(db).create_invoice_from_order(
            InvoiceFromOrderCreate(order_id=order.id)
        )

        assert result.subtotal == Decimal("1000")
        assert result.cgst == Decimal("60")
        assert result.sgst == Decimal("60")
        assert result.total_amount == Decimal("1120")
        assert order.status == OrderStatus.INVOICED.value
        assert order.invoice_id == result.invoice_id

        detail = await DispatchAssembler(db).get_dispatch(result.dispatch_id)
        assert detail.dispatch.invoice_id == result.invoice_id
        assert detail.dispatch.priority == 1
        assert detail.dispatch.notes == f"Auto-created from order {order.order_number}"
        assert detail.dispatch.delivery_address == "12 MG Road"
        assert product.stock_quantity == 40

    @pytest.mark.parametrize("mrp,quantity,expected_priority", [
        ("5000", 10, 3),   # 56,000 with GST
        ("2000", 10, 2),   # 22,400 with GST
        ("100", 10, 1),
    ])
    async def test_priority_from_invoice_total(
        self, db, make_product, submitted_order, mrp, quantity, expected_priority
    ):
        product = await make_product(mrp=mrp)
        order = await submitted_order((product, quantity))

        result = await InvoiceService(db).create_invoice_from_order(
            InvoiceFromOrderCreate(order_id=order.id)
        )

        detail = await DispatchAssembler(db).get_dispatch(result.dispatch_id)
        assert detail.dispatch.priority == expected_priority

    async def test_explicit_lines_skip_zero_quantities(self, db, make_product, submitted_order):
        peanuts = await make_product()
        cashews = await make_product(name="Cashews 100g")
        order = await submitted_order((peanuts, 5), (cashews, 5))

        result = await InvoiceService(db).create_invoice_from_order(InvoiceFromOrderCreate(
            order_id=order.id,
            items=[
                InvoiceLineInput(product_id=peanuts.id, quantity=5),
                InvoiceLineInput(product_id=cashews.id, quantity=0),
            ],
        ))

        detail = await InvoiceService(db).get_invoice_detail(result.invoice_id)
        assert [item.product_id for item in detail.items] == [peanuts.id]

    async def test_all_zero_lines_rejected(self, db, make_product, submitted_order):
        product = await make_product()
        order = await submitted_order((product, 5))

        with pytest.raises(ValidationError):
            await InvoiceService(db).create_invoice_from_order(InvoiceFromOrderCreate(
                order_id=order.id,
                items=[InvoiceLineInput(product_id=product.id, quantity=0)],
            ))

        assert order.status == OrderStatus.SUBMITTED.value

    async def test_partial_shipment_dispatches_shipped_quantity(self, db, make_product, submitted_order):
        product = await make_product(stock_quantity=20)
        order = await submitted_order((product, 10))

        result = await InvoiceService(db).create_invoice_from_order(InvoiceFromOrderCreate(
            order_id=order.id,
            items=[InvoiceLineInput(product_id=product.id, quantity=10, quantity_shipped=4)],
        ))

        detail = await DispatchAssembler(db).get_dispatch(result.dispatch_id)
        assert [item.quantity for item in detail.items] == [4]
        assert result.subtotal == Decimal("1000")
        assert product.stock_quantity == 16

    async def test_nothing_shipped_means_no_dispatch(self, db, make_product, submitted_order):
        product = await make_product()
        order = await submitted_order((product, 10))

        result = await InvoiceService(db).create_invoice_from_order(InvoiceFromOrderCreate(
            order_id=order.id,
            items=[InvoiceLineInput(product_id=product.id, quantity=10, quantity_shipped=0)],
        ))

        assert result.dispatch_id is None

    async def test_order_invoiced_once(self, db, make_product, submitted_order):
        product = await make_product()
        order = await submitted_order((product, 1))
        service = InvoiceService(db)
        await service.create_invoice_from_order(InvoiceFromOrderCreate(order_id=order.id))

        with pytest.raises(StateConflictError):
            await service.create_invoice_from_order(InvoiceFromOrderCreate(order_id=order.id))

    async def test_draft_order_rejected(self, db, make_store, make_product):
        store = await make_store()
        product = await make_product()
        order = await OrderService(db).create_order(OrderCreate(
            store_id=store.id, items=[OrderLineInput(product_id=product.id, quantity=1)]
        ))

        with pytest.raises(StateConflictError):
            await InvoiceService(db).create_invoice_from_order(InvoiceFromOrderCreate(order_id=order.id))

    async def test_cancelled_order_rejected(self, db, make_product, submitted_order):
        product = await make_product()
        order = await submitted_order((product, 1))
        await OrderService(db).cancel_order(order.id)

        with pytest.raises(StateConflictError):
            await InvoiceService(db).create_invoice_from_order(InvoiceFromOrderCreate(order_id=order.id))

    async def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            await InvoiceService(db).create_invoice_from_order(
                InvoiceFromOrderCreate(order_id=uuid.uuid4())
            )


class TestDirectInvoice:

    async def test_direct_invoice_leaves_stock(self, db, make_store, make_product):
        store = await make_store()
        product = await make_product(stock_quantity=5)

        result = await InvoiceService(db).create_invoice(InvoiceCreate(
            store_id=store.id,
            items=[InvoiceLineInput(product_id=product.id, quantity=3)],
            is_igst=True,
        ))

        assert result.igst == Decimal("36")
        assert result.cgst == 0
        assert result.dispatch_id is None
        assert product.stock_quantity == 5

    async def test_new_invoice_is_unpaid(self, db, make_store, make_product):
        store = await make_store()
        product = await make_product()

        result = await InvoiceService(db).create_invoice(InvoiceCreate(
            store_id=store.id,
            items=[InvoiceLineInput(product_id=product.id, quantity=1)],
        ))

        invoice = await InvoiceService(db).get_invoice(result.invoice_id)
        assert invoice.status == InvoiceStatus.PENDING.value
        assert invoice.payment_status == PaymentStatus.PENDING.value
        assert invoice.total_paid == 0

    async def test_invoice_numbers_follow_financial_year(self, db, make_store, make_product):
        store = await make_store()
        product = await make_product()
        service = InvoiceService(db)
        data = InvoiceCreate(store_id=store.id, items=[InvoiceLineInput(product_id=product.id, quantity=1)])

        first = await service.create_invoice(data)
        second = await service.create_invoice(data)

        label, first_seq = first.invoice_number.split("/")
        assert second.invoice_number == f"{label}/{int(first_seq) + 1}"

    async def test_unknown_store(self, db, make_product):
        product = await make_product()

        with pytest.raises(NotFoundError):
            await InvoiceService(db).create_invoice(InvoiceCreate(
                store_id=uuid.uuid4(),
                items=[InvoiceLineInput(product_id=product.id, quantity=1)],
            ))


class TestCancelAndDelete:

    @pytest.fixture
    async def invoice_id(self, db, make_store, make_product):
        store = await make_store()
        product = await make_product()
        result = await InvoiceService(db).create_invoice(InvoiceCreate(
            store_id=store.id,
            items=[InvoiceLineInput(product_id=product.id, quantity=1)],
        ))
        return result.invoice_id

    async def test_cancel_twice_rejected(self, db, invoice_id):
        service = InvoiceService(db)
        invoice = await service.cancel_invoice(invoice_id)
        assert invoice.status == InvoiceStatus.CANCELLED.value
        assert invoice.cancelled_at is not None

        with pytest.raises(StateConflictError):
            await service.cancel_invoice(invoice_id)

    async def test_cancel_keeps_payments(self, db, invoice_id):
        ledger = PaymentLedger(db)
        await ledger.record(PaymentCreate(invoice_id=invoice_id, amount=Decimal("50")))

        await InvoiceService(db).cancel_invoice(invoice_id)

        summary = await ledger.list_payments(invoice_id)
        assert len(summary.payments) == 1

    async def test_only_cancelled_invoices_deleted(self, db, invoice_id):
        with pytest.raises(StateConflictError):
            await InvoiceService(db).delete_invoice(invoice_id)

    async def test_delete_removes_invoice(self, db, invoice_id):
        service = InvoiceService(db)
        await service.cancel_invoice(invoice_id)

        await service.delete_invoice(invoice_id)

        with pytest.raises(NotFoundError):
            await service.get_invoice(invoice_id)

    async def test_delete_detaches_order_and_dispatch(self, db, make_product, submitted_order):
        product = await make_product()
        order = await submitted_order((product, 2))
        service = InvoiceService(db)
        result = await service.create_invoice_from_order(InvoiceFromOrderCreate(order_id=order.id))
        await service.cancel_invoice(result.invoice_id)

        await service.delete_invoice(result.invoice_id)

        detail = await DispatchAssembler(db).get_dispatch(result.dispatch_id)
        assert detail.dispatch.invoice_id is None
        assert order.invoice_id is None
        assert order.status == OrderStatus.INVOICED.value


class TestInvoiceDetail:

    async def test_hsn_summary_groups_by_code_and_rate(self, db, make_store, make_product):
        store = await make_store()
        peanuts = await make_product(hsn_code="2008", gst_rate="12")
        chikki = await make_product(name="Peanut Chikki", hsn_code="2008", gst_rate="12")
        cornflakes = await make_product(name="Cornflakes", hsn_code="1904", gst_rate="18")
        service = InvoiceService(db)

        result = await service.create_invoice(InvoiceCreate(
            store_id=store.id,
            items=[
                InvoiceLineInput(product_id=peanuts.id, quantity=2),
                InvoiceLineInput(product_id=chikki.id, quantity=3),
                InvoiceLineInput(product_id=cornflakes.id, quantity=1),
            ],
        ))
        detail = await service.get_invoice_detail(result.invoice_id)

        summary = {line.hsn_code: line for line in detail.hsn_summary}
        assert set(summary) == {"2008", "1904"}
        assert summary["2008"].taxable_value == Decimal("500")
        assert summary["2008"].cgst == Decimal("30")
        assert summary["1904"].total_tax == Decimal("18")
        assert detail.balance_due == detail.invoice.total_amount
        assert detail.amount_in_words.startswith("Rupees")
