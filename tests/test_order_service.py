"""
Tests for sales orders.

Covers:
- Draft creation with order numbers
- Submit / approve / cancel transitions
- Stock warnings on approval
- Line replacement rules
"""

import uuid

import pytest

from distledger.core.exceptions import NotFoundError, StateConflictError, ValidationError
from distledger.models.order import OrderStatus
from distledger.schemas.billing import InvoiceFromOrderCreate
from distledger.schemas.order import OrderCreate, OrderItemResponse, OrderLineInput
from distledger.services.invoice_service import InvoiceService
from distledger.services.order_service import OrderService


@pytest.fixture
def new_order(db, make_store):
    async def _make(*lines):
        store = await make_store()
        return await OrderService(db).create_order(OrderCreate(
            store_id=store.id,
            items=[OrderLineInput(product_id=p.id, quantity=q) for p, q in lines],
        ))
    return _make


class TestCreateOrder:

    async def test_draft_with_number(self, db, make_product, new_order):
        product = await make_product()

        order = await new_order((product, 4))

        assert order.status == OrderStatus.DRAFT.value
        assert order.order_number.startswith("ORD-")
        items = [OrderItemResponse.model_validate(i) for i in await OrderService(db).get_items(order.id)]
        assert [(i.product_id, i.quantity) for i in items] == [(product.id, 4)]

    async def test_numbers_increase(self, db, make_product, new_order):
        product = await make_product()

        first = await new_order((product, 1))
        second = await new_order((product, 1))

        assert first.order_number != second.order_number
        assert int(second.order_number.rsplit("/", 1)[1]) == int(first.order_number.rsplit("/", 1)[1]) + 1

    async def test_empty_order_rejected(self, db, make_store):
        store = await make_store()

        with pytest.raises(ValidationError):
            await OrderService(db).create_order(OrderCreate(store_id=store.id, items=[]))

    async def test_unknown_product(self, db, make_store):
        store = await make_store()

        with pytest.raises(NotFoundError):
            await OrderService(db).create_order(OrderCreate(
                store_id=store.id,
                items=[OrderLineInput(product_id=uuid.uuid4(), quantity=1)],
            ))

    async def test_unknown_store(self, db, make_product):
        product = await make_product()

        with pytest.raises(NotFoundError):
            await OrderService(db).create_order(OrderCreate(
                store_id=uuid.uuid4(),
                items=[OrderLineInput(product_id=product.id, quantity=1)],
            ))


class TestOrderLifecycle:

    async def test_submit_then_approve(self, db, make_product, new_order):
        product = await make_product(stock_quantity=100)
        order = await new_order((product, 10))
        service = OrderService(db)

        await service.submit_order(order.id)
        result = await service.approve_order(order.id)

        assert result.order.status == OrderStatus.APPROVED.value
        assert result.order.submitted_at is not None
        assert result.order.approved_at is not None
        assert result.stock_warnings == []

    async def test_approve_requires_submission(self, db, make_product, new_order):
        product = await make_product()
        order = await new_order((product, 1))

        with pytest.raises(StateConflictError):
            await OrderService(db).approve_order(order.id)

    async def test_stock_warnings(self, db, make_product, new_order):
        low = await make_product(name="Cashews 100g", stock_quantity=3)
        empty = await make_product(name="Almonds 100g", stock_quantity=0)
        plenty = await make_product(stock_quantity=50)
        order = await new_order((low, 5), (empty, 2), (plenty, 5))
        service = OrderService(db)
        await service.submit_order(order.id)

        result = await service.approve_order(order.id)

        levels = {w.product_id: w.level for w in result.stock_warnings}
        assert levels == {low.id: "LOW_STOCK", empty.id: "OUT_OF_STOCK"}
        assert order.status == OrderStatus.APPROVED.value

    async def test_update_items_while_submitted(self, db, make_product, new_order):
        product = await make_product()
        order = await new_order((product, 1))
        service = OrderService(db)
        await service.submit_order(order.id)

        await service.update_items(order.id, [OrderLineInput(product_id=product.id, quantity=7)])

        items = await service.get_items(order.id)
        assert [i.quantity for i in items] == [7]

    async def test_update_items_after_approval_rejected(self, db, make_product, new_order):
        product = await make_product()
        order = await new_order((product, 1))
        service = OrderService(db)
        await service.submit_order(order.id)
        await service.approve_order(order.id)

        with pytest.raises(StateConflictError):
            await service.update_items(order.id, [OrderLineInput(product_id=product.id, quantity=2)])

    async def test_cancel(self, db, make_product, new_order):
        product = await make_product()
        order = await new_order((product, 1))
        service = OrderService(db)

        await service.cancel_order(order.id)
        assert order.status == OrderStatus.CANCELLED.value

        with pytest.raises(StateConflictError):
            await service.cancel_order(order.id)

    async def test_invoiced_order_cannot_cancel(self, db, make_product, new_order):
        product = await make_product()
        order = await new_order((product, 1))
        service = OrderService(db)
        await service.submit_order(order.id)
        await InvoiceService(db).create_invoice_from_order(InvoiceFromOrderCreate(order_id=order.id))

        with pytest.raises(StateConflictError):
            await service.cancel_order(order.id)

    async def test_list_by_status(self, db, make_product, new_order):
        product = await make_product()
        draft = await new_order((product, 1))
        submitted = await new_order((product, 1))
        service = OrderService(db)
        await service.submit_order(submitted.id)

        orders = await service.list_orders(status="draft")

        assert [o.id for o in orders] == [draft.id]
