"""
Tests for the dispatch assembler.

Covers:
- Small-order classification and priority tiers
- FIFO allocation, shortfall reporting and stock decrement
- State machine and timestamps
- Combining small orders, all or nothing
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from distledger.core.exceptions import NotFoundError, StateConflictError, ValidationError
from distledger.models.dispatch import DispatchStatus
from distledger.schemas.billing import InvoiceCreate, InvoiceLineInput
from distledger.schemas.dispatch import DispatchCreate, DispatchLineInput, DispatchStatusUpdate
from distledger.services.batch_ledger_service import BatchLedger
from distledger.services.dispatch_service import (
    DispatchAssembler, can_transition, is_small_order, priority_for_total, validate_priority
)
from distledger.services.invoice_service import InvoiceService


def line(quantity, product_id=None):
    return DispatchLineInput(product_id=product_id or uuid.uuid4(), quantity=quantity)


@pytest.fixture
async def product(make_product):
    return await make_product(stock_quantity=20)


@pytest.fixture
async def invoice(db, make_store, product):
    store = await make_store()
    result = await InvoiceService(db).create_invoice(InvoiceCreate(
        store_id=store.id,
        items=[InvoiceLineInput(product_id=product.id, quantity=1)],
    ))
    return await InvoiceService(db).get_invoice(result.invoice_id)


@pytest.fixture
def dispatch_for(db, invoice, product):
    async def _make(quantity=1, priority=None):
        result = await DispatchAssembler(db).create_dispatch(DispatchCreate(
            invoice_id=invoice.id,
            items=[DispatchLineInput(product_id=product.id, quantity=quantity)],
            priority=priority,
        ))
        return result.dispatch_id
    return _make


class TestSmallOrderRule:

    def test_few_products_is_small(self):
        assert is_small_order([line(40), line(40), line(40)])

    def test_few_units_is_small(self):
        # Four distinct products, five units in total
        assert is_small_order([line(2), line(1), line(1), line(1)])

    def test_many_products_and_units_is_not_small(self):
        assert not is_small_order([line(2), line(2), line(1), line(1)])

    def test_repeated_product_counts_once(self):
        product_id = uuid.uuid4()
        items = [line(10, product_id) for _ in range(4)]
        assert is_small_order(items)


class TestPriority:

    @pytest.mark.parametrize("total,expected", [
        ("50000", 3),
        ("49999.99", 2),
        ("20000", 2),
        ("19999", 1),
        ("0", 1),
    ])
    def test_priority_tiers(self, total, expected):
        assert priority_for_total(Decimal(total)) == expected

    @pytest.mark.parametrize("priority", [0, 11, -1])
    def test_out_of_range_rejected(self, priority):
        with pytest.raises(ValidationError):
            validate_priority(priority)

    def test_bounds_accepted(self):
        assert validate_priority(1) == 1
        assert validate_priority(10) == 10


class TestCreateDispatch:

    async def test_fifo_allocation_recorded(self, db, invoice, product, make_batch):
        b1 = await make_batch(product, 5, production_date=date(2025, 1, 1))
        b2 = await make_batch(product, 10, production_date=date(2025, 1, 3))

        result = await DispatchAssembler(db).create_dispatch(DispatchCreate(
            invoice_id=invoice.id,
            items=[DispatchLineInput(product_id=product.id, quantity=8)],
        ))

        assert [(a.batch_id, a.quantity) for a in result.batch_allocations] == [(b1.id, 5), (b2.id, 3)]
        assert result.shortfalls == []
        detail = await DispatchAssembler(db).get_dispatch(result.dispatch_id)
        assert sum(a.quantity for a in detail.batch_allocations) == 8
        assert detail.dispatch.status == DispatchStatus.PENDING.value

    async def test_batches_stay_conserved(self, db, invoice, product, make_batch):
        await make_batch(product, 5, production_date=date(2025, 1, 1))
        await make_batch(product, 10, production_date=date(2025, 1, 3))
        assembler = DispatchAssembler(db)

        for quantity in (4, 4, 4):
            await assembler.create_dispatch(DispatchCreate(
                invoice_id=invoice.id,
                items=[DispatchLineInput(product_id=product.id, quantity=quantity)],
            ))

        report = await BatchLedger(db).check_conservation(product.id)
        assert all(row.balanced for row in report)
        assert sum(row.quantity_dispatched for row in report) == 12

    async def test_stock_cache_decremented(self, db, invoice, product):
        await DispatchAssembler(db).create_dispatch(DispatchCreate(
            invoice_id=invoice.id,
            items=[DispatchLineInput(product_id=product.id, quantity=7)],
        ))

        assert product.stock_quantity == 13

    async def test_shortfall_reported(self, db, invoice, product, make_batch):
        await make_batch(product, 3)

        result = await DispatchAssembler(db).create_dispatch(DispatchCreate(
            invoice_id=invoice.id,
            items=[DispatchLineInput(product_id=product.id, quantity=10)],
        ))

        assert len(result.shortfalls) == 1
        shortfall = result.shortfalls[0]
        assert shortfall.allocated == 3
        assert shortfall.shortfall == 7

    async def test_shortfall_on_exhausted_product(self, db, invoice, product, make_batch):
        await make_batch(product, 2)
        assembler = DispatchAssembler(db)
        await assembler.create_dispatch(DispatchCreate(
            invoice_id=invoice.id,
            items=[DispatchLineInput(product_id=product.id, quantity=2)],
        ))

        result = await assembler.create_dispatch(DispatchCreate(
            invoice_id=invoice.id,
            items=[DispatchLineInput(product_id=product.id, quantity=1)],
        ))

        assert result.batch_allocations == []
        assert result.shortfalls[0].shortfall == 1

    async def test_product_without_batches_ships_silently(self, db, invoice, product):
        result = await DispatchAssembler(db).create_dispatch(DispatchCreate(
            invoice_id=invoice.id,
            items=[DispatchLineInput(product_id=product.id, quantity=4)],
        ))

        assert result.batch_allocations == []
        assert result.shortfalls == []

    async def test_defaults(self, dispatch_for, db):
        dispatch_id = await dispatch_for(quantity=2)

        detail = await DispatchAssembler(db).get_dispatch(dispatch_id)
        assert detail.dispatch.priority == 1
        assert detail.dispatch.is_small_order is True
        assert detail.dispatch.dispatch_date == date.today()

    async def test_invalid_priority_creates_nothing(self, db, dispatch_for):
        with pytest.raises(ValidationError):
            await dispatch_for(priority=11)

        assert await DispatchAssembler(db).list_dispatches() == []

    async def test_empty_items_rejected(self, db, invoice):
        with pytest.raises(ValidationError):
            await DispatchAssembler(db).create_dispatch(DispatchCreate(invoice_id=invoice.id, items=[]))

    async def test_unknown_invoice(self, db, product):
        with pytest.raises(NotFoundError):
            await DispatchAssembler(db).create_dispatch(DispatchCreate(
                invoice_id=uuid.uuid4(),
                items=[DispatchLineInput(product_id=product.id, quantity=1)],
            ))

    async def test_cancelled_invoice_rejected(self, db, invoice, dispatch_for):
        await InvoiceService(db).cancel_invoice(invoice.id)

        with pytest.raises(StateConflictError):
            await dispatch_for()


class TestStatusTransitions:

    def test_transition_table(self):
        assert can_transition("PENDING", "READY")
        assert can_transition("READY", "IN_TRANSIT")
        assert can_transition("IN_TRANSIT", "DELIVERED")
        assert not can_transition("IN_TRANSIT", "CANCELLED")
        assert not can_transition("DELIVERED", "PENDING")
        assert not can_transition("PENDING", "COMBINED")
        assert not can_transition("COMBINED", "READY")

    async def test_timestamps_follow_status(self, db, dispatch_for):
        assembler = DispatchAssembler(db)
        dispatch_id = await dispatch_for()

        ready = await assembler.update_status(dispatch_id, DispatchStatusUpdate(status="READY"))
        assert ready.dispatched_at is None

        in_transit = await assembler.update_status(dispatch_id, DispatchStatusUpdate(
            status="IN_TRANSIT", vehicle_number="MH12AB1234", driver_name="Ravi"
        ))
        assert in_transit.dispatched_at is not None
        assert in_transit.vehicle_number == "MH12AB1234"

        delivered = await assembler.update_status(dispatch_id, DispatchStatusUpdate(status="DELIVERED"))
        assert delivered.status == DispatchStatus.DELIVERED.value
        assert delivered.delivered_at is not None

    async def test_direct_delivery_stamps_both(self, db, dispatch_for):
        dispatch_id = await dispatch_for()

        dispatch = await DispatchAssembler(db).update_status(
            dispatch_id, DispatchStatusUpdate(status="DELIVERED")
        )

        assert dispatch.dispatched_at is not None
        assert dispatch.delivered_at is not None

    async def test_delivered_is_terminal(self, db, dispatch_for):
        assembler = DispatchAssembler(db)
        dispatch_id = await dispatch_for()
        await assembler.update_status(dispatch_id, DispatchStatusUpdate(status="DELIVERED"))

        with pytest.raises(StateConflictError):
            await assembler.update_status(dispatch_id, DispatchStatusUpdate(status="CANCELLED"))
        with pytest.raises(StateConflictError):
            await assembler.update_priority(dispatch_id, 4)

    async def test_in_transit_cannot_cancel(self, db, dispatch_for):
        assembler = DispatchAssembler(db)
        dispatch_id = await dispatch_for()
        await assembler.update_status(dispatch_id, DispatchStatusUpdate(status="IN_TRANSIT"))

        with pytest.raises(StateConflictError):
            await assembler.update_status(dispatch_id, DispatchStatusUpdate(status="CANCELLED"))

    async def test_combined_not_reachable_by_status_update(self, db, dispatch_for):
        dispatch_id = await dispatch_for()

        with pytest.raises(StateConflictError):
            await DispatchAssembler(db).update_status(
                dispatch_id, DispatchStatusUpdate(status="COMBINED")
            )

    async def test_list_orders_by_priority(self, db, dispatch_for):
        low = await dispatch_for(priority=2)
        high = await dispatch_for(priority=9)

        dispatches = await DispatchAssembler(db).list_dispatches(status="pending")

        assert [d.id for d in dispatches] == [high, low]


class TestCombineSmallOrders:

    async def test_combine_pending_small_orders(self, db, dispatch_for):
        first = await dispatch_for()
        second = await dispatch_for()
        assembler = DispatchAssembler(db)

        result = await assembler.combine_small_orders([first, second])

        assert result.priority == 5
        for dispatch_id in (first, second):
            detail = await assembler.get_dispatch(dispatch_id)
            assert detail.dispatch.status == DispatchStatus.COMBINED.value
            assert detail.dispatch.combined_dispatch_id == result.combined_dispatch_id

    async def test_ineligible_member_changes_nothing(self, db, dispatch_for):
        first = await dispatch_for()
        second = await dispatch_for()
        assembler = DispatchAssembler(db)
        await assembler.update_status(second, DispatchStatusUpdate(status="READY"))

        with pytest.raises(StateConflictError):
            await assembler.combine_small_orders([first, second])

        detail = await assembler.get_dispatch(first)
        assert detail.dispatch.status == DispatchStatus.PENDING.value
        assert detail.dispatch.combined_dispatch_id is None

    async def test_large_order_not_combinable(self, db, invoice, make_product, dispatch_for):
        products = [await make_product(name=f"Mix {i}") for i in range(4)]
        large = await DispatchAssembler(db).create_dispatch(DispatchCreate(
            invoice_id=invoice.id,
            items=[DispatchLineInput(product_id=p.id, quantity=2) for p in products],
        ))
        small = await dispatch_for()

        assert large.is_small_order is False
        with pytest.raises(StateConflictError):
            await DispatchAssembler(db).combine_small_orders([small, large.dispatch_id])

    async def test_needs_two_distinct_dispatches(self, db, dispatch_for):
        dispatch_id = await dispatch_for()

        with pytest.raises(ValidationError):
            await DispatchAssembler(db).combine_small_orders([dispatch_id, dispatch_id])

    async def test_unknown_member(self, db, dispatch_for):
        dispatch_id = await dispatch_for()

        with pytest.raises(NotFoundError):
            await DispatchAssembler(db).combine_small_orders([dispatch_id, uuid.uuid4()])

    async def test_explicit_priority_validated(self, db, dispatch_for):
        first = await dispatch_for()
        second = await dispatch_for()

        with pytest.raises(ValidationError):
            await DispatchAssembler(db).combine_small_orders([first, second], priority=0)
