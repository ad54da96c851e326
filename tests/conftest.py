"""
Pytest fixtures for the ledger test suite.

Provides:
- A fresh in-memory SQLite database per test
- An AsyncSession bound to it
- Factories for stores, products, raw materials, recipes and batches
"""
from datetime import date
from decimal import Decimal
from itertools import count

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from distledger import models  # noqa: F401
from distledger.database import Base
from distledger.models.product import Product, ProductRecipe
from distledger.models.production import ProductBatch, BatchStatus
from distledger.models.raw_material import RawMaterial
from distledger.models.store import Store


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_store(db):
    async def _make(name="Sharma General Store", **kwargs):
        store = Store(name=name, address="12 MG Road", city="Pune", state="Maharashtra", **kwargs)
        db.add(store)
        await db.flush()
        return store
    return _make


@pytest.fixture
def make_product(db):
    async def _make(name="Roasted Peanuts 200g", mrp="100", cost="60", gst_rate="12",
                    stock_quantity=0, hsn_code="2008", **kwargs):
        product = Product(
            name=name,
            hsn_code=hsn_code,
            mrp=Decimal(mrp),
            cost=Decimal(cost),
            gst_rate=Decimal(gst_rate),
            stock_quantity=stock_quantity,
            **kwargs,
        )
        db.add(product)
        await db.flush()
        return product
    return _make


@pytest.fixture
def make_raw_material(db):
    async def _make(name="Raw Peanuts", stock_quantity="500", reorder_level="0", unit="kg"):
        material = RawMaterial(
            name=name,
            unit=unit,
            stock_quantity=Decimal(stock_quantity),
            reorder_level=Decimal(reorder_level),
        )
        db.add(material)
        await db.flush()
        return material
    return _make


@pytest.fixture
def make_recipe(db):
    async def _make(product, material, quantity_required):
        line = ProductRecipe(
            product_id=product.id,
            raw_material_id=material.id,
            quantity_required=Decimal(quantity_required),
        )
        db.add(line)
        await db.flush()
        return line
    return _make


@pytest.fixture
def make_batch(db):
    sequence = count(1)

    async def _make(product, quantity, production_date=date(2025, 1, 1), batch_number=None):
        batch = ProductBatch(
            product_id=product.id,
            batch_number=batch_number or f"BATCH-{production_date:%Y%m%d}-{next(sequence):03d}",
            production_date=production_date,
            quantity_produced=quantity,
            quantity_remaining=quantity,
            status=BatchStatus.AVAILABLE.value,
        )
        db.add(batch)
        await db.flush()
        return batch
    return _make
