"""
Pricing Engine: store margins and GST.

unit_price = base_price × (1 + margin / 100), where base_price is MRP or,
when MRP is zero, cost. Intra-state lines carry CGST and SGST at half the
GST rate each; inter-state lines carry IGST at the full rate. Lines keep
full precision; the invoice total is rounded to the rupee exactly once.
"""
import logging
import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from distledger.core.exceptions import NotFoundError, ValidationError
from distledger.models.product import Product
from distledger.models.store import StoreProductMargin
from distledger.schemas.billing import InvoiceLineInput, InvoiceTotals, PricedLine


logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
TWO_HUNDRED = Decimal("200")
RUPEE = Decimal("1")


def unit_price_for(base_price: Decimal, margin_percentage: Decimal) -> Decimal:
    """Base price marked up by the store margin."""
    return Decimal(base_price) * (1 + Decimal(margin_percentage) / HUNDRED)


def price_line(
    product_id: uuid.UUID,
    base_price: Decimal,
    margin_percentage: Decimal,
    gst_rate: Decimal,
    quantity: int,
    is_igst: bool,
    quantity_shipped: Optional[int] = None,
) -> PricedLine:
    """
    Price a single line at full precision.

    Example: 1000 taxable at 12% intra-state gives CGST 60 and SGST 60.
    """
    gst_rate = Decimal(gst_rate or 0)
    unit_price = unit_price_for(base_price, margin_percentage)
    total = unit_price * quantity

    line = PricedLine(
        product_id=product_id,
        quantity=quantity,
        quantity_shipped=quantity if quantity_shipped is None else quantity_shipped,
        cost_price=Decimal(base_price),
        margin_percentage=Decimal(margin_percentage),
        unit_price=unit_price,
        gst_rate=gst_rate,
        total=total,
    )
    if is_igst:
        line.igst = total * gst_rate / HUNDRED
    else:
        line.cgst = total * gst_rate / TWO_HUNDRED
        line.sgst = total * gst_rate / TWO_HUNDRED
    return line


def round_to_rupee(amount: Decimal) -> Decimal:
    """Round half up to whole rupees."""
    return amount.quantize(RUPEE, rounding=ROUND_HALF_UP)


def compute_invoice_totals(lines: List[PricedLine]) -> InvoiceTotals:
    """
    Aggregate priced lines and apply the single terminal rounding.

    subtotal + cgst + sgst + igst + round_off == total_amount holds exactly.
    """
    subtotal = sum((line.total for line in lines), ZERO)
    cgst = sum((line.cgst for line in lines), ZERO)
    sgst = sum((line.sgst for line in lines), ZERO)
    igst = sum((line.igst for line in lines), ZERO)

    unrounded_total = subtotal + cgst + sgst + igst
    round_off = round_to_rupee(unrounded_total) - unrounded_total

    return InvoiceTotals(
        subtotal=subtotal,
        cgst=cgst,
        sgst=sgst,
        igst=igst,
        round_off=round_off,
        total_amount=unrounded_total + round_off,
    )


class PricingEngine:
    """Prices invoice lines for a store, resolving and remembering margins."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_stored_margin(
        self,
        store_id: uuid.UUID,
        product_id: uuid.UUID
    ) -> Optional[StoreProductMargin]:
        result = await self.db.execute(
            select(StoreProductMargin).where(
                StoreProductMargin.store_id == store_id,
                StoreProductMargin.product_id == product_id,
            )
        )
        return result.scalar_one_or_none()

    async def resolve_margin(
        self,
        store_id: uuid.UUID,
        product_id: uuid.UUID,
        explicit_margin: Optional[Decimal] = None
    ) -> Decimal:
        """
        Margin to bill at.

        Resolution order: explicit value (which is then stored for the
        store and product), stored value, zero.
        """
        stored = await self.get_stored_margin(store_id, product_id)

        if explicit_margin is not None:
            explicit_margin = Decimal(explicit_margin)
            if stored is None:
                self.db.add(StoreProductMargin(
                    store_id=store_id,
                    product_id=product_id,
                    margin_percentage=explicit_margin,
                ))
                await self.db.flush()
            elif Decimal(stored.margin_percentage) != explicit_margin:
                logger.info(
                    f"Margin for store {store_id} product {product_id} "
                    f"changed {stored.margin_percentage} -> {explicit_margin}"
                )
                stored.margin_percentage = explicit_margin
            return explicit_margin

        if stored is not None:
            return Decimal(stored.margin_percentage)
        return ZERO

    async def load_products(self, product_ids: List[uuid.UUID]) -> Dict[uuid.UUID, Product]:
        """Load products by id, failing on the first unknown id."""
        result = await self.db.execute(
            select(Product).where(Product.id.in_(list(set(product_ids))))
        )
        products = {p.id: p for p in result.scalars().all()}
        for product_id in product_ids:
            if product_id not in products:
                raise NotFoundError("Product", product_id)
        return products

    async def price_items(
        self,
        store_id: uuid.UUID,
        items: List[InvoiceLineInput],
        is_igst: bool
    ) -> Tuple[List[PricedLine], InvoiceTotals]:
        """
        Price invoice lines and compute invoice totals.

        All inputs are validated before any margin is written.

        Raises:
            ValidationError: Empty item list or non-positive quantity
            NotFoundError: Unknown product
        """
        if not items:
            raise ValidationError("Invoice must have at least one item")

        for item in items:
            if item.quantity <= 0:
                raise ValidationError(
                    f"Quantity must be positive for product {item.product_id}",
                    {"product_id": str(item.product_id), "quantity": item.quantity},
                )
            if item.quantity_shipped is not None and not 0 <= item.quantity_shipped <= item.quantity:
                raise ValidationError(
                    f"Shipped quantity must be between 0 and {item.quantity} for product {item.product_id}"
                )

        products = await self.load_products([item.product_id for item in items])

        lines = []
        for item in items:
            product = products[item.product_id]
            margin = await self.resolve_margin(store_id, product.id, item.margin_percentage)
            lines.append(price_line(
                product_id=product.id,
                base_price=product.base_price,
                margin_percentage=margin,
                gst_rate=product.gst_rate,
                quantity=item.quantity,
                is_igst=is_igst,
                quantity_shipped=item.quantity_shipped,
            ))

        return lines, compute_invoice_totals(lines)
