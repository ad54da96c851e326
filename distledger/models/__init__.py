"""Import all models so they register with Base.metadata."""
from distledger.models.document_sequence import DocumentSequence, DocumentSequenceAudit, DocumentType
from distledger.models.store import Store, StoreProductMargin
from distledger.models.raw_material import RawMaterial
from distledger.models.product import Product, ProductRecipe
from distledger.models.production import (
    ProductionOrder, ProductionMaterial, ProductBatch, ProductionStatus, BatchStatus
)
from distledger.models.order import Order, OrderItem, OrderStatus
from distledger.models.billing import (
    Invoice, InvoiceItem, InvoicePayment, InvoiceStatus, PaymentStatus, PaymentMethod
)
from distledger.models.dispatch import (
    Dispatch, DispatchItem, DispatchBatch, CombinedDispatch, DispatchStatus
)

__all__ = [
    "DocumentSequence", "DocumentSequenceAudit", "DocumentType",
    "Store", "StoreProductMargin",
    "RawMaterial",
    "Product", "ProductRecipe",
    "ProductionOrder", "ProductionMaterial", "ProductBatch", "ProductionStatus", "BatchStatus",
    "Order", "OrderItem", "OrderStatus",
    "Invoice", "InvoiceItem", "InvoicePayment", "InvoiceStatus", "PaymentStatus", "PaymentMethod",
    "Dispatch", "DispatchItem", "DispatchBatch", "CombinedDispatch", "DispatchStatus",
]
