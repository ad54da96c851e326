"""
Domain exceptions for the ledger services.

Every service raises one of these before its first write, so a caller that
lets the exception escape ``get_db_session()`` gets a clean rollback.
"""
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for all ledger errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ValidationError(LedgerError):
    """Missing or invalid input (empty item list, bad priority, amount <= 0)."""
    pass


class NotFoundError(LedgerError):
    """Referenced product, invoice, order, material or dispatch does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} {entity_id} not found",
            {"entity": entity, "id": str(entity_id)},
        )
        self.entity = entity
        self.entity_id = entity_id


class StateConflictError(LedgerError):
    """Operation not allowed in the record's current status."""
    pass


class InsufficientMaterialError(StateConflictError):
    """Raw material stock cannot cover a planned production order."""

    def __init__(self, shortages: list):
        names = ", ".join(s["name"] for s in shortages)
        super().__init__(
            f"Insufficient raw materials: {names}",
            {"shortages": shortages},
        )
        self.shortages = shortages


class OverpaymentError(LedgerError):
    """Payment exceeds the invoice balance beyond tolerance."""
    pass


class AllocationShortfallWarning(UserWarning):
    """
    Batch pool could not fully cover a dispatch line.

    Never raised. Dispatch results carry one per short line and the
    assembler logs it.
    """

    def __init__(self, product_id: Any, requested: int, allocated: int):
        self.product_id = product_id
        self.requested = requested
        self.allocated = allocated
        self.shortfall = requested - allocated
        super().__init__(
            f"Product {product_id}: allocated {allocated} of {requested} from batches"
        )
