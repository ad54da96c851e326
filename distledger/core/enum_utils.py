"""
Enum Utilities for VARCHAR-based Status Fields

• Database: VARCHAR(50), not a database ENUM
• SQLAlchemy: String(50) with Mapped[str]
• Python: str Enum classes for comparisons and input
• Case: All enum values stored in UPPERCASE
"""

from enum import Enum
from typing import Any, Optional


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(DispatchStatus.PENDING)
        'PENDING'
        >>> get_enum_value("PENDING")
        'PENDING'
        >>> get_enum_value(None)
        None
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def status_in(db_value: Optional[str], *enum_values: Enum) -> bool:
    """Check if a stored status matches any of the given enums."""
    if db_value is None:
        return False
    return db_value in [e.value for e in enum_values]
