"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import Numeric, Uuid

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid

# Money columns keep full precision; rounding happens once at invoice level
MoneyType = Numeric(24, 10)

# Raw material quantities (kg, litres) need fractional precision
QuantityType = Numeric(18, 6)
