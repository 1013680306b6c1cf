"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import JSON, Numeric, Uuid

# Use JSON instead of JSONB for cross-database compatibility
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid(as_uuid=True)

MONEY_PLACES = 2
QUANTITY_PLACES = 3
RATE_PLACES = 3

# Money is stored at 2 decimal places after boundary rounding
MoneyType = Numeric(14, MONEY_PLACES)

# Quantities allow fractional units (e.g. 0.5 kg)
QuantityType = Numeric(14, QUANTITY_PLACES)

# Percentages such as 0.5 / 2.5 / 18
RateType = Numeric(7, RATE_PLACES)
