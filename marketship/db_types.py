"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import JSON, Numeric, Uuid

# Use JSON instead of JSONB for cross-database compatibility
# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# UUID type that works with both databases (native on PostgreSQL, CHAR(32) on SQLite)
UUIDType = Uuid

# Money columns: two decimal places, returned as Decimal
MoneyType = Numeric(12, 2)
