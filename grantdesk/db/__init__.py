"""
Database module for the billing service.

This module provides:
- Supabase client and operations
- Profile, subscription history and webhook ledger access
"""

from .client import (
    DatabaseClient,
    DatabaseReadError,
    DatabaseWriteError,
    SupabaseDatabaseClient,
    create_database_client,
)

__all__ = [
    "DatabaseClient",
    "DatabaseReadError",
    "DatabaseWriteError",
    "SupabaseDatabaseClient",
    "create_database_client",
]
