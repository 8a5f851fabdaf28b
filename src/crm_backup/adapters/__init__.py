"""Adapters package.

Provides the ``DatabaseClient`` and ``StorageClient`` Protocols and the
concrete async implementations for PostgreSQL and Supabase.

Usage:
    from crm_backup.adapters import DatabaseClient, StorageClient
    from crm_backup.adapters import AsyncPostgresAdapter, AsyncSupabaseAdapter
"""

from crm_backup.adapters.base import DatabaseClient, StorageClient, StoredObject
from crm_backup.adapters.postgres import AsyncPostgresAdapter
from crm_backup.adapters.supabase import AsyncSupabaseAdapter, AsyncSupabaseStorage

__all__ = [
    "DatabaseClient",
    "StorageClient",
    "StoredObject",
    "AsyncPostgresAdapter",
    "AsyncSupabaseAdapter",
    "AsyncSupabaseStorage",
]
