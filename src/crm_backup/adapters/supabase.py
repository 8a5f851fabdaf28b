"""Async Supabase datastore and storage adapters.

Provides ``AsyncSupabaseAdapter`` (``DatabaseClient`` over PostgREST) and
``AsyncSupabaseStorage`` (``StorageClient`` over Supabase Storage), both
using the supabase-py async client with the service-role key.

The client is initialized lazily on first use with an ``asyncio.Lock``
to ensure it is created exactly once.

Usage:
    from crm_backup.adapters.supabase import AsyncSupabaseAdapter, AsyncSupabaseStorage

    db = AsyncSupabaseAdapter(url="https://xyzproject.supabase.co", key="eyJ...")
    storage = AsyncSupabaseStorage(url="https://xyzproject.supabase.co", key="eyJ...")

    rows = await db.select("leads", "*", limit=1000, offset=0)
    obj = await storage.download("crm-attachments", "leads/contract.pdf")
    await db.close()
    await storage.close()
"""

import asyncio
import mimetypes
from typing import Any

from supabase import AsyncClient, acreate_client

from crm_backup.adapters.base import StoredObject
from crm_backup.errors import ObjectExistsError, StorageError


class _LazySupabaseClient:
    """Shared lazy ``AsyncClient`` construction for the Supabase adapters."""

    def __init__(self, url: str, key: str) -> None:
        self._url: str = url
        self._key: str = key
        self._client: AsyncClient | None = None
        self._lock: asyncio.Lock = asyncio.Lock()

    async def _get_client(self) -> AsyncClient:
        """Get or create the async Supabase client.

        Returns:
            Initialized ``AsyncClient``.
        """
        if self._client is None:
            async with self._lock:
                # Double-check after acquiring lock
                if self._client is None:
                    self._client = await acreate_client(self._url, self._key)
        return self._client

    async def close(self) -> None:
        """Close the Supabase async client.

        If the client was never initialized this is a no-op.
        """
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class AsyncSupabaseAdapter(_LazySupabaseClient):
    """Async Supabase implementation of the ``DatabaseClient`` protocol.

    Args:
        url: Supabase project URL.
        key: Supabase service-role key (bypasses row-level security).
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict]:
        """Select rows using the PostgREST query builder.

        ``limit``/``offset`` are translated to an inclusive ``range()``.
        """
        client = await self._get_client()
        query = client.table(table).select(columns)

        if filters:
            for key, value in filters.items():
                query = query.eq(key, value)

        if order_by:
            query = query.order(order_by, desc=descending)

        if limit is not None:
            start = offset or 0
            query = query.range(start, start + limit - 1)

        result = await query.execute()
        return result.data or []

    async def insert(self, table: str, data: dict) -> dict:
        """Insert row and return created row.

        Filters out metadata fields (starting with ``_``) before insertion.
        """
        client = await self._get_client()
        clean_data = {k: v for k, v in data.items() if not k.startswith("_")}
        result = await client.table(table).insert(clean_data).execute()
        return result.data[0]

    async def insert_many(self, table: str, rows: list[dict]) -> int:
        """Insert rows in one PostgREST request."""
        if not rows:
            return 0
        client = await self._get_client()
        await client.table(table).insert(rows).execute()
        return len(rows)

    async def upsert(self, table: str, rows: list[dict], on_conflict: str) -> int:
        """Upsert rows in one PostgREST request keyed on ``on_conflict``."""
        if not rows:
            return 0
        client = await self._get_client()
        await client.table(table).upsert(rows, on_conflict=on_conflict).execute()
        return len(rows)

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update rows and return first updated row.

        Raises:
            ValueError: If no rows match filters.
        """
        client = await self._get_client()
        query = client.table(table).update(data)

        for key, value in filters.items():
            query = query.eq(key, value)

        result = await query.execute()
        if not result.data:
            raise ValueError(f"No rows matched filters: {filters}")
        return result.data[0]

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete rows matching filters."""
        client = await self._get_client()
        query = client.table(table).delete()

        for key, value in filters.items():
            query = query.eq(key, value)

        await query.execute()

    async def delete_all(self, table: str, column: str) -> None:
        """Delete every row of table.

        PostgREST refuses unfiltered deletes, so the clear is expressed as
        ``column IS NOT NULL``.
        """
        client = await self._get_client()
        await client.table(table).delete().not_.is_(column, "null").execute()


class AsyncSupabaseStorage(_LazySupabaseClient):
    """Async Supabase Storage implementation of the ``StorageClient`` protocol.

    Supabase downloads return raw bytes only, so the content type is
    derived from the object path's extension.

    Args:
        url: Supabase project URL.
        key: Supabase service-role key.
    """

    async def download(self, bucket: str, path: str) -> StoredObject:
        """Download an object as bytes."""
        client = await self._get_client()
        try:
            data = await client.storage.from_(bucket).download(path)
        except Exception as e:
            raise StorageError(f"{bucket}/{path}: {e}") from e

        content_type, _ = mimetypes.guess_type(path)
        return StoredObject(
            data=data,
            content_type=content_type or "application/octet-stream",
        )

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> None:
        """Upload bytes, mapping duplicate-object responses to ``ObjectExistsError``."""
        client = await self._get_client()
        try:
            await client.storage.from_(bucket).upload(
                path,
                data,
                file_options={
                    "content-type": content_type,
                    "upsert": "true" if upsert else "false",
                },
            )
        except Exception as e:
            if not upsert and _is_duplicate(e):
                raise ObjectExistsError(f"{bucket}/{path} already exists") from e
            raise StorageError(f"{bucket}/{path}: {e}") from e

    async def create_signed_url(
        self, bucket: str, path: str, expires_in: int
    ) -> str | None:
        """Create a signed download URL valid for ``expires_in`` seconds."""
        client = await self._get_client()
        try:
            signed = await client.storage.from_(bucket).create_signed_url(
                path, expires_in
            )
        except Exception as e:
            raise StorageError(f"{bucket}/{path}: {e}") from e
        # storage3 has returned both spellings across releases
        return signed.get("signedURL") or signed.get("signedUrl")


def _is_duplicate(exc: Exception) -> bool:
    """Whether a storage error reports an already-existing object."""
    status = getattr(exc, "status", None) or getattr(exc, "code", None)
    if str(status) in ("409", "Duplicate"):
        return True
    message = str(exc).lower()
    return "already exists" in message or "duplicate" in message
