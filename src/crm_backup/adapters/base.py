"""Datastore and object-storage protocol definitions.

Defines the ``DatabaseClient`` and ``StorageClient`` Protocols that all
adapters must implement.  All methods are ``async def`` -- backup and
restore jobs suspend on every datastore or storage round trip.

Usage:
    from crm_backup.adapters.base import DatabaseClient, StorageClient

    async def do_work(db: DatabaseClient, storage: StorageClient) -> None:
        rows = await db.select("leads", "*", limit=1000, offset=0)
        await db.upsert("leads", rows, on_conflict="id")
        obj = await storage.download("crm-attachments", "leads/a.pdf")
        await storage.upload("crm-backups", "files/a.pdf", obj.data, obj.content_type)
"""

from typing import Any, Protocol

from pydantic import BaseModel


class StoredObject(BaseModel):
    """Bytes of a downloaded storage object plus its content type."""

    data: bytes
    content_type: str = "application/octet-stream"


class DatabaseClient(Protocol):
    """Relational datastore interface used by the backup engine.

    The engine only ever needs per-table reads, bulk writes, and
    full-table clears -- no joins and no cross-table transactions.
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
        """Select rows from table.

        Args:
            table: Table name.
            columns: Comma-separated column names (e.g., ``"id, name"``) or ``"*"``.
            filters: Optional dict of field=value filters (all must match via AND).
            order_by: Optional column name to sort by.
            descending: Sort descending when ``order_by`` is given.
            limit: Maximum number of rows to return.
            offset: Number of rows to skip (used with ``limit`` for paging).

        Returns:
            List of dicts, one per row.  Empty list if no matches.

        Example:
            page = await client.select("leads", "*", order_by="id",
                                       limit=1000, offset=2000)
        """
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert one row into table and return the created row.

        Raises:
            Exception: If duplicate key or constraint violation.
        """
        ...

    async def insert_many(self, table: str, rows: list[dict]) -> int:
        """Insert rows into table as plain inserts.

        Returns:
            Number of rows written.

        Raises:
            Exception: If duplicate key or constraint violation.
        """
        ...

    async def upsert(self, table: str, rows: list[dict], on_conflict: str) -> int:
        """Insert rows, updating existing rows that match ``on_conflict``.

        Args:
            table: Table name.
            rows: Row dicts to write.
            on_conflict: Comma-separated conflict-key column list.

        Returns:
            Number of rows written.
        """
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update rows in table and return the first updated row.

        Raises:
            ValueError: If no rows match filters.
        """
        ...

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        """Delete rows matching all filters."""
        ...

    async def delete_all(self, table: str, column: str) -> None:
        """Delete every row of table.

        Expressed as ``column IS NOT NULL`` because the delete operation
        requires a predicate.  Pass a non-nullable column (the primary key).
        """
        ...

    async def close(self) -> None:
        """Close connections and clean up resources."""
        ...


class StorageClient(Protocol):
    """Object-storage interface for artifacts and attachment files."""

    async def download(self, bucket: str, path: str) -> StoredObject:
        """Download an object.

        Raises:
            StorageError: If the object is missing or unreadable.
        """
        ...

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> None:
        """Upload an object.

        Raises:
            ObjectExistsError: If ``upsert`` is False and the object exists.
            StorageError: For any other upload failure.
        """
        ...

    async def create_signed_url(
        self, bucket: str, path: str, expires_in: int
    ) -> str | None:
        """Create a short-lived download URL, or ``None`` if unavailable."""
        ...

    async def close(self) -> None:
        """Release the underlying client."""
        ...
