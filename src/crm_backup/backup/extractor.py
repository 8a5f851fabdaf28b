"""Table extractor: drain one table page by page.

Pages are fetched by offset until a page comes back shorter than the
page size.  Each page reflects the table at the moment it is read; there
is no snapshot across pages.

Usage:
    from crm_backup.backup.extractor import extract_all

    rows = await extract_all(adapter, "leads", page_size=1000)
"""

import logging

from crm_backup.adapters.base import DatabaseClient
from crm_backup.backup.registry import conflict_key
from crm_backup.errors import ExtractionError

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000


async def extract_all(
    adapter: DatabaseClient,
    table: str,
    page_size: int = PAGE_SIZE,
) -> list[dict]:
    """Fetch every row of ``table``.

    Pages are ordered by the first column of the table's conflict key
    (``id`` unless the table declares a natural key) so consecutive
    offset reads neither overlap nor skip rows.

    Args:
        adapter: Datastore adapter.
        table: Table name.
        page_size: Rows per page.

    Returns:
        All rows, in extraction order.

    Raises:
        ExtractionError: If any page read fails.  No partial rows are
            returned.
    """
    if page_size < 1:
        raise ValueError(f"page_size must be positive, got {page_size}")

    order_by = conflict_key(table).split(",")[0].strip()

    rows: list[dict] = []
    offset = 0
    while True:
        try:
            page = await adapter.select(
                table,
                "*",
                order_by=order_by,
                limit=page_size,
                offset=offset,
            )
        except Exception as e:
            raise ExtractionError(table, str(e)) from e

        logger.debug(f"{table}: fetched {len(page)} rows at offset {offset}")
        rows.extend(page)
        if len(page) < page_size:
            break
        offset += page_size

    return rows
