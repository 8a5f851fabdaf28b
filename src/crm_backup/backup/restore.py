"""Restore orchestrator: replay a bundle into the live datastore.

Usage:
    from crm_backup.backup.restore import restore_backup

    response = await restore_backup(
        adapter, storage, jobs, settings,
        mode="replace",
        include_modules=["leads", "tasks"],
        source_backup_id="b1",
        source_file_path=None,
        restore_files=False,
        created_by="admin@example.com",
    )

Two modes:

- ``merge``: upsert every wanted table on its conflict key.  Rows not in
  the bundle are left alone; replaying the same bundle is idempotent.
- ``replace``: clear every wanted table children-first
  (``DELETE_ORDER``), then plain-insert parents-first (``INSERT_ORDER``).

There is no cross-table transaction.  The first table failure aborts the
job; tables already written stay written.
"""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from crm_backup.adapters.base import DatabaseClient, StorageClient
from crm_backup.backup.attachments import restore_attachments
from crm_backup.backup.jobs import JobTracker
from crm_backup.backup.models import (
    Bundle,
    RestoreMode,
    RestoreResponse,
    RestoreSummary,
    TableRestoreResult,
)
from crm_backup.backup.registry import (
    ATTACHMENTS_MODULE,
    DELETE_ORDER,
    INSERT_ORDER,
    conflict_key,
    order_tables,
    resolve_tables,
)
from crm_backup.config.models import BackupSettings
from crm_backup.errors import RestoreTableError, StorageError, ValidationError

logger = logging.getLogger(__name__)

RESTORE_MODES: tuple[str, ...] = ("merge", "replace")


# ============================================================================
# Bundle parsing
# ============================================================================


def parse_bundle(raw: bytes | str | dict[str, Any]) -> Bundle:
    """Parse and validate a bundle document.

    Raises:
        ValidationError: If the document is not JSON, lacks ``meta.version``,
            or its ``tables`` map is missing or not a map of row lists.
    """
    if isinstance(raw, (bytes, str)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(f"Invalid backup file: not JSON ({e})") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise ValidationError("Invalid backup file: top level must be an object")
    meta = data.get("meta")
    if not isinstance(meta, dict) or not meta.get("version"):
        raise ValidationError("Invalid backup file: missing meta.version")
    if not isinstance(data.get("tables"), dict):
        raise ValidationError("Invalid backup file: missing tables")

    try:
        return Bundle.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid backup file: {e}") from e


def validate_bundle(path: str | Path) -> dict:
    """Validate a local bundle file without touching any service.

    Returns:
        Dict with ``valid`` (bool), ``errors`` (list[str]) and
        ``warnings`` (list[str]).  Warnings cover tables outside the
        canonical order lists and manifest entries that were never copied.

    Example:
        report = validate_bundle("backup.json")
        if not report["valid"]:
            print(report["errors"])
    """
    errors: list[str] = []
    warnings: list[str] = []

    try:
        raw = Path(path).read_bytes()
    except FileNotFoundError:
        errors.append(f"Backup file not found: {path}")
        return {"valid": False, "errors": errors, "warnings": warnings}

    try:
        bundle = parse_bundle(raw)
    except ValidationError as e:
        errors.append(str(e))
        return {"valid": False, "errors": errors, "warnings": warnings}

    insert_set = set(INSERT_ORDER)
    delete_set = set(DELETE_ORDER)
    for table in bundle.tables:
        if table not in insert_set or table not in delete_set:
            warnings.append(f"Table '{table}' has no canonical restore order")

    if bundle.files:
        for entry in bundle.files.manifest:
            if not entry.copied:
                warnings.append(f"File was not copied at backup time: {entry.original_path}")

    return {"valid": True, "errors": errors, "warnings": warnings}


async def load_bundle(
    storage: StorageClient,
    jobs: JobTracker,
    settings: BackupSettings,
    source_backup_id: str | None,
    source_file_path: str | None,
) -> Bundle:
    """Resolve the restore source to a bundle path, download and parse it.

    A ``source_backup_id`` takes precedence over ``source_file_path``.

    Raises:
        ValidationError: No source given, unknown backup id, unreadable
            or malformed bundle.
    """
    json_path: str | None = None
    if source_backup_id:
        backup = await jobs.get_backup(source_backup_id)
        json_path = backup.json_file_path
    elif source_file_path:
        json_path = source_file_path

    if not json_path:
        raise ValidationError("Missing source backup JSON")

    try:
        obj = await storage.download(settings.backup_bucket, json_path)
    except StorageError as e:
        raise ValidationError(f"Could not download backup {json_path}: {e}") from e

    return parse_bundle(obj.data)


# ============================================================================
# Table operations
# ============================================================================


def _batches(rows: list[dict], size: int) -> list[list[dict]]:
    return [rows[i:i + size] for i in range(0, len(rows), size)]


async def _clear_table(adapter: DatabaseClient, table: str) -> None:
    key = conflict_key(table).split(",")[0].strip()
    try:
        await adapter.delete_all(table, key)
    except Exception as e:
        raise RestoreTableError(table, str(e)) from e


async def _write_table(
    adapter: DatabaseClient,
    table: str,
    rows: list[dict],
    mode: RestoreMode,
    batch_size: int,
) -> int:
    written = 0
    try:
        for batch in _batches(rows, batch_size):
            if mode == "merge":
                written += await adapter.upsert(table, batch, on_conflict=conflict_key(table))
            else:
                written += await adapter.insert_many(table, batch)
    except Exception as e:
        raise RestoreTableError(table, str(e)) from e
    return written


def wanted_tables(include_modules: list[str], restore_files: bool) -> list[str]:
    """Tables a restore touches: the selected modules, plus attachment
    tables when files are restored."""
    modules = list(include_modules)
    if restore_files and ATTACHMENTS_MODULE not in modules:
        modules.append(ATTACHMENTS_MODULE)
    return resolve_tables(modules)


async def apply_bundle(
    adapter: DatabaseClient,
    bundle: Bundle,
    tables: list[str],
    mode: RestoreMode,
    summary: RestoreSummary,
    settings: BackupSettings,
) -> None:
    """Delete (replace mode) and write the given tables in canonical order.

    ``summary`` is filled in as tables complete, so a failure leaves the
    partial progress in it.

    Raises:
        ValidationError: ``strict_ordering`` is set and a table has no
            canonical position.  Raised before any table is touched.
        RestoreTableError: A delete or write failed.
    """
    delete_ordered, delete_unordered = order_tables(tables, DELETE_ORDER)
    insert_ordered, insert_unordered = order_tables(tables, INSERT_ORDER)

    unordered = list(dict.fromkeys(delete_unordered + insert_unordered))
    if unordered:
        if settings.strict_ordering:
            raise ValidationError(
                f"Tables without canonical restore order: {', '.join(unordered)}"
            )
        for table in unordered:
            message = f"Table '{table}' has no canonical order; processed after ordered tables"
            logger.warning(message)
            summary.warnings.append(message)

    for table in tables:
        if table not in bundle.tables:
            summary.warnings.append(f"Table '{table}' not present in backup; no rows written")

    if mode == "replace":
        for table in delete_ordered + delete_unordered:
            await _clear_table(adapter, table)
            logger.info(f"Cleared {table}")

    for table in insert_ordered + insert_unordered:
        rows = bundle.tables.get(table) or []
        written = await _write_table(
            adapter, table, rows, mode, settings.write_batch_size
        )
        summary.tables_processed.append(
            TableRestoreResult(table=table, rows=written, action=mode)
        )
        logger.info(f"{mode} {table}: {written} rows")


# ============================================================================
# Entry point
# ============================================================================


async def restore_backup(
    adapter: DatabaseClient,
    storage: StorageClient,
    jobs: JobTracker,
    settings: BackupSettings,
    mode: RestoreMode,
    include_modules: list[str],
    source_backup_id: str | None,
    source_file_path: str | None,
    restore_files: bool,
    created_by: str | None,
) -> RestoreResponse:
    """Run one restore job end to end.

    Args:
        adapter: Datastore to restore into.
        storage: Object storage holding the bundle and attachment copies.
        jobs: Job tracker recording the run.
        settings: Buckets, batch size, ordering policy.
        mode: ``"merge"`` or ``"replace"``.
        include_modules: Module keys to restore (already validated).
        source_backup_id: Id of an existing backup job, or ``None``.
        source_file_path: Bundle path in the backup bucket, or ``None``.
        restore_files: Copy manifest files back to primary storage and
            include the attachment tables.
        created_by: Actor identity recorded on the job.

    Returns:
        Restore job id and its summary.

    Raises:
        ValidationError: Unknown mode, missing or malformed bundle.
        RestoreTableError: A table delete or write failed.
    """
    if mode not in RESTORE_MODES:
        raise ValidationError(f"Unknown restore mode: {mode}")

    job = await jobs.start_restore(
        created_by,
        mode,
        include_modules,
        source_backup_id,
        source_file_path,
        restore_files,
    )
    summary = RestoreSummary(mode=mode, include_modules=include_modules)

    try:
        bundle = await load_bundle(
            storage, jobs, settings, source_backup_id, source_file_path
        )
        tables = wanted_tables(include_modules, restore_files)
        await apply_bundle(adapter, bundle, tables, mode, summary, settings)

        if restore_files:
            manifest = bundle.files.manifest if bundle.files else []
            file_result, file_warnings = await restore_attachments(
                storage, manifest, backup_bucket=settings.backup_bucket
            )
            summary.file_restore = file_result
            summary.warnings.extend(file_warnings)

        await jobs.finish_restore(job.id, summary.to_wire())
    except Exception as e:
        summary.error = str(e)
        try:
            await jobs.fail_restore(job.id, summary.to_wire())
        except Exception:
            logger.exception(f"[restore {job.id}] could not record failure")
        raise

    return RestoreResponse(restore_id=job.id, summary=summary)
