"""Attachment migration between primary storage and job-scoped backup paths.

Backups copy every distinct object referenced by attachment-bearing rows
into ``backups/<job_id>/files/<original_path>`` of the backup bucket and
record a manifest entry per path.  Restores copy manifest entries back to
their original location without overwriting.

Per-file problems never abort a job: they are raised as
``FileMigrationWarning`` / ``RestoreFileWarning`` inside the per-file
helpers and recorded by the loops below.

Usage:
    from crm_backup.backup.attachments import migrate_attachments, restore_attachments

    manifest = await migrate_attachments(storage, job_id, tables,
                                         source_bucket="crm-attachments",
                                         backup_bucket="crm-backups")
    result, warnings = await restore_attachments(storage, manifest,
                                                 backup_bucket="crm-backups")
"""

import logging

from crm_backup.adapters.base import StorageClient
from crm_backup.backup.models import FileRestoreResult, ManifestEntry
from crm_backup.backup.registry import ATTACHMENT_PATH_COLUMNS
from crm_backup.errors import (
    FileMigrationWarning,
    ObjectExistsError,
    RestoreFileWarning,
    StorageError,
)

logger = logging.getLogger(__name__)


def backup_file_path(job_id: str, original_path: str) -> str:
    """Job-scoped path of an attachment copy inside the backup bucket."""
    return f"backups/{job_id}/files/{original_path}"


def collect_attachment_paths(tables: dict[str, list[dict]]) -> list[str]:
    """Distinct object paths referenced by attachment-bearing rows.

    Deduplicated across all attachment tables; order follows first
    appearance.  Rows with an empty path are ignored.
    """
    paths: dict[str, None] = {}
    for table, column in ATTACHMENT_PATH_COLUMNS.items():
        for row in tables.get(table) or []:
            value = row.get(column) if isinstance(row, dict) else None
            if value:
                paths.setdefault(str(value), None)
    return list(paths)


async def _copy_to_backup(
    storage: StorageClient,
    source_bucket: str,
    backup_bucket: str,
    original_path: str,
    backup_path: str,
) -> None:
    try:
        obj = await storage.download(source_bucket, original_path)
    except StorageError as e:
        raise FileMigrationWarning(f"download failed for {original_path}: {e}") from e

    try:
        await storage.upload(
            backup_bucket, backup_path, obj.data, obj.content_type, upsert=True
        )
    except StorageError as e:
        raise FileMigrationWarning(f"upload failed for {original_path}: {e}") from e


async def migrate_attachments(
    storage: StorageClient,
    job_id: str,
    tables: dict[str, list[dict]],
    source_bucket: str,
    backup_bucket: str,
) -> list[ManifestEntry]:
    """Copy referenced attachment objects into the job's backup area.

    Every attempted path yields exactly one manifest entry.  Successful
    copies have ``copied=True``; failures have ``copied=False`` and the
    error text.

    Returns:
        The manifest, one entry per distinct path.
    """
    manifest: list[ManifestEntry] = []
    for original_path in collect_attachment_paths(tables):
        backup_path = backup_file_path(job_id, original_path)
        entry = ManifestEntry(
            original_bucket=source_bucket,
            original_path=original_path,
            backup_path=backup_path,
        )
        try:
            await _copy_to_backup(
                storage, source_bucket, backup_bucket, original_path, backup_path
            )
            entry.copied = True
        except FileMigrationWarning as w:
            logger.warning(f"[backup {job_id}] {w}")
            entry.error = str(w)
        manifest.append(entry)

    copied = sum(1 for e in manifest if e.copied)
    logger.info(f"[backup {job_id}] copied {copied}/{len(manifest)} attachment files")
    return manifest


async def _copy_to_primary(
    storage: StorageClient,
    backup_bucket: str,
    entry: ManifestEntry,
) -> None:
    try:
        obj = await storage.download(backup_bucket, entry.backup_path)
    except StorageError as e:
        raise RestoreFileWarning(
            f"backup copy unreadable for {entry.original_path}: {e}"
        ) from e

    try:
        await storage.upload(
            entry.original_bucket,
            entry.original_path,
            obj.data,
            obj.content_type,
            upsert=False,
        )
    except ObjectExistsError as e:
        raise RestoreFileWarning(f"{entry.original_path} already exists") from e
    except StorageError as e:
        raise RestoreFileWarning(f"upload failed for {entry.original_path}: {e}") from e


async def restore_attachments(
    storage: StorageClient,
    manifest: list[ManifestEntry],
    backup_bucket: str,
) -> tuple[FileRestoreResult, list[str]]:
    """Copy manifest entries back to their original bucket and path.

    Existing objects are never overwritten; they, and unreadable backup
    copies, are counted as skipped.

    Returns:
        ``(FileRestoreResult, warnings)``.
    """
    result = FileRestoreResult()
    warnings: list[str] = []
    for entry in manifest:
        try:
            await _copy_to_primary(storage, backup_bucket, entry)
            result.restored += 1
        except RestoreFileWarning as w:
            logger.warning(f"[restore] skipped file: {w}")
            warnings.append(str(w))
            result.skipped += 1
    return result, warnings
