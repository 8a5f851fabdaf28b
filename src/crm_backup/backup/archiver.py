"""Backup archiver: export selected modules to JSON and xlsx artifacts.

Usage:
    from crm_backup.backup.archiver import create_backup

    response = await create_backup(
        adapter, storage, jobs, settings,
        include_modules=["leads", "tasks"],
        include_files=True,
        created_by="admin@example.com",
    )
    print(response.artifacts.structured.url)

A backup runs sequentially:

1. Record a ``running`` job.
2. Resolve the module selection to tables and drain each table.
3. Build the bundle; copy attachments when ``include_files`` is set.
4. Upload ``backup.json`` and ``backup.xlsx`` under ``backups/<job_id>/``.
5. Mark the job ``success`` with per-table counts.

Any failure marks the job ``failed`` with the first error message and
whatever summary was accumulated, then re-raises.  Artifacts uploaded
before the failure are left in place.
"""

import json
import logging
from datetime import datetime, timezone

from crm_backup.adapters.base import DatabaseClient, StorageClient
from crm_backup.backup.attachments import migrate_attachments
from crm_backup.backup.extractor import extract_all
from crm_backup.backup.jobs import JobTracker
from crm_backup.backup.models import (
    ArtifactRef,
    BackupArtifacts,
    BackupResultSummary,
    Bundle,
    BundleFiles,
    BundleMeta,
    CreateBackupResponse,
)
from crm_backup.backup.registry import resolve_tables
from crm_backup.backup.workbook import XLSX_CONTENT_TYPE, render_workbook
from crm_backup.config.models import BackupSettings
from crm_backup.errors import ArchiveError, StorageError

logger = logging.getLogger(__name__)

BUNDLE_VERSION = "1.0.0"


def artifact_paths(job_id: str) -> tuple[str, str]:
    """``(json_path, xlsx_path)`` of a backup job's artifacts."""
    return f"backups/{job_id}/backup.json", f"backups/{job_id}/backup.xlsx"


def serialize_bundle(bundle: Bundle) -> bytes:
    """Encode a bundle as UTF-8 JSON bytes."""
    try:
        return json.dumps(bundle.to_wire(), default=str).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise ArchiveError(f"Failed to serialize bundle: {e}") from e


async def _upload_artifact(
    storage: StorageClient, bucket: str, path: str, data: bytes, content_type: str
) -> None:
    try:
        await storage.upload(bucket, path, data, content_type, upsert=True)
    except StorageError as e:
        raise ArchiveError(f"Failed to upload {path}: {e}") from e


async def create_backup(
    adapter: DatabaseClient,
    storage: StorageClient,
    jobs: JobTracker,
    settings: BackupSettings,
    include_modules: list[str],
    include_files: bool,
    created_by: str | None,
) -> CreateBackupResponse:
    """Run one backup job end to end.

    Args:
        adapter: Datastore to export from.
        storage: Object storage for artifacts and attachment copies.
        jobs: Job tracker recording the run.
        settings: Buckets, page size and URL lifetime.
        include_modules: Module keys to export (already validated).
        include_files: Copy referenced attachment objects into the backup.
        created_by: Actor identity recorded on the job and bundle.

    Returns:
        Job id, artifact paths with signed URLs, and the result summary.

    Raises:
        ExtractionError: A table read failed.
        ArchiveError: Serialization or artifact upload failed.
    """
    job = await jobs.start_backup(created_by, include_modules)
    summary = BackupResultSummary(
        include_modules=include_modules,
        include_files=include_files,
    )

    try:
        tables: dict[str, list[dict]] = {}
        for table in resolve_tables(include_modules):
            rows = await extract_all(adapter, table, page_size=settings.page_size)
            tables[table] = rows
            summary.counts[table] = len(rows)
            logger.info(f"[backup {job.id}] {table}: {len(rows)} rows")

        meta = BundleMeta(
            version=BUNDLE_VERSION,
            created_at=datetime.now(timezone.utc).isoformat(),
            created_by=created_by,
            include_modules=include_modules,
            include_files=include_files,
        )
        summary.generated_at = meta.created_at
        bundle = Bundle(meta=meta, tables=tables)

        if include_files:
            manifest = await migrate_attachments(
                storage,
                job.id,
                tables,
                source_bucket=settings.attachments_bucket,
                backup_bucket=settings.backup_bucket,
            )
            bundle.files = BundleFiles(manifest=manifest)
            summary.files_copied = sum(1 for e in manifest if e.copied)
            summary.files_failed = len(manifest) - summary.files_copied
            summary.warnings.extend(
                f"File not copied: {e.original_path} ({e.error})"
                for e in manifest
                if not e.copied
            )

        json_path, xlsx_path = artifact_paths(job.id)
        await _upload_artifact(
            storage,
            settings.backup_bucket,
            json_path,
            serialize_bundle(bundle),
            "application/json",
        )

        try:
            workbook_bytes = render_workbook(meta, tables)
        except Exception as e:
            raise ArchiveError(f"Failed to render workbook: {e}") from e
        await _upload_artifact(
            storage, settings.backup_bucket, xlsx_path, workbook_bytes, XLSX_CONTENT_TYPE
        )

        json_url = await jobs.sign(json_path)
        xlsx_url = await jobs.sign(xlsx_path)

        await jobs.finish_backup(job.id, json_path, xlsx_path, summary.to_wire())
    except Exception as e:
        summary.error = str(e)
        try:
            await jobs.fail_backup(job.id, summary.to_wire())
        except Exception:
            logger.exception(f"[backup {job.id}] could not record failure")
        raise

    return CreateBackupResponse(
        backup_id=job.id,
        artifacts=BackupArtifacts(
            structured=ArtifactRef(path=json_path, url=json_url),
            tabular=ArtifactRef(path=xlsx_path, url=xlsx_url),
        ),
        result_summary=summary,
    )
