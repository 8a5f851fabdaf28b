"""Job tracker: persisted backup/restore run records.

Jobs are created ``running`` and moved exactly once to ``success`` or
``failed``.  Terminal updates are filtered on ``status = running`` so a
finished record is never rewritten.  Signed URLs are never stored; they
are issued when jobs are listed.

Usage:
    from crm_backup.backup.jobs import JobTracker

    jobs = JobTracker(adapter, storage, backup_bucket="crm-backups")
    job = await jobs.start_backup(created_by="admin@example.com",
                                  include_modules=["leads"])
    await jobs.finish_backup(job.id, json_path, xlsx_path, summary)
"""

import logging
from typing import Any

from crm_backup.adapters.base import DatabaseClient, StorageClient
from crm_backup.backup.models import BackupJob, BackupListItem, RestoreJob
from crm_backup.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

BACKUPS_TABLE = "crm_backups"
RESTORES_TABLE = "crm_restores"
BACKUP_FORMATS = ["json", "xlsx"]


class JobTracker:
    """Reads and writes ``crm_backups`` / ``crm_restores`` rows.

    Args:
        adapter: Datastore adapter holding the tracking tables.
        storage: Storage adapter used to sign artifact URLs.
        backup_bucket: Bucket holding backup artifacts.
        signed_url_ttl: Lifetime of issued download URLs, in seconds.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        storage: StorageClient,
        backup_bucket: str,
        signed_url_ttl: int = 3600,
    ) -> None:
        self._adapter = adapter
        self._storage = storage
        self._backup_bucket = backup_bucket
        self._signed_url_ttl = signed_url_ttl

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    async def start_backup(
        self, created_by: str | None, include_modules: list[str]
    ) -> BackupJob:
        row = await self._adapter.insert(
            BACKUPS_TABLE,
            {
                "status": "running",
                "created_by": created_by,
                "include_modules": include_modules,
                "formats": BACKUP_FORMATS,
            },
        )
        job = BackupJob.model_validate(row)
        logger.info(f"[backup {job.id}] started by {created_by}")
        return job

    async def finish_backup(
        self,
        job_id: str,
        json_path: str,
        xlsx_path: str,
        summary: dict[str, Any],
    ) -> None:
        await self._finish(
            BACKUPS_TABLE,
            job_id,
            {
                "status": "success",
                "json_file_path": json_path,
                "xlsx_file_path": xlsx_path,
                "result_summary": summary,
            },
        )
        logger.info(f"[backup {job_id}] succeeded")

    async def fail_backup(self, job_id: str, summary: dict[str, Any]) -> None:
        await self._finish(
            BACKUPS_TABLE, job_id, {"status": "failed", "result_summary": summary}
        )
        logger.error(f"[backup {job_id}] failed: {summary.get('error')}")

    async def get_backup(self, job_id: str) -> BackupJob:
        """Fetch one backup record.

        Raises:
            ValidationError: If no backup has this id.
        """
        rows = await self._adapter.select(BACKUPS_TABLE, "*", filters={"id": job_id})
        if not rows:
            raise ValidationError(f"Backup not found: {job_id}")
        return BackupJob.model_validate(rows[0])

    async def list_backups(self, limit: int) -> list[BackupListItem]:
        """Most recent backups first, with freshly signed artifact URLs."""
        rows = await self._adapter.select(
            BACKUPS_TABLE,
            "*",
            order_by="created_at",
            descending=True,
            limit=limit,
        )
        items: list[BackupListItem] = []
        for row in rows:
            job = BackupJob.model_validate(row)
            items.append(
                BackupListItem(
                    id=job.id,
                    created_at=job.created_at,
                    created_by=job.created_by,
                    status=job.status,
                    include_modules=job.include_modules,
                    formats=job.formats,
                    result_summary=job.result_summary,
                    structured_url=await self.sign(job.json_file_path),
                    tabular_url=await self.sign(job.xlsx_file_path),
                )
            )
        return items

    async def sign(self, path: str | None) -> str | None:
        """Signed URL for an artifact path.

        ``None`` when there is no path or signing fails; the artifact path
        stays authoritative and a URL can be issued again on the next list.
        """
        if not path:
            return None
        try:
            return await self._storage.create_signed_url(
                self._backup_bucket, path, self._signed_url_ttl
            )
        except StorageError as e:
            logger.warning(f"Could not sign {path}: {e}")
            return None

    # ------------------------------------------------------------------
    # Restores
    # ------------------------------------------------------------------

    async def start_restore(
        self,
        created_by: str | None,
        mode: str,
        include_modules: list[str],
        source_backup_id: str | None,
        source_file_path: str | None,
        restore_files: bool,
    ) -> RestoreJob:
        row = await self._adapter.insert(
            RESTORES_TABLE,
            {
                "status": "running",
                "created_by": created_by,
                "mode": mode,
                "include_modules": include_modules,
                "source_backup_id": source_backup_id,
                "source_file_path": source_file_path,
                "restore_files": restore_files,
            },
        )
        job = RestoreJob.model_validate(row)
        logger.info(f"[restore {job.id}] started by {created_by} (mode={mode})")
        return job

    async def finish_restore(self, job_id: str, summary: dict[str, Any]) -> None:
        await self._finish(
            RESTORES_TABLE, job_id, {"status": "success", "result_summary": summary}
        )
        logger.info(f"[restore {job_id}] succeeded")

    async def fail_restore(self, job_id: str, summary: dict[str, Any]) -> None:
        await self._finish(
            RESTORES_TABLE, job_id, {"status": "failed", "result_summary": summary}
        )
        logger.error(f"[restore {job_id}] failed: {summary.get('error')}")

    async def _finish(self, table: str, job_id: str, data: dict[str, Any]) -> None:
        await self._adapter.update(
            table, data=data, filters={"id": job_id, "status": "running"}
        )
