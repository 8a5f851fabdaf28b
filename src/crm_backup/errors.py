"""Error taxonomy for backup and restore jobs.

Table-level errors are fatal to the enclosing job.  File-level warnings
are raised inside per-file helpers and always caught by the calling loop,
which records them in the manifest or summary.

Usage:
    from crm_backup.errors import AuthError, ValidationError

    try:
        await service.restore(token, request)
    except AuthError as e:
        print(e.status, e)
"""


class BackupError(Exception):
    """Base class for all backup/restore errors."""

    pass


class AuthError(BackupError):
    """Raised when the caller is unauthenticated (401) or not privileged (403)."""

    def __init__(self, message: str, status: int = 401) -> None:
        super().__init__(message)
        self.status = status


class ValidationError(BackupError):
    """Raised for malformed requests or missing/malformed bundles."""

    pass


class ExtractionError(BackupError):
    """Raised when a datastore read fails while draining a table."""

    def __init__(self, table: str, message: str) -> None:
        super().__init__(f"{table}: {message}")
        self.table = table


class ArchiveError(BackupError):
    """Raised when bundle serialization or artifact upload fails."""

    pass


class RestoreTableError(BackupError):
    """Raised when deleting or writing a wanted table fails during restore."""

    def __init__(self, table: str, message: str) -> None:
        super().__init__(f"{table}: {message}")
        self.table = table


class StorageError(BackupError):
    """Raised by storage adapters when an object operation fails."""

    pass


class ObjectExistsError(StorageError):
    """Raised when a non-overwriting upload targets an existing object."""

    pass


class FileMigrationWarning(BackupError):
    """Per-file failure while copying an attachment into a backup."""

    pass


class RestoreFileWarning(BackupError):
    """Per-file skip while copying an attachment back to primary storage."""

    pass
