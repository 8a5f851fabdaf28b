"""Pydantic models for backup configuration (``backup.toml``)."""

from pydantic import BaseModel, Field


class BackupProfile(BaseModel):
    """Connection profile for one CRM deployment."""

    supabase_url: str
    service_role_key: str = ""
    anon_key: str = ""
    database_url: str | None = None  # Direct PostgreSQL access instead of PostgREST
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    description: str = ""

    @property
    def provider(self) -> str:
        return "postgres" if self.database_url else "supabase"


class BackupSettings(BaseModel):
    """Engine settings from the ``[backup]`` table."""

    attachments_bucket: str = "crm-attachments"
    backup_bucket: str = "crm-backups"
    page_size: int = Field(default=1000, ge=1)
    write_batch_size: int = Field(default=500, ge=1)
    signed_url_ttl: int = Field(default=3600, ge=1)
    list_default_limit: int = Field(default=20, ge=1)
    list_max_limit: int = Field(default=100, ge=1)
    strict_ordering: bool = False
    jsonb_columns: list[str] = Field(
        default_factory=lambda: ["result_summary"]
    )


class BackupConfig(BaseModel):
    """Complete configuration from ``backup.toml``."""

    profiles: dict[str, BackupProfile] = Field(default_factory=dict)
    settings: BackupSettings = Field(default_factory=BackupSettings)
