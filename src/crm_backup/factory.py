"""Profile resolution and service construction.

Profiles live in ``backup.toml``.  The active profile is chosen by, in
order: an explicit name, the ``{prefix}CRM_BACKUP_PROFILE`` environment
variable, or the only profile when exactly one is configured.

Usage:
    from crm_backup.factory import build_service, get_active_profile

    name, profile, settings = get_active_profile(env_prefix="")
    service = build_service(profile, settings)
"""

import os
from pathlib import Path
from urllib.parse import quote

from crm_backup.adapters.base import DatabaseClient, StorageClient
from crm_backup.adapters.postgres import AsyncPostgresAdapter
from crm_backup.adapters.supabase import AsyncSupabaseAdapter, AsyncSupabaseStorage
from crm_backup.auth import SupabaseAuthorizer
from crm_backup.config.loader import load_backup_config
from crm_backup.config.models import BackupConfig, BackupProfile, BackupSettings
from crm_backup.service import BackupService


class ProfileNotFoundError(Exception):
    """Raised when no backup profile can be selected."""

    pass


def get_active_profile_name(config: BackupConfig, env_prefix: str = "") -> str:
    """Select the active profile name.

    Priority:
    1. ``{env_prefix}CRM_BACKUP_PROFILE`` env var
    2. The only configured profile
    3. Raise ``ProfileNotFoundError``
    """
    env_profile = os.environ.get(f"{env_prefix}CRM_BACKUP_PROFILE")
    if env_profile:
        return env_profile

    if len(config.profiles) == 1:
        return next(iter(config.profiles))

    available = ", ".join(config.profiles) or "(none)"
    raise ProfileNotFoundError(
        "No backup profile selected.\n"
        f"Set {env_prefix}CRM_BACKUP_PROFILE or pass --profile.\n"
        f"Available profiles: {available}"
    )


def get_active_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> tuple[str, BackupProfile, BackupSettings]:
    """Load config and return ``(name, profile, settings)``.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ProfileNotFoundError: If no profile is selected or it is unknown.
    """
    config = load_backup_config(config_path)
    name = profile_name or get_active_profile_name(config, env_prefix)
    if name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{name}' not found in backup.toml.\n"
            f"Available profiles: {', '.join(config.profiles) or '(none)'}"
        )
    return name, with_env_keys(config.profiles[name], env_prefix), config.settings


def with_env_keys(profile: BackupProfile, env_prefix: str = "") -> BackupProfile:
    """Fill empty Supabase keys from the environment."""
    updates: dict[str, str] = {}
    if not profile.service_role_key:
        updates["service_role_key"] = os.environ.get(
            f"{env_prefix}SUPABASE_SERVICE_ROLE_KEY", ""
        )
    if not profile.anon_key:
        updates["anon_key"] = os.environ.get(f"{env_prefix}SUPABASE_ANON_KEY", "")
    return profile.model_copy(update=updates) if updates else profile


def resolve_url(profile: BackupProfile) -> str | None:
    """Resolve the profile's database URL with password substitution."""
    url = profile.database_url
    if url and profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def get_adapter(profile: BackupProfile, settings: BackupSettings) -> DatabaseClient:
    """Datastore adapter: direct PostgreSQL when ``database_url`` is set,
    otherwise Supabase PostgREST with the service-role key."""
    database_url = resolve_url(profile)
    if database_url:
        return AsyncPostgresAdapter(database_url, jsonb_columns=settings.jsonb_columns)
    return AsyncSupabaseAdapter(url=profile.supabase_url, key=profile.service_role_key)


def get_storage(profile: BackupProfile) -> StorageClient:
    return AsyncSupabaseStorage(url=profile.supabase_url, key=profile.service_role_key)


def build_service(profile: BackupProfile, settings: BackupSettings) -> BackupService:
    """Wire adapters, storage and authorizer into a ``BackupService``."""
    return BackupService(
        adapter=get_adapter(profile, settings),
        storage=get_storage(profile),
        authorizer=SupabaseAuthorizer(profile.supabase_url, profile.anon_key),
        settings=settings,
    )
