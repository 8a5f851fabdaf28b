"""Command line interface for CRM backups.

Usage:
    crm-backup profiles
    crm-backup modules
    crm-backup backup --module leads --module tasks --files
    crm-backup list --limit 10
    crm-backup restore --mode merge --backup-id <id>
    crm-backup restore --mode replace --module leads --module tasks --file backup.json --yes
    crm-backup validate backup.json

Commands:
    profiles  - List profiles from backup.toml
    modules   - List backup modules and their tables
    backup    - Create a backup (JSON + xlsx artifacts)
    list      - List recent backups with fresh download links
    restore   - Restore a backup in merge or replace mode
    validate  - Check a local bundle file

Authenticated commands read the bearer token from ``--token`` or the
``{prefix}CRM_BACKUP_TOKEN`` environment variable.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from crm_backup.backup.models import CreateBackupRequest, ListBackupsRequest, RestoreRequest
from crm_backup.backup.registry import MODULES
from crm_backup.backup.restore import validate_bundle
from crm_backup.config.loader import load_backup_config
from crm_backup.errors import AuthError, BackupError
from crm_backup.factory import ProfileNotFoundError, build_service, get_active_profile
from crm_backup.service import BackupService

console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_AUTH = 2


# ============================================================================
# Helpers
# ============================================================================


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _token(args: argparse.Namespace) -> str | None:
    return args.token or os.environ.get(f"{args.env_prefix}CRM_BACKUP_TOKEN")


def _service(args: argparse.Namespace) -> BackupService:
    config_path = Path(args.config) if args.config else None
    name, profile, settings = get_active_profile(
        profile_name=args.profile,
        env_prefix=args.env_prefix,
        config_path=config_path,
    )
    console.print(f"Profile: [bold cyan]{name}[/bold cyan]", style="dim")
    return build_service(profile, settings)


def _report_failure(e: BackupError) -> int:
    """Print a job failure and map it to an exit code."""
    if isinstance(e, AuthError):
        console.print(f"[bold red]x[/bold red] {e} (HTTP {e.status})")
        return EXIT_AUTH
    console.print(f"[bold red]x[/bold red] {e}")
    return EXIT_FAILED


def _open_service(args: argparse.Namespace) -> BackupService | None:
    try:
        return _service(args)
    except (FileNotFoundError, ProfileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return None


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_backup(args: argparse.Namespace) -> int:
    """Async implementation for backup command.

    Returns:
        0 on success, 1 on failure, 2 if the caller is not an admin.
    """
    service = _open_service(args)
    if service is None:
        return EXIT_FAILED

    try:
        request = CreateBackupRequest(
            include_modules=args.modules or None,
            include_files=args.files,
        )
        console.print("Creating backup...", style="dim")
        response = await service.create_backup(_token(args), request)
    except BackupError as e:
        return _report_failure(e)
    finally:
        await service.close()

    table = Table(title=f"Backup {response.backup_id}", show_header=True, header_style="bold")
    table.add_column("Table")
    table.add_column("Rows", justify="right")
    for name, count in response.result_summary.counts.items():
        table.add_row(name, str(count))
    console.print(table)

    console.print(f"  JSON: {response.artifacts.structured.path}")
    console.print(f"  XLSX: {response.artifacts.tabular.path}")
    if response.artifacts.structured.url:
        console.print(f"  Download: {response.artifacts.structured.url}")
    if response.result_summary.include_files:
        console.print(
            f"  Files copied: {response.result_summary.files_copied}, "
            f"failed: {response.result_summary.files_failed}"
        )
    for warning in response.result_summary.warnings:
        console.print(f"  [yellow]! {warning}[/yellow]")

    console.print("[bold green]v[/bold green] Backup complete")
    return EXIT_OK


async def _async_list(args: argparse.Namespace) -> int:
    service = _open_service(args)
    if service is None:
        return EXIT_FAILED

    try:
        response = await service.list_backups(
            _token(args), ListBackupsRequest(limit=args.limit)
        )
    except BackupError as e:
        return _report_failure(e)
    finally:
        await service.close()

    table = Table(title="Backups", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Created")
    table.add_column("By")
    table.add_column("Status")
    table.add_column("Modules")
    for b in response.backups:
        status_style = {"success": "green", "failed": "red"}.get(b.status, "yellow")
        table.add_row(
            b.id,
            b.created_at or "",
            b.created_by or "",
            f"[{status_style}]{b.status}[/{status_style}]",
            ", ".join(b.include_modules),
        )
    console.print(table)
    return EXIT_OK


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    A local ``--file`` is uploaded to the backup bucket first and restored
    from there.

    Returns:
        0 on success, 1 on failure, 2 if the caller is not an admin.
    """
    service = _open_service(args)
    if service is None:
        return EXIT_FAILED

    token = _token(args)
    try:
        source_file_path = args.source_path
        if args.file:
            source_file_path = await service.upload_bundle(token, args.file)
            console.print(f"Uploaded bundle to [cyan]{source_file_path}[/cyan]")

        request = RestoreRequest(
            mode=args.mode,
            include_modules=args.modules or None,
            source_backup_id=args.backup_id,
            source_file_path=source_file_path,
            restore_files=args.files,
        )
        console.print(f"Restoring ({args.mode})...", style="dim")
        response = await service.restore(token, request)
    except BackupError as e:
        return _report_failure(e)
    finally:
        await service.close()

    summary = response.summary
    table = Table(title=f"Restore {response.restore_id}", show_header=True, header_style="bold")
    table.add_column("Table")
    table.add_column("Rows", justify="right")
    table.add_column("Action")
    for result in summary.tables_processed:
        table.add_row(result.table, str(result.rows), result.action)
    console.print(table)

    if summary.file_restore is not None:
        console.print(
            f"  Files restored: {summary.file_restore.restored}, "
            f"skipped: {summary.file_restore.skipped}"
        )
    for warning in summary.warnings:
        console.print(f"  [yellow]! {warning}[/yellow]")

    console.print("[bold green]v[/bold green] Restore complete")
    return EXIT_OK


# ============================================================================
# Command handlers
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List profiles from backup.toml (local file only)."""
    try:
        config = load_backup_config(Path(args.config) if args.config else None)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return EXIT_FAILED

    table = Table(title="Backup Profiles", show_header=True, header_style="bold")
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Project")
    table.add_column("Description")
    for name, profile in config.profiles.items():
        table.add_row(name, profile.provider, profile.supabase_url, profile.description)
    console.print(table)
    return EXIT_OK


def cmd_modules(args: argparse.Namespace) -> int:
    """List backup modules and the tables each owns."""
    table = Table(title="Backup Modules", show_header=True, header_style="bold")
    table.add_column("Key", style="cyan")
    table.add_column("Label")
    table.add_column("Tables")
    for module in MODULES:
        table.add_row(module.key, module.label, ", ".join(module.tables))
    console.print(table)
    return EXIT_OK


def cmd_backup(args: argparse.Namespace) -> int:
    """Create a backup.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_backup(args))


def cmd_list(args: argparse.Namespace) -> int:
    return asyncio.run(_async_list(args))


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a backup.  Replace mode must be confirmed unless ``--yes``."""
    sources = [s for s in (args.backup_id, args.source_path, args.file) if s]
    if len(sources) != 1:
        console.print("[red]Error: give exactly one of --backup-id, --source-path, --file[/red]")
        return EXIT_FAILED

    if args.mode == "replace" and not args.yes:
        console.print("[bold yellow]Replace restore deletes all rows of the selected modules' tables.[/bold yellow]")
        response = input("Type RESTORE to continue: ")
        if response.strip() != "RESTORE":
            console.print("Cancelled.")
            return EXIT_OK

    return asyncio.run(_async_restore(args))


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a local bundle file."""
    result = validate_bundle(args.bundle_path)

    console.print(f"Validating: {args.bundle_path}")
    for error in result["errors"]:
        console.print(f"  [red]- {error}[/red]")
    for warning in result["warnings"]:
        console.print(f"  [yellow]- {warning}[/yellow]")

    if result["valid"]:
        console.print("[bold green]v[/bold green] Bundle is valid")
        return EXIT_OK
    console.print("[bold red]x[/bold red] Bundle is invalid")
    return EXIT_FAILED


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crm-backup",
        description="Backup and restore CRM data by module",
    )
    parser.add_argument("--profile", help="Profile name from backup.toml")
    parser.add_argument("--config", help="Path to backup.toml (default: ./backup.toml)")
    parser.add_argument(
        "--env-prefix",
        default="",
        help="Prefix for environment variable lookup (e.g., APP_ reads APP_CRM_BACKUP_PROFILE)",
    )
    parser.add_argument("--token", help="Bearer token of an admin user")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    p_modules = subparsers.add_parser("modules", help="List backup modules")
    p_modules.set_defaults(func=cmd_modules)

    p_backup = subparsers.add_parser("backup", help="Create a backup")
    p_backup.add_argument(
        "--module", "-m",
        action="append",
        dest="modules",
        help="Module to include (repeatable; default: all modules)",
    )
    p_backup.add_argument("--files", action="store_true", help="Copy attachment files")
    p_backup.set_defaults(func=cmd_backup)

    p_list = subparsers.add_parser("list", help="List recent backups")
    p_list.add_argument("--limit", type=int, default=None, help="Maximum backups to show")
    p_list.set_defaults(func=cmd_list)

    p_restore = subparsers.add_parser("restore", help="Restore a backup")
    p_restore.add_argument("--mode", choices=["merge", "replace"], default="merge")
    p_restore.add_argument(
        "--module", "-m",
        action="append",
        dest="modules",
        help="Module to restore (repeatable; default: all modules)",
    )
    p_restore.add_argument("--backup-id", help="Restore from an existing backup job")
    p_restore.add_argument("--source-path", help="Bundle path inside the backup bucket")
    p_restore.add_argument("--file", help="Local bundle JSON to upload and restore")
    p_restore.add_argument("--files", action="store_true", help="Restore attachment files")
    p_restore.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")
    p_restore.set_defaults(func=cmd_restore)

    p_validate = subparsers.add_parser("validate", help="Validate a local bundle file")
    p_validate.add_argument("bundle_path", help="Path to bundle JSON")
    p_validate.set_defaults(func=cmd_validate)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 success, 1 failure, 2 authorization failure).
    """
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
