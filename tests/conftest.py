"""Shared fixtures: in-memory datastore, storage and authorizer fakes.

``InMemoryDatabase`` enforces unique conflict keys and a small foreign-key
graph (``FOREIGN_KEYS``) with RESTRICT semantics, and records every
full-table clear so tests can replay the delete sequence.
"""

import copy
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from crm_backup.adapters.base import StoredObject
from crm_backup.auth import Actor
from crm_backup.backup.jobs import BACKUPS_TABLE, RESTORES_TABLE, JobTracker
from crm_backup.backup.registry import conflict_key
from crm_backup.config.models import BackupSettings
from crm_backup.errors import ObjectExistsError, StorageError
from crm_backup.service import BackupService


# (child table, column) -> parent table.  Parents are referenced by "id"
# except where the parent's conflict key says otherwise.
FOREIGN_KEYS: dict[tuple[str, str], str] = {
    ("tasks", "lead_id"): "leads",
    ("task_subtasks", "task_id"): "tasks",
    ("task_activity_log", "task_id"): "tasks",
    ("task_snooze_history", "task_id"): "tasks",
    ("quotations", "customer_id"): "customers",
    ("quotation_items", "quotation_id"): "quotations",
    ("quotation_attachments", "quotation_id"): "quotations",
    ("messages", "conversation_id"): "conversations",
    ("announcement_reads", "announcement_id"): "announcements",
    ("todo_items", "list_id"): "todo_lists",
    ("kit_touches", "subscription_id"): "kit_subscriptions",
    ("automation_executions", "rule_id"): "automation_rules",
    ("control_panel_option_values", "option_id"): "control_panel_options",
    ("user_roles", "user_id"): "profiles",
}

JOB_TABLES = (BACKUPS_TABLE, RESTORES_TABLE)


class IntegrityError(Exception):
    """Constraint violation raised by the in-memory datastore."""


class InMemoryDatabase:
    """``DatabaseClient`` fake backed by dicts of row lists."""

    def __init__(self, tables: dict[str, list[dict]] | None = None) -> None:
        self.tables: dict[str, list[dict]] = copy.deepcopy(tables or {})
        self.deleted: list[str] = []
        self.selects: list[dict[str, Any]] = []
        self.fail_select: dict[str, Exception] = {}
        self.fail_write: dict[str, Exception] = {}
        self._ids = 0
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    # -- helpers ---------------------------------------------------------

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    def _key_cols(self, table: str) -> list[str]:
        if table in JOB_TABLES:
            return ["id"]
        return [c.strip() for c in conflict_key(table).split(",")]

    def _key(self, table: str, row: dict) -> tuple:
        return tuple(row.get(c) for c in self._key_cols(table))

    def _check_parents(self, table: str, row: dict) -> None:
        for (child, column), parent in FOREIGN_KEYS.items():
            if child != table or row.get(column) is None:
                continue
            parent_key = self._key_cols(parent)[0]
            if not any(r.get(parent_key) == row[column] for r in self.rows(parent)):
                raise IntegrityError(
                    f'insert or update on table "{table}" violates foreign key '
                    f'constraint on "{column}"'
                )

    def _check_children(self, table: str, doomed: list[dict]) -> None:
        parent_key = self._key_cols(table)[0]
        keys = {r.get(parent_key) for r in doomed}
        for (child, column), parent in FOREIGN_KEYS.items():
            if parent != table:
                continue
            if any(r.get(column) in keys for r in self.rows(child)):
                raise IntegrityError(
                    f'update or delete on table "{table}" violates foreign key '
                    f'constraint on table "{child}"'
                )

    def _maybe_fail(self, failures: dict[str, Exception], table: str) -> None:
        if table in failures:
            raise failures[table]

    @staticmethod
    def _matches(row: dict, filters: dict[str, Any] | None) -> bool:
        return all(row.get(k) == v for k, v in (filters or {}).items())

    # -- DatabaseClient --------------------------------------------------

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
        self.selects.append(
            {"table": table, "order_by": order_by, "limit": limit, "offset": offset}
        )
        self._maybe_fail(self.fail_select, table)
        rows = [r for r in self.rows(table) if self._matches(r, filters)]
        if order_by:
            rows.sort(key=lambda r: str(r.get(order_by)), reverse=descending)
        start = offset or 0
        end = start + limit if limit is not None else None
        return copy.deepcopy(rows[start:end])

    async def insert(self, table: str, data: dict) -> dict:
        row = copy.deepcopy(data)
        if table in JOB_TABLES:
            self._ids += 1
            self._clock += timedelta(seconds=1)
            row.setdefault("id", f"job-{self._ids}")
            row.setdefault("created_at", self._clock.isoformat())
        await self.insert_many(table, [row])
        return copy.deepcopy(row)

    async def insert_many(self, table: str, rows: list[dict]) -> int:
        self._maybe_fail(self.fail_write, table)
        existing = {self._key(table, r) for r in self.rows(table)}
        for row in rows:
            key = self._key(table, row)
            if key in existing:
                raise IntegrityError(
                    f'duplicate key value violates unique constraint on "{table}"'
                )
            self._check_parents(table, row)
            self.rows(table).append(copy.deepcopy(row))
            existing.add(key)
        return len(rows)

    async def upsert(self, table: str, rows: list[dict], on_conflict: str) -> int:
        self._maybe_fail(self.fail_write, table)
        assert on_conflict == conflict_key(table)
        for row in rows:
            self._check_parents(table, row)
            key = self._key(table, row)
            stored = self.rows(table)
            for i, current in enumerate(stored):
                if self._key(table, current) == key:
                    stored[i] = {**current, **copy.deepcopy(row)}
                    break
            else:
                stored.append(copy.deepcopy(row))
        return len(rows)

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        matched = [r for r in self.rows(table) if self._matches(r, filters)]
        if not matched:
            raise ValueError(f"No rows matched filters: {filters}")
        for row in matched:
            row.update(copy.deepcopy(data))
        return copy.deepcopy(matched[0])

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        doomed = [r for r in self.rows(table) if self._matches(r, filters)]
        self._check_children(table, doomed)
        self.tables[table] = [r for r in self.rows(table) if r not in doomed]

    async def delete_all(self, table: str, column: str) -> None:
        self._maybe_fail(self.fail_write, table)
        doomed = [r for r in self.rows(table) if r.get(column) is not None]
        self._check_children(table, doomed)
        self.tables[table] = [r for r in self.rows(table) if r.get(column) is None]
        self.deleted.append(table)

    async def close(self) -> None:
        pass


class InMemoryStorage:
    """``StorageClient`` fake keyed by ``(bucket, path)``."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], StoredObject] = {}
        self.fail_upload: set[str] = set()
        self.fail_sign = False

    def put(self, bucket: str, path: str, data: bytes, content_type: str = "application/pdf") -> None:
        self.objects[(bucket, path)] = StoredObject(data=data, content_type=content_type)

    def paths(self, bucket: str) -> set[str]:
        return {p for b, p in self.objects if b == bucket}

    async def download(self, bucket: str, path: str) -> StoredObject:
        try:
            return self.objects[(bucket, path)]
        except KeyError:
            raise StorageError(f"{bucket}/{path}: Object not found") from None

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> None:
        if path in self.fail_upload:
            raise StorageError(f"{bucket}/{path}: upload rejected")
        if not upsert and (bucket, path) in self.objects:
            raise ObjectExistsError(f"{bucket}/{path} already exists")
        self.objects[(bucket, path)] = StoredObject(data=data, content_type=content_type)

    async def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str | None:
        if self.fail_sign:
            raise StorageError("signing unavailable")
        return f"https://storage.example.test/sign/{bucket}/{path}?expires={expires_in}"

    async def close(self) -> None:
        pass


class FakeAuthorizer:
    """``Authorizer`` fake: tokens map to ``(actor, is_admin)``."""

    def __init__(self, tokens: dict[str, tuple[Actor, bool]] | None = None) -> None:
        self.tokens = tokens or {}

    async def authenticate(self, token: str) -> Actor | None:
        entry = self.tokens.get(token)
        return entry[0] if entry else None

    async def is_admin(self, token: str) -> bool:
        entry = self.tokens.get(token)
        return bool(entry and entry[1])


ADMIN = Actor(user_id="u-admin", email="admin@example.com")
MEMBER = Actor(user_id="u-member", email="member@example.com")


def seed_tables() -> dict[str, list[dict]]:
    """A small populated CRM dataset touching most modules."""
    return {
        "profiles": [{"id": "p1", "full_name": "Ada"}, {"id": "p2", "full_name": "Grace"}],
        "user_roles": [{"user_id": "p1", "role": "admin"}, {"user_id": "p2", "role": "sales"}],
        "custom_role_permissions": [{"role": "sales", "permissions": {"leads": ["read"]}}],
        "leads": [{"id": "l1", "name": "Acme"}, {"id": "l2", "name": "Globex"}],
        "customers": [{"id": "c1", "name": "Initech"}],
        "activity_log": [{"id": "a1", "entity_type": "lead", "entity_id": "l1"}],
        "tasks": [
            {"id": "t1", "title": "Call Acme", "lead_id": "l1"},
            {"id": "t2", "title": "Email Globex", "lead_id": "l2"},
        ],
        "task_subtasks": [{"id": "s1", "task_id": "t1", "title": "Prepare"}],
        "task_activity_log": [{"id": "ta1", "task_id": "t1", "action": "created"}],
        "quotations": [{"id": "q1", "customer_id": "c1", "total": 120.5}],
        "quotation_items": [{"id": "qi1", "quotation_id": "q1", "qty": 2}],
        "quotation_attachments": [
            {"id": "qa1", "quotation_id": "q1", "file_path": "quotes/q1.pdf"},
        ],
        "entity_attachments": [
            {"id": "e1", "entity_id": "l1", "file_path": "leads/l1/contract.pdf"},
            {"id": "e2", "entity_id": "l2", "file_path": "leads/l2/photo.png"},
        ],
        "conversations": [{"id": "cv1", "title": "General"}],
        "messages": [{"id": "m1", "conversation_id": "cv1", "body": "hi"}],
        "todo_lists": [{"id": "tl1", "name": "Weekly"}],
        "todo_items": [{"id": "ti1", "list_id": "tl1", "done": False}],
        "kit_subscriptions": [{"id": "ks1", "lead_id": "l1"}],
        "kit_touches": [{"id": "kt1", "subscription_id": "ks1"}],
    }


@pytest.fixture
def settings() -> BackupSettings:
    return BackupSettings()


@pytest.fixture
def db() -> InMemoryDatabase:
    return InMemoryDatabase(seed_tables())


@pytest.fixture
def storage(settings: BackupSettings) -> InMemoryStorage:
    storage = InMemoryStorage()
    storage.put(settings.attachments_bucket, "leads/l1/contract.pdf", b"%PDF-contract")
    storage.put(settings.attachments_bucket, "leads/l2/photo.png", b"\x89PNG", "image/png")
    storage.put(settings.attachments_bucket, "quotes/q1.pdf", b"%PDF-quote")
    return storage


@pytest.fixture
def jobs(db: InMemoryDatabase, storage: InMemoryStorage, settings: BackupSettings) -> JobTracker:
    return JobTracker(db, storage, backup_bucket=settings.backup_bucket)


@pytest.fixture
def authorizer() -> FakeAuthorizer:
    return FakeAuthorizer(
        {"admin-token": (ADMIN, True), "member-token": (MEMBER, False)}
    )


@pytest.fixture
def service(
    db: InMemoryDatabase,
    storage: InMemoryStorage,
    authorizer: FakeAuthorizer,
    settings: BackupSettings,
) -> BackupService:
    return BackupService(db, storage, authorizer, settings)
