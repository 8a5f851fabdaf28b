"""Module registry: logical backup modules and the tables they own.

Everything here is literal configuration.  Adding a table or module is a
pure data change: add it to ``MODULES``, to both canonical order lists,
and (when it has no ``id`` primary key) to ``CONFLICT_KEYS``.

Usage:
    from crm_backup.backup.registry import resolve_tables, conflict_key

    tables = resolve_tables(["tasks", "quotations"])
    key = conflict_key("user_roles")   # "user_id"
"""

from collections.abc import Iterable

from crm_backup.backup.models import ModuleDefinition


MODULES: tuple[ModuleDefinition, ...] = (
    ModuleDefinition(
        key="leads",
        label="Leads",
        description="Leads + related activity",
        tables=("leads", "activity_log"),
    ),
    ModuleDefinition(
        key="customers",
        label="Customers",
        description="Customers + related activity",
        tables=("customers", "activity_log"),
    ),
    ModuleDefinition(
        key="professionals",
        label="Professionals",
        description="Professionals records",
        tables=("professionals",),
    ),
    ModuleDefinition(
        key="tasks",
        label="Tasks",
        description="Tasks + subtasks + task logs",
        tables=(
            "tasks",
            "task_subtasks",
            "task_activity_log",
            "task_snooze_history",
            "task_completion_templates",
        ),
    ),
    ModuleDefinition(
        key="reminders",
        label="Reminders",
        description="Reminders",
        tables=("reminders",),
    ),
    ModuleDefinition(
        key="quotations",
        label="Quotations",
        description="Quotations + items + attachments",
        tables=("quotations", "quotation_items", "quotation_attachments"),
    ),
    ModuleDefinition(
        key="automation",
        label="Automation",
        description="Automation rules + templates + execution logs",
        tables=(
            "automation_rules",
            "automation_templates",
            "automation_settings",
            "automation_executions",
            "automation_rule_executions_tracking",
        ),
    ),
    ModuleDefinition(
        key="communication",
        label="Communication",
        description="Messages, conversations, announcements",
        tables=("conversations", "messages", "announcements", "announcement_reads"),
    ),
    ModuleDefinition(
        key="users_access",
        label="Users & Access",
        description="Profiles, roles, permissions",
        tables=("profiles", "user_roles", "custom_role_permissions"),
    ),
    ModuleDefinition(
        key="company_system",
        label="Company & System",
        description="Company settings, control panel, filters",
        tables=(
            "company_settings",
            "control_panel_options",
            "control_panel_option_values",
            "saved_filters",
            "saved_filter_monitoring",
            "user_settings",
            "user_status",
            "user_table_preferences",
        ),
    ),
    ModuleDefinition(
        key="todo",
        label="Todo Lists",
        description="Todo lists and items",
        tables=("todo_lists", "todo_items"),
    ),
    ModuleDefinition(
        key="attachments_files",
        label="Attachments/Files",
        description="Attachment metadata + stored objects",
        tables=("entity_attachments", "quotation_attachments", "messages"),
    ),
    ModuleDefinition(
        key="kit",
        label="Keep in Touch",
        description="KIT subscriptions, touches, presets",
        tables=(
            "kit_subscriptions",
            "kit_touches",
            "kit_presets",
            "kit_outcomes",
            "kit_touch_methods",
        ),
    ),
)

MODULES_BY_KEY: dict[str, ModuleDefinition] = {m.key: m for m in MODULES}

# Module whose tables are always restored alongside attachment files.
ATTACHMENTS_MODULE = "attachments_files"

# Tables whose rows reference objects in the attachments bucket, and the
# column holding the object path.
ATTACHMENT_PATH_COLUMNS: dict[str, str] = {
    "entity_attachments": "file_path",
    "quotation_attachments": "file_path",
}

# Replace restores delete children before parents.
DELETE_ORDER: tuple[str, ...] = (
    "announcement_reads",
    "messages",
    "conversations",
    "notifications",
    "automation_rule_executions_tracking",
    "automation_executions",
    "automation_rules",
    "automation_templates",
    "automation_settings",
    "quotation_items",
    "quotation_attachments",
    "quotations",
    "task_subtasks",
    "task_activity_log",
    "task_snooze_history",
    "task_completion_templates",
    "tasks",
    "reminders",
    "todo_items",
    "todo_lists",
    "entity_attachments",
    "professionals",
    "customers",
    "leads",
    "saved_filter_monitoring",
    "saved_filters",
    "control_panel_option_values",
    "control_panel_options",
    "company_settings",
    "custom_role_permissions",
    "user_roles",
    "profiles",
    "user_settings",
    "user_status",
    "user_table_preferences",
    "announcements",
    "activity_log",
    "kit_touches",
    "kit_subscriptions",
    "kit_presets",
    "kit_outcomes",
    "kit_touch_methods",
)

# All restores write parents before children.
INSERT_ORDER: tuple[str, ...] = (
    "profiles",
    "user_roles",
    "custom_role_permissions",
    "company_settings",
    "control_panel_options",
    "control_panel_option_values",
    "saved_filters",
    "saved_filter_monitoring",
    "leads",
    "customers",
    "professionals",
    "tasks",
    "task_subtasks",
    "task_snooze_history",
    "task_activity_log",
    "task_completion_templates",
    "reminders",
    "todo_lists",
    "todo_items",
    "quotations",
    "quotation_items",
    "quotation_attachments",
    "automation_settings",
    "automation_templates",
    "automation_rules",
    "automation_executions",
    "automation_rule_executions_tracking",
    "announcements",
    "announcement_reads",
    "conversations",
    "messages",
    "activity_log",
    "entity_attachments",
    "user_settings",
    "user_status",
    "user_table_preferences",
    "kit_touch_methods",
    "kit_outcomes",
    "kit_presets",
    "kit_subscriptions",
    "kit_touches",
    "notifications",
)

# Upsert targets.  Tables not listed use the "id" primary key.
CONFLICT_KEYS: dict[str, str] = {
    "user_roles": "user_id",
    "custom_role_permissions": "role",
}

DEFAULT_CONFLICT_KEY = "id"


def all_module_keys() -> list[str]:
    """Keys of every registered module, in display order."""
    return [m.key for m in MODULES]


def all_tables() -> set[str]:
    """Universe of tables the backup engine may ever touch."""
    return {t for m in MODULES for t in m.tables}


def unknown_modules(module_keys: Iterable[str]) -> list[str]:
    """Return the keys that are not registered modules."""
    return [k for k in module_keys if k not in MODULES_BY_KEY]


def resolve_tables(module_keys: Iterable[str]) -> list[str]:
    """Deduplicated union of the tables owned by the given modules.

    Unknown module keys are ignored.  Order follows first appearance.

    Example:
        >>> resolve_tables(["leads", "customers"])
        ['leads', 'activity_log', 'customers']
    """
    seen: dict[str, None] = {}
    for key in module_keys:
        module = MODULES_BY_KEY.get(key)
        if module is None:
            continue
        for table in module.tables:
            seen.setdefault(table, None)
    return list(seen)


def conflict_key(table: str) -> str:
    """Column(s) identifying "the same row" for upserts into ``table``."""
    return CONFLICT_KEYS.get(table, DEFAULT_CONFLICT_KEY)


def order_tables(tables: Iterable[str], order: tuple[str, ...]) -> tuple[list[str], list[str]]:
    """Split ``tables`` into (canonically ordered, unordered) lists.

    Unordered tables keep their incoming order.
    """
    wanted = list(dict.fromkeys(tables))
    wanted_set = set(wanted)
    ordered = [t for t in order if t in wanted_set]
    ordered_set = set(ordered)
    unordered = [t for t in wanted if t not in ordered_set]
    return ordered, unordered
