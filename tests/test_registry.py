"""Tests for the module registry: table resolution, canonical orders, conflict keys."""

from itertools import combinations

import pytest

from conftest import FOREIGN_KEYS
from crm_backup.backup.registry import (
    ATTACHMENT_PATH_COLUMNS,
    ATTACHMENTS_MODULE,
    DELETE_ORDER,
    INSERT_ORDER,
    MODULES,
    MODULES_BY_KEY,
    all_module_keys,
    all_tables,
    conflict_key,
    order_tables,
    resolve_tables,
    unknown_modules,
)


class TestModules:
    def test_module_keys_are_unique(self):
        keys = all_module_keys()
        assert len(keys) == len(set(keys))
        assert set(keys) == set(MODULES_BY_KEY)

    def test_every_module_owns_tables(self):
        for module in MODULES:
            assert module.tables, module.key
            assert module.label

    def test_attachments_module_owns_attachment_tables(self):
        owned = set(MODULES_BY_KEY[ATTACHMENTS_MODULE].tables)
        assert set(ATTACHMENT_PATH_COLUMNS) <= owned

    def test_module_definitions_are_immutable(self):
        with pytest.raises(Exception):
            MODULES[0].key = "other"


class TestResolveTables:
    def test_single_module(self):
        assert resolve_tables(["tasks"]) == list(MODULES_BY_KEY["tasks"].tables)

    def test_shared_table_listed_once(self):
        tables = resolve_tables(["leads", "customers"])
        assert tables == ["leads", "activity_log", "customers"]

    @pytest.mark.parametrize("pair", list(combinations(all_module_keys(), 2)))
    def test_no_duplicates_and_only_declared_tables(self, pair):
        tables = resolve_tables(pair)
        declared = {t for key in pair for t in MODULES_BY_KEY[key].tables}
        assert len(tables) == len(set(tables))
        assert set(tables) == declared

    def test_all_modules_cover_universe(self):
        tables = resolve_tables(all_module_keys())
        assert len(tables) == len(set(tables))
        assert set(tables) == all_tables()

    def test_unknown_keys_are_ignored(self):
        assert resolve_tables(["nope", "reminders"]) == ["reminders"]

    def test_empty_selection(self):
        assert resolve_tables([]) == []

    def test_unknown_modules(self):
        assert unknown_modules(["leads", "nope", "x"]) == ["nope", "x"]
        assert unknown_modules(all_module_keys()) == []


class TestCanonicalOrders:
    def test_lists_have_no_duplicates(self):
        assert len(DELETE_ORDER) == len(set(DELETE_ORDER))
        assert len(INSERT_ORDER) == len(set(INSERT_ORDER))

    def test_lists_contain_every_registry_table(self):
        assert all_tables() <= set(DELETE_ORDER)
        assert all_tables() <= set(INSERT_ORDER)

    def test_lists_cover_the_same_tables(self):
        assert set(DELETE_ORDER) == set(INSERT_ORDER)

    @pytest.mark.parametrize("edge", sorted(FOREIGN_KEYS.items()))
    def test_children_deleted_before_parents(self, edge):
        (child, _column), parent = edge
        assert DELETE_ORDER.index(child) < DELETE_ORDER.index(parent)

    @pytest.mark.parametrize("edge", sorted(FOREIGN_KEYS.items()))
    def test_parents_inserted_before_children(self, edge):
        (child, _column), parent = edge
        assert INSERT_ORDER.index(parent) < INSERT_ORDER.index(child)


class TestConflictKeys:
    def test_default_is_id(self):
        assert conflict_key("leads") == "id"
        assert conflict_key("kit_touches") == "id"

    def test_natural_keys(self):
        assert conflict_key("user_roles") == "user_id"
        assert conflict_key("custom_role_permissions") == "role"


class TestOrderTables:
    def test_follows_canonical_order(self):
        ordered, unordered = order_tables(["tasks", "leads", "profiles"], INSERT_ORDER)
        assert ordered == ["profiles", "leads", "tasks"]
        assert unordered == []

    def test_unknown_tables_kept_in_incoming_order(self):
        ordered, unordered = order_tables(["zeta", "leads", "alpha"], DELETE_ORDER)
        assert ordered == ["leads"]
        assert unordered == ["zeta", "alpha"]

    def test_duplicates_collapsed(self):
        ordered, _ = order_tables(["leads", "leads"], INSERT_ORDER)
        assert ordered == ["leads"]
