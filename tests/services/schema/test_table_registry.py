# tests/services/schema/test_table_registry.py

import pytest
from pydantic import ValidationError as PydanticValidationError

from onboarding.services.exceptions import ValidationError
from onboarding.services.schema.naming import (
    schema_name_for, validate_identifier, trigger_name_for
)
from onboarding.services.schema.table_registry import (
    TableRegistry, TableDefinition, ColumnDefinition, ColumnType,
    table_registry, SHOP_INFO_TABLE, PRODUCTS_TABLE, ORDERS_TABLE, SCHEMA_INFO_TABLE,
    UPDATE_UPDATED_AT_FUNCTION,
)

pytestmark = pytest.mark.asyncio

# ==============================================================================
# 1. Registry
# ==============================================================================

class TestTableRegistry:

    async def test_default_registry_contents(self):
        assert table_registry.names() == ["shop_info", "products", "orders"]
        assert table_registry.default_tables == ("shop_info",)
        assert table_registry.get("orders") is ORDERS_TABLE
        assert table_registry.get("missing") is None
        assert table_registry.get_function("update_updated_at_column") is UPDATE_UPDATED_AT_FUNCTION

    async def test_shop_info_can_hold_the_access_token(self):
        columns = {c.name: c for c in SHOP_INFO_TABLE.columns}
        assert columns["shop_code"].unique is True
        assert columns["access_token"].type == ColumnType.TEXT

    async def test_resolve_uses_registry_order_and_reports_unknown(self):
        known, unknown = table_registry.resolve(["orders", "bogus", "shop_info", "orders"])
        assert [t.name for t in known] == ["shop_info", "orders"]
        assert unknown == ["bogus"]

    async def test_resolve_none_means_default_set(self):
        known, unknown = table_registry.resolve(None)
        assert [t.name for t in known] == ["shop_info"]
        assert unknown == []

    async def test_resolve_empty_list_means_nothing(self):
        assert table_registry.resolve([]) == ([], [])

    async def test_register_rejects_duplicates(self):
        registry = TableRegistry(tables=[SHOP_INFO_TABLE])
        with pytest.raises(ValueError):
            registry.register(SHOP_INFO_TABLE)

    async def test_register_appends_in_order(self):
        registry = TableRegistry(tables=[PRODUCTS_TABLE])
        extra = TableDefinition(
            name="customers",
            columns=(ColumnDefinition(name="id", type=ColumnType.BIGSERIAL, primary_key=True),),
        )
        registry.register(extra)
        assert registry.names() == ["products", "customers"]
        assert "customers" in registry

    async def test_definitions_are_immutable(self):
        with pytest.raises(PydanticValidationError):
            SHOP_INFO_TABLE.name = "renamed"
        with pytest.raises(PydanticValidationError):
            SHOP_INFO_TABLE.columns[0].nullable = False

    async def test_every_registered_identifier_is_valid(self):
        for table in [*(table_registry.get(n) for n in table_registry.names()), SCHEMA_INFO_TABLE]:
            validate_identifier(table.name)
            for column in table.columns:
                validate_identifier(column.name)
            for index in table.indexes:
                validate_identifier(index.name)
                assert set(index.columns) <= set(table.column_names)
            for trigger in table.triggers:
                trigger_name_for(trigger.name, table.name)

# ==============================================================================
# 2. Naming
# ==============================================================================

class TestNaming:

    async def test_schema_name_is_prefixed_and_lowercased(self):
        assert schema_name_for("AbC123XYZ") == "shop_abc123xyz"

    async def test_schema_prefix_is_configurable(self):
        assert schema_name_for("ABC", prefix="tenant_") == "tenant_abc"

    @pytest.mark.parametrize("code", ["", "abc-def", "abc def", "abc;drop schema x", "A" * 33, None, "ÄBC", "ABC123\n"])
    async def test_invalid_tenant_codes_are_rejected(self, code):
        with pytest.raises(ValidationError):
            schema_name_for(code)

    @pytest.mark.parametrize("name", ["shop_info", "_private", "a", "a" * 63, "col_2"])
    async def test_valid_identifiers(self, name):
        assert validate_identifier(name) == name

    @pytest.mark.parametrize("name", ["", "1abc", "Upper", "has-dash", "has space", "a" * 64, 'quo"te', "orders\n"])
    async def test_malformed_identifiers(self, name):
        with pytest.raises(ValidationError):
            validate_identifier(name)

    @pytest.mark.parametrize("name", ["select", "table", "user", "order", "current_timestamp"])
    async def test_reserved_words_are_rejected(self, name):
        with pytest.raises(ValidationError):
            validate_identifier(name)

    async def test_trigger_name(self):
        assert trigger_name_for("update_updated_at", "shop_info") == "update_updated_at_shop_info"
