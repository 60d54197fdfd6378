# onboarding/services/schema/ddl_builder.py

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional
from sqlalchemy import (
    Table, Column, MetaData, Integer, String, Text, TIMESTAMP,
    text, select, insert, literal
)
from sqlalchemy import types as sa_types
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql.asyncpg import PGDialect_asyncpg
from sqlalchemy.engine import Dialect
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.types import TypeEngine

from onboarding.schemas.tenant_schema_schemas import SchemaVersionRecord
from onboarding.services.exceptions import ProvisioningError
from onboarding.services.schema.naming import validate_identifier, trigger_name_for
from onboarding.services.schema.table_registry import (
    ColumnDefinition, ColumnType, FunctionDefinition, IndexDefinition,
    TableDefinition, TriggerDefinition, SCHEMA_INFO_TABLE_NAME
)

logger = logging.getLogger(__name__)

# duplicate_schema, duplicate_table, duplicate_object, duplicate_function
DUPLICATE_OBJECT_SQLSTATES = {"42P06", "42P07", "42710", "42723"}
# unique_violation on the system catalogs when two sessions create the same object
CATALOG_RACE_SQLSTATE = "23505"

DEFAULT_KEYWORDS = {"CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME", "LOCALTIMESTAMP", "NOW()"}

@dataclass(frozen=True)
class DDLStatement:
    kind: str
    schema: str
    sql: str
    name: Optional[str] = None
    table: Optional[str] = None

    def __str__(self) -> str:
        return self.sql

class DDLBuilder:
    """
    Renders registry definitions into PostgreSQL DDL and executes it on a
    caller-supplied connection. Rendering is pure; every identifier is
    validated and quoted by the dialect before it is embedded.
    """

    def __init__(self, dialect: Optional[Dialect] = None):
        # rendered SQL is sent verbatim through asyncpg, so compile with its dialect
        self.dialect = dialect or PGDialect_asyncpg()
        self._preparer = self.dialect.identifier_preparer

    # ==============================================================================
    # 1. Rendering
    # ==============================================================================

    def quote(self, name: str) -> str:
        return self._preparer.quote_identifier(name)

    def qualified(self, schema: str, name: str) -> str:
        return f"{self.quote(schema)}.{self.quote(name)}"

    def _map_type(self, column_type: ColumnType, length: Optional[int] = None) -> TypeEngine:
        """Maps a registry column type to a SQLAlchemy type for compilation."""
        mapping = {
            ColumnType.INTEGER: sa_types.INTEGER(),
            ColumnType.BIGINT: sa_types.BIGINT(),
            ColumnType.VARCHAR: sa_types.VARCHAR(length),
            ColumnType.CHAR: sa_types.CHAR(length),
            ColumnType.TEXT: sa_types.TEXT(),
            ColumnType.BOOLEAN: sa_types.BOOLEAN(),
            ColumnType.TIMESTAMP: postgresql.TIMESTAMP(timezone=False),
            ColumnType.TIMESTAMPTZ: postgresql.TIMESTAMP(timezone=True),
            ColumnType.DATE: sa_types.DATE(),
            ColumnType.JSONB: postgresql.JSONB(),
            ColumnType.DECIMAL: sa_types.DECIMAL(),
            ColumnType.UUID: postgresql.UUID(),
        }
        return mapping[column_type]

    def render_type(self, column: ColumnDefinition) -> str:
        # SERIAL/BIGSERIAL are pseudo-types with no SQLAlchemy counterpart
        if column.type in (ColumnType.SERIAL, ColumnType.BIGSERIAL):
            return column.type.value
        length = column.length if column.type in (ColumnType.VARCHAR, ColumnType.CHAR) else None
        return self._map_type(column.type, length).compile(dialect=self.dialect)

    def sa_table(self, table: TableDefinition, schema: Optional[str] = None) -> Table:
        """Builds a SQLAlchemy Table from a registry definition for DML against tenant tables."""
        columns = []
        for c in table.columns:
            if c.type == ColumnType.SERIAL:
                col_type = sa_types.INTEGER()
            elif c.type == ColumnType.BIGSERIAL:
                col_type = sa_types.BIGINT()
            else:
                col_type = self._map_type(c.type, c.length)
            columns.append(Column(c.name, col_type, primary_key=c.primary_key, nullable=c.nullable or c.primary_key))
        return Table(table.name, MetaData(), *columns, schema=schema)

    def render_default(self, value: Any) -> str:
        if isinstance(value, str) and value.strip().upper() in DEFAULT_KEYWORDS:
            return value.strip().upper()
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        if isinstance(value, (dict, list)):
            value = json.dumps(value, sort_keys=True)
        return str(literal(str(value), String()).compile(
            dialect=self.dialect, compile_kwargs={"literal_binds": True}
        ))

    def render_column(self, column: ColumnDefinition) -> str:
        validate_identifier(column.name, kind="column name")
        parts = [self.quote(column.name), self.render_type(column)]
        if column.primary_key:
            parts.append("PRIMARY KEY")
        elif column.unique:
            parts.append("UNIQUE")
        if not column.nullable and not column.primary_key:
            parts.append("NOT NULL")
        if column.default is not None:
            parts.append(f"DEFAULT {self.render_default(column.default)}")
        return " ".join(parts)

    def render_create_schema(self, schema: str) -> DDLStatement:
        validate_identifier(schema, kind="schema name")
        return DDLStatement(
            kind="create_schema", schema=schema, name=schema,
            sql=f"CREATE SCHEMA IF NOT EXISTS {self.quote(schema)}",
        )

    def render_drop_schema(self, schema: str, cascade: bool = False) -> DDLStatement:
        validate_identifier(schema, kind="schema name")
        suffix = " CASCADE" if cascade else ""
        return DDLStatement(
            kind="drop_schema", schema=schema, name=schema,
            sql=f"DROP SCHEMA IF EXISTS {self.quote(schema)}{suffix}",
        )

    def render_create_table(self, schema: str, table: TableDefinition) -> DDLStatement:
        validate_identifier(schema, kind="schema name")
        validate_identifier(table.name, kind="table name")
        clauses = [self.render_column(c) for c in table.columns]
        clauses.extend(table.constraints)
        body = ",\n    ".join(clauses)
        return DDLStatement(
            kind="create_table", schema=schema, name=table.name, table=table.name,
            sql=f"CREATE TABLE IF NOT EXISTS {self.qualified(schema, table.name)} (\n    {body}\n)",
        )

    def render_drop_table(self, schema: str, table_name: str) -> DDLStatement:
        validate_identifier(schema, kind="schema name")
        validate_identifier(table_name, kind="table name")
        return DDLStatement(
            kind="drop_table", schema=schema, name=table_name, table=table_name,
            sql=f"DROP TABLE IF EXISTS {self.qualified(schema, table_name)} CASCADE",
        )

    def render_create_index(self, schema: str, table_name: str, index: IndexDefinition) -> DDLStatement:
        validate_identifier(index.name, kind="index name")
        columns = ", ".join(self.quote(validate_identifier(c, kind="column name")) for c in index.columns)
        unique = "UNIQUE " if index.unique else ""
        using = f" USING {index.method}" if index.method else ""
        # index names are schema-local; the index always lives in its table's schema
        return DDLStatement(
            kind="create_index", schema=schema, name=index.name, table=table_name,
            sql=(
                f"CREATE {unique}INDEX IF NOT EXISTS {self.quote(index.name)} "
                f"ON {self.qualified(schema, table_name)}{using} ({columns})"
            ),
        )

    def render_create_function(self, schema: str, function: FunctionDefinition) -> DDLStatement:
        validate_identifier(function.name, kind="function name")
        return DDLStatement(
            kind="create_function", schema=schema, name=function.name,
            sql=(
                f"CREATE OR REPLACE FUNCTION {self.qualified(schema, function.name)}() "
                f"RETURNS {function.returns} AS $fn$\n{function.body}\n$fn$ LANGUAGE {function.language}"
            ),
        )

    def render_create_trigger(
        self,
        schema: str,
        table_name: str,
        trigger: TriggerDefinition,
        function_schema: Optional[str] = None
    ) -> DDLStatement:
        name = trigger_name_for(trigger.name, table_name)
        function_name = validate_identifier(trigger.function.removesuffix("()"), kind="function name")
        function_ref = self.qualified(function_schema, function_name) if function_schema else self.quote(function_name)
        when = f" WHEN ({trigger.condition})" if trigger.condition else ""
        return DDLStatement(
            kind="create_trigger", schema=schema, name=name, table=table_name,
            sql=(
                f"CREATE TRIGGER {self.quote(name)} {trigger.timing} {trigger.event} "
                f"ON {self.qualified(schema, table_name)} FOR EACH ROW{when} "
                f"EXECUTE FUNCTION {function_ref}()"
            ),
        )

    # ==============================================================================
    # 2. Catalog predicates
    # ==============================================================================

    async def schema_exists(self, conn: AsyncConnection, schema: str) -> bool:
        result = await conn.execute(
            text("SELECT 1 FROM information_schema.schemata WHERE schema_name = :schema"),
            {"schema": schema}
        )
        return result.first() is not None

    async def table_exists(self, conn: AsyncConnection, schema: str, table_name: str) -> bool:
        result = await conn.execute(
            text(
                "SELECT 1 FROM information_schema.tables "
                "WHERE table_schema = :schema AND table_name = :table"
            ),
            {"schema": schema, "table": table_name}
        )
        return result.first() is not None

    async def trigger_exists(self, conn: AsyncConnection, schema: str, table_name: str, trigger_name: str) -> bool:
        # information_schema.triggers has one row per event, hence LIMIT 1
        result = await conn.execute(
            text(
                "SELECT 1 FROM information_schema.triggers "
                "WHERE trigger_schema = :schema AND event_object_table = :table "
                "AND trigger_name = :name LIMIT 1"
            ),
            {"schema": schema, "table": table_name, "name": trigger_name}
        )
        return result.first() is not None

    async def function_exists(self, conn: AsyncConnection, schema: str, function_name: str) -> bool:
        result = await conn.execute(
            text(
                "SELECT 1 FROM pg_proc p JOIN pg_namespace n ON n.oid = p.pronamespace "
                "WHERE n.nspname = :schema AND p.proname = :name LIMIT 1"
            ),
            {"schema": schema, "name": function_name}
        )
        return result.first() is not None

    async def list_tables(self, conn: AsyncConnection, schema: str) -> List[str]:
        result = await conn.execute(
            text(
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = :schema AND table_type = 'BASE TABLE' "
                "ORDER BY table_name"
            ),
            {"schema": schema}
        )
        return [row[0] for row in result.all()]

    # ==============================================================================
    # 3. Execution
    # ==============================================================================

    @staticmethod
    def _sqlstate(error: DBAPIError) -> Optional[str]:
        orig = error.orig
        for candidate in (orig, getattr(orig, "__cause__", None)):
            code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
            if code:
                return code
        return None

    async def execute(self, conn: AsyncConnection, stmt: DDLStatement) -> bool:
        """
        Runs one statement in its own savepoint.
        Returns False when the object already existed, True otherwise.
        """
        try:
            async with conn.begin_nested():
                await conn.exec_driver_sql(stmt.sql)
        except DBAPIError as e:
            sqlstate = self._sqlstate(e)
            if sqlstate in DUPLICATE_OBJECT_SQLSTATES or sqlstate == CATALOG_RACE_SQLSTATE:
                logger.info("%s '%s' in schema '%s' already exists (%s), skipping.", stmt.kind, stmt.name, stmt.schema, sqlstate)
                return False
            logger.error("DDL failed (%s) for %s '%s' in schema '%s': %s", sqlstate, stmt.kind, stmt.name, stmt.schema, e)
            raise ProvisioningError(f"Failed to {stmt.kind.replace('_', ' ')} '{stmt.name}' in schema '{stmt.schema}'.") from e
        return True

    async def lock_schema(self, conn: AsyncConnection, schema: str, statement_timeout: Optional[float] = None) -> None:
        """Serializes provisioning of one schema until the surrounding transaction ends."""
        if statement_timeout:
            # SET cannot take bind parameters; the value is a validated integer
            await conn.exec_driver_sql(f"SET LOCAL statement_timeout = {int(statement_timeout * 1000)}")
        await conn.execute(text("SELECT pg_advisory_xact_lock(hashtext(:schema))"), {"schema": schema})

    async def create_schema(self, conn: AsyncConnection, schema: str) -> bool:
        return await self.execute(conn, self.render_create_schema(schema))

    async def create_table(
        self,
        conn: AsyncConnection,
        schema: str,
        table: TableDefinition,
        functions: Optional[Mapping[str, FunctionDefinition]] = None
    ) -> None:
        """Table first, then its indexes, then trigger functions and triggers."""
        functions = functions or {}
        await self.execute(conn, self.render_create_table(schema, table))
        for index in table.indexes:
            await self.execute(conn, self.render_create_index(schema, table.name, index))

        for trigger in table.triggers:
            function_name = trigger.function.removesuffix("()")
            function = functions.get(function_name)
            function_schema = None
            if function is not None:
                function_schema = schema
                if not await self.function_exists(conn, schema, function.name):
                    await self.execute(conn, self.render_create_function(schema, function))
            trigger_name = trigger_name_for(trigger.name, table.name)
            # PostgreSQL has no CREATE TRIGGER IF NOT EXISTS
            if await self.trigger_exists(conn, schema, table.name, trigger_name):
                logger.info("Trigger '%s' on '%s.%s' already exists, skipping.", trigger_name, schema, table.name)
                continue
            await self.execute(conn, self.render_create_trigger(schema, table.name, trigger, function_schema))

    async def drop_table(self, conn: AsyncConnection, schema: str, table_name: str) -> bool:
        return await self.execute(conn, self.render_drop_table(schema, table_name))

    # ==============================================================================
    # 4. Version records
    # ==============================================================================

    def schema_info_table(self, schema: str) -> Table:
        return Table(
            SCHEMA_INFO_TABLE_NAME, MetaData(),
            Column("id", Integer, primary_key=True),
            Column("version", String(50), nullable=False),
            Column("description", Text),
            Column("tables", postgresql.JSONB, nullable=False),
            Column("created_at", TIMESTAMP),
            schema=schema,
        )

    async def insert_version(
        self,
        conn: AsyncConnection,
        schema: str,
        version: str,
        description: Optional[str],
        tables: List[str]
    ) -> SchemaVersionRecord:
        info = self.schema_info_table(schema)
        stmt = (
            insert(info)
            .values(version=version, description=description, tables=list(tables))
            .returning(info.c.version, info.c.description, info.c.tables, info.c.created_at)
        )
        row = (await conn.execute(stmt)).mappings().one()
        return SchemaVersionRecord(**row)

    async def latest_version(self, conn: AsyncConnection, schema: str) -> Optional[SchemaVersionRecord]:
        info = self.schema_info_table(schema)
        stmt = (
            select(info.c.version, info.c.description, info.c.tables, info.c.created_at)
            .order_by(info.c.created_at.desc(), info.c.id.desc())
            .limit(1)
        )
        row = (await conn.execute(stmt)).mappings().first()
        return SchemaVersionRecord(**row) if row else None
