# onboarding/services/schema/provisioning_service.py

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from onboarding.core.config import settings
from onboarding.schemas.tenant_schema_schemas import SchemaVersionRecord, SchemaValidationReport
from onboarding.services.exceptions import (
    ServiceException, NotFoundError, ProvisioningError, MigrationError
)
from onboarding.services.schema.ddl_builder import DDLBuilder
from onboarding.services.schema.naming import schema_name_for
from onboarding.services.schema.table_registry import (
    TableRegistry, TableDefinition, table_registry, SCHEMA_INFO_TABLE, SCHEMA_INFO_TABLE_NAME
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

class SchemaProvisioningService:
    """
    Materializes per-tenant schemas from the table registry.

    Every public call runs in one data-plane transaction that first takes a
    transaction-scoped advisory lock on the schema name, so two calls for the
    same tenant serialize in PostgreSQL while different tenants proceed in
    parallel. Every statement is idempotent, so re-running a call after a
    partial failure completes the missing pieces.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        builder: Optional[DDLBuilder] = None,
        registry: Optional[TableRegistry] = None,
        timeout: Optional[float] = None
    ):
        self.engine = engine
        self.builder = builder or DDLBuilder()
        self.registry = registry or table_registry
        self.timeout = settings.TENANT_DDL_TIMEOUT_SECONDS if timeout is None else timeout

    # ==============================================================================
    # 1. Transaction plumbing
    # ==============================================================================

    async def _run(self, schema: str, work: Callable[[AsyncConnection], Awaitable[T]]) -> T:
        async def _in_transaction() -> T:
            async with self.engine.begin() as conn:
                await self.builder.lock_schema(conn, schema, statement_timeout=self.timeout)
                return await work(conn)

        try:
            return await asyncio.wait_for(_in_transaction(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error("Schema operation on '%s' timed out after %ss.", schema, self.timeout)
            raise ProvisioningError(f"Schema operation on '{schema}' timed out.") from e
        except (SQLAlchemyError, OSError) as e:
            logger.error("Schema operation on '%s' failed: %s", schema, e)
            raise ProvisioningError(f"Schema operation on '{schema}' failed.") from e

    async def _create_tables(self, conn: AsyncConnection, schema: str, tables: List[TableDefinition]) -> None:
        functions = {name: self.registry.get_function(name) for name in self._function_names(tables)}
        for table in tables:
            await self.builder.create_table(conn, schema, table, functions)
            logger.info("Table '%s' applied in schema '%s'.", table.name, schema)

    def _function_names(self, tables: List[TableDefinition]) -> List[str]:
        names = []
        for table in tables:
            for trigger in table.triggers:
                name = trigger.function.removesuffix("()")
                if self.registry.get_function(name) is not None and name not in names:
                    names.append(name)
        return names

    def _resolve(self, schema: str, table_names: Optional[List[str]]) -> List[TableDefinition]:
        tables, unknown = self.registry.resolve(table_names)
        for name in unknown:
            logger.warning("Table '%s' is not in the registry, skipping for schema '%s'.", name, schema)
        return tables

    async def _ensure_schema_info(self, conn: AsyncConnection, schema: str) -> None:
        if not await self.builder.table_exists(conn, schema, SCHEMA_INFO_TABLE_NAME):
            await self.builder.create_table(conn, schema, SCHEMA_INFO_TABLE)

    async def _user_tables(self, conn: AsyncConnection, schema: str) -> List[str]:
        return [t for t in await self.builder.list_tables(conn, schema) if t != SCHEMA_INFO_TABLE_NAME]

    # ==============================================================================
    # 2. Public operations
    # ==============================================================================

    async def provision(self, tenant_code: str, table_names: Optional[List[str]] = None) -> List[str]:
        """
        Creates the tenant schema and the requested tables (the default set
        when omitted) in registry order. Safe to call repeatedly.
        Returns the names of the tables applied.
        """
        schema = schema_name_for(tenant_code)
        tables = self._resolve(schema, table_names)

        async def work(conn: AsyncConnection) -> List[str]:
            await self.builder.create_schema(conn, schema)
            await self._create_tables(conn, schema, tables)
            return [t.name for t in tables]

        applied = await self._run(schema, work)
        logger.info("Provisioned schema '%s' with tables %s.", schema, applied)
        return applied

    async def record_version(
        self,
        tenant_code: str,
        version: str,
        description: Optional[str] = None,
        table_names: Optional[List[str]] = None
    ) -> SchemaVersionRecord:
        schema = schema_name_for(tenant_code)

        async def work(conn: AsyncConnection) -> SchemaVersionRecord:
            if not await self.builder.schema_exists(conn, schema):
                raise NotFoundError(f"Schema '{schema}' does not exist.")
            await self._ensure_schema_info(conn, schema)
            tables = table_names if table_names is not None else await self._user_tables(conn, schema)
            return await self.builder.insert_version(conn, schema, version, description, tables)

        record = await self._run(schema, work)
        logger.info("Recorded schema version '%s' for '%s'.", version, schema)
        return record

    async def current_version(self, tenant_code: str) -> Optional[SchemaVersionRecord]:
        schema = schema_name_for(tenant_code)

        async def work(conn: AsyncConnection) -> Optional[SchemaVersionRecord]:
            if not await self.builder.table_exists(conn, schema, SCHEMA_INFO_TABLE_NAME):
                return None
            return await self.builder.latest_version(conn, schema)

        return await self._run(schema, work)

    async def list_tables(self, tenant_code: str) -> List[str]:
        schema = schema_name_for(tenant_code)
        return await self._run(schema, lambda conn: self._user_tables(conn, schema))

    async def add_tables(self, tenant_code: str, table_names: List[str]) -> List[str]:
        """
        Adds registry tables to an existing schema. Unlike provision(),
        unknown names are rejected. Returns only the tables newly created.
        """
        schema = schema_name_for(tenant_code)
        unknown = [n for n in table_names if n not in self.registry]
        if unknown:
            raise NotFoundError(f"Unknown tables: {', '.join(unknown)}.")
        tables, _ = self.registry.resolve(table_names)

        async def work(conn: AsyncConnection) -> List[str]:
            if not await self.builder.schema_exists(conn, schema):
                raise NotFoundError(f"Schema '{schema}' does not exist.")
            missing = [t for t in tables if not await self.builder.table_exists(conn, schema, t.name)]
            await self._create_tables(conn, schema, missing)
            return [t.name for t in missing]

        return await self._run(schema, work)

    async def migrate(
        self,
        tenant_code: str,
        from_version: str,
        to_version: str,
        add_tables: Optional[List[str]] = None,
        remove_tables: Optional[List[str]] = None
    ) -> SchemaVersionRecord:
        """
        Adds and drops whole tables, then records the live table list as
        to_version. Steps already applied are not rolled back on failure.
        """
        schema = schema_name_for(tenant_code)
        add_tables = add_tables or []
        remove_tables = remove_tables or []
        logger.info("Migrating '%s' from %s to %s (add=%s, remove=%s).", schema, from_version, to_version, add_tables, remove_tables)

        try:
            if add_tables:
                await self.provision(tenant_code, add_tables)

            async def work(conn: AsyncConnection) -> SchemaVersionRecord:
                for name in remove_tables:
                    await self.builder.drop_table(conn, schema, name)
                    logger.info("Dropped table '%s' from schema '%s'.", name, schema)
                await self._ensure_schema_info(conn, schema)
                live_tables = await self._user_tables(conn, schema)
                return await self.builder.insert_version(
                    conn, schema, to_version, f"Migration from {from_version} to {to_version}", live_tables
                )

            return await self._run(schema, work)
        except MigrationError:
            raise
        except Exception as e:
            detail = e.message if isinstance(e, ServiceException) else str(e)
            logger.error("Migration of '%s' to %s failed: %s", schema, to_version, detail)
            raise MigrationError(f"Migration of '{schema}' to {to_version} failed: {detail}") from e

    async def validate(self, tenant_code: str) -> SchemaValidationReport:
        """Compares the live table set with the latest recorded one."""
        schema = schema_name_for(tenant_code)

        async def work(conn: AsyncConnection) -> SchemaValidationReport:
            if not await self.builder.table_exists(conn, schema, SCHEMA_INFO_TABLE_NAME):
                return SchemaValidationReport(is_valid=False, versioned=False)
            record = await self.builder.latest_version(conn, schema)
            if record is None:
                return SchemaValidationReport(is_valid=False, versioned=False)
            expected = set(record.tables) - {SCHEMA_INFO_TABLE_NAME}
            live = set(await self._user_tables(conn, schema))
            missing = sorted(expected - live)
            extra = sorted(live - expected)
            return SchemaValidationReport(
                is_valid=not missing and not extra,
                missing_tables=missing,
                extra_tables=extra,
            )

        return await self._run(schema, work)

    async def provision_and_record(
        self,
        tenant_code: str,
        version: Optional[str] = None,
        description: Optional[str] = None
    ) -> SchemaVersionRecord:
        """
        Provisions the default table set and records the initial version if
        the tenant has none yet. Returns the current version record.

        The version check and the insert share the provisioning transaction,
        so concurrent callers for one tenant record a single initial version.
        """
        version = version or settings.INITIAL_SCHEMA_VERSION
        schema = schema_name_for(tenant_code)
        tables = self._resolve(schema, None)

        async def work(conn: AsyncConnection) -> SchemaVersionRecord:
            await self.builder.create_schema(conn, schema)
            await self._create_tables(conn, schema, tables)
            await self._ensure_schema_info(conn, schema)
            current = await self.builder.latest_version(conn, schema)
            if current is not None:
                return current
            record = await self.builder.insert_version(
                conn, schema, version, description or "Initial schema", [t.name for t in tables]
            )
            logger.info("Recorded schema version '%s' for '%s'.", version, schema)
            return record

        return await self._run(schema, work)
