# tests/conftest.py

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, List, Optional, Set, Tuple
import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from unittest.mock import AsyncMock, MagicMock

from onboarding.core.config import settings
from onboarding.core.context import AppContext
from onboarding.core.security import compute_hmac
from onboarding.db.base import Base
from onboarding.db.session import get_db
from onboarding.main import app
from onboarding.schemas.installation_schemas import HandshakePayload
from onboarding.schemas.tenant_schema_schemas import SchemaVersionRecord
from onboarding.services.exceptions import ProvisioningError
from onboarding.services.installation.provider_client import ShopifyClient
from onboarding.services.schema.ddl_builder import DDLBuilder, DDLStatement
from onboarding.services.schema.provisioning_service import SchemaProvisioningService
from onboarding.services.tenancy.connection_router import TenantConnectionRouter

TEST_HMAC_SECRET = "test-hmac-secret"
TEST_FINGERPRINT = "0123456789abcdef0123456789abcdef"
OTHER_FINGERPRINT = "fedcba9876543210fedcba9876543210"
TEST_ACCESS_TOKEN = "shpat_test_access_token"

@pytest.fixture(autouse=True)
def handshake_secret(monkeypatch):
    """Every test signs and verifies with the same known secret."""
    monkeypatch.setattr(settings, "HANDSHAKE_HMAC_SECRET", TEST_HMAC_SECRET)
    return TEST_HMAC_SECRET

# ==============================================================================
# 1. Control plane database (SQLite)
# ==============================================================================

@pytest.fixture(scope="function")
async def control_engine(tmp_path):
    """
    File-backed SQLite in WAL mode, so an independent session can commit
    while a request session still has a read transaction open (as on PostgreSQL).
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'control.db'}", poolclass=NullPool)

    # pysqlite/aiosqlite need this to support SAVEPOINT properly
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture(scope="function")
def session_factory(control_engine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=control_engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
    )

@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session

# ==============================================================================
# 2. In-memory tenant catalog
# ==============================================================================

class InMemoryCatalog:
    """What a PostgreSQL catalog would contain after the executed DDL."""
    def __init__(self):
        self.schemas: Dict[str, Dict[str, Set]] = {}
        self.versions: Dict[str, List[SchemaVersionRecord]] = {}
        self.executed: List[DDLStatement] = []
        self.locks: List[str] = []
        self.fail_on: Set[Tuple[str, str]] = set()

    def kinds(self) -> List[Tuple[str, str]]:
        return [(s.kind, s.name) for s in self.executed]

class InMemoryDDLBuilder(DDLBuilder):
    """
    Renders real SQL through DDLBuilder but applies it to an in-memory
    catalog instead of a database. Connections passed in are ignored.
    """
    def __init__(self, catalog: Optional[InMemoryCatalog] = None, lock_delay: float = 0):
        super().__init__()
        self.catalog = catalog or InMemoryCatalog()
        self.lock_delay = lock_delay

    async def execute(self, conn, stmt: DDLStatement) -> bool:
        catalog = self.catalog
        catalog.executed.append(stmt)
        if (stmt.kind, stmt.name) in catalog.fail_on:
            raise ProvisioningError(f"Failed to {stmt.kind} '{stmt.name}'.")

        if stmt.kind == "create_schema":
            if stmt.schema in catalog.schemas:
                return False
            catalog.schemas[stmt.schema] = {"tables": set(), "indexes": set(), "functions": set(), "triggers": set()}
            return True

        schema = catalog.schemas.get(stmt.schema)
        if schema is None:
            raise ProvisioningError(f"Schema '{stmt.schema}' does not exist.")
        if stmt.kind == "create_table":
            schema["tables"].add(stmt.name)
        elif stmt.kind == "create_index":
            schema["indexes"].add(stmt.name)
        elif stmt.kind == "create_function":
            schema["functions"].add(stmt.name)
        elif stmt.kind == "create_trigger":
            if (stmt.table, stmt.name) in schema["triggers"]:
                return False
            schema["triggers"].add((stmt.table, stmt.name))
        elif stmt.kind == "drop_table":
            schema["tables"].discard(stmt.name)
            schema["triggers"] = {t for t in schema["triggers"] if t[0] != stmt.name}
            if stmt.name == "schema_info":
                catalog.versions.pop(stmt.schema, None)
        return True

    async def schema_exists(self, conn, schema):
        return schema in self.catalog.schemas

    async def table_exists(self, conn, schema, table_name):
        return table_name in self.catalog.schemas.get(schema, {}).get("tables", set())

    async def trigger_exists(self, conn, schema, table_name, trigger_name):
        return (table_name, trigger_name) in self.catalog.schemas.get(schema, {}).get("triggers", set())

    async def function_exists(self, conn, schema, function_name):
        return function_name in self.catalog.schemas.get(schema, {}).get("functions", set())

    async def list_tables(self, conn, schema):
        return sorted(self.catalog.schemas.get(schema, {}).get("tables", set()))

    async def lock_schema(self, conn, schema, statement_timeout=None):
        self.catalog.locks.append(schema)
        if self.lock_delay:
            await asyncio.sleep(self.lock_delay)

    async def insert_version(self, conn, schema, version, description, tables):
        record = SchemaVersionRecord(
            version=version, description=description, tables=list(tables),
            created_at=datetime.now(timezone.utc),
        )
        self.catalog.versions.setdefault(schema, []).append(record)
        return record

    async def latest_version(self, conn, schema):
        records = self.catalog.versions.get(schema)
        return records[-1] if records else None

class FakeEngine:
    """Stands in for the data-plane AsyncEngine; hands out a dummy connection."""
    def __init__(self):
        self.transactions = 0
        self.disposed = False

    @asynccontextmanager
    async def begin(self):
        self.transactions += 1
        yield MagicMock(name="connection")

    async def dispose(self):
        self.disposed = True

@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog()

@pytest.fixture
def ddl_builder(catalog) -> InMemoryDDLBuilder:
    return InMemoryDDLBuilder(catalog)

@pytest.fixture
def provisioner(ddl_builder) -> SchemaProvisioningService:
    return SchemaProvisioningService(FakeEngine(), builder=ddl_builder, timeout=5)

# ==============================================================================
# 3. Tenant router and provider fakes
# ==============================================================================

class RecordingTenantRouter(TenantConnectionRouter):
    """
    Router whose sessions are mocks. Statements executed through
    session() are recorded as (tenant_id, statement) pairs.
    """
    def __init__(self):
        super().__init__(engine_factory=lambda schema: MagicMock(), initializer=AsyncMock())
        self.statements: List[tuple] = []
        self.fail_with: Optional[Exception] = None
        self.row: Optional[dict] = None

    @asynccontextmanager
    async def session(self, tenant_id: str):
        if self.fail_with is not None:
            raise self.fail_with
        session = AsyncMock(spec=AsyncSession)
        result = MagicMock()
        result.mappings.return_value.first.return_value = self.row
        session.execute.return_value = result
        yield session
        self.statements.extend((tenant_id, c.args[0]) for c in session.execute.call_args_list)

@pytest.fixture
def tenant_router() -> RecordingTenantRouter:
    return RecordingTenantRouter()

class ProviderStub:
    """httpx MockTransport handler for the Shopify token endpoint."""
    def __init__(self):
        self.status_code = 200
        self.payload: dict = {"access_token": TEST_ACCESS_TOKEN, "scope": "read_products"}
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.payload)

@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()

@pytest.fixture
async def provider(provider_stub) -> AsyncGenerator[ShopifyClient, None]:
    client = ShopifyClient(
        client_id="test-client-id",
        client_secret="test-client-secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider_stub)),
    )
    yield client
    await client.close()

# ==============================================================================
# 4. Request-shaped helpers
# ==============================================================================

@pytest.fixture
def request_context(session_factory, tenant_router, provisioner, provider):
    """
    One control-plane transaction per call, like get_db does for a request:
    committed on success, rolled back when the body raises.
    """
    @asynccontextmanager
    async def _request():
        async with session_factory() as session:
            async with session.begin():
                yield AppContext(
                    db=session,
                    tenant_router=tenant_router,
                    provisioner=provisioner,
                    provider=provider,
                )
    return _request

@pytest.fixture
def make_handshake():
    """Builds a correctly signed HandshakePayload; pass hmac= to override the signature."""
    def _make(
        shop: str = "a.example",
        fingerprint: Optional[str] = TEST_FINGERPRINT,
        timestamp: Optional[str] = None,
        sign: bool = True,
        **fields
    ) -> HandshakePayload:
        data = {
            "shop": shop,
            "host": fields.pop("host", "YWRtaW4uc2hvcGlmeS5jb20vc3RvcmUvYQ"),
            "timestamp": timestamp or str(int(time.time())),
            "fingerprint": fingerprint,
            **fields,
        }
        if sign and "hmac" not in data:
            data["hmac"] = compute_hmac(HandshakePayload(**data).model_dump())
        return HandshakePayload(**data)
    return _make

# ==============================================================================
# 5. HTTP client
# ==============================================================================

@pytest.fixture
async def client(
    session_factory, tenant_router, provisioner, provider, monkeypatch
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_factory() as session:
            async with session.begin():
                yield session

    app.dependency_overrides[get_db] = override_get_db
    # failure marking opens its own control-plane session
    monkeypatch.setattr("onboarding.services.installation.installation_service.SessionLocal", session_factory)
    app.state.tenant_router = tenant_router
    app.state.provisioner = provisioner
    app.state.provider = provider

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    for name in ("tenant_router", "provisioner", "provider"):
        delattr(app.state, name)
