# onboarding/services/tenancy/connection_router.py

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncGenerator, Awaitable, Callable, Dict, List, Optional
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncConnection, AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)

from onboarding.core.config import settings
from onboarding.services.exceptions import NotFoundError, TenantConnectionError
from onboarding.services.schema.naming import schema_name_for

logger = logging.getLogger(__name__)

EngineFactory = Callable[[str], AsyncEngine]
EngineInitializer = Callable[[AsyncEngine, str], Awaitable[None]]

@dataclass
class TenantConnectionHandle:
    """
    A ready-to-use, schema-bound pool for one tenant.
    Owned by the router; request handlers only borrow it.
    """
    tenant_id: str
    schema_name: str
    engine: AsyncEngine
    session_factory: async_sessionmaker = field(init=False, repr=False)

    def __post_init__(self):
        self.session_factory = async_sessionmaker(
            bind=self.engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Transaction-scoped session; commits on success, rolls back on error."""
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    @asynccontextmanager
    async def connect(self) -> AsyncGenerator[AsyncConnection, None]:
        async with self.engine.connect() as conn:
            yield conn

def build_tenant_engine(
    schema_name: str,
    url: Optional[str] = None,
    pool_size: Optional[int] = None,
    pool_timeout: Optional[float] = None,
    connect_timeout: Optional[float] = None
) -> AsyncEngine:
    """Creates a bounded pool whose connections resolve unqualified names in the tenant schema."""
    return create_async_engine(
        make_url(url or settings.DATABASE_URL_TENANT_DATA),
        pool_size=pool_size or settings.TENANT_POOL_SIZE,
        max_overflow=0,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=pool_timeout or settings.TENANT_POOL_TIMEOUT_SECONDS,
        connect_args={
            "server_settings": {"search_path": schema_name},
            "timeout": connect_timeout or settings.TENANT_CONNECT_TIMEOUT_SECONDS,
        },
    )

async def check_tenant_engine(engine: AsyncEngine, schema_name: str) -> None:
    """Checks connectivity and that the tenant schema exists."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
        result = await conn.execute(
            text("SELECT 1 FROM information_schema.schemata WHERE schema_name = :schema"),
            {"schema": schema_name}
        )
        if result.first() is None:
            raise NotFoundError(f"Tenant schema '{schema_name}' does not exist.")

class TenantConnectionRouter:
    """
    Lazily creates, caches and reuses one connection pool per tenant.

    - Constructed once at application startup and closed at shutdown.
    - Concurrent first calls for the same tenant share a single in-flight
      initialization; all callers get the same handle or the same error.
    - A failed initialization leaves nothing behind, the next call retries.
    """

    def __init__(
        self,
        engine_factory: Optional[EngineFactory] = None,
        initializer: Optional[EngineInitializer] = None,
        connect_timeout: Optional[float] = None
    ):
        self._engine_factory: EngineFactory = engine_factory or build_tenant_engine
        self._initializer: EngineInitializer = initializer or check_tenant_engine
        self._connect_timeout = settings.TENANT_CONNECT_TIMEOUT_SECONDS if connect_timeout is None else connect_timeout
        self._handles: Dict[str, TenantConnectionHandle] = {}
        self._pending: Dict[str, asyncio.Task] = {}
        # guards the two maps only, never held across an await
        self._lock = threading.Lock()
        self._closed = False

    @property
    def cached_tenants(self) -> List[str]:
        with self._lock:
            return list(self._handles.keys())

    async def startup(self):
        logger.info("TenantConnectionRouter started.")

    async def resolve(self, tenant_id: str) -> TenantConnectionHandle:
        """Returns the cached handle for a tenant, creating and initializing it on first use."""
        schema_name = schema_name_for(tenant_id)

        with self._lock:
            if self._closed:
                raise TenantConnectionError("Tenant connection router is closed.")
            handle = self._handles.get(tenant_id)
            if handle is not None:
                return handle
            task = self._pending.get(tenant_id)
            if task is None:
                task = asyncio.get_running_loop().create_task(self._initialize(tenant_id, schema_name))
                task.add_done_callback(lambda t, tid=tenant_id: self._settle(tid, t))
                self._pending[tenant_id] = task

        # shield: one caller being cancelled must not abort the shared initialization
        return await asyncio.shield(task)

    def _settle(self, tenant_id: str, task: asyncio.Task) -> None:
        with self._lock:
            if self._pending.get(tenant_id) is task:
                del self._pending[tenant_id]
            if task.cancelled():
                return
            # retrieving the exception marks it as handled for the event loop
            if task.exception() is None:
                self._handles[tenant_id] = task.result()

    async def _initialize(self, tenant_id: str, schema_name: str) -> TenantConnectionHandle:
        logger.info("No pool cached for tenant '%s', initializing for schema '%s'...", tenant_id, schema_name)
        engine = self._engine_factory(schema_name)
        try:
            await asyncio.wait_for(self._initializer(engine, schema_name), timeout=self._connect_timeout)
        except asyncio.CancelledError:
            await engine.dispose()
            raise
        except NotFoundError:
            await engine.dispose()
            logger.warning("Schema '%s' for tenant '%s' does not exist.", schema_name, tenant_id)
            raise
        except asyncio.TimeoutError as e:
            await engine.dispose()
            logger.error("Timed out connecting tenant '%s' after %ss.", tenant_id, self._connect_timeout)
            raise TenantConnectionError(f"Timed out connecting to tenant '{tenant_id}'.") from e
        except (SQLAlchemyError, OSError) as e:
            await engine.dispose()
            logger.error("Failed to initialize pool for tenant '%s': %s", tenant_id, e)
            raise TenantConnectionError(f"Unable to connect to tenant '{tenant_id}'.") from e
        logger.info("Pool for tenant '%s' ready.", tenant_id)
        return TenantConnectionHandle(tenant_id=tenant_id, schema_name=schema_name, engine=engine)

    @asynccontextmanager
    async def session(self, tenant_id: str) -> AsyncGenerator[AsyncSession, None]:
        handle = await self.resolve(tenant_id)
        async with handle.session() as session:
            yield session

    async def evict(self, tenant_id: str) -> bool:
        """Drops and disposes a cached pool. Returns False when nothing was cached."""
        with self._lock:
            handle = self._handles.pop(tenant_id, None)
        if handle is None:
            return False
        await handle.engine.dispose()
        logger.info("Evicted pool for tenant '%s'.", tenant_id)
        return True

    async def close_all(self) -> None:
        """[lifecycle] Disposes every cached pool; further resolve() calls fail."""
        with self._lock:
            self._closed = True
            pending = list(self._pending.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        # collected after pending work settles, a task may have finished before its cancel
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            try:
                await handle.engine.dispose()
            except SQLAlchemyError as e:
                logger.error("Error disposing pool for tenant '%s': %s", handle.tenant_id, e)
        logger.info("Closed %d tenant pools.", len(handles))
