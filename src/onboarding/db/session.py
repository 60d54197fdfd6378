from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from onboarding.core.config import settings

# Control plane engine: tenant_installations and other shared tables.
engine = create_async_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,      # test connections on checkout
    pool_recycle=3600,       # recycle hourly before the server drops idle connections
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
    class_=AsyncSession
)

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a transactional scope around a request.
    Commits if the request completes without error, rolls back otherwise.
    """
    async with SessionLocal() as session:
        async with session.begin():
            yield session
