# onboarding/db/tenant_db_session.py

from sqlalchemy.ext.asyncio import create_async_engine
from onboarding.core.config import settings

# Separate engine for the tenant data plane. Only the provisioning engine uses
# it directly (DDL across schemas); per-tenant traffic goes through the
# TenantConnectionRouter's schema-bound pools.
tenant_data_engine = create_async_engine(
    settings.DATABASE_URL_TENANT_DATA,
    pool_pre_ping=True,
    pool_recycle=3600,
)
