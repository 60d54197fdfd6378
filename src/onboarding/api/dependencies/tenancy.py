# onboarding/api/dependencies/tenancy.py

from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.api.dependencies.context import InstallationContextDep
from onboarding.core.context import AppContext
from onboarding.services.exceptions import ValidationError, UnauthorizedError

async def get_tenant_session(
    request: Request,
    context: AppContext = InstallationContextDep,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Routes the request to the tenant named by X-Tenant-Id and yields a
    transaction-scoped session on that tenant's pool. A shop may only
    address its own tenant.
    """
    tenant_id = getattr(request.state, "tenant_id", None)
    if not tenant_id:
        raise ValidationError("X-Tenant-Id header is required", code="missing_tenant_id")
    if tenant_id != context.shop_code:
        raise UnauthorizedError("Tenant does not match the authenticated shop", code="tenant_mismatch")

    async with context.tenant_router.session(tenant_id) as session:
        yield session
