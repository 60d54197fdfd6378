# onboarding/core/context.py

from pydantic import BaseModel, ConfigDict
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.models.installation import TenantInstallation
from onboarding.services.exceptions import UnauthorizedError
from onboarding.services.installation.provider_client import ShopifyClient
from onboarding.services.schema.provisioning_service import SchemaProvisioningService
from onboarding.services.tenancy.connection_router import TenantConnectionRouter

class AppContext(BaseModel):
    """
    Typed dependencies for service layer operations.
    The long-lived collaborators are created once in the application
    lifespan; `db` is the request-scoped control-plane session.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    db: AsyncSession

    tenant_router: TenantConnectionRouter
    provisioner: SchemaProvisioningService
    provider: ShopifyClient

    # set for routes guarded by shop-code + bearer authentication
    installation: Optional[TenantInstallation] = None

    @property
    def shop_code(self) -> str:
        if self.installation is None:
            raise UnauthorizedError("An authenticated installation is required for this operation.", code="missing_installation")
        return self.installation.shop_code
