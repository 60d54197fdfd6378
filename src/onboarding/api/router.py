# onboarding/api/router.py

from fastapi import APIRouter
from onboarding.api.v1 import installation
from onboarding.api.v1 import tenant_schema
from onboarding.api.v1 import tenant_data

# The main router for API v1
router = APIRouter(prefix="/api/v1")

# ===================================================================
# Storefront onboarding
# ===================================================================

router.include_router(installation.router, prefix="/shopify", tags=["Onboarding - Shopify"])

# ===================================================================
# Tenant schemas & data
# ===================================================================

router.include_router(tenant_schema.router, prefix="/tenants/schema", tags=["Tenants - Schema"])
router.include_router(tenant_data.router, prefix="/tenant", tags=["Tenants - Data"])
