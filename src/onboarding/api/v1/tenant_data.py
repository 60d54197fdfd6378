# onboarding/api/v1/tenant_data.py

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.api.dependencies.context import InstallationContextDep
from onboarding.api.dependencies.tenancy import get_tenant_session
from onboarding.core.context import AppContext
from onboarding.schemas.common import JsonResponse
from onboarding.schemas.installation_schemas import ShopInfoRead
from onboarding.services.exceptions import NotFoundError
from onboarding.services.schema.ddl_builder import DDLBuilder
from onboarding.services.schema.table_registry import SHOP_INFO_TABLE

router = APIRouter() # /tenant

@router.get(
    "/shop-info",
    response_model=JsonResponse[ShopInfoRead],
    summary="Read the shop_info row from the caller's tenant schema"
)
async def get_shop_info(
    context: AppContext = InstallationContextDep,
    session: AsyncSession = Depends(get_tenant_session)
):
    # unqualified: the tenant pool's search_path points at the tenant schema
    shop_info = DDLBuilder().sa_table(SHOP_INFO_TABLE)
    row = (await session.execute(
        select(shop_info).where(shop_info.c.shop_code == context.shop_code)
    )).mappings().first()
    if row is None:
        raise NotFoundError("Shop info not found for this tenant.")
    data = ShopInfoRead(**{k: v for k, v in row.items() if k in ShopInfoRead.model_fields}, has_access_token=bool(row["access_token"]))
    return JsonResponse(data=data)
