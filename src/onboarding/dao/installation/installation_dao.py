# onboarding/dao/installation/installation_dao.py

import logging
from typing import Any, Dict, Optional, Tuple
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.core.config import settings
from onboarding.dao.base_dao import BaseDao
from onboarding.models.installation import TenantInstallation, InstallationStatus
from onboarding.services.exceptions import InternalError
from onboarding.utils.id_generator import generate_tenant_code

logger = logging.getLogger(__name__)

class InstallationDao(BaseDao[TenantInstallation]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(TenantInstallation, db_session)

    async def get_by_shop(self, shop: str) -> Optional[TenantInstallation]:
        return await self.get_one(where={"shop": shop})

    async def get_by_code(self, shop_code: str) -> Optional[TenantInstallation]:
        return await self.get_one(where={"shop_code": shop_code})

    async def create_with_unique_code(
        self,
        values: Dict[str, Any],
        max_attempts: Optional[int] = None
    ) -> Tuple[TenantInstallation, bool]:
        """
        Inserts a new installation under a freshly generated tenant code.

        Each attempt runs in its own savepoint so a unique violation only
        rolls back that attempt. A violation on `shop` means another request
        installed the same domain first: the winner's row is returned with
        created=False. A violation on `shop_code` is a code collision and is
        retried with a new code.
        """
        max_attempts = max_attempts or settings.TENANT_CODE_MAX_ATTEMPTS
        shop = values["shop"]

        for attempt in range(1, max_attempts + 1):
            instance = TenantInstallation(shop_code=generate_tenant_code(), **values)
            try:
                async with self.db_session.begin_nested():
                    self.db_session.add(instance)
                    await self.db_session.flush()
                return instance, True
            except IntegrityError:
                winner = await self.get_by_shop(shop)
                if winner is not None:
                    logger.info("Shop '%s' was installed concurrently, continuing with code %s.", shop, winner.shop_code)
                    return winner, False
                logger.warning("Tenant code collision on attempt %d/%d for shop '%s'.", attempt, max_attempts, shop)

        logger.error("Could not allocate a unique tenant code for '%s' after %d attempts.", shop, max_attempts)
        raise InternalError("Failed to allocate a tenant code.")

    async def set_status(
        self,
        shop_code: str,
        status: InstallationStatus,
        note: Optional[str] = None
    ) -> int:
        values: Dict[str, Any] = {"status": status}
        if note is not None:
            values["note"] = note[:1000]
        return await self.update_where({"shop_code": shop_code}, values)
