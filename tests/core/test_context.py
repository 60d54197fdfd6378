# tests/core/test_context.py

import pytest

from onboarding.core.context import AppContext
from onboarding.models.installation import TenantInstallation
from onboarding.services.exceptions import UnauthorizedError

pytestmark = pytest.mark.asyncio

class TestAppContext:

    async def test_shop_code_comes_from_the_installation(self):
        context = AppContext.model_construct(installation=TenantInstallation(shop_code="ABC123", shop="a.example"))
        assert context.shop_code == "ABC123"

    async def test_shop_code_requires_an_installation(self):
        context = AppContext.model_construct(installation=None)
        with pytest.raises(UnauthorizedError) as exc_info:
            context.shop_code
        assert exc_info.value.code == "missing_installation"
