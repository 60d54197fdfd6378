# onboarding/api/dependencies/context.py

import logging
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from onboarding.core.context import AppContext
from onboarding.db.session import get_db
from onboarding.services.exceptions import ConfigurationError
from onboarding.services.installation.installation_service import InstallationService

logger = logging.getLogger(__name__)

async def get_base_context(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> AppContext:
    """
    Builds the unauthenticated context from the request session and the
    collaborators created in the application lifespan.
    """
    state = request.app.state
    missing = [name for name in ("tenant_router", "provisioner", "provider") if getattr(state, name, None) is None]
    if missing:
        logger.critical("Application state is missing %s; was the lifespan run?", missing)
        raise ConfigurationError("Service is not initialized.")
    return AppContext(
        db=db,
        tenant_router=state.tenant_router,
        provisioner=state.provisioner,
        provider=state.provider,
    )

async def require_installation_context(
    request: Request,
    context: AppContext = Depends(get_base_context),
) -> AppContext:
    """
    Shop-code + bearer token guard. The token must be the installation
    token issued to this shop's client.
    """
    service = InstallationService(context)
    context.installation = await service.authenticate(
        getattr(request.state, "shop_code", None),
        getattr(request.state, "token", None),
    )
    return context

# public routes (installation handshake)
PublicContextDep = Depends(get_base_context)
# routes that require an installed client
InstallationContextDep = Depends(require_installation_context)
