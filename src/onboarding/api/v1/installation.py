# onboarding/api/v1/installation.py

from fastapi import APIRouter, Request

from onboarding.api.dependencies.context import PublicContextDep
from onboarding.core.context import AppContext
from onboarding.schemas.common import JsonResponse
from onboarding.schemas.installation_schemas import HandshakePayload, InstallationRead, AuthorizationResult
from onboarding.services.installation.installation_service import InstallationService

router = APIRouter() # /shopify

@router.post(
    "/installation",
    response_model=JsonResponse[InstallationRead],
    summary="Start (or restart) the installation of a storefront"
)
async def start_installation(
    handshake: HandshakePayload,
    context: AppContext = PublicContextDep
):
    service = InstallationService(context)
    record = await service.start_installation(handshake)
    return JsonResponse(data=InstallationRead.model_validate(record), msg="Installation started successfully")

@router.post(
    "/authorize",
    response_model=JsonResponse[AuthorizationResult],
    summary="Verify the signed handshake and complete authorization"
)
async def authorize(
    request: Request,
    handshake: HandshakePayload,
    context: AppContext = PublicContextDep
):
    # the service authenticates shop code + token itself, so it can report
    # every credential failure through the same error path
    service = InstallationService(context)
    result = await service.authorize(
        handshake,
        getattr(request.state, "shop_code", None),
        getattr(request.state, "token", None),
    )
    msg = "Authorization successful" if result.status == "authorized" else "Redirect required"
    return JsonResponse(data=result, msg=msg)
