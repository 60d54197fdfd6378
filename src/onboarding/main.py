# onboarding/main.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from onboarding.api.router import router
from onboarding.core.config import settings
from onboarding.db.session import engine
from onboarding.db.tenant_db_session import tenant_data_engine
from onboarding.middleware import AuthenticationMiddleware
from onboarding.schemas.common import JsonFaildResponse
from onboarding.services.exceptions import (
    ServiceException, ValidationError, UnauthorizedError, NotFoundError, InternalError
)
from onboarding.services.installation.provider_client import ShopifyClient
from onboarding.services.schema.provisioning_service import SchemaProvisioningService
from onboarding.services.tenancy.connection_router import TenantConnectionRouter

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Tenant data plane ---
    app.state.tenant_router = TenantConnectionRouter()
    await app.state.tenant_router.startup()
    app.state.provisioner = SchemaProvisioningService(tenant_data_engine)

    # --- External provider ---
    app.state.provider = ShopifyClient()
    logger.info("Onboarding service started (env=%s).", settings.APP_ENV)

    yield

    # --- Cleanup ---
    logger.info("Shutting down, closing tenant pools and provider client...")
    await app.state.tenant_router.close_all()
    await app.state.provider.close()
    await tenant_data_engine.dispose()
    await engine.dispose()

app = FastAPI(
    title="Storefront Onboarding",
    lifespan=lifespan
)

app.add_middleware(AuthenticationMiddleware)

origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"])

app.include_router(router)

def _error_response(status_code: int, msg: str, code: str = None, headers: dict = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=JsonFaildResponse(status=status_code, msg=msg, code=code).model_dump(),
        headers=headers,
    )

@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    return _error_response(status.HTTP_400_BAD_REQUEST, exc.message, exc.code)

@app.exception_handler(UnauthorizedError)
async def unauthorized_exception_handler(request: Request, exc: UnauthorizedError):
    """Covers StaleRequestError as well."""
    return _error_response(
        status.HTTP_401_UNAUTHORIZED, exc.message, exc.code,
        headers={"WWW-Authenticate": "Bearer"},
    )

@app.exception_handler(NotFoundError)
async def not_found_exception_handler(request: Request, exc: NotFoundError):
    return _error_response(status.HTTP_404_NOT_FOUND, exc.message, exc.code)

@app.exception_handler(InternalError)
async def internal_exception_handler(request: Request, exc: InternalError):
    # the cause is logged where it happened; only InternalError's own message is caller-safe
    logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    msg = exc.message if type(exc) is InternalError else "Internal Server Error"
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, msg, exc.code)

@app.exception_handler(ServiceException)
async def service_exception_handler(request: Request, exc: ServiceException):
    return _error_response(status.HTTP_400_BAD_REQUEST, exc.message, exc.code)

@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"status": 422, "msg": "Request validation failed", "data": jsonable_encoder(exc.errors()), "code": "invalid_request"},
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(exc.status_code, exc.detail, headers=exc.headers)

@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(500, "Internal Server Error", "internal_error")
