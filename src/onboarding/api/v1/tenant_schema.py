# onboarding/api/v1/tenant_schema.py

from typing import List, Optional
from fastapi import APIRouter, Body

from onboarding.api.dependencies.context import InstallationContextDep
from onboarding.core.context import AppContext
from onboarding.schemas.common import JsonResponse
from onboarding.schemas.tenant_schema_schemas import (
    ProvisionRequest, ProvisionResult, MigrateRequest,
    SchemaVersionRecord, SchemaValidationReport
)
from onboarding.services.schema.naming import schema_name_for

router = APIRouter() # /tenants/schema

@router.post(
    "/provision",
    response_model=JsonResponse[ProvisionResult],
    summary="Create the tenant schema and tables (idempotent)"
)
async def provision_schema(
    payload: Optional[ProvisionRequest] = None,
    context: AppContext = InstallationContextDep
):
    payload = payload or ProvisionRequest()
    shop_code = context.shop_code
    tables = await context.provisioner.provision(shop_code, payload.tables)
    version = None
    if payload.version:
        version = await context.provisioner.record_version(shop_code, payload.version, payload.description, tables)
    return JsonResponse(data=ProvisionResult(schema_name=schema_name_for(shop_code), tables=tables, version=version))

@router.post(
    "/migrate",
    response_model=JsonResponse[SchemaVersionRecord],
    summary="Add and remove whole tables and record a new version"
)
async def migrate_schema(
    payload: MigrateRequest,
    context: AppContext = InstallationContextDep
):
    record = await context.provisioner.migrate(
        context.shop_code,
        payload.from_version,
        payload.to_version,
        add_tables=payload.add_tables,
        remove_tables=payload.remove_tables,
    )
    return JsonResponse(data=record)

@router.get(
    "/validate",
    response_model=JsonResponse[SchemaValidationReport],
    summary="Compare live tables with the latest recorded version"
)
async def validate_schema(context: AppContext = InstallationContextDep):
    report = await context.provisioner.validate(context.shop_code)
    return JsonResponse(data=report)

@router.get(
    "/version",
    response_model=JsonResponse[Optional[SchemaVersionRecord]],
    summary="Latest recorded schema version, null when never recorded"
)
async def get_schema_version(context: AppContext = InstallationContextDep):
    record = await context.provisioner.current_version(context.shop_code)
    return JsonResponse(data=record)

@router.get(
    "/tables",
    response_model=JsonResponse[List[str]],
    summary="List the tenant's tables"
)
async def list_schema_tables(context: AppContext = InstallationContextDep):
    tables = await context.provisioner.list_tables(context.shop_code)
    return JsonResponse(data=tables)

@router.post(
    "/tables",
    response_model=JsonResponse[List[str]],
    summary="Add registry tables to an existing tenant schema"
)
async def add_schema_tables(
    tables: List[str] = Body(..., embed=True),
    context: AppContext = InstallationContextDep
):
    created = await context.provisioner.add_tables(context.shop_code, tables)
    return JsonResponse(data=created)
