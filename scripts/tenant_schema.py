# scripts/tenant_schema.py
"""
Operator tool for one tenant schema. Every command is idempotent, so
`provision` also repairs a schema left half-built by an interrupted run.

    python scripts/tenant_schema.py provision ABC123 --tables shop_info products
    python scripts/tenant_schema.py validate ABC123
    python scripts/tenant_schema.py version ABC123
    python scripts/tenant_schema.py migrate ABC123 1.0.0 1.1.0 --add orders
"""
import argparse
import asyncio
import json
import logging
import sys

from onboarding.core.config import settings
from onboarding.db.tenant_db_session import tenant_data_engine
from onboarding.services.exceptions import ServiceException
from onboarding.services.schema.provisioning_service import SchemaProvisioningService

logger = logging.getLogger("tenant_schema")

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Provision, validate and migrate a tenant schema.")
    sub = parser.add_subparsers(dest="command", required=True)

    provision = sub.add_parser("provision", help="Create the schema and tables (default set when --tables is omitted).")
    provision.add_argument("tenant_code")
    provision.add_argument("--tables", nargs="*", default=None)
    provision.add_argument("--record-version", default=None, help="Record this version after provisioning.")

    validate = sub.add_parser("validate", help="Compare live tables with the latest recorded version.")
    validate.add_argument("tenant_code")

    version = sub.add_parser("version", help="Print the latest recorded version.")
    version.add_argument("tenant_code")

    migrate = sub.add_parser("migrate", help="Add/remove whole tables and record a new version.")
    migrate.add_argument("tenant_code")
    migrate.add_argument("from_version")
    migrate.add_argument("to_version")
    migrate.add_argument("--add", nargs="*", default=[])
    migrate.add_argument("--remove", nargs="*", default=[])
    return parser

async def run(args: argparse.Namespace) -> dict:
    service = SchemaProvisioningService(tenant_data_engine)
    try:
        if args.command == "provision":
            tables = await service.provision(args.tenant_code, args.tables)
            result = {"tables": tables}
            if args.record_version:
                record = await service.record_version(args.tenant_code, args.record_version, "Recorded by tenant_schema.py", tables)
                result["version"] = record.model_dump(mode="json")
            return result
        if args.command == "validate":
            return (await service.validate(args.tenant_code)).model_dump(mode="json")
        if args.command == "version":
            record = await service.current_version(args.tenant_code)
            return {"version": record.model_dump(mode="json") if record else None}
        if args.command == "migrate":
            record = await service.migrate(
                args.tenant_code, args.from_version, args.to_version,
                add_tables=args.add, remove_tables=args.remove,
            )
            return record.model_dump(mode="json")
        raise ValueError(f"Unknown command {args.command}")
    finally:
        await tenant_data_engine.dispose()

def main(argv=None) -> int:
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(levelname)s [%(name)s] %(message)s")
    args = build_parser().parse_args(argv)
    try:
        result = asyncio.run(run(args))
    except ServiceException as e:
        logger.error("%s failed: %s", args.command, e.message)
        return 1
    print(json.dumps(result, indent=2))
    return 0

if __name__ == "__main__":
    sys.exit(main())
