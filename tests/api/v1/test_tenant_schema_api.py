# tests/api/v1/test_tenant_schema_api.py

import pytest
from httpx import AsyncClient
from fastapi import status
from typing import Callable, Dict

from tests.conftest import TEST_FINGERPRINT

pytestmark = pytest.mark.asyncio

BASE_URL = "/api/v1/tenants/schema"

@pytest.fixture
async def auth_headers(client: AsyncClient, make_handshake: Callable) -> Dict[str, str]:
    response = await client.post(
        "/api/v1/shopify/installation",
        json=make_handshake(fingerprint=TEST_FINGERPRINT).model_dump(exclude_none=True),
    )
    assert response.status_code == status.HTTP_200_OK, response.text
    data = response.json()["data"]
    return {"Authorization": f"Bearer {data['installation_token']}", "X-Shop-Code": data["shop_code"]}

# ==============================================================================
# 1. Provisioning
# ==============================================================================

class TestProvisionApi:

    async def test_requires_installation_credentials(self, client: AsyncClient):
        response = await client.post(f"{BASE_URL}/provision")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "missing_shop_code"

    async def test_wrong_token(self, client: AsyncClient, auth_headers: Dict[str, str]):
        headers = {**auth_headers, "Authorization": "Bearer " + "f" * 64}
        response = await client.get(f"{BASE_URL}/version", headers=headers)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "invalid_token"

    async def test_provision_default_tables(self, client: AsyncClient, auth_headers: Dict[str, str], catalog):
        response = await client.post(f"{BASE_URL}/provision", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK, response.text
        data = response.json()["data"]
        schema_name = f"shop_{auth_headers['X-Shop-Code'].lower()}"
        assert data == {"schema_name": schema_name, "tables": ["shop_info"], "version": None}
        assert catalog.schemas[schema_name]["tables"] == {"shop_info"}

    async def test_provision_with_version(self, client: AsyncClient, auth_headers: Dict[str, str]):
        response = await client.post(
            f"{BASE_URL}/provision",
            json={"tables": ["products", "orders"], "version": "1.0.0", "description": "Catalog"},
            headers=auth_headers,
        )
        assert response.status_code == status.HTTP_200_OK, response.text
        data = response.json()["data"]
        assert data["tables"] == ["products", "orders"]
        assert data["version"]["version"] == "1.0.0"
        assert data["version"]["tables"] == ["products", "orders"]

        response = await client.get(f"{BASE_URL}/version", headers=auth_headers)
        assert response.json()["data"]["version"] == "1.0.0"

    async def test_version_is_null_before_recording(self, client: AsyncClient, auth_headers: Dict[str, str]):
        response = await client.get(f"{BASE_URL}/version", headers=auth_headers)
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"] is None

    async def test_provisioning_failure_hides_details(
        self, client: AsyncClient, auth_headers: Dict[str, str], catalog
    ):
        catalog.fail_on.add(("create_table", "shop_info"))
        response = await client.post(f"{BASE_URL}/provision", headers=auth_headers)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["msg"] == "Internal Server Error"
        assert response.json()["code"] == "provisioning_error"

# ==============================================================================
# 2. Tables, validation & migration
# ==============================================================================

class TestSchemaLifecycleApi:

    async def test_tables_and_validation(self, client: AsyncClient, auth_headers: Dict[str, str]):
        await client.post(f"{BASE_URL}/provision", json={"version": "1.0.0"}, headers=auth_headers)

        response = await client.get(f"{BASE_URL}/validate", headers=auth_headers)
        assert response.json()["data"] == {
            "is_valid": True, "missing_tables": [], "extra_tables": [], "versioned": True
        }

        response = await client.post(f"{BASE_URL}/tables", json={"tables": ["products"]}, headers=auth_headers)
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"] == ["products"]

        response = await client.get(f"{BASE_URL}/tables", headers=auth_headers)
        assert response.json()["data"] == ["products", "shop_info"]

        report = (await client.get(f"{BASE_URL}/validate", headers=auth_headers)).json()["data"]
        assert report["is_valid"] is False
        assert report["extra_tables"] == ["products"]

    async def test_validate_unprovisioned(self, client: AsyncClient, auth_headers: Dict[str, str]):
        response = await client.get(f"{BASE_URL}/validate", headers=auth_headers)
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["versioned"] is False

    async def test_add_unknown_table(self, client: AsyncClient, auth_headers: Dict[str, str]):
        await client.post(f"{BASE_URL}/provision", headers=auth_headers)
        response = await client.post(f"{BASE_URL}/tables", json={"tables": ["bogus"]}, headers=auth_headers)
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "not_found"

    async def test_add_tables_without_schema(self, client: AsyncClient, auth_headers: Dict[str, str]):
        response = await client.post(f"{BASE_URL}/tables", json={"tables": ["products"]}, headers=auth_headers)
        assert response.status_code == status.HTTP_404_NOT_FOUND

    async def test_migrate(self, client: AsyncClient, auth_headers: Dict[str, str]):
        await client.post(f"{BASE_URL}/provision", json={"version": "1.0.0"}, headers=auth_headers)

        response = await client.post(
            f"{BASE_URL}/migrate",
            json={"from_version": "1.0.0", "to_version": "1.1.0", "add_tables": ["orders"]},
            headers=auth_headers,
        )
        assert response.status_code == status.HTTP_200_OK, response.text
        data = response.json()["data"]
        assert data["version"] == "1.1.0"
        assert data["description"] == "Migration from 1.0.0 to 1.1.0"
        assert data["tables"] == ["orders", "shop_info"]

    async def test_migrate_requires_versions(self, client: AsyncClient, auth_headers: Dict[str, str]):
        response = await client.post(f"{BASE_URL}/migrate", json={"add_tables": ["orders"]}, headers=auth_headers)
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    async def test_failed_migration(self, client: AsyncClient, auth_headers: Dict[str, str], catalog):
        await client.post(f"{BASE_URL}/provision", json={"version": "1.0.0"}, headers=auth_headers)
        catalog.fail_on.add(("create_table", "orders"))

        response = await client.post(
            f"{BASE_URL}/migrate",
            json={"from_version": "1.0.0", "to_version": "1.1.0", "add_tables": ["orders"]},
            headers=auth_headers,
        )
        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["code"] == "migration_error"
