# onboarding/core/config.py
from dotenv import load_dotenv
load_dotenv(".env")
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, computed_field
from typing import Optional, List

class Settings(BaseSettings):
    # model_config loads the .env file automatically
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    APP_ENV: str = "production"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # --- Control plane database (tenant_installations lives here) ---
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    DB_NAME: str = "onboarding"

    @computed_field
    @property
    def DATABASE_URL(self) -> str:
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # --- Tenant data plane (one schema per shop) ---
    DB_TENANT_DATA_HOST: str = "localhost"
    DB_TENANT_DATA_PORT: int = 5432
    DB_TENANT_DATA_USER: str = "postgres"
    DB_TENANT_DATA_PASSWORD: str = "postgres"
    DB_TENANT_DATA_NAME: str = "onboarding"

    @computed_field
    @property
    def DATABASE_URL_TENANT_DATA(self) -> str:
        return f"postgresql+asyncpg://{self.DB_TENANT_DATA_USER}:{self.DB_TENANT_DATA_PASSWORD}@{self.DB_TENANT_DATA_HOST}:{self.DB_TENANT_DATA_PORT}/{self.DB_TENANT_DATA_NAME}"

    # --- TestDatabase ---
    DB_TEST_HOST: str = "localhost"
    DB_TEST_PORT: int = 5432
    DB_TEST_USER: str = "postgres"
    DB_TEST_PASSWORD: str = "postgres"
    DB_TEST_NAME: str = "onboarding_test"

    @computed_field
    @property
    def DATABASE_URL_TEST(self) -> str:
        return f"postgresql+asyncpg://{self.DB_TEST_USER}:{self.DB_TEST_PASSWORD}@{self.DB_TEST_HOST}:{self.DB_TEST_PORT}/{self.DB_TEST_NAME}"

    # --- Shopify (external provider) ---
    SHOPIFY_CLIENT_ID: str = ""
    SHOPIFY_CLIENT_SECRET: str = ""
    # Shared secret for handshake signatures; Shopify signs with the app secret
    HANDSHAKE_HMAC_SECRET: Optional[str] = None
    SHOPIFY_SCOPES: List[str] = ["read_products", "write_products", "read_orders", "write_orders"]
    CLIENT_APP_URL: str = "http://localhost:5173"
    FRONTEND_URL: str = "http://localhost:3001"
    PROVIDER_TIMEOUT_SECONDS: float = 15.0

    @computed_field
    @property
    def HANDSHAKE_SECRET(self) -> str:
        return self.HANDSHAKE_HMAC_SECRET or self.SHOPIFY_CLIENT_SECRET

    # --- Handshake validation ---
    HANDSHAKE_MAX_AGE_SECONDS: int = 3600
    FINGERPRINT_LENGTH: int = 32
    # e.g. ".myshopify.com"; empty accepts any well-formed hostname
    SHOP_DOMAIN_SUFFIX: str = ""
    TENANT_CODE_MAX_ATTEMPTS: int = 10

    # --- Tenant schemas & connections ---
    TENANT_SCHEMA_PREFIX: str = "shop_"
    TENANT_POOL_SIZE: int = Field(10, gt=0, description="Upper bound of pooled connections per tenant schema.")
    TENANT_POOL_TIMEOUT_SECONDS: float = 30.0
    TENANT_CONNECT_TIMEOUT_SECONDS: float = 10.0
    TENANT_DDL_TIMEOUT_SECONDS: float = 60.0
    INITIAL_SCHEMA_VERSION: str = "1.0.0"

settings = Settings()
