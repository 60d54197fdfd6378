# onboarding/schemas/installation_schemas.py

import re
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from onboarding.core.config import settings
from onboarding.models.installation import InstallationStatus

SHOP_DOMAIN_PATTERN = re.compile(r"[a-z0-9]([a-z0-9-]*[a-z0-9])?(\.[a-z0-9]([a-z0-9-]*[a-z0-9])?)+")
HEX_PATTERN = re.compile(r"[0-9a-f]+")

class HandshakePayload(BaseModel):
    """
    Signed query parameters forwarded by the embedded client.
    Field shape is checked here; signature, freshness and fingerprint binding
    are checked by InstallationService.
    """
    shop: str = Field(..., max_length=255)
    host: str = Field(..., min_length=1, max_length=255)
    hmac: Optional[str] = Field(None, max_length=64)
    timestamp: str = Field(..., min_length=1, max_length=20, pattern=r"^[0-9]+$")
    fingerprint: Optional[str] = None
    code: Optional[str] = Field(None, max_length=255)
    state: Optional[str] = Field(None, max_length=255)
    scope: Optional[str] = Field(None, max_length=1000)
    note: Optional[str] = Field(None, max_length=1000)

    @field_validator("shop")
    @classmethod
    def validate_shop(cls, v: str) -> str:
        v = v.strip().lower()
        if not SHOP_DOMAIN_PATTERN.fullmatch(v):
            raise ValueError("shop must be a valid hostname")
        suffix = settings.SHOP_DOMAIN_SUFFIX
        if suffix and not v.endswith(suffix.lower()):
            raise ValueError(f"shop must end with '{suffix}'")
        return v

    @field_validator("hmac")
    @classmethod
    def validate_hmac(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if not HEX_PATTERN.fullmatch(v):
            raise ValueError("hmac must be a hex string")
        return v

    @field_validator("fingerprint")
    @classmethod
    def validate_fingerprint(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        v = v.strip().lower()
        if len(v) != settings.FINGERPRINT_LENGTH or not HEX_PATTERN.fullmatch(v):
            raise ValueError(f"fingerprint must be {settings.FINGERPRINT_LENGTH} hex characters")
        return v

class InstallationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    shop_code: str
    shop: str
    installation_token: Optional[str] = None
    status: InstallationStatus

class AuthorizationResult(BaseModel):
    status: Literal["redirect_required", "authorized"]
    shop: str
    shop_code: str
    # redirect_required
    auth_url: Optional[str] = None
    state: Optional[str] = None
    # authorized
    authorized_at: Optional[datetime] = None
    redirect_url: Optional[str] = None

class ShopInfoRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    shop_code: str
    shop_domain: str
    shop_name: Optional[str] = None
    currency: Optional[str] = None
    timezone: Optional[str] = None
    plan_name: Optional[str] = None
    is_active: bool = True
    has_access_token: bool = False
