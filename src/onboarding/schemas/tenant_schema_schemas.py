# onboarding/schemas/tenant_schema_schemas.py

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

class SchemaVersionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    version: str
    description: Optional[str] = None
    tables: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None

class SchemaValidationReport(BaseModel):
    is_valid: bool
    missing_tables: List[str] = Field(default_factory=list)
    extra_tables: List[str] = Field(default_factory=list)
    # False when the tenant has no version record at all (never provisioned)
    versioned: bool = True

# --- Request bodies ---

class ProvisionRequest(BaseModel):
    tables: Optional[List[str]] = Field(None, description="Table names to create; the default set when omitted.")
    version: Optional[str] = Field(None, max_length=50, description="Record a version after provisioning.")
    description: Optional[str] = None

class MigrateRequest(BaseModel):
    from_version: str = Field(..., max_length=50)
    to_version: str = Field(..., max_length=50)
    add_tables: List[str] = Field(default_factory=list)
    remove_tables: List[str] = Field(default_factory=list)

class ProvisionResult(BaseModel):
    schema_name: str
    tables: List[str]
    version: Optional[SchemaVersionRecord] = None
