import uuid
from datetime import datetime
from pydantic import BaseModel, Field


class TenantCreate(BaseModel):
    """Onboard a new company"""

    name: str = Field(..., min_length=1, max_length=100)
    schema_slug: str | None = Field(
        None,
        pattern=r"^[a-z0-9_]+$",
        max_length=50,
        description="Slug for the schema name (derived from name if omitted)",
    )
    domain: str | None = Field(None, max_length=100)

    contact_email: str | None = Field(None, max_length=100)
    contact_phone: str | None = Field(None, max_length=20)
    contact_person: str | None = Field(None, max_length=100)
    address: str | None = None
    city: str | None = Field(None, max_length=100)
    country: str | None = Field(None, max_length=100)

    max_users: int | None = Field(None, gt=0)
    max_objects: int | None = Field(None, gt=0)
    storage_quota: int | None = Field(None, gt=0, description="Storage quota in MB")
    language: str | None = Field(None, max_length=5)
    timezone: str | None = Field(None, max_length=50)
    currency: str | None = Field(None, min_length=3, max_length=3)


class TenantUpdate(BaseModel):
    """Administrative update. Identity and schema name are not updatable."""

    name: str | None = Field(None, min_length=1, max_length=100)
    domain: str | None = Field(None, max_length=100)

    contact_email: str | None = Field(None, max_length=100)
    contact_phone: str | None = Field(None, max_length=20)
    contact_person: str | None = Field(None, max_length=100)
    address: str | None = None
    city: str | None = Field(None, max_length=100)
    country: str | None = Field(None, max_length=100)

    max_users: int | None = Field(None, gt=0)
    max_objects: int | None = Field(None, gt=0)
    storage_quota: int | None = Field(None, gt=0)
    language: str | None = Field(None, max_length=5)
    timezone: str | None = Field(None, max_length=50)
    currency: str | None = Field(None, min_length=3, max_length=3)


class TenantResponse(BaseModel):
    """Tenant details response"""

    id: uuid.UUID
    name: str
    schema_name: str
    domain: str | None
    contact_email: str | None
    contact_phone: str | None
    contact_person: str | None
    address: str | None
    city: str | None
    country: str | None
    is_active: bool
    max_users: int
    max_objects: int
    storage_quota: int
    language: str
    timezone: str
    currency: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TenantListResponse(BaseModel):
    """Page of tenants"""

    companies: list[TenantResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class TenantUsageResponse(BaseModel):
    """Resource usage read from the tenant schema"""

    tenant_id: uuid.UUID
    schema_name: str
    users_count: int
    objects_count: int
    contracts_count: int
    max_users: int
    max_objects: int
    storage_quota: int


class TenantQuotasResponse(BaseModel):
    max_users: int
    max_objects: int
    storage_quota_mb: int


class CurrentTenantResponse(BaseModel):
    """Identity of the tenant routed for the current request"""

    tenant_id: uuid.UUID
    name: str
    schema_name: str
    quotas: TenantQuotasResponse

    model_config = {"from_attributes": True}


class CacheClearRequest(BaseModel):
    """Clear one tenant's handle, or all handles when tenant_id is omitted"""

    tenant_id: uuid.UUID | None = None


class CacheClearResponse(BaseModel):
    cleared: int
    scope: str
