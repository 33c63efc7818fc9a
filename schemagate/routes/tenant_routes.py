import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from schemagate.database import get_db
from schemagate.dependencies import get_provisioner, get_schema_cache
from schemagate.services.schema_cache import SchemaConnectionCache
from schemagate.services.schema_provisioner import SchemaProvisioner
from schemagate.services.tenant_service import TenantService
from schemagate.schemas.tenant_schemas import (
    TenantCreate,
    TenantUpdate,
    TenantResponse,
    TenantListResponse,
    TenantUsageResponse,
)

router = APIRouter()


def get_tenant_service(
    db: Session = Depends(get_db),
    provisioner: SchemaProvisioner = Depends(get_provisioner),
    cache: SchemaConnectionCache = Depends(get_schema_cache),
) -> TenantService:
    return TenantService(db, provisioner, cache)


@router.get("", response_model=TenantListResponse)
def list_companies(
    search: str | None = Query(None, description="Search in name, email and city"),
    is_active: bool | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    service: TenantService = Depends(get_tenant_service),
):
    """List companies with optional search and status filter"""
    return service.list_tenants(search=search, is_active=is_active, page=page, limit=limit)


@router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
def create_company(data: TenantCreate, service: TenantService = Depends(get_tenant_service)):
    """
    Onboard a new company.

    - Inserts the catalog row and provisions the tenant schema
    - If provisioning fails the row is removed and 500 is returned
    - Schema name and domain must be unique (409 otherwise)
    """
    return service.create_tenant(data)


@router.get("/{tenant_id}", response_model=TenantResponse)
def get_company(tenant_id: uuid.UUID, service: TenantService = Depends(get_tenant_service)):
    """Get company details"""
    return service.get_tenant(tenant_id)


@router.patch("/{tenant_id}", response_model=TenantResponse)
def update_company(
    tenant_id: uuid.UUID,
    data: TenantUpdate,
    service: TenantService = Depends(get_tenant_service),
):
    """Update company details. The schema name cannot be changed."""
    return service.update_tenant(tenant_id, data)


@router.put("/{tenant_id}/activate", response_model=TenantResponse)
def activate_company(tenant_id: uuid.UUID, service: TenantService = Depends(get_tenant_service)):
    """Re-enable routing for a company"""
    return service.set_active(tenant_id, True)


@router.put("/{tenant_id}/deactivate", response_model=TenantResponse)
def deactivate_company(tenant_id: uuid.UUID, service: TenantService = Depends(get_tenant_service)):
    """
    Block a company.

    Takes effect on the next request: its cached handle is dropped and
    resolution rejects inactive tenants with 403.
    """
    return service.set_active(tenant_id, False)


@router.delete("/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_company(tenant_id: uuid.UUID, service: TenantService = Depends(get_tenant_service)):
    """Soft delete a company whose schema holds no users or objects"""
    service.delete_tenant(tenant_id)


@router.get("/{tenant_id}/usage", response_model=TenantUsageResponse)
def get_company_usage(tenant_id: uuid.UUID, service: TenantService = Depends(get_tenant_service)):
    """Row counts in the company schema against its quotas"""
    return service.get_usage(tenant_id)
