from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from schemagate.dependencies import get_tenant_context, get_tenant_db
from schemagate.models.tenant_context import TenantContext
from schemagate.services.tenant_service import count_tenant_rows
from schemagate.schemas.tenant_schemas import CurrentTenantResponse, TenantUsageResponse

router = APIRouter()


@router.get("", response_model=CurrentTenantResponse)
def get_current_tenant(context: TenantContext = Depends(get_tenant_context)):
    """Identity and quota snapshot of the tenant routed for this request"""
    identity = context.identity
    return {
        "tenant_id": identity.tenant_id,
        "name": identity.name,
        "schema_name": identity.schema_name,
        "quotas": {
            "max_users": identity.quotas.max_users,
            "max_objects": identity.quotas.max_objects,
            "storage_quota_mb": identity.quotas.storage_quota_mb,
        },
    }


@router.get("/usage", response_model=TenantUsageResponse)
def get_current_tenant_usage(
    context: TenantContext = Depends(get_tenant_context),
    tenant_db: Session = Depends(get_tenant_db),
):
    """Row counts read through the tenant's own schema handle"""
    quotas = context.identity.quotas
    return {
        "tenant_id": context.tenant_id,
        "schema_name": context.schema_name,
        **count_tenant_rows(tenant_db),
        "max_users": quotas.max_users,
        "max_objects": quotas.max_objects,
        "storage_quota": quotas.storage_quota_mb,
    }
